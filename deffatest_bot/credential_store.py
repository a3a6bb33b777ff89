# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Encrypted storage of workspace bot tokens and linked user API keys, and
the test runs that notifications are routed by.

Records are kept in injectable mappings keyed by team ID, by
``(team_id, user_id)`` and by test ID. Secrets are encrypted with
SecretCipher before they are stored and decrypted on the way out. A stored
secret that fails to decrypt is reported as absent so the caller can ask
for a re-install or a re-link.
"""

from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from deffatest_bot.crypto import SecretCipher
from deffatest_bot.errors import AuthenticationError, FormatError
from deffatest_bot.logging_config import get_logger
from deffatest_bot.models import (
    BugCounts,
    RunStatus,
    TestRun,
    TestRunInfo,
    UserLink,
    WorkspaceInstallation,
)


logger = get_logger(__name__)


class CredentialStore:
    """Stores workspace installations, user links and test runs."""

    def __init__(
        self,
        cipher: SecretCipher,
        workspace_storage: Optional[Dict[str, WorkspaceInstallation]] = None,
        user_storage: Optional[Dict[Tuple[str, str], UserLink]] = None,
        test_storage: Optional[Dict[str, TestRun]] = None
    ):
        """
        Initialize the credential store.

        Args:
            cipher: Cipher used for every stored secret
            workspace_storage: Optional in-memory workspace records (for testing)
            user_storage: Optional in-memory user links (for testing)
            test_storage: Optional in-memory test runs (for testing)
        """
        self.cipher = cipher
        self._workspaces = workspace_storage if workspace_storage is not None else {}
        self._users = user_storage if user_storage is not None else {}
        self._tests = test_storage if test_storage is not None else {}

    async def save_workspace(self, installation: WorkspaceInstallation) -> None:
        """
        Store a workspace installation, encrypting its bot token.

        An existing record for the same team is replaced and reactivated.

        Args:
            installation: Installation carrying the plaintext bot token
        """
        stored = installation.model_copy(update={
            'bot_token': self.cipher.encrypt(installation.bot_token),
            'is_active': True
        })
        self._workspaces[installation.team_id] = stored

        logger.info("Workspace installation stored", extra={
            'team_id': installation.team_id,
            'bot_user_id': installation.bot_user_id,
            'installed_at': installation.installed_at.isoformat()
        })

    async def get_workspace_token(self, team_id: str) -> Optional[str]:
        """
        Retrieve and decrypt the bot token for a workspace.

        Args:
            team_id: Slack workspace/team ID

        Returns:
            Plaintext bot token, or None if the workspace is unknown,
            inactive, or its stored token cannot be decrypted
        """
        installation = self._workspaces.get(team_id)

        if installation is None or not installation.is_active:
            logger.warning("Workspace installation not found", extra={'team_id': team_id})
            return None

        try:
            return self.cipher.decrypt(installation.bot_token)
        except (FormatError, AuthenticationError) as e:
            logger.error("Failed to decrypt workspace token, re-install required", extra={
                'team_id': team_id,
                'error_type': type(e).__name__
            })
            return None

    async def deactivate_workspace(self, team_id: str) -> bool:
        """
        Mark a workspace inactive after the app is uninstalled.

        Args:
            team_id: Slack workspace/team ID

        Returns:
            True if the workspace was active, False otherwise
        """
        installation = self._workspaces.get(team_id)
        if installation is None or not installation.is_active:
            return False

        installation.is_active = False
        logger.info("Workspace deactivated", extra={'team_id': team_id})
        return True

    async def link_user(self, link: UserLink) -> None:
        """
        Link a Slack user to a Deffatest account, encrypting the API key.

        Args:
            link: User link carrying the plaintext API key
        """
        stored = link.model_copy(update={
            'api_key': self.cipher.encrypt(link.api_key),
            'is_active': True
        })
        self._users[(link.slack_team_id, link.slack_user_id)] = stored

        logger.info("Slack user linked", extra={
            'team_id': link.slack_team_id,
            'user_id': link.slack_user_id,
            'deffatest_user_id': link.deffatest_user_id
        })

    async def get_user_link(self, team_id: str, user_id: str) -> Optional[UserLink]:
        """
        Retrieve an active user link with its API key decrypted.

        Args:
            team_id: Slack workspace/team ID
            user_id: Slack user ID

        Returns:
            UserLink with the plaintext API key, or None if the user is not
            linked or the stored key cannot be decrypted
        """
        link = self._users.get((team_id, user_id))

        if link is None or not link.is_active:
            logger.debug("User link not found", extra={
                'team_id': team_id,
                'user_id': user_id
            })
            return None

        try:
            api_key = self.cipher.decrypt(link.api_key)
        except (FormatError, AuthenticationError) as e:
            logger.error("Failed to decrypt user API key, re-link required", extra={
                'team_id': team_id,
                'user_id': user_id,
                'error_type': type(e).__name__
            })
            return None

        return link.model_copy(update={'api_key': api_key})

    async def get_user_api_key(self, team_id: str, user_id: str) -> Optional[str]:
        """Return the plaintext API key of a linked user, or None."""
        link = await self.get_user_link(team_id, user_id)
        return link.api_key if link is not None else None

    async def unlink_user(self, team_id: str, user_id: str) -> bool:
        """
        Deactivate a user link.

        Returns:
            True if an active link was deactivated, False otherwise
        """
        link = self._users.get((team_id, user_id))
        if link is None or not link.is_active:
            return False

        link.is_active = False
        logger.info("Slack user unlinked", extra={
            'team_id': team_id,
            'user_id': user_id
        })
        return True

    async def save_test(self, run: TestRun) -> bool:
        """
        Record a test run started from Slack.

        A run already recorded under the same test ID is left untouched.

        Args:
            run: Test run with the requesting channel and user

        Returns:
            True if the run was stored, False if it already existed
        """
        if run.test_id in self._tests:
            logger.debug("Test run already recorded", extra={'test_id': run.test_id})
            return False

        self._tests[run.test_id] = run.model_copy(deep=True)
        logger.info("Test run recorded", extra={
            'test_id': run.test_id,
            'team_id': run.slack_team_id,
            'channel_id': run.slack_channel_id
        })
        return True

    async def get_test_info(self, test_id: str) -> Optional[TestRunInfo]:
        """
        Look up a test run together with its workspace bot token.

        Args:
            test_id: Deffatest test ID from the webhook

        Returns:
            TestRunInfo with the decrypted bot token, or None if the run is
            unknown or its workspace has no usable token
        """
        run = self._tests.get(test_id)
        if run is None:
            logger.warning("Test run not found", extra={'test_id': test_id})
            return None

        bot_token = await self.get_workspace_token(run.slack_team_id)
        if bot_token is None:
            logger.warning("No bot token for test run workspace", extra={
                'test_id': test_id,
                'team_id': run.slack_team_id
            })
            return None

        return TestRunInfo(**run.model_dump(), bot_token=bot_token)

    async def update_test_status(
        self,
        test_id: str,
        status: RunStatus,
        bugs: Optional[BugCounts] = None
    ) -> bool:
        """
        Record the outcome of a test run.

        Bug counts default to zero when not given. ``completed_at`` is set
        only for completed runs.

        Args:
            test_id: Deffatest test ID
            status: New run status
            bugs: Bug counts reported with the outcome

        Returns:
            True if the run was updated, False if it is unknown
        """
        run = self._tests.get(test_id)
        if run is None:
            logger.warning("Cannot update unknown test run", extra={'test_id': test_id})
            return False

        run.status = RunStatus(status)
        run.bugs = bugs if bugs is not None else BugCounts()
        run.completed_at = (
            datetime.now(timezone.utc) if run.status is RunStatus.COMPLETED else None
        )

        logger.info("Test run status updated", extra={
            'test_id': test_id,
            'status': run.status.value,
            'bug_total': run.bugs.total
        })
        return True
