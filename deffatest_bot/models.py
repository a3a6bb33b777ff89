# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Data models for the Deffatest Slack bot.

This module defines Pydantic models for inbound Deffatest webhooks and for
the workspace and user records whose secrets are stored encrypted. All
models use Pydantic v2 for validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BugCounts(BaseModel):
    """Bug counts by severity reported for a test run."""
    model_config = ConfigDict(frozen=True)

    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    low: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low


class WebhookEnvelope(BaseModel):
    """
    Outer shape of every Deffatest webhook body.

    ``event`` is the free-form kind string sent on the wire; the router maps
    it onto WebhookEventKind.
    """
    model_config = ConfigDict(frozen=True)

    event: str = Field(..., description="Event kind, e.g. 'test.completed'")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")


class RunCompletedData(BaseModel):
    """Payload of a ``test.completed`` webhook."""
    test_id: str = Field(..., min_length=1)
    bugs: BugCounts = Field(default_factory=BugCounts)
    report_url: Optional[str] = None
    duration: Optional[str] = None


class RunFailedData(BaseModel):
    """Payload of a ``test.failed`` webhook."""
    test_id: str = Field(..., min_length=1)
    error: Optional[str] = None


class BugsFoundData(BaseModel):
    """Payload of a ``bugs.found`` webhook."""
    test_id: str = Field(..., min_length=1)
    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)

    @property
    def is_urgent(self) -> bool:
        """Only critical or high severity bugs warrant an alert."""
        return self.critical > 0 or self.high > 0


class WorkspaceInstallation(BaseModel):
    """
    Slack workspace that installed the bot.

    ``bot_token`` holds the plaintext token on the way in and the
    ``iv:tag:ciphertext`` triple once stored.
    """
    model_config = ConfigDict(frozen=False)

    team_id: str = Field(
        ...,
        description="Slack workspace/team ID",
        pattern=r"^T[A-Z0-9]{8,11}$"
    )
    team_name: str = Field(..., min_length=1)
    bot_token: str = Field(..., min_length=1)
    bot_id: Optional[str] = None
    bot_user_id: Optional[str] = None
    scope: Optional[str] = None
    installed_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True


class UserLink(BaseModel):
    """
    Link between a Slack user and a Deffatest account.

    ``api_key`` holds the plaintext key on the way in and the encrypted
    triple once stored.
    """
    model_config = ConfigDict(frozen=False)

    slack_team_id: str = Field(..., pattern=r"^T[A-Z0-9]{8,11}$")
    slack_user_id: str = Field(..., pattern=r"^U[A-Z0-9]{8,11}$")
    api_key: str = Field(..., min_length=1)
    deffatest_email: Optional[str] = None
    deffatest_user_id: Optional[str] = None
    linked_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True

    @field_validator('deffatest_email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        """Validate email format."""
        if v is not None and ('@' not in v or '.' not in v.split('@')[1]):
            raise ValueError('Invalid email format')
        return v


class RunStatus(str, Enum):
    """Lifecycle of a test run started from Slack."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TestRun(BaseModel):
    """
    Test run started from Slack.

    Records where the run was requested so webhook notifications about it
    can be routed back to the right workspace, channel and user.
    """
    __test__ = False

    model_config = ConfigDict(frozen=False)

    test_id: str = Field(..., min_length=1)
    slack_team_id: str = Field(..., pattern=r"^T[A-Z0-9]{8,11}$")
    slack_user_id: str = Field(..., pattern=r"^U[A-Z0-9]{8,11}$")
    slack_channel_id: str = Field(..., min_length=1)
    test_type: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    bugs: BugCounts = Field(default_factory=BugCounts)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class TestRunInfo(TestRun):
    """Test run joined with the plaintext bot token of its workspace."""

    bot_token: str = Field(..., min_length=1)
