# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Verification of webhooks sent by the Deffatest backend.

The backend signs every webhook with HMAC-SHA256 over the timestamp header
followed by the raw request body, using a shared secret. A request is
accepted only when the signature matches and the timestamp lies within the
freshness window. The window bounds replay exposure; it does not prevent a
captured request from being replayed inside it.
"""

import hashlib
import hmac
import re
import time
from typing import Callable, Optional, Union

from deffatest_bot.config import BotConfig
from deffatest_bot.errors import (
    AuthenticationError,
    MissingCredentialsError,
    ServerConfigurationError,
    StaleRequestError,
)
from deffatest_bot.logging_config import get_logger


logger = get_logger(__name__)


SIGNATURE_HEADER = "X-Deffatest-Signature"
TIMESTAMP_HEADER = "X-Deffatest-Timestamp"

_TIMESTAMP_PATTERN = re.compile(r"[0-9]{1,20}")
# Even-length hex with no separators
_SIGNATURE_PATTERN = re.compile(r"(?:[0-9a-fA-F]{2})+")


def current_time_ms() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def compute_signature(secret: str, timestamp: str, body: Union[bytes, str]) -> str:
    """
    Compute the hex HMAC-SHA256 signature the backend sends.

    Args:
        secret: Shared webhook secret
        timestamp: Timestamp header value, exactly as sent
        body: Raw request body, exactly as sent

    Returns:
        Hex-encoded signature
    """
    if isinstance(body, str):
        body = body.encode('utf-8')
    message = timestamp.encode('utf-8') + body
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


class WebhookVerifier:
    """
    Gate for Deffatest webhook requests.

    ``verify`` returns normally only for an authentic, fresh request and
    raises a distinct error kind for every rejection.
    """

    # Maximum clock skew between the backend and this service (5 minutes)
    MAX_REQUEST_AGE_MS = 5 * 60 * 1000

    def __init__(
        self,
        webhook_secret: Optional[str],
        max_age_ms: int = MAX_REQUEST_AGE_MS,
        clock: Callable[[], int] = current_time_ms
    ):
        """
        Initialize webhook verifier.

        Args:
            webhook_secret: Shared secret; ``None`` makes every request fail
                with ServerConfigurationError
            max_age_ms: Freshness window in milliseconds
            clock: Returns the current time in milliseconds since the epoch
        """
        self._secret = webhook_secret or None
        self.max_age_ms = max_age_ms
        self._clock = clock

        if self._secret is None:
            logger.error("DEFFATEST_WEBHOOK_SECRET not configured, all webhooks will be rejected")
        else:
            logger.info("Webhook verifier initialized", extra={
                'max_age_ms': max_age_ms
            })

    @classmethod
    def from_config(cls, config: BotConfig) -> "WebhookVerifier":
        """Create a verifier from the process configuration."""
        return cls(
            config.webhook_secret,
            max_age_ms=config.webhook_tolerance_seconds * 1000
        )

    def verify(
        self,
        signature: Optional[str],
        timestamp: Optional[str],
        raw_body: Union[bytes, str],
        now_ms: Optional[int] = None
    ) -> None:
        """
        Verify a webhook request.

        Args:
            signature: Signature header value (hex)
            timestamp: Timestamp header value (decimal milliseconds)
            raw_body: Request body exactly as received
            now_ms: Current time override, defaults to the verifier clock

        Raises:
            ServerConfigurationError: Shared secret is not configured
            MissingCredentialsError: Signature or timestamp header missing
            StaleRequestError: Timestamp unparsable or outside the window
            AuthenticationError: Signature does not match
        """
        if self._secret is None:
            logger.warning("Webhook rejected: DEFFATEST_WEBHOOK_SECRET not configured")
            raise ServerConfigurationError("Webhook secret is not configured")

        if not signature or not timestamp:
            logger.warning("Webhook missing signature headers", extra={
                'has_signature': bool(signature),
                'has_timestamp': bool(timestamp)
            })
            raise MissingCredentialsError("Missing signature or timestamp header")

        self._check_freshness(timestamp, self._clock() if now_ms is None else now_ms)

        expected = compute_signature(self._secret, timestamp, raw_body)

        if not _SIGNATURE_PATTERN.fullmatch(signature):
            logger.warning("Webhook signature is not valid hex")
            raise AuthenticationError("Signature is not valid hex")

        received_bytes = bytes.fromhex(signature)

        expected_bytes = bytes.fromhex(expected)

        if len(received_bytes) != len(expected_bytes):
            logger.warning("Webhook signature length mismatch", extra={
                'received_length': len(received_bytes)
            })
            raise AuthenticationError("Signature length mismatch")

        if not hmac.compare_digest(received_bytes, expected_bytes):
            logger.warning("Webhook signature verification failed", extra={
                'webhook_timestamp': timestamp
            })
            raise AuthenticationError("Signature mismatch")

        logger.debug("Webhook signature verified", extra={'webhook_timestamp': timestamp})

    def _check_freshness(self, timestamp: str, now_ms: int) -> None:
        if not _TIMESTAMP_PATTERN.fullmatch(timestamp):
            logger.warning("Webhook timestamp invalid", extra={
                'webhook_timestamp': timestamp[:32]
            })
            raise StaleRequestError("Timestamp is not an integer")

        age_ms = abs(now_ms - int(timestamp))
        if age_ms > self.max_age_ms:
            logger.warning("Webhook timestamp outside window", extra={
                'age_ms': age_ms,
                'max_age_ms': self.max_age_ms
            })
            raise StaleRequestError("Timestamp outside the accepted window")
