# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Configuration management for the Deffatest Slack bot.

Handles environment variables and application settings. Secrets are read
once at startup and handed to the components that need them.
"""

import os
import re
from dataclasses import dataclass
from typing import Optional


HEX_KEY_PATTERN = re.compile(r"[0-9a-fA-F]{64}")

# Webhook freshness window may be narrowed, never widened past 5 minutes
MAX_WEBHOOK_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class BotConfig:
    """Configuration for the Deffatest Slack bot service."""

    # Slack app credentials (required)
    slack_signing_secret: str
    slack_client_id: str
    slack_client_secret: str

    # Deffatest backend (required)
    deffatest_api_url: str

    # Encryption configuration (required), 64 hex characters
    encryption_key: str

    # Shared secret for inbound Deffatest webhooks (optional here so the
    # verifier can reject each request with a configuration error)
    webhook_secret: Optional[str] = None

    frontend_url: str = "https://deffatest.online"
    port: int = 3001

    # Logging configuration (optional)
    log_level: str = "INFO"
    log_format: str = "json"

    # Webhook freshness window
    webhook_tolerance_seconds: int = 300

    # Rate limiting (optional)
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 60

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        return cls(
            slack_signing_secret=os.environ["SLACK_SIGNING_SECRET"],
            slack_client_id=os.environ["SLACK_CLIENT_ID"],
            slack_client_secret=os.environ["SLACK_CLIENT_SECRET"],
            deffatest_api_url=os.environ["DEFFATEST_API_URL"],
            encryption_key=os.environ["ENCRYPTION_KEY"],
            webhook_secret=os.environ.get("DEFFATEST_WEBHOOK_SECRET") or None,
            frontend_url=os.environ.get("FRONTEND_URL", "https://deffatest.online"),
            port=int(os.environ.get("PORT", "3001")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "json"),
            webhook_tolerance_seconds=int(os.environ.get("WEBHOOK_TOLERANCE_SECONDS", "300")),
            rate_limit_max_requests=int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "100")),
            rate_limit_window_seconds=int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60")),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.deffatest_api_url.startswith("https://"):
            raise ValueError("DEFFATEST_API_URL must use HTTPS")

        if not HEX_KEY_PATTERN.fullmatch(self.encryption_key):
            raise ValueError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")

        if self.port < 1 or self.port > 65535:
            raise ValueError("PORT must be between 1 and 65535")

        if not 1 <= self.webhook_tolerance_seconds <= MAX_WEBHOOK_TOLERANCE_SECONDS:
            raise ValueError(
                f"WEBHOOK_TOLERANCE_SECONDS must be between 1 and {MAX_WEBHOOK_TOLERANCE_SECONDS}"
            )

        if self.rate_limit_max_requests < 1:
            raise ValueError("RATE_LIMIT_MAX_REQUESTS must be positive")

        if self.rate_limit_window_seconds < 1:
            raise ValueError("RATE_LIMIT_WINDOW_SECONDS must be positive")
