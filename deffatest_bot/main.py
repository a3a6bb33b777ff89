# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Main entry point for the Deffatest webhook service.

Initializes the application and starts the server.
"""

import os
from typing import Optional

from dotenv import load_dotenv

from deffatest_bot.api import WebhookAPI
from deffatest_bot.config import BotConfig
from deffatest_bot.events import WebhookRouter
from deffatest_bot.logging_config import get_logger, setup_logging
from deffatest_bot.rate_limiter import RateLimiter
from deffatest_bot.webhook_verifier import WebhookVerifier


logger = get_logger(__name__)


def load_config() -> BotConfig:
    """
    Load and validate configuration, failing fast on any problem.

    Raises:
        KeyError: A required environment variable is missing
        ValueError: A configuration value is invalid
    """
    env_path = os.path.join(os.getcwd(), ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path, override=False)

    try:
        config = BotConfig.from_env()
        config.validate()
    except KeyError as e:
        logger.error(f"Missing required environment variable: {e}")
        raise
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        raise

    return config


def build_api(config: BotConfig, router: Optional[WebhookRouter] = None) -> WebhookAPI:
    """
    Wire the verifier, rate limiter and router into the HTTP API.

    Args:
        config: Validated configuration
        router: Router with notification handlers registered; an empty
            router acknowledges every verified webhook

    Returns:
        WebhookAPI ready to run
    """
    verifier = WebhookVerifier.from_config(config)
    rate_limiter = RateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_seconds
    )

    return WebhookAPI(
        verifier=verifier,
        router=router if router is not None else WebhookRouter(),
        rate_limiter=rate_limiter
    )


def main() -> None:
    """Main application entry point."""
    config = load_config()

    setup_logging(log_level=config.log_level, log_format=config.log_format)

    logger.info("Starting Deffatest webhook service", extra={
        'deffatest_api_url': config.deffatest_api_url,
        'port': config.port,
        'webhook_secret_configured': config.webhook_secret is not None
    })

    build_api(config).run(port=config.port)


if __name__ == "__main__":
    main()
