# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
API server for inbound Deffatest webhooks.

This module provides the HTTP endpoint the Deffatest backend calls when a
test run changes state. Every request is authenticated with WebhookVerifier
against the raw body bytes before the body is parsed. It uses aiohttp for
async HTTP handling.
"""

import json
from typing import Optional

from aiohttp import web

from deffatest_bot.errors import DeffatestBotError, PayloadError
from deffatest_bot.events import WebhookRouter
from deffatest_bot.logging_config import get_logger
from deffatest_bot.rate_limiter import RateLimiter, rate_limit_middleware
from deffatest_bot.webhook_verifier import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    WebhookVerifier,
)


logger = get_logger(__name__)


WEBHOOK_PATH = '/webhooks/deffatest'
HEALTH_PATH = '/health'


class WebhookAPI:
    """
    HTTP API server for Deffatest webhooks.

    Provides endpoints:
    - POST /webhooks/deffatest - Signed test run notifications
    - GET /health - Liveness check
    """

    def __init__(
        self,
        verifier: WebhookVerifier,
        router: WebhookRouter,
        rate_limiter: Optional[RateLimiter] = None
    ):
        """
        Initialize webhook API.

        Args:
            verifier: Authenticates each webhook request
            router: Dispatches verified webhook bodies
            rate_limiter: Optional per-client limiter for the webhook path
        """
        self.verifier = verifier
        self.router = router

        middlewares = []
        if rate_limiter is not None:
            middlewares.append(
                rate_limit_middleware(rate_limiter, paths=frozenset({WEBHOOK_PATH}))
            )

        self.app = web.Application(middlewares=middlewares)
        self._setup_routes()

        logger.info("Webhook API initialized", extra={
            'rate_limited': rate_limiter is not None
        })

    def _setup_routes(self) -> None:
        """Configure API routes."""
        self.app.router.add_post(WEBHOOK_PATH, self.handle_webhook)
        self.app.router.add_get(HEALTH_PATH, self.health_check)

    async def handle_webhook(self, request: web.Request) -> web.Response:
        """
        Handle a Deffatest webhook.

        Endpoint: POST /webhooks/deffatest

        The signature covers the exact bytes received, so the body is read
        raw and only parsed once it has been verified.

        Args:
            request: aiohttp Request object

        Returns:
            JSON response; error bodies never reveal which check failed
            beyond the fixed public message
        """
        raw_body = await request.read()

        try:
            self.verifier.verify(
                request.headers.get(SIGNATURE_HEADER),
                request.headers.get(TIMESTAMP_HEADER),
                raw_body
            )
        except DeffatestBotError as e:
            return web.json_response(
                data={'error': e.public_message},
                status=e.status_code
            )

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            logger.error("Invalid JSON in verified webhook", extra={
                'error': str(e)
            })
            return web.json_response(
                data={'error': 'Invalid JSON'},
                status=400
            )

        try:
            await self.router.dispatch(payload)
        except PayloadError as e:
            return web.json_response(
                data={'error': e.public_message},
                status=e.status_code
            )
        except Exception as e:
            logger.error("Webhook handler failed", extra={
                'error': str(e),
                'error_type': type(e).__name__
            }, exc_info=True)
            return web.json_response(
                data={'error': 'Internal error'},
                status=500
            )

        return web.json_response(data={'success': True}, status=200)

    async def health_check(self, request: web.Request) -> web.Response:
        """
        Health check endpoint.

        Returns:
            JSON response with service status
        """
        return web.json_response(data={'status': 'ok'}, status=200)

    def run(self, host: str = '0.0.0.0', port: int = 3001) -> None:
        """
        Run the API server.

        Args:
            host: Host to bind to
            port: Port to listen on
        """
        logger.info("Starting webhook API server", extra={
            'host': host,
            'port': port
        })
        web.run_app(self.app, host=host, port=port, print=None)
