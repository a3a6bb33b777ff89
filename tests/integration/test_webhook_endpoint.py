# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Integration tests for the webhook HTTP endpoint.

Runs the aiohttp application in-process and exercises verification,
dispatch, error mapping and rate limiting end to end.
"""

import json
from unittest.mock import AsyncMock

import pytest
from aiohttp import test_utils

from deffatest_bot.api import WebhookAPI
from deffatest_bot.config import BotConfig
from deffatest_bot.events import WebhookEventKind, WebhookRouter
from deffatest_bot.main import build_api
from deffatest_bot.rate_limiter import RateLimiter
from deffatest_bot.webhook_verifier import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    WebhookVerifier,
    compute_signature,
    current_time_ms,
)


SECRET = "whsec_integration"


def signed_headers(body: bytes, secret: str = SECRET, timestamp: str = None) -> dict:
    timestamp = timestamp or str(current_time_ms())
    return {
        SIGNATURE_HEADER: compute_signature(secret, timestamp, body),
        TIMESTAMP_HEADER: timestamp,
        'Content-Type': 'application/json',
    }


def completed_body(test_id: str = 'run-1') -> bytes:
    return json.dumps({
        'event': 'test.completed',
        'data': {
            'test_id': test_id,
            'bugs': {'critical': 0, 'high': 1, 'medium': 2, 'low': 0},
            'report_url': f'https://deffatest.online/reports/{test_id}'
        }
    }).encode('utf-8')


@pytest.fixture
def completed_handler():
    return AsyncMock()


@pytest.fixture
def router(completed_handler):
    router = WebhookRouter()
    router.register(WebhookEventKind.TEST_COMPLETED, completed_handler)
    return router


def make_client(api: WebhookAPI) -> test_utils.TestClient:
    return test_utils.TestClient(test_utils.TestServer(api.app))


class TestWebhookEndpoint:
    """Test POST /webhooks/deffatest."""

    @pytest.mark.asyncio
    async def test_signed_webhook_dispatched(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = completed_body()

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert response.status == 200
            assert await response.json() == {'success': True}

        completed_handler.assert_awaited_once()
        assert completed_handler.await_args.args[0].test_id == 'run-1'

    @pytest.mark.asyncio
    async def test_missing_headers(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(SECRET), router)

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=completed_body())

            assert response.status == 401
            assert await response.json() == {'error': 'Missing signature'}

        completed_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = completed_body()
        stale = str(current_time_ms() - 10 * 60 * 1000)

        async with make_client(api) as client:
            response = await client.post(
                '/webhooks/deffatest', data=body, headers=signed_headers(body, timestamp=stale)
            )

            assert response.status == 401
            assert await response.json() == {'error': 'Invalid timestamp'}

        completed_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_signature(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = completed_body()

        async with make_client(api) as client:
            response = await client.post(
                '/webhooks/deffatest', data=body, headers=signed_headers(body, secret='wrong')
            )

            assert response.status == 401
            assert await response.json() == {'error': 'Invalid signature'}

        completed_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_body_altered_after_signing(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        headers = signed_headers(completed_body('run-1'))

        async with make_client(api) as client:
            response = await client.post(
                '/webhooks/deffatest', data=completed_body('run-2'), headers=headers
            )

            assert response.status == 401

        completed_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_secret_rejects(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(None), router)
        body = completed_body()

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert response.status == 500
            assert await response.json() == {'error': 'Server configuration error'}

        completed_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_json_after_verification(self, router):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = b'{"event": '

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert response.status == 400
            assert await response.json() == {'error': 'Invalid JSON'}

    @pytest.mark.asyncio
    async def test_invalid_payload(self, router):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = json.dumps({'event': 'test.completed', 'data': {}}).encode('utf-8')

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert response.status == 400
            assert await response.json() == {'error': 'Invalid payload'}

    @pytest.mark.asyncio
    async def test_progress_acknowledged(self, router, completed_handler):
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = json.dumps({'event': 'test.progress', 'data': {'percent': 50}}).encode('utf-8')

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert response.status == 200
            assert await response.json() == {'success': True}

        completed_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_failure_is_internal_error(self, router, completed_handler):
        completed_handler.side_effect = RuntimeError("chat.postMessage failed")
        api = WebhookAPI(WebhookVerifier(SECRET), router)
        body = completed_body()

        async with make_client(api) as client:
            response = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert response.status == 500
            assert await response.json() == {'error': 'Internal error'}

    @pytest.mark.asyncio
    async def test_rate_limited(self, router):
        api = WebhookAPI(
            WebhookVerifier(SECRET),
            router,
            rate_limiter=RateLimiter(max_requests=2, window_seconds=60)
        )
        body = completed_body()

        async with make_client(api) as client:
            statuses = []
            for _ in range(3):
                response = await client.post(
                    '/webhooks/deffatest', data=body, headers=signed_headers(body)
                )
                statuses.append(response.status)

            assert statuses == [200, 200, 429]
            assert await response.json() == {'error': 'Too many requests'}

            health = await client.get('/health')
            assert health.status == 200


class TestHealth:
    """Test GET /health."""

    @pytest.mark.asyncio
    async def test_health(self, router):
        api = WebhookAPI(WebhookVerifier(None), router)

        async with make_client(api) as client:
            response = await client.get('/health')

            assert response.status == 200
            assert await response.json() == {'status': 'ok'}


class TestBuildApi:
    """Test wiring from configuration."""

    @pytest.mark.asyncio
    async def test_build_api_from_config(self, router, completed_handler):
        config = BotConfig(
            slack_signing_secret='signing',
            slack_client_id='client',
            slack_client_secret='client-secret',
            deffatest_api_url='https://api.deffatest.online',
            encryption_key='ab' * 32,
            webhook_secret=SECRET,
            rate_limit_max_requests=1,
        )
        api = build_api(config, router=router)
        body = completed_body()

        async with make_client(api) as client:
            first = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))
            second = await client.post('/webhooks/deffatest', data=body, headers=signed_headers(body))

            assert first.status == 200
            assert second.status == 429

        completed_handler.assert_awaited_once()
