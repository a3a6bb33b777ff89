# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Fixed-window request rate limiting for the webhook endpoint.

Counts requests per client key inside a fixed window. Expired windows are
pruned once the number of tracked keys grows past MAX_TRACKED_KEYS.
"""

import threading
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from aiohttp import web

from deffatest_bot.logging_config import get_logger


logger = get_logger(__name__)


MAX_TRACKED_KEYS = 10000


class RateLimiter:
    """
    Per-key fixed-window rate limiter.

    The counter map is shared by every request handled in the process and
    is guarded by a lock.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the rate limiter.

        Args:
            max_requests: Requests allowed per key within one window
            window_seconds: Window length in seconds
            clock: Time source in seconds (injectable for tests)

        Raises:
            ValueError: If either limit is not positive
        """
        if max_requests < 1:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        """
        Count a request for ``key`` and report whether it is within the limit.

        Args:
            key: Client identifier, usually the remote address

        Returns:
            True if the request is allowed, False if the key is over its limit
        """
        now = self._clock()

        with self._lock:
            window = self._windows.get(key)

            if window is None or now >= window[0] + self.window_seconds:
                self._windows[key] = (now, 1)
                allowed = True
            else:
                count = window[1] + 1
                self._windows[key] = (window[0], count)
                allowed = count <= self.max_requests

            if len(self._windows) > MAX_TRACKED_KEYS:
                self._prune(now)

        if not allowed:
            logger.warning("Rate limit exceeded", extra={'client': key})

        return allowed

    def tracked_keys(self) -> int:
        """Number of client keys currently tracked."""
        with self._lock:
            return len(self._windows)

    def _prune(self, now: float) -> None:
        expired = [
            key for key, (started, _) in self._windows.items()
            if now >= started + self.window_seconds
        ]
        for key in expired:
            del self._windows[key]

        logger.debug("Pruned expired rate limit windows", extra={
            'pruned': len(expired),
            'remaining': len(self._windows)
        })


def client_key(request: web.Request) -> str:
    """
    Identify the client of a request.

    Uses the first X-Forwarded-For hop when the service runs behind a proxy,
    otherwise the peer address.
    """
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        first_hop = forwarded.split(',')[0].strip()
        if first_hop:
            return first_hop
    return request.remote or 'unknown'


Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def rate_limit_middleware(
    limiter: RateLimiter,
    paths: Optional[frozenset] = None
):
    """
    Build an aiohttp middleware enforcing ``limiter``.

    Args:
        limiter: Shared rate limiter
        paths: Request paths to limit; every path when None

    Returns:
        aiohttp middleware answering 429 when a client is over its limit
    """

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if paths is not None and request.path not in paths:
            return await handler(request)

        if not limiter.allow(client_key(request)):
            return web.json_response(
                data={'error': 'Too many requests'},
                status=429
            )

        return await handler(request)

    return middleware
