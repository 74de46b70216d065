"""
Throttling of credential-guessing endpoints (register, login, forgot-password).

Built on ``limits``, the engine behind flask-limiter, with a fixed-window
strategy. Only failed attempts are counted: a request that raises a 4xx
AppError costs one hit against the ``(scope, client IP, identifier)`` key;
successful requests and server-side failures are free. Once the window is
full the next request is refused with RateLimitError before it reaches the
service.

Storage is ``async+memory://`` for a single instance or the Redis instance
configured for OTPs (``async+redis://...``) when several instances share it.
"""

from __future__ import annotations

import math
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from limits import parse
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from errors import AppError, RateLimitError, StoreUnavailableError
from shared.logging import get_logger

log = get_logger(__name__)

DEFAULT_LIMIT = "5 per 15 minutes"
MEMORY_STORAGE = "async+memory://"

LIMITED_MESSAGE = "Too many authentication attempts. Please try again later."


def storage_uri_for(redis_uri: Optional[str]) -> str:
    """limits storage URI matching the app's Redis setting."""
    if not redis_uri:
        return MEMORY_STORAGE
    return f"async+{redis_uri}"


class AuthRateLimiter:
    def __init__(
        self,
        limit: str = DEFAULT_LIMIT,
        storage_uri: str = MEMORY_STORAGE,
        key_prefix: str = "auth",
    ) -> None:
        self._limit = parse(limit)
        options = {"implementation": "redispy"} if "redis" in storage_uri else {}
        self._storage = storage_from_string(storage_uri, **options)
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._prefix = key_prefix

    def _keys(self, scope: str, client_ip: str, identifier: Optional[str]) -> tuple:
        return (self._prefix, scope, client_ip or "unknown", (identifier or "").lower())

    async def _call(self, operation: str, coro):
        try:
            return await coro
        except (RedisConnectionError, RedisTimeoutError) as e:
            log.error(
                "rate_limit_store_unavailable",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreUnavailableError(
                "The rate limit store is temporarily unavailable. Please retry."
            ) from e

    async def ensure_allowed(
        self, scope: str, client_ip: str, identifier: Optional[str] = None
    ) -> None:
        keys = self._keys(scope, client_ip, identifier)
        if await self._call("test", self._strategy.test(self._limit, *keys)):
            return
        stats = await self._call(
            "window_stats", self._strategy.get_window_stats(self._limit, *keys)
        )
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        log.warning("auth_rate_limited", scope=scope, retry_after=retry_after)
        raise RateLimitError(LIMITED_MESSAGE, retry_after=retry_after)

    async def record_failure(
        self, scope: str, client_ip: str, identifier: Optional[str] = None
    ) -> None:
        keys = self._keys(scope, client_ip, identifier)
        await self._call("hit", self._strategy.hit(self._limit, *keys))

    @asynccontextmanager
    async def attempt(
        self, scope: str, client_ip: str, identifier: Optional[str] = None
    ) -> AsyncIterator[None]:
        """Refuse when over the limit; count the body's 4xx AppError as a failure."""
        await self.ensure_allowed(scope, client_ip, identifier)
        try:
            yield
        except AppError as e:
            if 400 <= e.status_code < 500:
                await self.record_failure(scope, client_ip, identifier)
            raise
