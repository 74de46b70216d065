"""OTP record storage.

The OtpService depends on the OtpStore protocol, not a concrete backend:
- InMemoryOtpStore: process-local, fine for a single instance and tests.
- RedisOtpStore: shared across instances; one Redis hash per identifier.

Expiry is enforced by the service at verification time. The Redis key TTL
is only a garbage-collection backstop and outlives the code by a grace
period so an expired code can still be reported as expired.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from errors import StoreUnavailableError
from schemas.models.otp import OtpRecord
from shared.datetime_utils import parse_datetime, utcnow
from shared.logging import get_logger

log = get_logger(__name__)

_EXPIRY_GRACE_SECONDS = 300

_UNAVAILABLE_ERRORS = (RedisConnectionError, RedisTimeoutError)

# HINCRBY on a missing key would recreate it without a TTL
_INCR_IF_EXISTS = """
if redis.call("EXISTS", KEYS[1]) == 1 then
    return redis.call("HINCRBY", KEYS[1], "attempts", 1)
end
return false
"""


@runtime_checkable
class OtpStore(Protocol):
    async def save(self, identifier: str, record: OtpRecord) -> None: ...

    async def get(self, identifier: str) -> Optional[OtpRecord]: ...

    async def increment_attempts(self, identifier: str) -> Optional[int]: ...

    async def delete(self, identifier: str) -> bool: ...


class InMemoryOtpStore:
    def __init__(self) -> None:
        self._records: dict[str, OtpRecord] = {}
        self._lock = asyncio.Lock()

    async def save(self, identifier: str, record: OtpRecord) -> None:
        async with self._lock:
            self._records[identifier] = record.model_copy()

    async def get(self, identifier: str) -> Optional[OtpRecord]:
        async with self._lock:
            record = self._records.get(identifier)
            return record.model_copy() if record is not None else None

    async def increment_attempts(self, identifier: str) -> Optional[int]:
        async with self._lock:
            record = self._records.get(identifier)
            if record is None:
                return None
            record.attempts += 1
            return record.attempts

    async def delete(self, identifier: str) -> bool:
        async with self._lock:
            return self._records.pop(identifier, None) is not None

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop every expired record; verification alone only expires lazily."""
        now = now or utcnow()
        async with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
        if expired:
            log.info("otp_records_purged", count=len(expired))
        return len(expired)

    async def purge_periodically(self, interval_seconds: float) -> None:
        """Sweep expired records every *interval_seconds* until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.purge_expired()


@asynccontextmanager
async def _redis_call(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except _UNAVAILABLE_ERRORS as e:
        log.error(
            "otp_store_unavailable",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise StoreUnavailableError(
            "The verification code store is temporarily unavailable. Please retry."
        ) from e


class RedisOtpStore:
    def __init__(self, redis_client: aioredis.Redis, prefix: str = "otp") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, identifier: str) -> str:
        return f"{self._prefix}:{identifier}"

    async def save(self, identifier: str, record: OtpRecord) -> None:
        key = self._key(identifier)
        ttl = int((record.expires_at - utcnow()).total_seconds()) + _EXPIRY_GRACE_SECONDS
        async with _redis_call("save"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(
                    key,
                    mapping={
                        "code": record.code,
                        "expires_at": record.expires_at.isoformat(),
                        "attempts": record.attempts,
                        "max_attempts": record.max_attempts,
                    },
                )
                pipe.expire(key, max(ttl, 1))
                await pipe.execute()

    async def get(self, identifier: str) -> Optional[OtpRecord]:
        async with _redis_call("get"):
            raw = await self._redis.hgetall(self._key(identifier))
        if not raw:
            return None
        try:
            return OtpRecord(
                code=raw["code"],
                expires_at=parse_datetime(raw["expires_at"]),
                attempts=int(raw.get("attempts", 0)),
                max_attempts=int(raw.get("max_attempts", 3)),
            )
        except (KeyError, ValueError) as e:
            log.warning("otp_record_corrupt", error=str(e))
            await self.delete(identifier)
            return None

    async def increment_attempts(self, identifier: str) -> Optional[int]:
        async with _redis_call("increment_attempts"):
            attempts = await self._redis.eval(_INCR_IF_EXISTS, 1, self._key(identifier))
        return None if attempts is None else int(attempts)

    async def delete(self, identifier: str) -> bool:
        async with _redis_call("delete"):
            return bool(await self._redis.delete(self._key(identifier)))
