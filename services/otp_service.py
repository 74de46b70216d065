"""One-time code generation and verification.

Codes are numeric, drawn from ``secrets``, and stored through an injectable
OtpStore keyed by identifier (phone number or email address). Each code has
a fixed attempt limit; the failure that exhausts it purges the record, so
even the correct code is refused afterwards.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from errors import (
    OtpAttemptsExceededError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
)
from repositories.otp_store import OtpStore
from schemas.models.otp import OtpRecord
from shared.crypto import constant_time_equals
from shared.datetime_utils import ensure_utc, utcnow
from shared.generators import generate_otp_code
from shared.logging import get_logger

log = get_logger(__name__)

DEFAULT_LENGTH = 6
DEFAULT_TTL_MINUTES = 10
DEFAULT_MAX_ATTEMPTS = 3


class OtpVerification(BaseModel):
    success: bool = True
    message: str = "OTP verified successfully"


class OtpService:
    def __init__(
        self,
        store: OtpStore,
        *,
        length: int = DEFAULT_LENGTH,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._store = store
        self.length = length
        self.ttl_minutes = ttl_minutes
        self.max_attempts = max_attempts

    async def generate_and_store(
        self,
        identifier: str,
        length: Optional[int] = None,
        ttl_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Create a fresh code for *identifier*, replacing any previous one."""
        now = now or utcnow()
        code = generate_otp_code(length or self.length)
        record = OtpRecord(
            code=code,
            expires_at=now + timedelta(minutes=ttl_minutes or self.ttl_minutes),
            max_attempts=self.max_attempts,
        )
        await self._store.save(identifier, record)
        log.info("otp_generated", identifier_kind=_identifier_kind(identifier))
        return code

    async def verify(
        self, identifier: str, code: str, now: Optional[datetime] = None
    ) -> OtpVerification:
        now = now or utcnow()
        record = await self._store.get(identifier)
        if record is None:
            raise OtpNotFoundError("OTP not found or expired")

        if record.is_expired(now):
            await self._store.delete(identifier)
            log.warning("otp_verification_failed", reason="expired")
            raise OtpExpiredError("OTP has expired")

        if record.attempts >= record.max_attempts:
            await self._store.delete(identifier)
            log.warning("otp_verification_failed", reason="max_attempts")
            raise OtpAttemptsExceededError("Maximum verification attempts exceeded")

        if constant_time_equals(record.code, code or ""):
            # Only the submission whose delete removes the record wins
            if not await self._store.delete(identifier):
                raise OtpNotFoundError("OTP not found or expired")
            log.info("otp_verified", identifier_kind=_identifier_kind(identifier))
            return OtpVerification()

        attempts = await self._store.increment_attempts(identifier)
        if attempts is None:
            # Consumed or purged concurrently
            raise OtpNotFoundError("OTP not found or expired")

        attempts_left = max(0, record.max_attempts - attempts)
        if attempts_left == 0:
            await self._store.delete(identifier)
            log.warning("otp_verification_failed", reason="max_attempts")
            raise OtpAttemptsExceededError("Maximum verification attempts exceeded")

        log.warning(
            "otp_verification_failed", reason="mismatch", attempts_left=attempts_left
        )
        raise OtpMismatchError("Invalid OTP", details={"attempts_left": attempts_left})

    async def remaining_seconds(
        self, identifier: str, now: Optional[datetime] = None
    ) -> int:
        record = await self._store.get(identifier)
        if record is None:
            return 0
        remaining = (ensure_utc(record.expires_at) - (now or utcnow())).total_seconds()
        return max(0, math.ceil(remaining))


def _identifier_kind(identifier: str) -> str:
    return "email" if "@" in identifier else "phone"
