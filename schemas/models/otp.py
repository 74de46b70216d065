"""
One-time code record.

Stored by an OtpStore keyed by identifier (phone number or email). The
record is ephemeral: it is deleted on successful verification, when the
attempt limit is exhausted, or when it is found expired.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from shared.datetime_utils import ensure_utc, utcnow


class OtpRecord(BaseModel):
    code: str
    expires_at: datetime
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return ensure_utc(self.expires_at) <= (now or utcnow())

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempts)
