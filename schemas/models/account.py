"""
Account document model.

Maps to the `users` MongoDB collection.

Credential fields (password_hash, refresh_tokens, password_reset_token_hash)
are only present when the repository is asked to include sensitive fields;
the default projection leaves them out, so they default to empty here.

is_verified is never written independently: the repository derives it from
phone_verified and email_verified on every verification write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from schemas.models.base import MongoBaseModel
from shared.datetime_utils import is_future

AccountStatus = Literal["active", "inactive", "suspended", "banned"]
Gender = Literal["male", "female", "other"]
BloodGroup = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
Role = Literal["user", "admin", "moderator"]

# Fields excluded from every projection unless explicitly requested
SENSITIVE_FIELDS = ("password_hash", "refresh_tokens", "password_reset_token_hash")


class Coordinates(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class Location(BaseModel):
    """Embedded location sub-document."""

    district: str
    upazila: Optional[str] = None
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class AccountDoc(MongoBaseModel):
    """
    Document model for the `users` collection.

    status values: active, inactive, suspended, banned
    role values: user, admin, moderator
    """

    # Identity
    name: str
    email: str
    phone: str

    # Profile
    date_of_birth: Optional[datetime] = None  # BSON has no date type
    gender: Optional[Gender] = None
    blood_group: Optional[BloodGroup] = None
    location: Optional[Location] = None
    is_donor: bool = True
    is_available: bool = True
    weight: Optional[float] = None
    role: Role = "user"

    # Lifecycle
    status: AccountStatus = "active"
    phone_verified: bool = False
    email_verified: bool = False
    is_verified: bool = False

    # Lockout
    login_attempts: int = Field(default=0, ge=0)
    lock_until: Optional[datetime] = None

    # Sessions and recovery (sensitive)
    password_hash: Optional[str] = None
    refresh_tokens: list[str] = []
    password_reset_token_hash: Optional[str] = None
    password_reset_expires: Optional[datetime] = None

    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        return is_future(self.lock_until, now)

    def has_stale_lock(self, now: Optional[datetime] = None) -> bool:
        """A lock_until that has already passed; counters are due a reset."""
        return self.lock_until is not None and not self.is_locked(now)

    @property
    def is_active(self) -> bool:
        return self.status == "active"
