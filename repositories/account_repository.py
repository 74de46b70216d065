"""
Credential store: the `users` collection.

Every mutation is a single-document write so the account record never needs
a multi-document transaction. Credential fields are left out of every read
unless the caller passes ``include_sensitive=True``.

Passwords enter this module in plaintext and leave it hashed: ``create`` and
``update_password`` are the only write paths for the password and both hash
before persisting.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import Any, AsyncIterator, Optional

from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, ExecutionTimeout

from errors import ConflictError, StoreUnavailableError
from schemas.models.account import SENSITIVE_FIELDS, AccountDoc
from shared.crypto import hash_password_async
from shared.datetime_utils import to_naive_utc, utcnow
from shared.logging import get_logger

log = get_logger(__name__)

# ServerSelectionTimeoutError, NetworkTimeout and AutoReconnect are all
# ConnectionFailure subclasses
_UNAVAILABLE_ERRORS = (ConnectionFailure, ExecutionTimeout)

_DEFAULT_PROJECTION = {field: 0 for field in SENSITIVE_FIELDS}


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    return email.strip().lower()


def derive_is_verified(phone_verified: bool, email_verified: bool) -> bool:
    return bool(phone_verified and email_verified)


def _as_object_id(account_id: Any) -> ObjectId:
    if isinstance(account_id, ObjectId):
        return account_id
    return ObjectId(str(account_id))


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return value


@asynccontextmanager
async def _store_call(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except _UNAVAILABLE_ERRORS as e:
        log.error(
            "store_unavailable",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise StoreUnavailableError(
            "The account store is temporarily unavailable. Please retry."
        ) from e


class AccountRepository:
    def __init__(self, collection) -> None:
        self._col = collection

    @staticmethod
    def _projection(include_sensitive: bool) -> Optional[dict]:
        return None if include_sensitive else dict(_DEFAULT_PROJECTION)

    async def _find_one(
        self, query: dict, include_sensitive: bool, operation: str
    ) -> Optional[AccountDoc]:
        async with _store_call(operation):
            doc = await self._col.find_one(query, self._projection(include_sensitive))
        return AccountDoc.from_mongo(doc)

    async def _update(self, account_id: Any, update: dict, operation: str) -> bool:
        update.setdefault("$set", {})["updated_at"] = to_naive_utc(utcnow())
        async with _store_call(operation):
            result = await self._col.update_one({"_id": _as_object_id(account_id)}, update)
        return result.matched_count == 1

    # ── Reads ────────────────────────────────────────────────────────────────

    async def find_by_id(
        self, account_id: Any, *, include_sensitive: bool = False
    ) -> Optional[AccountDoc]:
        if not ObjectId.is_valid(str(account_id)):
            return None
        return await self._find_one(
            {"_id": _as_object_id(account_id)}, include_sensitive, "find_by_id"
        )

    async def find_by_email(
        self, email: str, *, include_sensitive: bool = False
    ) -> Optional[AccountDoc]:
        return await self._find_one(
            {"email": normalize_email(email)}, include_sensitive, "find_by_email"
        )

    async def find_by_phone(
        self, phone: str, *, include_sensitive: bool = False
    ) -> Optional[AccountDoc]:
        return await self._find_one({"phone": phone}, include_sensitive, "find_by_phone")

    async def find_by_email_or_phone(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        *,
        include_sensitive: bool = False,
    ) -> Optional[AccountDoc]:
        clauses = []
        if email:
            clauses.append({"email": normalize_email(email)})
        if phone:
            clauses.append({"phone": phone})
        if not clauses:
            return None
        return await self._find_one(
            {"$or": clauses}, include_sensitive, "find_by_email_or_phone"
        )

    async def find_by_reset_token_hash(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[AccountDoc]:
        """Account holding *token_hash* whose reset window is still open."""
        query = {
            "password_reset_token_hash": token_hash,
            "password_reset_expires": {"$gt": to_naive_utc(now or utcnow())},
        }
        return await self._find_one(query, False, "find_by_reset_token_hash")

    # ── Creation ─────────────────────────────────────────────────────────────

    async def create(self, fields: dict) -> AccountDoc:
        """Insert a new account.

        ``fields`` carries the plaintext ``password``; it is hashed here and
        never stored. Raises ConflictError when the email or phone is taken.
        """
        fields = {key: _to_db_value(value) for key, value in fields.items()}
        password = fields.pop("password")
        fields["email"] = normalize_email(fields["email"])

        existing = await self.find_by_email_or_phone(fields["email"], fields["phone"])
        if existing is not None:
            raise ConflictError("User already exists with this email or phone")

        now = utcnow()
        account = AccountDoc(
            **fields,
            password_hash=await hash_password_async(password),
            created_at=now,
            updated_at=now,
        )
        data = account.to_mongo()

        try:
            async with _store_call("create"):
                result = await self._col.insert_one(data)
        except DuplicateKeyError as e:
            # Race: another registration won between our check and insert
            log.warning("account_create_conflict", reason="duplicate_key")
            raise ConflictError("User already exists with this email or phone") from e

        account.id = result.inserted_id
        return account

    # ── Session tokens ───────────────────────────────────────────────────────

    async def push_refresh_token(self, account_id: Any, token: str) -> bool:
        return await self._update(
            account_id, {"$push": {"refresh_tokens": token}}, "push_refresh_token"
        )

    async def pull_refresh_token(self, account_id: Any, token: str) -> bool:
        return await self._update(
            account_id, {"$pull": {"refresh_tokens": token}}, "pull_refresh_token"
        )

    async def clear_refresh_tokens(self, account_id: Any) -> bool:
        return await self._update(
            account_id, {"$set": {"refresh_tokens": []}}, "clear_refresh_tokens"
        )

    async def rotate_refresh_token(
        self, account_id: Any, old_token: str, new_token: str
    ) -> bool:
        """Swap *old_token* for *new_token* in one conditional write.

        Matches only while *old_token* is still in the list, so of two
        concurrent rotations of the same token exactly one succeeds.
        """
        async with _store_call("rotate_refresh_token"):
            result = await self._col.update_one(
                {"_id": _as_object_id(account_id), "refresh_tokens": old_token},
                {
                    "$set": {
                        "refresh_tokens.$": new_token,
                        "updated_at": to_naive_utc(utcnow()),
                    }
                },
            )
        return result.matched_count == 1

    async def record_login(
        self, account_id: Any, refresh_token: str, now: Optional[datetime] = None
    ) -> bool:
        return await self._update(
            account_id,
            {
                "$push": {"refresh_tokens": refresh_token},
                "$set": {"last_login": to_naive_utc(now or utcnow())},
            },
            "record_login",
        )

    # ── Lockout counters ─────────────────────────────────────────────────────

    async def increment_login_attempts(self, account_id: Any) -> Optional[AccountDoc]:
        """Atomically add one failed attempt; returns the updated account."""
        async with _store_call("increment_login_attempts"):
            doc = await self._col.find_one_and_update(
                {"_id": _as_object_id(account_id)},
                {
                    "$inc": {"login_attempts": 1},
                    "$set": {"updated_at": to_naive_utc(utcnow())},
                },
                projection=dict(_DEFAULT_PROJECTION),
                return_document=ReturnDocument.AFTER,
            )
        return AccountDoc.from_mongo(doc)

    async def set_lock_until(
        self, account_id: Any, until: datetime, now: Optional[datetime] = None
    ) -> bool:
        """Lock the account unless it already holds an unexpired lock."""
        now_db = to_naive_utc(now or utcnow())
        async with _store_call("set_lock_until"):
            result = await self._col.update_one(
                {
                    "_id": _as_object_id(account_id),
                    "$or": [
                        {"lock_until": None},
                        {"lock_until": {"$lte": now_db}},
                    ],
                },
                {"$set": {"lock_until": to_naive_utc(until), "updated_at": now_db}},
            )
        return result.matched_count == 1

    async def reset_login_attempts(self, account_id: Any, attempts: int = 0) -> bool:
        return await self._update(
            account_id,
            {"$set": {"login_attempts": attempts, "lock_until": None}},
            "reset_login_attempts",
        )

    # ── Password and recovery ────────────────────────────────────────────────

    async def set_password_reset(
        self, account_id: Any, token_hash: str, expires: datetime
    ) -> bool:
        return await self._update(
            account_id,
            {
                "$set": {
                    "password_reset_token_hash": token_hash,
                    "password_reset_expires": to_naive_utc(expires),
                }
            },
            "set_password_reset",
        )

    async def clear_password_reset(self, account_id: Any) -> bool:
        return await self._update(
            account_id,
            {"$set": {"password_reset_token_hash": None, "password_reset_expires": None}},
            "clear_password_reset",
        )

    async def update_password(self, account_id: Any, new_password: str) -> bool:
        """Hash and store *new_password*, ending every session and reset window."""
        password_hash = await hash_password_async(new_password)
        return await self._update(
            account_id,
            {
                "$set": {
                    "password_hash": password_hash,
                    "refresh_tokens": [],
                    "password_reset_token_hash": None,
                    "password_reset_expires": None,
                }
            },
            "update_password",
        )

    # ── Verification ─────────────────────────────────────────────────────────

    async def mark_verified(
        self, account_id: Any, *, phone: bool = False, email: bool = False
    ) -> Optional[AccountDoc]:
        """Set the verified flag of each given channel; returns the updated account.

        Only the channel's own flag is written, so verifications of the two
        channels never overwrite each other. ``is_verified`` is then set by a
        write conditional on both flags, whichever verification lands second.
        """
        oid = _as_object_id(account_id)
        flags = {}
        if phone:
            flags["phone_verified"] = True
        if email:
            flags["email_verified"] = True

        async with _store_call("mark_verified"):
            doc = await self._col.find_one_and_update(
                {"_id": oid},
                {"$set": {**flags, "updated_at": to_naive_utc(utcnow())}},
                projection=dict(_DEFAULT_PROJECTION),
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                return None
            both = derive_is_verified(
                doc.get("phone_verified", False), doc.get("email_verified", False)
            )
            if both and not doc.get("is_verified"):
                await self._col.update_one(
                    {"_id": oid, "phone_verified": True, "email_verified": True},
                    {"$set": {"is_verified": True}},
                )
                doc["is_verified"] = True
        return AccountDoc.from_mongo(doc)

    # ── Indexes ──────────────────────────────────────────────────────────────

    async def ensure_indexes(self) -> None:
        async with _store_call("ensure_indexes"):
            await self._col.create_index([("email", ASCENDING)], unique=True)
            await self._col.create_index([("phone", ASCENDING)], unique=True)
            await self._col.create_index(
                [("password_reset_token_hash", ASCENDING)], sparse=True
            )
        log.info("account_indexes_ensured")
