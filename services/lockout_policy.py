"""Failed-login counting and temporary account lock.

A lock that has lapsed is cleared on the next login attempt rather than by
a background job, so there is nothing to schedule.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from repositories.account_repository import AccountRepository
from schemas.models.account import AccountDoc
from shared.datetime_utils import ensure_utc, utcnow
from shared.logging import get_logger

log = get_logger(__name__)


class LockoutPolicy:
    def __init__(
        self,
        accounts: AccountRepository,
        *,
        max_attempts: int = 5,
        lockout_seconds: int = 7200,
    ) -> None:
        self._accounts = accounts
        self.max_attempts = max_attempts
        self.lock_duration = timedelta(seconds=lockout_seconds)

    def is_locked(self, account: AccountDoc, now: Optional[datetime] = None) -> bool:
        return account.is_locked(now)

    async def clear_if_expired(
        self, account: AccountDoc, now: Optional[datetime] = None
    ) -> AccountDoc:
        """Reset counters when the account carries a lock that has passed."""
        if not account.has_stale_lock(now):
            return account
        await self._accounts.reset_login_attempts(account.id)
        log.info("account_lock_expired", account_id=str(account.id))
        return account.model_copy(update={"login_attempts": 0, "lock_until": None})

    async def record_failed_attempt(
        self, account: AccountDoc, now: Optional[datetime] = None
    ) -> AccountDoc:
        """Count one failed login and lock the account at the threshold.

        Returns the account with its updated ``login_attempts``/``lock_until``.
        """
        now = now or utcnow()

        lock_until = None
        if account.has_stale_lock(now):
            # The old window is over; this failure starts a new one
            await self._accounts.reset_login_attempts(account.id, attempts=1)
            attempts = 1
        else:
            updated = await self._accounts.increment_login_attempts(account.id)
            if updated is None:
                attempts = account.login_attempts + 1
            else:
                attempts = updated.login_attempts
                if updated.is_locked(now):
                    lock_until = ensure_utc(updated.lock_until)

        if attempts >= self.max_attempts and lock_until is None:
            until = now + self.lock_duration
            if await self._accounts.set_lock_until(account.id, until, now):
                lock_until = until
                log.warning(
                    "account_locked",
                    account_id=str(account.id),
                    attempts=attempts,
                    lock_until=until.isoformat(),
                )
            else:
                # A concurrent failure got there first
                current = await self._accounts.find_by_id(account.id)
                lock_until = ensure_utc(current.lock_until) if current else None

        return account.model_copy(
            update={"login_attempts": attempts, "lock_until": lock_until}
        )

    async def record_success(self, account: AccountDoc) -> AccountDoc:
        if account.login_attempts or account.lock_until is not None:
            await self._accounts.reset_login_attempts(account.id)
        return account.model_copy(update={"login_attempts": 0, "lock_until": None})
