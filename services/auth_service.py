"""
Auth orchestration: registration, login, sessions, recovery and verification.

Composes the account repository, the lockout policy, the token and OTP
services and the delivery providers. Every method either returns a result
model or raises an AppError subclass; routes translate nothing themselves.

The clock is injectable so lockout and expiry windows can be exercised
without sleeping.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel

from errors import (
    AccountLockedError,
    AccountSuspendedError,
    AuthenticationError,
    CurrentPasswordIncorrectError,
    DeliveryError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidRefreshTokenError,
    MismatchError,
    NotFoundError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)
from infrastructure.email.protocol import EmailProvider
from infrastructure.sms.protocol import SmsProvider
from repositories.account_repository import AccountRepository
from schemas.models.account import AccountDoc
from services.lockout_policy import LockoutPolicy
from services.otp_service import OtpService
from services.token_service import TokenPair, TokenService
from shared.crypto import hash_token, verify_password_async
from shared.datetime_utils import utcnow
from shared.generators import generate_reset_token
from shared.logging import get_logger, log_with_context
from shared.validators import validate_otp_format

log = get_logger(__name__)

LOCKED_MESSAGE = (
    "Account temporarily locked due to too many failed login attempts. "
    "Please try again later."
)


class AuthResult(BaseModel):
    account: AccountDoc
    tokens: TokenPair


class VerificationResult(BaseModel):
    phone_verified: bool
    email_verified: bool
    is_verified: bool


class AuthService:
    def __init__(
        self,
        accounts: AccountRepository,
        tokens: TokenService,
        otp: OtpService,
        lockout: LockoutPolicy,
        email: EmailProvider,
        sms: SmsProvider,
        *,
        app_url: str = "http://localhost:8000",
        password_reset_ttl_seconds: int = 600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._accounts = accounts
        self._tokens = tokens
        self._otp = otp
        self._lockout = lockout
        self._email = email
        self._sms = sms
        self._app_url = app_url.rstrip("/")
        self._reset_ttl = timedelta(seconds=password_reset_ttl_seconds)
        self._clock = clock

    async def _issue_and_store(self, account_id) -> TokenPair:
        pair = self._tokens.issue(str(account_id), now=self._clock())
        await self._accounts.push_refresh_token(account_id, pair.refresh_token)
        return pair

    async def _send_phone_otp(self, phone: str, code: str) -> bool:
        try:
            return await self._sms.send_otp(phone, code, self._otp.ttl_minutes)
        except Exception as e:
            log.error(
                "otp_delivery_failed",
                channel="sms",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    # ── Registration ─────────────────────────────────────────────────────────

    async def register(self, fields: dict) -> AuthResult:
        """Create an account, start a session and send a phone OTP.

        ``fields`` carries the profile plus the plaintext ``password``.
        OTP delivery failure does not fail the registration; the client can
        ask for a resend.
        """
        fields = dict(fields)
        fields.pop("confirm_password", None)
        fields.setdefault("is_donor", True)

        account = await self._accounts.create(fields)
        tokens = await self._issue_and_store(account.id)
        account = account.model_copy(update={"refresh_tokens": [tokens.refresh_token]})

        try:
            code = await self._otp.generate_and_store(account.phone, now=self._clock())
        except StoreUnavailableError:
            # Account and session already exist; the client can ask for a resend
            sent = False
        else:
            sent = await self._send_phone_otp(account.phone, code)

        log.info("account_registered", account_id=str(account.id), otp_sent=sent)
        return AuthResult(account=account, tokens=tokens)

    # ── Login / sessions ─────────────────────────────────────────────────────

    async def login(
        self, password: str, *, email: Optional[str] = None, phone: Optional[str] = None
    ) -> AuthResult:
        if bool(email) == bool(phone):
            raise ValidationError("Provide either email or phone, not both")

        now = self._clock()
        account = await self._accounts.find_by_email_or_phone(
            email, phone, include_sensitive=True
        )
        if account is None:
            log.warning("login_failed", reason="unknown_account")
            raise InvalidCredentialsError("Invalid credentials")

        alog = log_with_context(log, account_id=str(account.id))
        account = await self._lockout.clear_if_expired(account, now)

        if not await verify_password_async(password, account.password_hash or ""):
            account = await self._lockout.record_failed_attempt(account, now)
            alog.warning("login_failed", attempts=account.login_attempts)
            if self._lockout.is_locked(account, now):
                raise AccountLockedError(LOCKED_MESSAGE)
            raise InvalidCredentialsError("Invalid credentials")

        if self._lockout.is_locked(account, now):
            alog.warning("login_rejected", reason="locked")
            raise AccountLockedError(LOCKED_MESSAGE)

        if not account.is_active:
            alog.warning("login_rejected", reason=account.status)
            raise AccountSuspendedError(
                "Your account has been suspended. Please contact support."
            )

        account = await self._lockout.record_success(account)
        tokens = self._tokens.issue(str(account.id), now=now)
        await self._accounts.record_login(account.id, tokens.refresh_token, now)

        alog.info("login_succeeded")
        account = account.model_copy(
            update={
                "last_login": now,
                "refresh_tokens": [*account.refresh_tokens, tokens.refresh_token],
            }
        )
        return AuthResult(account=account, tokens=tokens)

    async def logout(self, account: AccountDoc, refresh_token: Optional[str]) -> None:
        """End one session. Unknown or missing tokens are not an error."""
        if refresh_token:
            await self._accounts.pull_refresh_token(account.id, refresh_token)
        log.info("logout", account_id=str(account.id))

    async def logout_all(self, account: AccountDoc) -> None:
        await self._accounts.clear_refresh_tokens(account.id)
        log.info("logout_all", account_id=str(account.id))

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a live refresh token for a new pair; the old one dies.

        Membership in the account's stored list decides validity. The swap
        is one conditional write, so a token can be rotated at most once.
        """
        try:
            account_id = self._tokens.verify_refresh(refresh_token)
        except (TokenExpiredError, TokenInvalidError) as e:
            log.warning("refresh_rejected", reason=e.error_code)
            raise InvalidRefreshTokenError("Invalid refresh token") from e

        account = await self._accounts.find_by_id(account_id, include_sensitive=True)
        if account is None or refresh_token not in account.refresh_tokens:
            log.warning("refresh_rejected", reason="not_a_member")
            raise InvalidRefreshTokenError("Invalid refresh token")

        tokens = self._tokens.issue(account_id, now=self._clock())
        rotated = await self._accounts.rotate_refresh_token(
            account.id, refresh_token, tokens.refresh_token
        )
        if not rotated:
            log.warning(
                "refresh_rejected", account_id=account_id, reason="already_rotated"
            )
            raise InvalidRefreshTokenError("Invalid refresh token")

        log.info("refresh_token_rotated", account_id=account_id)
        return tokens

    # ── Password recovery ────────────────────────────────────────────────────

    async def forgot_password(self, email: str) -> None:
        account = await self._accounts.find_by_email(email)
        if account is None:
            raise NotFoundError("No user found with this email address")

        token = generate_reset_token()
        expires = self._clock() + self._reset_ttl
        await self._accounts.set_password_reset(account.id, hash_token(token), expires)

        reset_url = f"{self._app_url}/auth/reset-password/{token}"
        try:
            sent = await self._email.send_password_reset_email(
                account.email, account.name, reset_url
            )
        except Exception as e:
            log.error(
                "password_reset_email_error",
                account_id=str(account.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            sent = False

        if not sent:
            await self._accounts.clear_password_reset(account.id)
            raise DeliveryError("There was an error sending the email. Try again later.")

        log.info("password_reset_requested", account_id=str(account.id))

    async def reset_password(
        self, token: str, password: str, confirm_password: str
    ) -> TokenPair:
        if password != confirm_password:
            raise MismatchError("Passwords do not match", field="confirm_password")

        account = await self._accounts.find_by_reset_token_hash(
            hash_token(token), self._clock()
        )
        if account is None:
            raise InvalidOrExpiredTokenError("Token is invalid or has expired")

        await self._accounts.update_password(account.id, password)
        tokens = await self._issue_and_store(account.id)
        log.info("password_reset_completed", account_id=str(account.id))
        return tokens

    async def change_password(
        self, account: AccountDoc, current_password: str, new_password: str
    ) -> TokenPair:
        stored = await self._accounts.find_by_id(account.id, include_sensitive=True)
        if stored is None:
            raise AuthenticationError("The user belonging to this token no longer exists.")

        if not await verify_password_async(current_password, stored.password_hash or ""):
            log.warning("password_change_rejected", account_id=str(account.id))
            raise CurrentPasswordIncorrectError(
                "Current password is incorrect", field="current_password"
            )

        await self._accounts.update_password(stored.id, new_password)
        tokens = await self._issue_and_store(stored.id)
        log.info("password_changed", account_id=str(stored.id))
        return tokens

    # ── Verification ─────────────────────────────────────────────────────────

    async def _account_for_phone(self, phone: str) -> AccountDoc:
        account = await self._accounts.find_by_phone(phone)
        if account is None:
            raise NotFoundError("User not found")
        return account

    async def verify_otp(
        self, phone: str, code: str, otp_type: str = "phone"
    ) -> VerificationResult:
        if not validate_otp_format(code):
            raise ValidationError("Invalid OTP format", field="otp")

        account = await self._account_for_phone(phone)
        identifier = account.email if otp_type == "email" else account.phone
        await self._otp.verify(identifier, code, now=self._clock())

        account = await self._accounts.mark_verified(
            account.id, phone=otp_type == "phone", email=otp_type == "email"
        )
        if account is None:
            raise NotFoundError("User not found")
        log.info("otp_channel_verified", account_id=str(account.id), channel=otp_type)
        return VerificationResult(
            phone_verified=account.phone_verified,
            email_verified=account.email_verified,
            is_verified=account.is_verified,
        )

    async def resend_otp(self, phone: str, otp_type: str = "phone") -> int:
        """Issue a fresh code over the requested channel.

        Returns the seconds left before the new code expires.
        """
        account = await self._account_for_phone(phone)
        now = self._clock()
        identifier = account.email if otp_type == "email" else account.phone
        code = await self._otp.generate_and_store(identifier, now=now)

        if otp_type == "email":
            try:
                sent = await self._email.send_otp_email(account.email, account.name, code)
            except Exception as e:
                log.error(
                    "otp_delivery_failed",
                    channel="email",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                sent = False
        else:
            sent = await self._send_phone_otp(account.phone, code)

        if not sent:
            raise DeliveryError("There was an error sending the OTP. Try again later.")

        log.info("otp_resent", account_id=str(account.id), channel=otp_type)
        return await self._otp.remaining_seconds(identifier, now=now)

    # ── Request authentication ───────────────────────────────────────────────

    async def authenticate(self, access_token: str) -> AccountDoc:
        """Resolve a bearer access token to a usable account."""
        account_id = self._tokens.verify_access(access_token)
        account = await self._accounts.find_by_id(account_id)
        if account is None:
            raise AuthenticationError("The user belonging to this token no longer exists.")
        if not account.is_active:
            raise AccountSuspendedError(
                "Your account has been suspended. Please contact support."
            )
        if self._lockout.is_locked(account, self._clock()):
            raise AccountLockedError(LOCKED_MESSAGE)
        return account

    async def get_profile(self, account_id: str) -> AccountDoc:
        account = await self._accounts.find_by_id(account_id)
        if account is None:
            raise NotFoundError("User not found")
        return account

