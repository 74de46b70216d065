"""Unit tests for AuthService flows.

Runs the real repository, lockout policy, token and OTP services over the
in-memory MongoDB; only the email/SMS providers are mocked.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from errors import (
    AccountLockedError,
    AccountSuspendedError,
    AuthenticationError,
    ConflictError,
    CurrentPasswordIncorrectError,
    DeliveryError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidRefreshTokenError,
    MismatchError,
    NotFoundError,
    OtpAttemptsExceededError,
    OtpExpiredError,
    OtpMismatchError,
    TokenExpiredError,
    StoreUnavailableError,
    TokenInvalidError,
    ValidationError,
)
from shared.crypto import hash_token

PASSWORD = "Passw0rd"
PHONE = "01712345678"
EMAIL = "rahim@example.com"


@pytest.fixture
async def registered(auth_service, registration):
    return await auth_service.register(registration)


async def _stored_tokens(account_repo, account_id):
    stored = await account_repo.find_by_id(account_id, include_sensitive=True)
    return stored.refresh_tokens


def _sent_otp(sms_provider) -> str:
    return sms_provider.send_otp.call_args[0][1]


def _reset_token(email_provider) -> str:
    reset_url = email_provider.send_password_reset_email.call_args[0][2]
    return reset_url.rsplit("/", 1)[1]


# ── Register ──────────────────────────────────────────────────────────────────


class TestRegister:
    async def test_returns_profile_and_tokens(self, registered, token_service):
        assert registered.account.email == EMAIL
        assert registered.account.is_verified is False
        assert registered.account.is_donor is True
        assert token_service.verify_access(registered.tokens.access_token) == str(
            registered.account.id
        )

    async def test_refresh_token_stored(self, registered, account_repo):
        assert await _stored_tokens(account_repo, registered.account.id) == [
            registered.tokens.refresh_token
        ]

    async def test_sends_phone_otp(self, registered, sms_provider, otp_store):
        sms_provider.send_otp.assert_awaited_once()
        phone, code, ttl = sms_provider.send_otp.call_args[0]
        assert phone == PHONE
        assert ttl == 10
        assert (await otp_store.get(PHONE)).code == code

    async def test_duplicate_email_conflicts(
        self, auth_service, registered, registration_factory
    ):
        with pytest.raises(ConflictError):
            await auth_service.register(registration_factory(phone="01812345678"))

    async def test_duplicate_phone_conflicts(
        self, auth_service, registered, registration_factory
    ):
        with pytest.raises(ConflictError):
            await auth_service.register(registration_factory(email="other@example.com"))

    async def test_sms_failure_is_not_fatal(self, auth_service, sms_provider, registration):
        sms_provider.send_otp.side_effect = RuntimeError("gateway down")
        result = await auth_service.register(registration)
        assert result.tokens.access_token

    async def test_otp_store_outage_is_not_fatal(
        self, auth_service, otp_service, sms_provider, registration, account_repo, mocker
    ):
        mocker.patch.object(
            otp_service,
            "generate_and_store",
            AsyncMock(side_effect=StoreUnavailableError("down")),
        )
        result = await auth_service.register(registration)
        assert result.tokens.access_token
        sms_provider.send_otp.assert_not_awaited()
        assert await account_repo.find_by_id(result.account.id) is not None

    async def test_confirm_password_not_persisted(
        self, auth_service, mongo_db, registration_factory
    ):
        result = await auth_service.register(
            registration_factory(confirm_password=PASSWORD)
        )
        raw = await mongo_db["users"].find_one({"_id": result.account.id})
        assert "confirm_password" not in raw


# ── Login ─────────────────────────────────────────────────────────────────────


class TestLogin:
    async def test_login_by_email(self, auth_service, registered, account_repo):
        result = await auth_service.login(PASSWORD, email=EMAIL)
        assert result.account.id == registered.account.id
        tokens = await _stored_tokens(account_repo, registered.account.id)
        assert result.tokens.refresh_token in tokens
        stored = await account_repo.find_by_id(registered.account.id)
        assert stored.last_login is not None

    async def test_login_by_phone(self, auth_service, registered):
        result = await auth_service.login(PASSWORD, phone=PHONE)
        assert result.account.phone == PHONE

    async def test_login_email_case_insensitive(self, auth_service, registered):
        assert (await auth_service.login(PASSWORD, email="RAHIM@Example.com")).tokens

    @pytest.mark.parametrize(
        "kwargs", [{}, {"email": EMAIL, "phone": PHONE}], ids=["neither", "both"]
    )
    async def test_requires_exactly_one_identifier(self, auth_service, registered, kwargs):
        with pytest.raises(ValidationError):
            await auth_service.login(PASSWORD, **kwargs)

    async def test_wrong_password_and_unknown_account_look_alike(
        self, auth_service, registered
    ):
        with pytest.raises(InvalidCredentialsError) as wrong_pw:
            await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(InvalidCredentialsError) as unknown:
            await auth_service.login(PASSWORD, email="nobody@example.com")
        assert wrong_pw.value.message == unknown.value.message
        assert wrong_pw.value.status_code == unknown.value.status_code == 401

    async def test_failed_login_logged_without_password(
        self, auth_service, registered, mocker
    ):
        bound = mocker.MagicMock()
        log = mocker.patch("services.auth_service.log")
        log.bind.return_value = bound
        with pytest.raises(InvalidCredentialsError):
            await auth_service.login("Wr0ngpass", email=EMAIL)

        log.bind.assert_called_once_with(account_id=str(registered.account.id))
        event, = bound.warning.call_args[0]
        assert event == "login_failed"
        assert bound.warning.call_args.kwargs == {"attempts": 1}

    async def test_fifth_failure_locks(self, auth_service, registered, account_repo, clock):
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.login("Wr0ngpass", email=EMAIL)
        stored = await account_repo.find_by_id(registered.account.id)
        assert stored.login_attempts == 5
        assert stored.is_locked(clock())

    async def test_correct_password_refused_while_locked(self, auth_service, registered):
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.login(PASSWORD, email=EMAIL)

    async def test_lock_lapses_after_two_hours(
        self, auth_service, registered, account_repo, clock
    ):
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.login("Wr0ngpass", email=EMAIL)

        clock.advance(hours=1, minutes=59)
        with pytest.raises(AccountLockedError):
            await auth_service.login(PASSWORD, email=EMAIL)

        clock.advance(minutes=2)
        result = await auth_service.login(PASSWORD, email=EMAIL)
        assert result.tokens.refresh_token
        stored = await account_repo.find_by_id(registered.account.id)
        assert stored.login_attempts == 0
        assert stored.lock_until is None

    async def test_failure_after_lapse_starts_new_window(
        self, auth_service, registered, account_repo, clock
    ):
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.login("Wr0ngpass", email=EMAIL)

        clock.advance(hours=2, seconds=1)
        with pytest.raises(InvalidCredentialsError):
            await auth_service.login("Wr0ngpass", email=EMAIL)
        stored = await account_repo.find_by_id(registered.account.id)
        assert stored.login_attempts == 1

    async def test_success_resets_counter(self, auth_service, registered, account_repo):
        for _ in range(3):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", email=EMAIL)
        await auth_service.login(PASSWORD, email=EMAIL)
        assert (await account_repo.find_by_id(registered.account.id)).login_attempts == 0

    @pytest.mark.parametrize("status", ["inactive", "suspended", "banned"])
    async def test_inactive_account_refused(
        self, auth_service, registered, mongo_db, status
    ):
        await mongo_db["users"].update_one(
            {"_id": registered.account.id}, {"$set": {"status": status}}
        )
        with pytest.raises(AccountSuspendedError):
            await auth_service.login(PASSWORD, email=EMAIL)


# ── Logout ────────────────────────────────────────────────────────────────────


class TestLogout:
    async def test_logout_removes_one_session(self, auth_service, registered, account_repo):
        second = await auth_service.login(PASSWORD, email=EMAIL)
        await auth_service.logout(registered.account, registered.tokens.refresh_token)
        assert await _stored_tokens(account_repo, registered.account.id) == [
            second.tokens.refresh_token
        ]

    async def test_logout_unknown_token_is_fine(self, auth_service, registered):
        await auth_service.logout(registered.account, "not-a-token")
        await auth_service.logout(registered.account, None)

    async def test_logged_out_token_cannot_refresh(self, auth_service, registered):
        await auth_service.logout(registered.account, registered.tokens.refresh_token)
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh(registered.tokens.refresh_token)

    async def test_logout_all(self, auth_service, registered, account_repo):
        await auth_service.login(PASSWORD, email=EMAIL)
        await auth_service.logout_all(registered.account)
        assert await _stored_tokens(account_repo, registered.account.id) == []


# ── Refresh ───────────────────────────────────────────────────────────────────


class TestRefresh:
    async def test_rotates(self, auth_service, registered, account_repo):
        old = registered.tokens.refresh_token
        new = await auth_service.refresh(old)
        tokens = await _stored_tokens(account_repo, registered.account.id)
        assert new.refresh_token in tokens
        assert old not in tokens

    async def test_old_token_single_use(self, auth_service, registered):
        old = registered.tokens.refresh_token
        await auth_service.refresh(old)
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh(old)

    async def test_concurrent_refresh_single_winner(self, auth_service, registered):
        old = registered.tokens.refresh_token
        results = await asyncio.gather(
            auth_service.refresh(old),
            auth_service.refresh(old),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1 and isinstance(losers[0], InvalidRefreshTokenError)

    async def test_access_token_not_accepted(self, auth_service, registered):
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh(registered.tokens.access_token)

    async def test_garbage_token(self, auth_service):
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh("garbage")

    async def test_other_sessions_survive_rotation(self, auth_service, registered, account_repo):
        second = await auth_service.login(PASSWORD, email=EMAIL)
        await auth_service.refresh(registered.tokens.refresh_token)
        assert second.tokens.refresh_token in await _stored_tokens(
            account_repo, registered.account.id
        )


# ── Forgot / reset password ───────────────────────────────────────────────────


class TestForgotPassword:
    async def test_sends_reset_link_and_stores_hash(
        self, auth_service, registered, email_provider, account_repo
    ):
        await auth_service.forgot_password(EMAIL)
        email, name, url = email_provider.send_password_reset_email.call_args[0]
        assert email == EMAIL
        assert name == "Rahim Uddin"
        assert url.startswith("https://bloodcare.test/auth/reset-password/")

        token = _reset_token(email_provider)
        assert len(token) == 64
        stored = await account_repo.find_by_id(registered.account.id, include_sensitive=True)
        assert stored.password_reset_token_hash == hash_token(token)
        assert stored.password_reset_expires is not None

    async def test_unknown_email(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.forgot_password("nobody@example.com")

    @pytest.mark.parametrize(
        "failure",
        [AsyncMock(return_value=False), AsyncMock(side_effect=RuntimeError("smtp"))],
        ids=["returns_false", "raises"],
    )
    async def test_delivery_failure_rolls_back(
        self, auth_service, registered, email_provider, account_repo, failure
    ):
        email_provider.send_password_reset_email = failure
        with pytest.raises(DeliveryError):
            await auth_service.forgot_password(EMAIL)
        stored = await account_repo.find_by_id(registered.account.id, include_sensitive=True)
        assert stored.password_reset_token_hash is None
        assert stored.password_reset_expires is None


class TestResetPassword:
    async def test_reset_sets_password_and_ends_sessions(
        self, auth_service, registered, email_provider, account_repo
    ):
        await auth_service.forgot_password(EMAIL)
        token = _reset_token(email_provider)

        tokens = await auth_service.reset_password(token, "N3wPassword", "N3wPassword")

        assert await _stored_tokens(account_repo, registered.account.id) == [
            tokens.refresh_token
        ]
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh(registered.tokens.refresh_token)
        assert (await auth_service.login("N3wPassword", email=EMAIL)).tokens
        with pytest.raises(InvalidCredentialsError):
            await auth_service.login(PASSWORD, email=EMAIL)

    async def test_token_single_use(self, auth_service, registered, email_provider):
        await auth_service.forgot_password(EMAIL)
        token = _reset_token(email_provider)
        await auth_service.reset_password(token, "N3wPassword", "N3wPassword")
        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.reset_password(token, "An0therPass", "An0therPass")

    async def test_expired_token(self, auth_service, registered, email_provider, clock):
        await auth_service.forgot_password(EMAIL)
        token = _reset_token(email_provider)
        clock.advance(minutes=10, seconds=1)
        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.reset_password(token, "N3wPassword", "N3wPassword")

    async def test_mismatch(self, auth_service, registered, email_provider):
        await auth_service.forgot_password(EMAIL)
        token = _reset_token(email_provider)
        with pytest.raises(MismatchError):
            await auth_service.reset_password(token, "N3wPassword", "Different1")

    async def test_unknown_token(self, auth_service, registered):
        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.reset_password("f" * 64, "N3wPassword", "N3wPassword")


# ── Change password ───────────────────────────────────────────────────────────


class TestChangePassword:
    async def test_change_ends_other_sessions(self, auth_service, registered, account_repo):
        other = await auth_service.login(PASSWORD, phone=PHONE)
        tokens = await auth_service.change_password(
            registered.account, PASSWORD, "N3wPassword"
        )
        assert await _stored_tokens(account_repo, registered.account.id) == [
            tokens.refresh_token
        ]
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh(other.tokens.refresh_token)
        assert (await auth_service.login("N3wPassword", email=EMAIL)).tokens

    async def test_wrong_current_password(self, auth_service, registered):
        with pytest.raises(CurrentPasswordIncorrectError) as exc:
            await auth_service.change_password(registered.account, "Wr0ngpass", "N3wPassword")
        assert exc.value.status_code == 400
        assert exc.value.message == "Current password is incorrect"


# ── OTP verification ──────────────────────────────────────────────────────────


class TestVerifyOtp:
    async def test_phone_otp_sets_phone_flag(self, auth_service, registered, sms_provider):
        code = _sent_otp(sms_provider)
        result = await auth_service.verify_otp(PHONE, code)
        assert result.phone_verified is True
        assert result.email_verified is False
        assert result.is_verified is False

    async def test_both_channels_verify_account(
        self, auth_service, registered, sms_provider, email_provider, account_repo
    ):
        await auth_service.verify_otp(PHONE, _sent_otp(sms_provider))
        await auth_service.resend_otp(PHONE, "email")
        email_code = email_provider.send_otp_email.call_args[0][2]
        result = await auth_service.verify_otp(PHONE, email_code, "email")
        assert result.is_verified is True
        assert (await account_repo.find_by_id(registered.account.id)).is_verified

    async def test_channels_verified_concurrently_both_stick(
        self, auth_service, registered, sms_provider, email_provider, account_repo
    ):
        phone_code = _sent_otp(sms_provider)
        await auth_service.resend_otp(PHONE, "email")
        email_code = email_provider.send_otp_email.call_args[0][2]
        await asyncio.gather(
            auth_service.verify_otp(PHONE, phone_code),
            auth_service.verify_otp(PHONE, email_code, "email"),
        )
        stored = await account_repo.find_by_id(registered.account.id)
        assert stored.phone_verified and stored.email_verified
        assert stored.is_verified

    @pytest.mark.parametrize("code", ["12345", "abcdef", "1234567", ""])
    async def test_bad_format(self, auth_service, registered, code):
        with pytest.raises(ValidationError):
            await auth_service.verify_otp(PHONE, code)

    async def test_unknown_phone(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.verify_otp("01999999999", "123456")

    async def test_three_wrong_codes_exhaust(self, auth_service, registered, sms_provider):
        code = _sent_otp(sms_provider)
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(2):
            with pytest.raises(OtpMismatchError):
                await auth_service.verify_otp(PHONE, wrong)
        with pytest.raises(OtpAttemptsExceededError):
            await auth_service.verify_otp(PHONE, wrong)
        with pytest.raises(NotFoundError):
            await auth_service.verify_otp(PHONE, code)

    async def test_expired_code(self, auth_service, registered, sms_provider, clock):
        code = _sent_otp(sms_provider)
        clock.advance(minutes=10, seconds=1)
        with pytest.raises(OtpExpiredError):
            await auth_service.verify_otp(PHONE, code)


class TestResendOtp:
    async def test_resend_phone_replaces_code(self, auth_service, registered, sms_provider):
        first = _sent_otp(sms_provider)
        expires_in = await auth_service.resend_otp(PHONE)
        second = _sent_otp(sms_provider)
        assert expires_in == 600
        assert sms_provider.send_otp.await_count == 2
        if first != second:
            with pytest.raises(OtpMismatchError):
                await auth_service.verify_otp(PHONE, first)
        assert (await auth_service.verify_otp(PHONE, second)).phone_verified

    async def test_resend_email(self, auth_service, registered, email_provider):
        await auth_service.resend_otp(PHONE, "email")
        email, name, code = email_provider.send_otp_email.call_args[0]
        assert email == EMAIL
        assert len(code) == 6

    async def test_unknown_phone(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.resend_otp("01999999999")

    async def test_delivery_failure(self, auth_service, registered, sms_provider):
        sms_provider.send_otp.return_value = False
        with pytest.raises(DeliveryError):
            await auth_service.resend_otp(PHONE)


# ── Authenticate ──────────────────────────────────────────────────────────────


class TestAuthenticate:
    async def test_valid_access_token(self, auth_service, registered):
        account = await auth_service.authenticate(registered.tokens.access_token)
        assert account.id == registered.account.id
        assert account.password_hash is None

    async def test_refresh_token_rejected(self, auth_service, registered):
        with pytest.raises(TokenInvalidError):
            await auth_service.authenticate(registered.tokens.refresh_token)

    async def test_expired_access_token(self, auth_service, registered, token_service, clock):
        stale = token_service.issue(str(registered.account.id), now=clock() - timedelta(days=8))
        with pytest.raises(TokenExpiredError):
            await auth_service.authenticate(stale.access_token)

    async def test_deleted_account(self, auth_service, registered, mongo_db):
        await mongo_db["users"].delete_one({"_id": registered.account.id})
        with pytest.raises(AuthenticationError):
            await auth_service.authenticate(registered.tokens.access_token)

    async def test_suspended_account(self, auth_service, registered, mongo_db):
        await mongo_db["users"].update_one(
            {"_id": registered.account.id}, {"$set": {"status": "suspended"}}
        )
        with pytest.raises(AccountSuspendedError):
            await auth_service.authenticate(registered.tokens.access_token)

    async def test_locked_account(self, auth_service, registered):
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.login("Wr0ngpass", email=EMAIL)
        with pytest.raises(AccountLockedError):
            await auth_service.authenticate(registered.tokens.access_token)

    async def test_get_profile(self, auth_service, registered):
        assert (await auth_service.get_profile(str(registered.account.id))).email == EMAIL
        with pytest.raises(NotFoundError):
            await auth_service.get_profile("0" * 24)


# ── End-to-end scenario ───────────────────────────────────────────────────────


class TestScenario:
    async def test_register_verify_login_lock_unlock(
        self, auth_service, registration, sms_provider, clock
    ):
        registered = await auth_service.register(registration)
        assert not registered.account.is_verified

        flags = await auth_service.verify_otp(PHONE, _sent_otp(sms_provider))
        assert flags.phone_verified

        session = await auth_service.login(PASSWORD, phone=PHONE)
        rotated = await auth_service.refresh(session.tokens.refresh_token)
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh(session.tokens.refresh_token)

        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("Wr0ngpass", phone=PHONE)
        with pytest.raises(AccountLockedError):
            await auth_service.login("Wr0ngpass", phone=PHONE)
        with pytest.raises(AccountLockedError):
            await auth_service.login(PASSWORD, phone=PHONE)

        clock.advance(hours=2, seconds=1)
        assert (await auth_service.login(PASSWORD, phone=PHONE)).tokens
        assert rotated.refresh_token
