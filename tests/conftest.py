"""
Shared fixtures.

Services run against mongomock-motor (an in-memory MongoDB with real query
semantics) and an in-memory OTP store. Delivery providers are AsyncMocks.
The clock is a FakeClock so lockout and expiry windows can be crossed
without sleeping.
"""

import os
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest
from mongomock_motor import AsyncMongoMockClient

# Ensure a MONGODB_URI is present so AppSettings can be instantiated
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/")

from config import JWTSettings  # noqa: E402
from repositories.account_repository import AccountRepository  # noqa: E402
from repositories.otp_store import InMemoryOtpStore  # noqa: E402
from services.auth_service import AuthService  # noqa: E402
from services.lockout_policy import LockoutPolicy  # noqa: E402
from services.otp_service import OtpService  # noqa: E402
from services.token_service import TokenService  # noqa: E402
from shared.crypto import configure_password_hasher  # noqa: E402
from shared.datetime_utils import utcnow  # noqa: E402

STRONG_PASSWORD = "Passw0rd"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True, scope="session")
def fast_password_hashing():
    """Cheap argon2 parameters; the production work factor makes suites crawl."""
    configure_password_hasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mongo_db():
    return AsyncMongoMockClient()["bloodcare_test"]


@pytest.fixture
async def account_repo(mongo_db):
    repo = AccountRepository(mongo_db["users"])
    await repo.ensure_indexes()
    return repo


@pytest.fixture
def jwt_settings():
    return JWTSettings(
        jwt_secret="access-secret-for-tests",
        jwt_refresh_secret="refresh-secret-for-tests",
    )


@pytest.fixture
def token_service(jwt_settings):
    return TokenService(jwt_settings)


@pytest.fixture
def otp_store():
    return InMemoryOtpStore()


@pytest.fixture
def otp_service(otp_store):
    return OtpService(otp_store, length=6, ttl_minutes=10, max_attempts=3)


@pytest.fixture
def lockout_policy(account_repo):
    return LockoutPolicy(account_repo, max_attempts=5, lockout_seconds=7200)


@pytest.fixture
def email_provider():
    provider = AsyncMock()
    provider.send_password_reset_email = AsyncMock(return_value=True)
    provider.send_otp_email = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def sms_provider():
    provider = AsyncMock()
    provider.send_otp = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def auth_service(
    account_repo,
    token_service,
    otp_service,
    lockout_policy,
    email_provider,
    sms_provider,
    clock,
):
    return AuthService(
        accounts=account_repo,
        tokens=token_service,
        otp=otp_service,
        lockout=lockout_policy,
        email=email_provider,
        sms=sms_provider,
        app_url="https://bloodcare.test",
        password_reset_ttl_seconds=600,
        clock=clock,
    )


def make_registration(**overrides) -> dict:
    """Registration fields as the route hands them to AuthService.register."""
    fields = {
        "name": "Rahim Uddin",
        "email": "rahim@example.com",
        "phone": "01712345678",
        "password": STRONG_PASSWORD,
        "date_of_birth": date(1995, 5, 17),
        "gender": "male",
        "blood_group": "O+",
        "location": {"district": "Dhaka", "upazila": "Mirpur"},
        "weight": 68.0,
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def registration():
    return make_registration()


@pytest.fixture
def registration_factory():
    return make_registration
