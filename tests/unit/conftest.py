"""
Unit test configuration.

Unit tests control configuration exclusively through monkeypatch.setenv():
the project's .env file is never read and deployment variables exported in
the developer's shell are cleared.
"""

import pytest

_DEPLOYMENT_VARS = (
    "ENV",
    "APP_URL",
    "JWT_SECRET",
    "JWT_REFRESH_SECRET",
    "REDIS_URI",
    "ZEPTO_API_TOKEN",
    "SENTRY_DSN",
    "LOG_FORMAT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep pydantic-settings away from .env files and exported deployment vars."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})
    for var in _DEPLOYMENT_VARS:
        monkeypatch.delenv(var, raising=False)
