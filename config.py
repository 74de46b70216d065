"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

Sub-configs are plain BaseSettings classes composed by AppSettings in a
model_validator, so each one can also be instantiated on its own (tests,
scripts) without building the whole application config.
"""

from __future__ import annotations

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "bloodcare"

    # Driver timeouts (milliseconds); a timeout surfaces as StoreUnavailableError
    mongo_server_selection_timeout_ms: int = 5000
    mongo_connect_timeout_ms: int = 10000
    mongo_socket_timeout_ms: int = 45000
    mongo_max_pool_size: int = 10


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional: without Redis, OTP records live in process memory
    redis_uri: Optional[str] = None

    # Seconds; a timeout surfaces as StoreUnavailableError
    redis_socket_timeout: float = 5.0
    redis_socket_connect_timeout: float = 5.0


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_issuer: str = "bloodcare"
    jwt_audience: str = "bloodcare.api"

    # Access and refresh tokens are signed with different secrets
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""

    access_token_ttl_seconds: int = 604800  # 7 days
    refresh_token_ttl_seconds: int = 2592000  # 30 days


class SecuritySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Account lockout
    max_login_attempts: int = 5
    lockout_seconds: int = 7200  # 2 hours

    # One-time codes
    otp_length: int = 6
    otp_ttl_minutes: int = 10
    otp_max_attempts: int = 3

    password_reset_ttl_seconds: int = 600  # 10 minutes

    # Sweep of the in-memory OTP store (unused with Redis)
    otp_purge_interval_seconds: int = 60

    # Failed register/login/forgot-password requests per client IP + identifier
    auth_rate_limit: str = "5 per 15 minutes"

    # argon2id work factor (argon2-cffi RFC 9106 low-memory profile)
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 4


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    zepto_api_token: str = ""
    zepto_from_email: str = "noreply@bloodcare.app"
    zepto_from_name: str = "BloodCare"


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1
    sentry_profile_sample_rate: float = 0.05


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    env: str = "development"
    app_url: str = "http://localhost:8000"
    app_name: str = "BloodCare API"

    cors_origins: list[str] = ["*"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    jwt: Optional[JWTSettings] = None
    security: Optional[SecuritySettings] = None
    email: Optional[EmailSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        # Populate sub-configs from the same env/dotenv source
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.security is None:
            self.security = SecuritySettings()
        if self.email is None:
            self.email = EmailSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
