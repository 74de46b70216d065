"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.sms.log_sms import LogSmsProvider
from repositories.account_repository import AccountRepository
from repositories.otp_store import InMemoryOtpStore, OtpStore, RedisOtpStore
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from services.auth_service import AuthService
from services.lockout_policy import LockoutPolicy
from services.otp_service import OtpService
from services.rate_limiter import AuthRateLimiter, storage_uri_for
from services.token_service import TokenService
from shared.crypto import configure_password_hasher
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def build_otp_store(redis_client) -> OtpStore:
    return RedisOtpStore(redis_client) if redis_client is not None else InMemoryOtpStore()


def build_auth_service(
    settings: AppSettings, db, otp_store: OtpStore, http_client: HttpClient
) -> AuthService:
    """Wire the auth orchestrator and its collaborators from settings."""
    accounts = AccountRepository(db["users"])
    security = settings.security
    return AuthService(
        accounts=accounts,
        tokens=TokenService(settings.jwt),
        otp=OtpService(
            otp_store,
            length=security.otp_length,
            ttl_minutes=security.otp_ttl_minutes,
            max_attempts=security.otp_max_attempts,
        ),
        lockout=LockoutPolicy(
            accounts,
            max_attempts=security.max_login_attempts,
            lockout_seconds=security.lockout_seconds,
        ),
        email=ZeptoMailProvider(
            settings.email,
            http_client,
            app_name=settings.app_name,
            reset_ttl_minutes=security.password_reset_ttl_seconds // 60,
            otp_ttl_minutes=security.otp_ttl_minutes,
        ),
        sms=LogSmsProvider(include_code=not settings.is_production),
        app_url=settings.app_url,
        password_reset_ttl_seconds=security.password_reset_ttl_seconds,
    )


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    # Logging (and Sentry, when a DSN is set) before anything else so it
    # captures startup errors
    setup_logging(settings.logging, settings.sentry)
    configure_password_hasher(
        settings.security.argon2_time_cost,
        settings.security.argon2_memory_cost,
        settings.security.argon2_parallelism,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        db_settings = settings.db
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            db_settings.mongodb_uri,
            serverSelectionTimeoutMS=db_settings.mongo_server_selection_timeout_ms,
            connectTimeoutMS=db_settings.mongo_connect_timeout_ms,
            socketTimeoutMS=db_settings.mongo_socket_timeout_ms,
            maxPoolSize=db_settings.mongo_max_pool_size,
        )
        app.state.mongo_client = mongo_client
        app.state.db = mongo_client[db_settings.db_name]

        # Redis is optional; without it OTP records stay in process memory
        redis_client = None
        if settings.redis.redis_uri:
            redis_client = aioredis.from_url(
                settings.redis.redis_uri,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=settings.redis.redis_socket_timeout,
                socket_connect_timeout=settings.redis.redis_socket_connect_timeout,
            )
        app.state.redis = redis_client

        http_client = HttpClient(timeout=10.0)
        app.state.http_client = http_client

        otp_store = build_otp_store(redis_client)
        purge_task = None
        if isinstance(otp_store, InMemoryOtpStore):
            purge_task = asyncio.create_task(
                otp_store.purge_periodically(settings.security.otp_purge_interval_seconds)
            )

        # Raises on missing JWT secrets: refuse to serve without signing keys
        auth_service = build_auth_service(settings, app.state.db, otp_store, http_client)
        app.state.auth_service = auth_service
        app.state.rate_limiter = AuthRateLimiter(
            settings.security.auth_rate_limit,
            storage_uri_for(settings.redis.redis_uri),
        )
        await AccountRepository(app.state.db["users"]).ensure_indexes()

        log.info(
            "app_started",
            env=settings.env,
            otp_store="redis" if redis_client is not None else "memory",
        )

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        if purge_task is not None:
            purge_task.cancel()
            with suppress(asyncio.CancelledError):
                await purge_task
        await http_client.aclose()
        await mongo_client.close()
        if redis_client is not None:
            await redis_client.aclose()
        log.info("app_stopped")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app, expose_errors=not settings.is_production)
    app.include_router(health_router)
    app.include_router(auth_router)

    return app
