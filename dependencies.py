"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain async functions
used with FastAPI's Depends() system. Everything they hand out is built once
in the app lifespan and kept on app.state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from errors import AuthenticationError
from schemas.models.account import AccountDoc
from services.auth_service import AuthService
from services.rate_limiter import AuthRateLimiter

_bearer = HTTPBearer(auto_error=False)


async def get_db(request: Request):
    """Return the async MongoDB database from app.state."""
    return request.app.state.db


async def get_redis(request: Request):
    """Return the async Redis client, or None when Redis is not configured."""
    return getattr(request.app.state, "redis", None)


async def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    auth_service: AuthService = Depends(get_auth_service),
) -> AccountDoc:
    """Resolve the ``Authorization: Bearer`` access token to an account.

    Raises AuthenticationError (401) when no bearer token is sent; token and
    account problems surface as the errors raised by AuthService.authenticate.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("You are not logged in. Please log in to get access.")
    return await auth_service.authenticate(credentials.credentials)


async def get_rate_limiter(request: Request) -> AuthRateLimiter:
    return request.app.state.rate_limiter
