"""JWT access/refresh token issuing and verification.

Access and refresh tokens are signed with different secrets, so a leaked
access secret cannot mint refresh tokens and a refresh token is never
accepted where an access token is expected (and vice versa).

A refresh token's signature proves only that we issued it. Whether it is
still usable is decided by the account's stored refresh-token list; see
AuthService.refresh.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import jwt
from pydantic import BaseModel

from config import JWTSettings
from errors import TokenExpiredError, TokenInvalidError
from shared.datetime_utils import utcnow
from shared.generators import generate_token_id

_ALGORITHM = "HS256"
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int  # access-token lifetime, seconds


class TokenService:
    def __init__(self, settings: JWTSettings) -> None:
        if not settings.jwt_secret or not settings.jwt_refresh_secret:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must both be set")
        if settings.jwt_secret == settings.jwt_refresh_secret:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        self._settings = settings

    def _encode(
        self, account_id: str, token_type: str, now: datetime
    ) -> str:
        s = self._settings
        if token_type == TOKEN_TYPE_REFRESH:
            secret, ttl = s.jwt_refresh_secret, s.refresh_token_ttl_seconds
        else:
            secret, ttl = s.jwt_secret, s.access_token_ttl_seconds
        claims = {
            "iss": s.jwt_issuer,
            "aud": s.jwt_audience,
            "sub": str(account_id),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "jti": generate_token_id(),
            "type": token_type,
        }
        return jwt.encode(claims, secret, algorithm=_ALGORITHM)

    def _decode(self, token: str, token_type: str) -> str:
        s = self._settings
        secret = s.jwt_refresh_secret if token_type == TOKEN_TYPE_REFRESH else s.jwt_secret
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=s.jwt_audience,
                issuer=s.jwt_issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError("Token expired.") from e
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError("Invalid token.") from e

        if claims.get("type") != token_type:
            raise TokenInvalidError("Invalid token.")
        return claims["sub"]

    def issue(self, account_id: str, now: Optional[datetime] = None) -> TokenPair:
        now = now or utcnow()
        return TokenPair(
            access_token=self._encode(account_id, TOKEN_TYPE_ACCESS, now),
            refresh_token=self._encode(account_id, TOKEN_TYPE_REFRESH, now),
            expires_in=self._settings.access_token_ttl_seconds,
        )

    def verify_access(self, token: str) -> str:
        """Return the account id embedded in a valid access token.

        Raises:
            TokenExpiredError: signature valid but past ``exp`` (client should refresh).
            TokenInvalidError: anything else (client must log in again).
        """
        return self._decode(token, TOKEN_TYPE_ACCESS)

    def verify_refresh(self, token: str) -> str:
        return self._decode(token, TOKEN_TYPE_REFRESH)
