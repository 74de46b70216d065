"""
Response DTOs for authentication endpoints.

AccountProfileResponse: sanitized account, shared by register/login/me
AuthData / AuthResponse: POST /auth/register (201), POST /auth/login (200)
TokenData / TokenResponse: refresh-token, reset-password, change-password
VerificationFlags / VerifyOtpResponse: POST /auth/verify-otp
ResendOtpResponse: POST /auth/resend-otp
MeResponse: GET /auth/me
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.account import AccountDoc, Location


class AccountProfileResponse(BaseModel):
    """Account as returned to clients. Never carries credential fields."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: str
    phone: str
    date_of_birth: Optional[datetime] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    location: Optional[Location] = None
    is_donor: bool
    is_available: bool
    weight: Optional[float] = None
    role: str
    status: str
    phone_verified: bool
    email_verified: bool
    is_verified: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: AccountDoc) -> "AccountProfileResponse":
        data = account.model_dump(
            exclude={
                "id",
                "password_hash",
                "refresh_tokens",
                "password_reset_token_hash",
                "password_reset_expires",
                "login_attempts",
                "lock_until",
                "updated_at",
            }
        )
        return cls(id=str(account.id), **data)


class TokenData(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int


class AuthData(TokenData):
    user: AccountProfileResponse


class AuthResponse(BaseModel):
    """Response body for POST /auth/register (201) and POST /auth/login (200)."""

    success: bool = True
    message: str
    data: AuthData


class TokenResponse(BaseModel):
    success: bool = True
    message: str
    data: TokenData


class VerificationFlags(BaseModel):
    phone_verified: bool
    email_verified: bool
    is_verified: bool


class VerifyOtpResponse(BaseModel):
    success: bool = True
    message: str = "OTP verified successfully"
    data: VerificationFlags


class ResendOtpData(BaseModel):
    expires_in: int


class ResendOtpResponse(BaseModel):
    success: bool = True
    message: str = "OTP sent successfully"
    data: ResendOtpData


class MeData(BaseModel):
    user: AccountProfileResponse


class MeResponse(BaseModel):
    success: bool = True
    data: MeData
