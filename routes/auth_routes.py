"""
Authentication routes.

POST /auth/register                : create account, 201 with profile + tokens
POST /auth/login                   : email or phone + password
POST /auth/logout                  : end one session          (Bearer)
POST /auth/logout-all              : end every session        (Bearer)
POST /auth/refresh-token           : rotate a refresh token
POST /auth/forgot-password         : email a reset link
POST /auth/reset-password/{token}  : set a new password from a reset link
POST /auth/verify-otp              : verify a phone or email OTP
POST /auth/resend-otp              : issue a fresh OTP
POST /auth/change-password         : change password          (Bearer)
GET  /auth/me                      : current profile          (Bearer)

Handlers only translate between DTOs and AuthService; every failure is an
AppError raised by the service and rendered by the global handler.

register, login and forgot-password run inside AuthRateLimiter.attempt():
repeated failures from one client IP for one identifier earn a 429.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Request

from dependencies import get_auth_service, get_current_account, get_rate_limiter
from schemas.dto.requests.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    VerifyOtpRequest,
)
from schemas.dto.responses.auth import (
    AccountProfileResponse,
    AuthData,
    AuthResponse,
    MeData,
    MeResponse,
    ResendOtpData,
    ResendOtpResponse,
    TokenData,
    TokenResponse,
    VerificationFlags,
    VerifyOtpResponse,
)
from schemas.dto.responses.common import ErrorResponse, MessageResponse
from schemas.models.account import AccountDoc
from services.auth_service import AuthResult, AuthService
from services.rate_limiter import AuthRateLimiter
from services.token_service import TokenPair
from shared.ip_utils import get_client_ip

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


def _auth_response(result: AuthResult, message: str) -> AuthResponse:
    return AuthResponse(
        message=message,
        data=AuthData(
            user=AccountProfileResponse.from_account(result.account),
            **result.tokens.model_dump(),
        ),
    )


def _token_response(tokens: TokenPair, message: str) -> TokenResponse:
    return TokenResponse(message=message, data=TokenData(**tokens.model_dump()))


@router.post(
    "/register",
    status_code=201,
    response_model=AuthResponse,
    responses={409: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def register(
    body: RegisterRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    limiter: AuthRateLimiter = Depends(get_rate_limiter),
) -> AuthResponse:
    fields = body.model_dump(exclude={"confirm_password"})
    async with limiter.attempt("register", get_client_ip(request), body.email):
        result = await auth_service.register(fields)
    return _auth_response(
        result, "Registration successful. Please verify your phone number."
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={423: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def login(
    body: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    limiter: AuthRateLimiter = Depends(get_rate_limiter),
) -> AuthResponse:
    identifier = body.email or body.phone
    async with limiter.attempt("login", get_client_ip(request), identifier):
        result = await auth_service.login(
            body.password, email=body.email, phone=body.phone
        )
    return _auth_response(result, "Login successful")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: Optional[LogoutRequest] = Body(default=None),
    account: AccountDoc = Depends(get_current_account),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.logout(account, body.refresh_token if body else None)
    return MessageResponse(success=True, message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    account: AccountDoc = Depends(get_current_account),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.logout_all(account)
    return MessageResponse(success=True, message="Logged out from all devices")


@router.post("/refresh-token", response_model=TokenResponse)
async def refresh_token(
    body: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    tokens = await auth_service.refresh(body.refresh_token)
    return _token_response(tokens, "Token refreshed successfully")


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    responses={
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    limiter: AuthRateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    async with limiter.attempt("forgot_password", get_client_ip(request), body.email):
        await auth_service.forgot_password(body.email)
    return MessageResponse(success=True, message="Password reset link sent to email")


@router.post("/reset-password/{token}", response_model=TokenResponse)
async def reset_password(
    body: ResetPasswordRequest,
    token: str = Path(min_length=1),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    tokens = await auth_service.reset_password(
        token, body.password, body.confirm_password
    )
    return _token_response(tokens, "Password reset successful")


@router.post(
    "/verify-otp",
    response_model=VerifyOtpResponse,
    responses={404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def verify_otp(
    body: VerifyOtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> VerifyOtpResponse:
    result = await auth_service.verify_otp(body.phone, body.otp, body.type)
    return VerifyOtpResponse(data=VerificationFlags(**result.model_dump()))


@router.post(
    "/resend-otp",
    response_model=ResendOtpResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def resend_otp(
    body: ResendOtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> ResendOtpResponse:
    expires_in = await auth_service.resend_otp(body.phone, body.type)
    return ResendOtpResponse(data=ResendOtpData(expires_in=expires_in))


@router.post("/change-password", response_model=TokenResponse)
async def change_password(
    body: ChangePasswordRequest,
    account: AccountDoc = Depends(get_current_account),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    tokens = await auth_service.change_password(
        account, body.current_password, body.new_password
    )
    return _token_response(tokens, "Password changed successfully")


@router.get("/me", response_model=MeResponse)
async def me(account: AccountDoc = Depends(get_current_account)) -> MeResponse:
    return MeResponse(data=MeData(user=AccountProfileResponse.from_account(account)))
