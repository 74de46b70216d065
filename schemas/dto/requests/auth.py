"""
Request DTOs for authentication endpoints.

RegisterRequest: POST /auth/register
LoginRequest: POST /auth/login
LogoutRequest: POST /auth/logout
RefreshTokenRequest: POST /auth/refresh-token
ForgotPasswordRequest: POST /auth/forgot-password
ResetPasswordRequest: POST /auth/reset-password/{token}
VerifyOtpRequest: POST /auth/verify-otp
ResendOtpRequest: POST /auth/resend-otp
ChangePasswordRequest: POST /auth/change-password

Field names are snake_case; the camelCase spelling existing clients send is
accepted through aliases.
"""

from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.validators import (
    BLOOD_GROUPS,
    GENDERS,
    MAX_AGE,
    MIN_AGE,
    validate_age,
    validate_email,
    validate_name,
    validate_password,
    validate_phone,
    validate_weight,
)

OtpType = Literal["phone", "email"]


def _check_password(value: str) -> str:
    missing = validate_password(value)
    if missing:
        raise ValueError("Password does not meet requirements: " + ", ".join(missing))
    return value


class CoordinatesIn(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class LocationIn(BaseModel):
    district: str = Field(min_length=1)
    upazila: Optional[str] = None
    address: Optional[str] = None
    coordinates: Optional[CoordinatesIn] = None

    @field_validator("district")
    @classmethod
    def _district_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("District is required")
        return v.strip()


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    phone: str
    password: str
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")
    date_of_birth: date = Field(alias="dateOfBirth")
    gender: str
    blood_group: str = Field(alias="bloodGroup")
    location: LocationIn
    is_donor: bool = Field(default=True, alias="isDonor")
    weight: Optional[float] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        if not validate_name(v):
            raise ValueError("Name must be 2-100 characters and contain only letters and spaces")
        return v.strip()

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if not validate_email(v):
            raise ValueError("Please provide a valid email address")
        return v

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        v = v.strip()
        if not validate_phone(v):
            raise ValueError("Please provide a valid Bangladeshi phone number")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("confirm_password")
    @classmethod
    def _confirm(cls, v: Optional[str], info) -> Optional[str]:
        if v is not None and v != info.data.get("password"):
            raise ValueError("Password confirmation does not match password")
        return v

    @field_validator("date_of_birth")
    @classmethod
    def _dob(cls, v: date) -> date:
        if not validate_age(v):
            raise ValueError(f"Age must be between {MIN_AGE} and {MAX_AGE} years")
        return v

    @field_validator("gender")
    @classmethod
    def _gender(cls, v: str) -> str:
        if v not in GENDERS:
            raise ValueError("Gender must be male, female, or other")
        return v

    @field_validator("blood_group")
    @classmethod
    def _blood_group(cls, v: str) -> str:
        if v not in BLOOD_GROUPS:
            raise ValueError("Please select a valid blood group")
        return v

    @field_validator("weight")
    @classmethod
    def _weight(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not validate_weight(v):
            raise ValueError("Weight must be between 45 and 200 kg")
        return v


class LoginRequest(BaseModel):
    """Request body for POST /auth/login. Exactly one of email/phone."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    password: str


class LogoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refreshToken")


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password/{token}.

    The password/confirmation comparison is done by the service so a
    mismatch reports its own error code.
    """

    model_config = ConfigDict(populate_by_name=True)

    password: str
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /auth/verify-otp.

    ``otp`` format (six digits) is checked by the service.
    """

    model_config = ConfigDict(populate_by_name=True)

    phone: str
    otp: str
    type: OtpType = "phone"


class ResendOtpRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: str
    type: OtpType = "phone"


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def _new_password(cls, v: str) -> str:
        return _check_password(v)
