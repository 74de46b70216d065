"""
Account input validators: framework-agnostic, pure functions.

Used by the request DTOs; all rules mirror what existing mobile and web
clients already enforce so server and client never disagree.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional

import validators as _validators

BLOOD_GROUPS = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
GENDERS = ("male", "female", "other")

# Bangladeshi mobile numbers, optionally prefixed with +88
_PHONE_RE = re.compile(r"^(\+88)?01[3-9]\d{8}$")
# Latin letters, whitespace and the Bengali block
_NAME_RE = re.compile(r"^[a-zA-Z\sঀ-৿]+$")
_OTP_RE = re.compile(r"^\d{6}$")

MIN_PASSWORD_LENGTH = 6
MIN_AGE, MAX_AGE = 16, 70
MIN_WEIGHT_KG, MAX_WEIGHT_KG = 45, 200


def validate_email(email: str) -> bool:
    """Return True if *email* is a syntactically valid address."""
    return bool(email) and bool(_validators.email(email))


def validate_phone(phone: str) -> bool:
    return bool(_PHONE_RE.match(phone or ""))


def validate_name(name: str) -> bool:
    """2-100 characters, letters and spaces only (Bengali allowed)."""
    name = (name or "").strip()
    return 2 <= len(name) <= 100 and bool(_NAME_RE.match(name))


def validate_password(password: str) -> list[str]:
    """Return the list of unmet password requirements (empty when valid).

    Rules:
    - At least 6 characters
    - At least one uppercase letter, one lowercase letter and one digit
    """
    if not password:
        return ["Password is required"]

    missing = []
    if len(password) < MIN_PASSWORD_LENGTH:
        missing.append(f"At least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[a-z]", password):
        missing.append("At least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        missing.append("At least one uppercase letter")
    if not re.search(r"\d", password):
        missing.append("At least one number")
    return missing


def calculate_age(date_of_birth: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def validate_age(date_of_birth: date, today: Optional[date] = None) -> bool:
    return MIN_AGE <= calculate_age(date_of_birth, today) <= MAX_AGE


def validate_weight(weight: float) -> bool:
    return MIN_WEIGHT_KG <= weight <= MAX_WEIGHT_KG


def validate_otp_format(code: Optional[str]) -> bool:
    """Exactly six decimal digits."""
    return isinstance(code, str) and bool(_OTP_RE.match(code))
