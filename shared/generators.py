"""
Random code and token generators: pure, side-effect-free functions.

Everything here gates account ownership or credential recovery, so all
generators draw from the ``secrets`` module, never from ``random``.
"""

from __future__ import annotations

import secrets
import string


def generate_otp_code(length: int = 6) -> str:
    """Generate a cryptographically secure numeric OTP.

    Args:
        length: Number of digits (default 6).

    Returns:
        String of random decimal digits.
    """
    if length < 1:
        raise ValueError("OTP length must be positive")
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_reset_token(nbytes: int = 32) -> str:
    """Generate a high-entropy password-reset token.

    Args:
        nbytes: Number of random bytes (default 32).

    Returns:
        Lowercase hex string, ``2 * nbytes`` characters long, safe to embed
        in a URL path segment.
    """
    return secrets.token_hex(nbytes)


def generate_token_id() -> str:
    """Random identifier for the ``jti`` claim of issued JWTs."""
    return secrets.token_urlsafe(16)
