"""Logging SmsProvider.

No SMS gateway is wired up yet; this provider records each dispatch in the
structured log. Only the last digits of the number are logged, and the code
itself only outside production so it can be read off a development console.
"""

from shared.logging import get_logger

log = get_logger(__name__)

_VISIBLE_DIGITS = 3


def mask_phone(phone: str) -> str:
    """'01712345678' -> '********678'."""
    if len(phone) <= _VISIBLE_DIGITS:
        return "*" * len(phone)
    return "*" * (len(phone) - _VISIBLE_DIGITS) + phone[-_VISIBLE_DIGITS:]


class LogSmsProvider:
    def __init__(self, include_code: bool = False) -> None:
        self._include_code = include_code

    async def send_otp(self, phone: str, otp_code: str, ttl_minutes: int) -> bool:
        extra = {"otp_code": otp_code} if self._include_code else {}
        log.info(
            "sms_otp_dispatched",
            phone=mask_phone(phone),
            ttl_minutes=ttl_minutes,
            **extra,
        )
        return True
