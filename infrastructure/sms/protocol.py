"""SmsProvider protocol: services depend on this, not the concrete implementation."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class SmsProvider(Protocol):
    async def send_otp(self, phone: str, otp_code: str, ttl_minutes: int) -> bool: ...
