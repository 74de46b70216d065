"""EmailProvider protocol: services depend on this, not the concrete implementation."""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class EmailProvider(Protocol):
    async def send_password_reset_email(
        self, email: str, user_name: Optional[str], reset_url: str
    ) -> bool: ...

    async def send_otp_email(
        self, email: str, user_name: Optional[str], otp_code: str
    ) -> bool: ...
