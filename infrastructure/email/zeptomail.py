"""ZeptoMail implementation of EmailProvider.

Both message kinds are rendered from a pair of Jinja2 templates under
templates/emails/ (``<name>.html`` and ``<name>.txt``). A send never
raises: every failure is logged and reported as False so the caller can
decide whether it is fatal.
"""

import os
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)

ZEPTO_API_URL = "https://api.zeptomail.in/v1.1/email"
_KEY_PREFIX = "Zoho-enczapikey "
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        app_name: str = "BloodCare",
        *,
        reset_ttl_minutes: int = 10,
        otp_ttl_minutes: int = 10,
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._app_name = app_name
        self._reset_ttl_minutes = reset_ttl_minutes
        self._otp_ttl_minutes = otp_ttl_minutes
        # autoescape only applies to the .html half of each pair
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html"]),
            keep_trailing_newline=True,
        )

    def _render(self, name: str, **context) -> tuple[str, str]:
        context.setdefault("app_name", self._app_name)
        html = self._jinja.get_template(f"{name}.html").render(**context)
        text = self._jinja.get_template(f"{name}.txt").render(**context)
        return html, text

    def _authorization(self) -> str:
        token = self._settings.zepto_api_token
        return token if token.startswith(_KEY_PREFIX) else _KEY_PREFIX + token

    def _build_payload(
        self, to_email: str, to_name: Optional[str], subject: str, html: str, text: str
    ) -> dict:
        return {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [{"email_address": {"address": to_email, "name": to_name or to_email}}],
            "subject": subject,
            "htmlbody": html,
            "textbody": text,
        }

    async def _deliver(self, payload: dict, kind: str) -> bool:
        if not self._settings.zepto_api_token:
            log.error("email_not_sent", kind=kind, reason="token_not_configured")
            return False

        try:
            response = await self._http.post(
                ZEPTO_API_URL,
                json=payload,
                headers={"Authorization": self._authorization()},
            )
        except httpx.HTTPError as e:
            log.error("email_send_error", kind=kind, error_type=type(e).__name__)
            return False

        if response.is_success:
            log.info("email_sent", kind=kind)
            return True
        log.error(
            "email_rejected",
            kind=kind,
            status_code=response.status_code,
            response=response.text[:200],
        )
        return False

    async def send_password_reset_email(
        self, email: str, user_name: Optional[str], reset_url: str
    ) -> bool:
        html, text = self._render(
            "password_reset",
            user_name=user_name,
            reset_url=reset_url,
            ttl_minutes=self._reset_ttl_minutes,
        )
        subject = f"{self._app_name} - Password Reset Request"
        payload = self._build_payload(email, user_name, subject, html, text)
        return await self._deliver(payload, kind="password_reset")

    async def send_otp_email(
        self, email: str, user_name: Optional[str], otp_code: str
    ) -> bool:
        html, text = self._render(
            "verification",
            user_name=user_name,
            otp_code=otp_code,
            ttl_minutes=self._otp_ttl_minutes,
        )
        subject = f"Verify your email - {self._app_name}"
        payload = self._build_payload(email, user_name, subject, html, text)
        return await self._deliver(payload, kind="email_otp")
