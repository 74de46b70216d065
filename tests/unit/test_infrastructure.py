"""Unit tests for the infrastructure layer (HTTP client and delivery providers)."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from config import EmailSettings
from infrastructure.email.protocol import EmailProvider
from infrastructure.email.zeptomail import ZEPTO_API_URL, ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.sms.log_sms import LogSmsProvider, mask_phone
from infrastructure.sms.protocol import SmsProvider


# ── HttpClient ────────────────────────────────────────────────────────────────


def _mock_transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


class TestHttpClient:
    async def test_post_sends_json_and_user_agent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["ua"] = request.headers["user-agent"]
            seen["body"] = request.content
            return httpx.Response(201, json={"ok": True})

        async with HttpClient(transport=_mock_transport(handler)) as client:
            resp = await client.post("https://api.example.com/send", json={"a": 1})

        assert resp.status_code == 201
        assert seen["method"] == "POST"
        assert seen["ua"] == "bloodcare-api/1.0"
        assert json.loads(seen["body"]) == {"a": 1}

    async def test_get_routes_through_request(self, mocker):
        client = HttpClient()
        request = mocker.patch.object(
            client._client, "request", return_value=httpx.Response(200)
        )
        resp = await client.get("https://api.example.com/status")
        assert resp.status_code == 200
        request.assert_awaited_once_with("GET", "https://api.example.com/status")
        await client.aclose()

    async def test_transport_error_logged_and_reraised(self, mocker):
        log = mocker.patch("infrastructure.http_client.log")

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with HttpClient(transport=_mock_transport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await client.post("https://api.example.com/send")

        event, = log.warning.call_args[0]
        assert event == "http_request_error"
        assert log.warning.call_args.kwargs["host"] == "api.example.com"
        assert log.warning.call_args.kwargs["error_type"] == "ConnectError"

    async def test_context_manager_closes(self):
        async with HttpClient() as client:
            pass
        assert client._client.is_closed


# ── ZeptoMailProvider ─────────────────────────────────────────────────────────


def _zepto(token: str = "secret-token", status_code: int = 201, **kwargs):
    http = AsyncMock()
    http.post = AsyncMock(return_value=httpx.Response(status_code, text="err"))
    settings = EmailSettings(
        zepto_api_token=token,
        zepto_from_email="noreply@bloodcare.app",
        zepto_from_name="BloodCare",
    )
    return ZeptoMailProvider(settings, http, app_name="BloodCare", **kwargs), http


class TestZeptoMailProvider:
    def test_satisfies_protocol(self):
        provider, _ = _zepto()
        assert isinstance(provider, EmailProvider)

    async def test_password_reset_email(self):
        provider, http = _zepto(reset_ttl_minutes=15)
        url = "https://bloodcare.test/auth/reset-password/abc"
        assert await provider.send_password_reset_email("r@example.com", "Rahim", url)

        assert http.post.call_args[0][0] == ZEPTO_API_URL
        payload = http.post.call_args.kwargs["json"]
        assert payload["to"][0]["email_address"] == {
            "address": "r@example.com",
            "name": "Rahim",
        }
        assert payload["from"]["address"] == "noreply@bloodcare.app"
        assert payload["subject"] == "BloodCare - Password Reset Request"
        assert url in payload["htmlbody"]
        assert url in payload["textbody"]
        assert "15 minutes" in payload["textbody"]

    async def test_otp_email(self):
        provider, http = _zepto(otp_ttl_minutes=5)
        assert await provider.send_otp_email("r@example.com", "Rahim", "123456")
        payload = http.post.call_args.kwargs["json"]
        assert payload["subject"] == "Verify your email - BloodCare"
        assert "123456" in payload["htmlbody"]
        assert "123456" in payload["textbody"]
        assert "5 minutes" in payload["htmlbody"]

    async def test_recipient_name_falls_back_to_address(self):
        provider, http = _zepto()
        await provider.send_otp_email("r@example.com", None, "123456")
        payload = http.post.call_args.kwargs["json"]
        assert payload["to"][0]["email_address"]["name"] == "r@example.com"

    async def test_authorization_header_prefixed(self):
        provider, http = _zepto(token="abc")
        await provider.send_otp_email("r@example.com", None, "123456")
        assert http.post.call_args.kwargs["headers"]["Authorization"] == "Zoho-enczapikey abc"

    async def test_authorization_header_not_double_prefixed(self):
        provider, http = _zepto(token="Zoho-enczapikey abc")
        await provider.send_otp_email("r@example.com", None, "123456")
        assert http.post.call_args.kwargs["headers"]["Authorization"] == "Zoho-enczapikey abc"

    async def test_missing_token_fails_without_request(self):
        provider, http = _zepto(token="")
        assert not await provider.send_otp_email("r@example.com", None, "123456")
        http.post.assert_not_called()

    async def test_non_2xx_is_failure(self):
        provider, _ = _zepto(status_code=500)
        assert not await provider.send_otp_email("r@example.com", None, "123456")

    async def test_transport_error_is_failure(self):
        provider, http = _zepto()
        http.post.side_effect = httpx.ConnectTimeout("connect timeout")
        assert not await provider.send_password_reset_email("r@example.com", None, "u")

    async def test_html_is_escaped_text_is_not(self):
        provider, http = _zepto()
        await provider.send_otp_email("r@example.com", "<b>Rahim</b>", "123456")
        payload = http.post.call_args.kwargs["json"]
        assert "<b>" not in payload["htmlbody"]
        assert "&lt;b&gt;" in payload["htmlbody"]
        assert "<b>Rahim</b>" in payload["textbody"]


# ── LogSmsProvider ────────────────────────────────────────────────────────────


class TestLogSmsProvider:
    def test_satisfies_protocol(self):
        assert isinstance(LogSmsProvider(), SmsProvider)

    async def test_code_hidden_by_default(self, mocker):
        log = mocker.patch("infrastructure.sms.log_sms.log")
        assert await LogSmsProvider().send_otp("01712345678", "123456", 10)
        event, = log.info.call_args[0]
        assert event == "sms_otp_dispatched"
        assert "otp_code" not in log.info.call_args.kwargs

    async def test_phone_number_masked(self, mocker):
        log = mocker.patch("infrastructure.sms.log_sms.log")
        await LogSmsProvider(include_code=True).send_otp("01712345678", "123456", 10)
        assert log.info.call_args.kwargs["phone"] == "********678"
        assert "01712345678" not in str(log.info.call_args)

    @pytest.mark.parametrize("phone, masked", [("+8801712345678", "***********678"), ("12", "**")])
    def test_mask_phone(self, phone, masked):
        assert mask_phone(phone) == masked

    async def test_code_logged_when_enabled(self, mocker):
        log = mocker.patch("infrastructure.sms.log_sms.log")
        await LogSmsProvider(include_code=True).send_otp("01712345678", "123456", 10)
        assert log.info.call_args.kwargs["otp_code"] == "123456"
