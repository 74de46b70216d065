"""Outbound HTTP for delivery providers (email gateway today, SMS gateway later)."""

from typing import Any, Optional

import httpx

from shared.logging import get_logger

log = get_logger(__name__)

DEFAULT_USER_AGENT = "bloodcare-api/1.0"


class HttpClient:
    """Async httpx client shared by the delivery providers.

    Transport failures are logged with the target host and re-raised; the
    provider decides whether a failed send is fatal.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.warning(
                "http_request_error",
                method=method,
                host=httpx.URL(url).host,
                error_type=type(e).__name__,
            )
            raise

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
