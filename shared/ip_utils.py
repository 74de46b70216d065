"""Client IP resolution behind reverse proxies."""

from __future__ import annotations

from fastapi import Request

# First header present wins; X-Forwarded-For may hold a chain, the client is first
_PROXY_HEADERS = (
    "CF-Connecting-IP",
    "True-Client-IP",
    "X-Forwarded-For",
    "X-Real-IP",
)


def get_client_ip(request: Request) -> str:
    """Best-effort client address: proxy headers, then the socket peer, else ""."""
    for header in _PROXY_HEADERS:
        value = request.headers.get(header)
        if value:
            ip = value.split(",")[0].strip()
            if ip:
                return ip
    return request.client.host if request.client else ""
