"""
Shared long-lived httpx.AsyncClient for third-party activity providers (Strava).
Opened in the app lifespan; created lazily on first use outside it (scripts, tests).
"""
from __future__ import annotations

import httpx

from app.config import settings

USER_AGENT = "fittrack-backend/0.1"

_http_client: httpx.AsyncClient | None = None


def init_http_client(timeout: float | None = None) -> httpx.AsyncClient:
    """Create and store the shared client. Idempotent."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
            headers={"User-Agent": USER_AGENT},
        )
    return _http_client


def get_http_client() -> httpx.AsyncClient:
    """Return the shared async HTTP client."""
    return init_http_client()


async def close_http_client() -> None:
    """Close the shared client. Call from app lifespan shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
