"""
Strava API client: OAuth code exchange and refresh, paginated athlete activities.
All activity requests go through the in-process rate tracker.
"""
import logging
import time
from typing import Any

import httpx

from app.config import settings
from app.services.errors import ExternalServiceError
from app.services.http_client import get_http_client

logger = logging.getLogger(__name__)

STRAVA_AUTH_URL = "https://www.strava.com/oauth/authorize"
STRAVA_OAUTH_URL = "https://www.strava.com/oauth/token"
STRAVA_API_BASE = "https://www.strava.com/api/v3"

# In-memory rate limit (per process). Strava: 200/15min, 2000/day.
_usage_15min: list[float] = []
_usage_daily: list[float] = []
THRESHOLD_15MIN = 180
THRESHOLD_DAILY = 1900


def _trim_usage() -> None:
    now = time.time()
    global _usage_15min, _usage_daily
    _usage_15min = [t for t in _usage_15min if t > now - 15 * 60]
    _usage_daily = [t for t in _usage_daily if t > now - 86400]


def strava_can_make_request() -> bool:
    """True if we are under threshold and can call the activities API."""
    _trim_usage()
    return len(_usage_15min) < THRESHOLD_15MIN and len(_usage_daily) < THRESHOLD_DAILY


def strava_record_request() -> None:
    t = time.time()
    _usage_15min.append(t)
    _usage_daily.append(t)


def strava_usage() -> tuple[int, int]:
    """Return (current 15min count, current daily count)."""
    _trim_usage()
    return len(_usage_15min), len(_usage_daily)


def _raise_for_status(r: httpx.Response, what: str) -> None:
    if r.status_code >= 400:
        logger.warning("Strava %s -> %s body=%s", what, r.status_code, (r.text or "")[:500])
        raise ExternalServiceError(f"Strava {what} failed with HTTP {r.status_code}", status_code=r.status_code)


class StravaClient:
    """Strava OAuth token provider and activity feed over the shared httpx client."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    def _credentials(self) -> dict[str, str]:
        if not settings.strava_configured:
            raise ExternalServiceError("Strava credentials not configured")
        return {"client_id": settings.strava_client_id, "client_secret": settings.strava_client_secret}

    async def _post_token(self, data: dict[str, str], what: str) -> dict[str, Any]:
        try:
            r = await self.client.post(STRAVA_OAUTH_URL, data={**self._credentials(), **data})
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Strava {what} failed: {e}") from e
        _raise_for_status(r, what)
        return r.json()

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange authorization code for {access_token, refresh_token, expires_at, athlete}."""
        return await self._post_token({"code": code, "grant_type": "authorization_code"}, "code exchange")

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Refresh an expired access token. Token endpoint is not counted toward the activity limits."""
        return await self._post_token(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"}, "token refresh"
        )

    async def fetch_activities(
        self,
        access_token: str,
        page: int = 1,
        per_page: int = 30,
        after: int | None = None,
    ) -> list[dict[str, Any]]:
        """One page of the athlete's activities, newest first. `after` is unix seconds."""
        if not strava_can_make_request():
            raise ExternalServiceError("Strava rate limit threshold reached; try again later.", status_code=429)
        strava_record_request()
        params: dict[str, int] = {"page": page, "per_page": per_page}
        if after is not None:
            params["after"] = after
        try:
            r = await self.client.get(
                f"{STRAVA_API_BASE}/athlete/activities",
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Strava activity fetch failed: {e}") from e
        _raise_for_status(r, "activity fetch")
        data = r.json()
        return data if isinstance(data, list) else []
