"""
Strava sync: link/unlink the integration, keep the access token fresh and import athlete activities as
workouts. Activities are fetched page by page; each one is converted, checked for duplicates and stored
on its own so a single bad activity does not stop the import.
"""
import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.metrics import record_import
from app.models.integration import STRAVA, Integration
from app.models.workout import WorkoutSource, WorkoutType
from app.schemas.ingestion import BatchImportResponse, ImportDetail, ImportStatus, NormalizedWorkout
from app.schemas.source_metadata import StravaMetadata
from app.services.crypto import decrypt_value, encrypt_value
from app.services.duplicates import is_duplicate
from app.services.errors import ExternalServiceError, IngestionError
from app.services.providers import ActivityFeed, TokenProvider
from app.services.strava_client import STRAVA_AUTH_URL, StravaClient
from app.services.workout_metrics import effort_from_heart_rate, format_duration, format_pace_min_per_km
from app.services.ingestion import persist_workout
from app.services.workout_repository import get_integration, upsert_integration

logger = logging.getLogger(__name__)

STRAVA_SCOPE = "activity:read_all"

STRAVA_TYPE_MAP: dict[str, str] = {
    "run": WorkoutType.RUN.value,
    "trailrun": WorkoutType.RUN.value,
    "virtualrun": WorkoutType.RUN.value,
    "ride": WorkoutType.CYCLING.value,
    "virtualride": WorkoutType.CYCLING.value,
    "ebikeride": WorkoutType.CYCLING.value,
    "mountainbikeride": WorkoutType.CYCLING.value,
    "gravelride": WorkoutType.CYCLING.value,
    "walk": WorkoutType.WALK.value,
    "hike": WorkoutType.HIKE.value,
    "swim": WorkoutType.SWIM.value,
}


def build_authorize_url(user_id: int) -> str:
    """Strava consent URL; `state` carries the user id back to the callback."""
    params = {
        "client_id": settings.strava_client_id,
        "redirect_uri": settings.strava_redirect_uri,
        "response_type": "code",
        "scope": STRAVA_SCOPE,
        "state": str(user_id),
    }
    return f"{STRAVA_AUTH_URL}?{urlencode(params)}"


def map_strava_type(activity: dict[str, Any]) -> str:
    raw = activity.get("sport_type") or activity.get("type") or ""
    return STRAVA_TYPE_MAP.get(str(raw).strip().lower(), WorkoutType.RUN.value)


def _parse_start_date(activity: dict[str, Any]) -> datetime | None:
    raw = activity.get("start_date_local") or activity.get("start_date")
    if not raw or not isinstance(raw, str):
        return None
    try:
        if "T" in raw:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        else:
            value = datetime.fromisoformat(raw + "T00:00:00+00:00")
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def strava_pace(average_speed: float | None) -> str:
    """Pace label from m/s; 0'00"/km when not moving."""
    speed = float(average_speed or 0)
    minutes_per_km = (1000 / 60) / speed if speed > 0 else 0
    return format_pace_min_per_km(minutes_per_km)


def convert_strava_activity(activity: dict[str, Any], user_id: int) -> NormalizedWorkout:
    """Canonical workout from one Strava activity summary. Strava reports no calories, so they are 0."""
    activity_id = activity.get("id")
    if activity_id is None:
        raise IngestionError("Strava activity has no id")
    start = _parse_start_date(activity)
    if start is None:
        raise IngestionError(f"Strava activity {activity_id} has no start date")

    distance_km = float(activity.get("distance") or 0) / 1000
    moving = float(activity.get("moving_time") or 0)
    elapsed = float(activity.get("elapsed_time") or 0)
    avg_hr = activity.get("average_heartrate")
    effort_level, effort_description = effort_from_heart_rate(avg_hr)

    return NormalizedWorkout(
        user_id=user_id,
        date=start,
        type=map_strava_type(activity),
        source=WorkoutSource.STRAVA.value,
        name=activity.get("name"),
        distance_km=distance_km,
        duration_sec=moving,
        elapsed_sec=elapsed,
        pace_sec_per_km=moving / distance_km if distance_km > 0 else 0.0,
        workout_time=format_duration(moving),
        elapsed_time=format_duration(elapsed),
        avg_pace=strava_pace(activity.get("average_speed")),
        elevation_gain_m=float(round(activity.get("total_elevation_gain") or 0)),
        calories=0,
        active_kcal=0,
        total_kcal=0,
        heart_rate=round(avg_hr) if avg_hr else None,
        effort_level=effort_level,
        effort_description=effort_description,
        external_id=str(activity_id),
        source_metadata=StravaMetadata(
            provider_activity_id=str(activity_id),
            name=activity.get("name"),
            sport_type=activity.get("sport_type") or activity.get("type"),
            avg_speed=activity.get("average_speed"),
            max_speed=activity.get("max_speed"),
            max_heartrate=activity.get("max_heartrate"),
        ),
    )


def _token_fields(data: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {"access_token": data.get("access_token"), "is_active": True}
    if data.get("refresh_token"):
        fields["encrypted_refresh_token"] = encrypt_value(data["refresh_token"])
    if data.get("expires_at"):
        fields["expires_at"] = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
    return fields


async def link_strava(session: AsyncSession, user_id: int, token_response: dict[str, Any]) -> Integration:
    """Store (or replace) the user's Strava tokens and athlete summary from an OAuth token response."""
    if not token_response.get("access_token"):
        raise ExternalServiceError("Strava token response has no access token")
    athlete = token_response.get("athlete") or {}
    fields = _token_fields(token_response)
    fields["athlete"] = {
        "id": athlete.get("id"),
        "username": athlete.get("username"),
        "firstname": athlete.get("firstname"),
        "lastname": athlete.get("lastname"),
    }
    row = await upsert_integration(session, user_id, STRAVA, create=fields, update=fields)
    logger.info("Strava linked for user_id=%s athlete_id=%s", user_id, athlete.get("id"))
    return row


async def ensure_access_token(
    session: AsyncSession,
    integration: Integration,
    client: TokenProvider | None = None,
) -> str:
    """Access token valid now; refreshes and persists the new token pair first when it has expired."""
    now = datetime.now(timezone.utc)
    expires_at = integration.expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if integration.access_token and expires_at is not None and expires_at > now:
        return integration.access_token

    refresh_token = decrypt_value(integration.encrypted_refresh_token)
    if not refresh_token:
        raise ExternalServiceError("Strava refresh token missing or unreadable; reconnect Strava")
    client = client or StravaClient()
    try:
        data = await client.refresh_access_token(refresh_token)
    except ExternalServiceError as e:
        if e.status_code == 401:
            integration.is_active = False
            await session.flush()
            logger.info("Strava refresh rejected (401); deactivated for user_id=%s", integration.user_id)
        raise
    if not data.get("access_token"):
        raise ExternalServiceError("Strava token refresh returned no access token")
    for key, value in _token_fields(data).items():
        setattr(integration, key, value)
    await session.flush()
    logger.info("Strava token refreshed for user_id=%s", integration.user_id)
    return integration.access_token


async def _import_activity(session: AsyncSession, activity: dict[str, Any], user_id: int) -> ImportDetail:
    candidate = convert_strava_activity(activity, user_id)
    label = candidate.name or candidate.external_id
    if await is_duplicate(session, candidate, user_id, WorkoutSource.STRAVA.value):
        return ImportDetail(file_name=label, status=ImportStatus.SKIPPED_DUPLICATE, reason="Already imported")
    workout = await persist_workout(session, candidate, user_id)
    return ImportDetail(file_name=label, status=ImportStatus.PERSISTED, workout=workout)


async def import_strava_activities(
    session: AsyncSession,
    user_id: int,
    after: datetime | None = None,
    limit: int | None = None,
    client: ActivityFeed | None = None,
) -> BatchImportResponse:
    """
    Import up to `limit` activities (newest first). The token is checked before every page; paging stops
    at the limit or at the first empty page. Raises ExternalServiceError when Strava is not linked or a
    page cannot be fetched; per-activity failures are counted instead.
    """
    limit = limit or settings.strava_sync_default_limit
    per_page = settings.strava_sync_page_size
    client = client or StravaClient()
    after_epoch = int(after.timestamp()) if after else None
    result = BatchImportResponse()
    page = 1

    while result.imported + result.skipped + result.errors < limit:
        # Re-read each page: a rolled back item expires every loaded row
        integration = await get_integration(session, user_id, STRAVA)
        if integration is None or not integration.is_active:
            raise ExternalServiceError("Strava is not connected")
        access_token = await ensure_access_token(session, integration, client)
        await session.commit()

        activities = await client.fetch_activities(access_token, page=page, per_page=per_page, after=after_epoch)
        if not activities:
            break
        for activity in activities:
            if result.imported + result.skipped + result.errors >= limit:
                break
            try:
                detail = await _import_activity(session, activity, user_id)
            except (IngestionError, ValueError) as e:
                # ValueError: pydantic rejected a malformed activity field
                await session.rollback()
                logger.warning("Strava activity %s failed for user_id=%s: %s", activity.get("id"), user_id, e)
                detail = ImportDetail(file_name=str(activity.get("id")), status=ImportStatus.FAILED, error=str(e))
            except Exception as e:
                await session.rollback()
                logger.exception("Strava activity %s failed unexpectedly for user_id=%s", activity.get("id"), user_id)
                detail = ImportDetail(
                    file_name=str(activity.get("id")), status=ImportStatus.FAILED, error=str(e) or e.__class__.__name__
                )
            result.details.append(detail)
            record_import(WorkoutSource.STRAVA.value, detail.status.value)
            if detail.status == ImportStatus.PERSISTED:
                result.imported += 1
            elif detail.status == ImportStatus.SKIPPED_DUPLICATE:
                result.skipped += 1
            else:
                result.errors += 1
        page += 1

    result.message = f"Imported {result.imported} activities, skipped {result.skipped}, failed {result.errors}"
    logger.info("Strava import user_id=%s: %s", user_id, result.message)
    return result


async def disconnect_strava(session: AsyncSession, user_id: int) -> bool:
    """Remove the Strava integration. Imported workouts are kept. True if one existed."""
    r = await session.execute(delete(Integration).where(Integration.user_id == user_id, Integration.type == STRAVA))
    await session.flush()
    return (r.rowcount or 0) > 0
