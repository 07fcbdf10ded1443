"""Integrations: list linked providers; Strava OAuth link, activity import and disconnect."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, http_error
from app.config import settings
from app.db.session import get_db
from app.models.integration import STRAVA, Integration
from app.models.user import User
from app.schemas.ingestion import BatchImportResponse
from app.services.audit import AuditAction, log_action
from app.services.errors import ExternalServiceError, IngestionError
from app.services.strava_client import StravaClient, strava_usage
from app.services.strava_sync import build_authorize_url, disconnect_strava, import_strava_activities, link_strava
from app.services.workout_repository import get_integration

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/integrations", tags=["integrations"])


class StravaSyncBody(BaseModel):
    after: datetime | None = None
    limit: int | None = Field(None, ge=1, le=500)


def get_strava_client() -> StravaClient:
    return StravaClient()


def _frontend_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.frontend_url}/integrations?strava={status}", status_code=302)


@router.get("", summary="List integrations of the current user")
async def list_integrations(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    r = await session.execute(select(Integration).where(Integration.user_id == user.id))
    items = [
        {
            "type": row.type,
            "is_active": row.is_active,
            "athlete": row.athlete,
            "expires_at": row.expires_at.isoformat() if row.expires_at else None,
            "connected_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in r.scalars().all()
    ]
    used_15min, used_daily = strava_usage()
    return {
        "integrations": items,
        "strava_configured": settings.strava_configured,
        "strava_usage": {"15min": used_15min, "daily": used_daily},
    }


@router.get("/strava/auth", summary="Strava OAuth authorization URL")
async def strava_auth_url(user: Annotated[User, Depends(get_current_user)]) -> dict:
    """URL to send the user to Strava's consent page. `state` carries the user id to the callback."""
    if not settings.strava_configured:
        raise HTTPException(status_code=503, detail="Strava app not configured.")
    return {"auth_url": build_authorize_url(user.id)}


@router.get("/strava/callback", summary="Strava OAuth callback")
async def strava_callback(
    session: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[StravaClient, Depends(get_strava_client)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """Exchange the code, store the integration and redirect to the frontend with strava=connected|error."""
    if error:
        logger.info("Strava authorization denied: %s", error)
        return _frontend_redirect("error")
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code missing")
    try:
        uid = int(state or "")
    except ValueError:
        raise HTTPException(status_code=400, detail="User ID missing")
    r = await session.execute(select(User.id).where(User.id == uid))
    if r.scalar_one_or_none() is None:
        raise HTTPException(status_code=400, detail="User not found.")
    try:
        data = await client.exchange_code(code)
        row = await link_strava(session, uid, data)
        await log_action(session, uid, AuditAction.LINK, "integration", row.id, source=STRAVA)
        await session.commit()
    except IngestionError as e:
        await session.rollback()
        logger.warning("Strava callback failed for user_id=%s: %s", uid, e.message)
        return _frontend_redirect("error")
    return _frontend_redirect("connected")


@router.post("/strava/sync", response_model=BatchImportResponse, summary="Import activities from Strava")
async def strava_sync(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    client: Annotated[StravaClient, Depends(get_strava_client)],
    body: StravaSyncBody | None = None,
) -> BatchImportResponse:
    uid = user.id
    body = body or StravaSyncBody()
    integration = await get_integration(session, uid, STRAVA)
    if integration is None or not integration.is_active:
        raise HTTPException(status_code=400, detail="Strava is not connected")
    try:
        return await import_strava_activities(session, uid, after=body.after, limit=body.limit, client=client)
    except ExternalServiceError as e:
        if e.status_code == 401:
            # Keep the deactivated integration
            await session.commit()
        if e.status_code == 429:
            raise HTTPException(status_code=429, detail=e.message) from e
        raise http_error(e) from e
    except IngestionError as e:
        raise http_error(e) from e


@router.delete("/strava", summary="Disconnect Strava")
async def strava_disconnect(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    """Remove the Strava link. Workouts already imported from Strava are kept."""
    uid = user.id
    removed = await disconnect_strava(session, uid)
    if removed:
        await log_action(session, uid, AuditAction.UNLINK, "integration", source=STRAVA)
    await session.commit()
    return {"success": True, "message": "Strava integration disconnected"}
