"""Workouts API: paginated list, manual entry with splits, update (PATCH or PUT, both partial), delete."""

import logging
from datetime import timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, http_error
from app.db.session import get_db
from app.models.user import User
from app.models.workout import WorkoutSource
from app.schemas.ingestion import NormalizedSplit, NormalizedWorkout
from app.schemas.source_metadata import ManualMetadata
from app.schemas.workout import WorkoutCreate, WorkoutPage, WorkoutResponse, WorkoutUpdate
from app.services import workout_repository as repo
from app.services.audit import AuditAction, log_workout_change
from app.services.errors import StorageError
from app.services.workout_metrics import format_duration, pace_seconds_per_km, parse_clock

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workouts", tags=["workouts"])


def _manual_workout(body: WorkoutCreate, user_id: int) -> NormalizedWorkout:
    """Canonical workout from a manual entry. Duration comes from duration_sec or the HH:MM:SS label."""
    start = body.date if body.date.tzinfo else body.date.replace(tzinfo=timezone.utc)
    duration = body.duration_sec if body.duration_sec is not None else (parse_clock(body.workout_time) or 0.0)
    calories = body.calories if body.calories is not None else (body.total_kcal or body.active_kcal or 0)
    return NormalizedWorkout(
        user_id=user_id,
        date=start,
        type=body.type.value,
        source=WorkoutSource.MANUAL.value,
        name=body.name,
        distance_km=body.distance_km,
        duration_sec=duration,
        pace_sec_per_km=pace_seconds_per_km(duration, body.distance_km),
        workout_time=body.workout_time or format_duration(duration),
        avg_pace=body.avg_pace,
        elevation_gain_m=body.elevation_gain_m,
        calories=calories,
        active_kcal=body.active_kcal,
        total_kcal=body.total_kcal,
        heart_rate=body.heart_rate,
        effort_level=body.effort_level,
        effort_description=body.effort_description,
        source_metadata=ManualMetadata(entered_via="api"),
        splits=[NormalizedSplit(**s.model_dump()) for s in body.splits or []],
    )


@router.get(
    "",
    response_model=WorkoutPage,
    summary="List workouts",
    responses={401: {"description": "Not authenticated"}},
)
async def list_workouts(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    source: WorkoutSource | None = None,
) -> WorkoutPage:
    """Workouts of the current user, newest first, with splits."""
    try:
        rows, total = await repo.list_workouts(
            session, user.id, limit=limit, offset=offset, source=source.value if source else None
        )
    except StorageError as e:
        raise http_error(e) from e
    return WorkoutPage(
        items=[WorkoutResponse(**repo.workout_to_dict(r)) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_more=(offset + limit) < total,
    )


@router.get(
    "/{workout_id}",
    response_model=WorkoutResponse,
    summary="Get workout",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Workout not found"}},
)
async def get_workout(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    workout_id: int,
) -> WorkoutResponse:
    w = await repo.get_workout(session, user.id, workout_id)
    if not w:
        raise HTTPException(status_code=404, detail="Workout not found.")
    return WorkoutResponse(**repo.workout_to_dict(w))


@router.post(
    "",
    response_model=WorkoutResponse,
    status_code=201,
    summary="Create workout",
    responses={401: {"description": "Not authenticated"}},
)
async def create_workout(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    body: WorkoutCreate,
) -> WorkoutResponse:
    """Create a manual workout entry (optionally with splits)."""
    uid = user.id
    try:
        w = await repo.create_workout(session, repo.workout_from_normalized(_manual_workout(body, uid)))
        if body.notes is not None:
            w.notes = body.notes
        await log_workout_change(session, AuditAction.CREATE, w)
        await session.commit()
    except StorageError as e:
        raise http_error(e) from e
    return WorkoutResponse(**repo.workout_to_dict(w))


@router.put(
    "/{workout_id}",
    response_model=WorkoutResponse,
    summary="Update workout (PUT)",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Workout not found"}},
)
@router.patch(
    "/{workout_id}",
    response_model=WorkoutResponse,
    summary="Update workout",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Workout not found"}},
)
async def update_workout(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    workout_id: int,
    body: WorkoutUpdate,
) -> WorkoutResponse:
    """Partial update. The workout's source and source metadata never change."""
    uid = user.id
    w = await repo.get_workout(session, uid, workout_id)
    if not w:
        raise HTTPException(status_code=404, detail="Workout not found.")
    fields = body.model_dump(exclude_unset=True)
    if fields.get("type") is not None:
        fields["type"] = fields["type"].value
    if fields.get("date") is not None and fields["date"].tzinfo is None:
        fields["date"] = fields["date"].replace(tzinfo=timezone.utc)
    try:
        await repo.update_workout(session, w, fields)
        if "duration_sec" in fields or "distance_km" in fields:
            w.pace_sec_per_km = pace_seconds_per_km(w.duration_sec, w.distance_km)
        await log_workout_change(session, AuditAction.UPDATE, w, details={"fields": sorted(fields)})
        await session.commit()
    except StorageError as e:
        raise http_error(e) from e
    return WorkoutResponse(**repo.workout_to_dict(w))


@router.delete(
    "/{workout_id}",
    status_code=204,
    summary="Delete workout",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Workout not found"}},
)
async def delete_workout(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    workout_id: int,
) -> None:
    """Delete a workout and its splits."""
    uid = user.id
    w = await repo.get_workout(session, uid, workout_id)
    if not w:
        raise HTTPException(status_code=404, detail="Workout not found.")
    await log_workout_change(session, AuditAction.DELETE, w)
    try:
        await repo.delete_workout(session, w)
        await session.commit()
    except StorageError as e:
        raise http_error(e) from e
