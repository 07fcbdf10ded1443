"""
Workout and integration storage over an AsyncSession. Every query is scoped to one user.
SQLAlchemy failures surface as StorageError; callers own commit/rollback.
"""
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.integration import Integration
from app.models.workout import Workout, WorkoutSplit
from app.schemas.ingestion import NormalizedWorkout
from app.schemas.source_metadata import dump_source_metadata
from app.services.errors import StorageError

logger = logging.getLogger(__name__)


def workout_from_normalized(data: NormalizedWorkout) -> Workout:
    """ORM row (with splits) from normalizer output."""
    return Workout(
        user_id=data.user_id,
        date=data.date,
        type=data.type,
        name=data.name,
        distance_km=data.distance_km,
        duration_sec=data.duration_sec,
        elapsed_sec=data.elapsed_sec,
        pace_sec_per_km=data.pace_sec_per_km,
        workout_time=data.workout_time,
        elapsed_time=data.elapsed_time,
        avg_pace=data.avg_pace,
        elevation_gain_m=data.elevation_gain_m,
        calories=data.calories,
        active_kcal=data.active_kcal,
        total_kcal=data.total_kcal,
        heart_rate=data.heart_rate,
        effort_level=data.effort_level,
        effort_description=data.effort_description,
        source=data.source,
        source_metadata=dump_source_metadata(data.source_metadata),
        external_id=data.external_id,
        splits=[
            WorkoutSplit(
                split_number=s.split_number,
                time=s.time,
                pace=s.pace,
                heart_rate_bpm=s.heart_rate_bpm,
            )
            for s in sorted(data.splits, key=lambda s: s.split_number)
        ],
    )


def workout_to_dict(row: Workout) -> dict:
    return {
        "id": row.id,
        "date": row.date.isoformat() if row.date else None,
        "type": row.type,
        "name": row.name,
        "distance_km": row.distance_km,
        "duration_sec": row.duration_sec,
        "elapsed_sec": row.elapsed_sec,
        "pace_sec_per_km": row.pace_sec_per_km,
        "workout_time": row.workout_time,
        "elapsed_time": row.elapsed_time,
        "avg_pace": row.avg_pace,
        "elevation_gain_m": row.elevation_gain_m,
        "calories": row.calories,
        "active_kcal": row.active_kcal,
        "total_kcal": row.total_kcal,
        "heart_rate": row.heart_rate,
        "effort_level": row.effort_level,
        "effort_description": row.effort_description,
        "source": row.source,
        "source_metadata": row.source_metadata,
        "notes": row.notes,
        "splits": [
            {
                "split_number": s.split_number,
                "time": s.time,
                "pace": s.pace,
                "heart_rate_bpm": s.heart_rate_bpm,
            }
            for s in sorted(row.splits, key=lambda s: s.split_number)
        ],
    }


async def create_workout(session: AsyncSession, workout: Workout) -> Workout:
    try:
        session.add(workout)
        await session.flush()
    except SQLAlchemyError as e:
        logger.exception("create_workout failed for user_id=%s", workout.user_id)
        raise StorageError(f"Could not save workout: {e.__class__.__name__}") from e
    return workout


async def find_first_workout(session: AsyncSession, user_id: int, **filters: Any) -> Workout | None:
    """First workout of the user matching all column == value filters."""
    q = select(Workout).where(Workout.user_id == user_id)
    for column, value in filters.items():
        q = q.where(getattr(Workout, column) == value)
    try:
        r = await session.execute(q.limit(1))
    except SQLAlchemyError as e:
        raise StorageError(f"Workout lookup failed: {e.__class__.__name__}") from e
    return r.scalars().first()


async def get_workout(session: AsyncSession, user_id: int, workout_id: int) -> Workout | None:
    return await find_first_workout(session, user_id, id=workout_id)


async def list_workouts(
    session: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    source: str | None = None,
) -> tuple[list[Workout], int]:
    """(page of workouts newest first, total count)."""
    base = select(Workout).where(Workout.user_id == user_id)
    if source:
        base = base.where(Workout.source == source)
    try:
        total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar() or 0
        r = await session.execute(
            base.order_by(Workout.date.desc(), Workout.id.desc()).offset(offset).limit(limit)
        )
    except SQLAlchemyError as e:
        raise StorageError(f"Workout listing failed: {e.__class__.__name__}") from e
    return list(r.scalars().all()), total


async def update_workout(session: AsyncSession, workout: Workout, fields: dict[str, Any]) -> Workout:
    """Apply non-null fields. `source`, `source_metadata` and ownership are never changed here."""
    for key, value in fields.items():
        if key in ("id", "user_id", "source", "source_metadata", "external_id"):
            continue
        if value is not None:
            setattr(workout, key, value)
    try:
        await session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Could not update workout: {e.__class__.__name__}") from e
    return workout


async def delete_workout(session: AsyncSession, workout: Workout) -> None:
    """Delete the workout; its splits go with it."""
    try:
        await session.delete(workout)
        await session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Could not delete workout: {e.__class__.__name__}") from e


async def get_integration(session: AsyncSession, user_id: int, integration_type: str) -> Integration | None:
    r = await session.execute(
        select(Integration).where(Integration.user_id == user_id, Integration.type == integration_type)
    )
    return r.scalar_one_or_none()


async def upsert_integration(
    session: AsyncSession,
    user_id: int,
    integration_type: str,
    create: dict[str, Any],
    update: dict[str, Any],
) -> Integration:
    """Insert the (user, type) integration or update the existing one."""
    row = await get_integration(session, user_id, integration_type)
    if row is None:
        row = Integration(user_id=user_id, type=integration_type, **create)
        session.add(row)
    else:
        for key, value in update.items():
            setattr(row, key, value)
    try:
        await session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Could not save integration: {e.__class__.__name__}") from e
    return row
