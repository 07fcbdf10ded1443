"""Duplicate detection for imported workouts. A duplicate is an outcome, not an error."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.workout import WorkoutSource
from app.schemas.ingestion import NormalizedWorkout
from app.services.workout_repository import find_first_workout

logger = logging.getLogger(__name__)

# Sources identified by a provider activity id
EXTERNAL_ID_SOURCES = {WorkoutSource.STRAVA.value, WorkoutSource.GARMIN.value}
# Sources identified by (start time, distance)
FILE_SOURCES = {WorkoutSource.GPX_FILE.value, WorkoutSource.FIT_FILE.value}


async def is_duplicate(session: AsyncSession, candidate: NormalizedWorkout, user_id: int, source: str) -> bool:
    """
    True if the user already has this workout. API sources match on external id; file sources on exact
    start time and distance. Manual and screenshot entries are never treated as duplicates.
    """
    if source in EXTERNAL_ID_SOURCES:
        if not candidate.external_id:
            return False
        existing = await find_first_workout(session, user_id, source=source, external_id=candidate.external_id)
    elif source in FILE_SOURCES:
        existing = await find_first_workout(
            session, user_id, source=source, date=candidate.date, distance_km=candidate.distance_km
        )
    else:
        return False
    if existing is not None:
        logger.info("Duplicate %s workout for user_id=%s (existing id=%s)", source, user_id, existing.id)
        return True
    return False
