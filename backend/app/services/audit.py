"""Audit trail for workout and integration changes. Rows are flushed with the caller's transaction."""

import enum

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog
from app.models.workout import Workout


class AuditAction(str, enum.Enum):
    CREATE = "create"
    IMPORT = "import"
    UPDATE = "update"
    DELETE = "delete"
    LINK = "link"
    UNLINK = "unlink"


async def log_action(
    session: AsyncSession,
    user_id: int | None,
    action: AuditAction,
    resource: str,
    resource_id: int | str | None = None,
    source: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action.value,
        resource=resource,
        resource_id=None if resource_id is None else str(resource_id),
        source=source,
        details=details,
    )
    session.add(entry)
    await session.flush()
    return entry


async def log_workout_change(
    session: AsyncSession,
    action: AuditAction,
    workout: Workout,
    details: dict | None = None,
) -> AuditLog:
    """Audit entry keyed by the workout's owner, id and ingestion source."""
    return await log_action(session, workout.user_id, action, "workout", workout.id, workout.source, details)
