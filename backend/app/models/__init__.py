from app.models.user import User
from app.models.workout import Workout, WorkoutSource, WorkoutSplit, WorkoutType
from app.models.integration import Integration
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "Workout",
    "WorkoutSource",
    "WorkoutSplit",
    "WorkoutType",
    "Integration",
    "AuditLog",
]
