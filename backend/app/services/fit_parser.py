"""Parse FIT files (sessions, records, laps) and normalize the first session into a canonical workout."""

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fitparse import FitFile

from app.models.workout import WorkoutSource, WorkoutType
from app.schemas.ingestion import NormalizedSplit, NormalizedWorkout
from app.schemas.source_metadata import FitMetadata
from app.services.errors import ParseError
from app.services.workout_metrics import (
    accumulate_elevation_gain,
    average_heart_rate,
    estimate_calories,
    format_duration,
    format_pace_min_per_km,
    format_split_time,
    pace_seconds_per_km,
)

logger = logging.getLogger(__name__)

FIT_SPORT_MAP: dict[str, str] = {
    "running": WorkoutType.RUN.value,
    "cycling": WorkoutType.CYCLING.value,
    "walking": WorkoutType.WALK.value,
    "hiking": WorkoutType.HIKE.value,
    "swimming": WorkoutType.SWIM.value,
    "generic": WorkoutType.RUN.value,
    "training": WorkoutType.RUN.value,
    "transition": WorkoutType.RUN.value,
}

MISSING_START_WARNING = "FIT file has no start time; using the current time."


@dataclass
class FitActivity:
    """Decoded FIT messages as plain dicts (field name -> value)."""

    sessions: list[dict[str, Any]] = field(default_factory=list)
    records: list[dict[str, Any]] = field(default_factory=list)
    laps: list[dict[str, Any]] = field(default_factory=list)


def _get_value(msg: dict[str, Any], *names: str):
    """First non-null value among field names, or None."""
    for name in names:
        value = msg.get(name)
        if value is not None:
            return value
    return None


def _as_utc(value: Any) -> datetime | None:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def map_fit_sport(sport: Any) -> str:
    return FIT_SPORT_MAP.get(str(sport or "").strip().lower(), WorkoutType.RUN.value)


def parse_fit_bytes(content: bytes) -> FitActivity:
    """Decode FIT bytes into session/record/lap dicts. Raises ParseError on unreadable data."""
    try:
        fitfile = FitFile(io.BytesIO(content))
        fitfile.parse()
    except Exception as e:
        logger.warning("FIT parse failed: %s", e)
        raise ParseError(f"Failed to parse FIT file: {e}") from e
    return FitActivity(
        sessions=[msg.get_values() for msg in fitfile.get_messages("session")],
        records=[msg.get_values() for msg in fitfile.get_messages("record")],
        laps=[msg.get_values() for msg in fitfile.get_messages("lap")],
    )


def _lap_splits(laps: list[dict[str, Any]]) -> list[NormalizedSplit]:
    splits: list[NormalizedSplit] = []
    for number, lap in enumerate(laps, start=1):
        lap_time = _get_value(lap, "total_timer_time", "total_elapsed_time")
        lap_distance = _get_value(lap, "total_distance")
        lap_hr = _get_value(lap, "avg_heart_rate")
        pace = None
        if lap_time is not None and lap_distance:
            pace = format_pace_min_per_km(pace_seconds_per_km(float(lap_time), float(lap_distance) / 1000) / 60)
        splits.append(
            NormalizedSplit(
                split_number=number,
                time=format_split_time(float(lap_time)) if lap_time is not None else None,
                pace=pace,
                heart_rate_bpm=int(lap_hr) if lap_hr is not None else None,
            )
        )
    return splits


def normalize_fit_activity(activity: FitActivity, user_id: int, file_name: str | None = None) -> NormalizedWorkout:
    """
    Canonical workout from the first session. Session totals win; record streams are the fallback for
    elevation gain and heart rate. Raises ParseError if there is no session.
    """
    if not activity.sessions:
        raise ParseError("No workout sessions found in FIT file")
    session = activity.sessions[0]
    records = activity.records

    distance_m = _get_value(session, "total_distance") or 0
    distance_km = float(distance_m) / 1000
    duration_sec = float(_get_value(session, "total_timer_time", "total_elapsed_time") or 0)
    elapsed = _get_value(session, "total_elapsed_time")

    elevation_gain = _get_value(session, "total_ascent")
    if not elevation_gain:
        elevation_gain = accumulate_elevation_gain(
            _get_value(r, "enhanced_altitude", "altitude") for r in records
        )
    avg_hr = _get_value(session, "avg_heart_rate")
    if not avg_hr:
        avg_hr = average_heart_rate(_get_value(r, "heart_rate") for r in records)

    calories = _get_value(session, "total_calories")
    if not calories:
        calories = estimate_calories(distance_km, duration_sec)

    warnings: list[str] = []
    start_time = _as_utc(_get_value(session, "start_time", "timestamp"))
    if start_time is None and records:
        start_time = _as_utc(_get_value(records[0], "timestamp"))
    synthesized = start_time is None
    if synthesized:
        start_time = datetime.now(timezone.utc)
        warnings.append(MISSING_START_WARNING)

    sport = _get_value(session, "sport")
    metadata = FitMetadata(
        sport=str(sport) if sport is not None else None,
        sub_sport=str(session["sub_sport"]) if session.get("sub_sport") is not None else None,
        total_records=len(records),
        total_laps=len(activity.laps),
        avg_speed=_get_value(session, "enhanced_avg_speed", "avg_speed"),
        max_speed=_get_value(session, "enhanced_max_speed", "max_speed"),
        avg_cadence=_get_value(session, "avg_cadence"),
        max_cadence=_get_value(session, "max_cadence"),
        avg_power=_get_value(session, "avg_power"),
        max_power=_get_value(session, "max_power"),
        original_file_name=file_name,
        start_time_synthesized=synthesized,
    )
    return NormalizedWorkout(
        user_id=user_id,
        date=start_time,
        type=map_fit_sport(sport),
        source=WorkoutSource.FIT_FILE.value,
        distance_km=distance_km,
        duration_sec=duration_sec,
        elapsed_sec=float(elapsed) if elapsed is not None else None,
        pace_sec_per_km=pace_seconds_per_km(duration_sec, distance_km),
        workout_time=format_duration(duration_sec),
        elapsed_time=format_duration(float(elapsed)) if elapsed is not None else None,
        elevation_gain_m=float(elevation_gain or 0),
        calories=int(calories),
        total_kcal=int(calories),
        heart_rate=int(avg_hr) if avg_hr else None,
        source_metadata=metadata,
        splits=_lap_splits(activity.laps),
        stats={
            "distance_km": distance_km,
            "duration_sec": duration_sec,
            "sport": metadata.sport,
            "total_records": len(records),
        },
        warnings=warnings,
    )


def parse_fit_workout(content: bytes, user_id: int, file_name: str | None = None) -> NormalizedWorkout:
    """Decode and normalize in one step (CPU-bound; call from a threadpool)."""
    return normalize_fit_activity(parse_fit_bytes(content), user_id, file_name)
