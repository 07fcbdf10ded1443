"""
Map AI-extracted screenshot JSON (camelCase keys as returned by the vision prompt) to a canonical workout.
Values are taken as read from the screen; nothing is recomputed except seconds from clock strings.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any

from pydantic import ValidationError

from app.models.workout import WorkoutSource, WorkoutType
from app.schemas.ingestion import NormalizedSplit, NormalizedWorkout
from app.schemas.source_metadata import ScreenshotMetadata
from app.services.errors import ParseError
from app.services.workout_metrics import parse_clock, parse_pace

logger = logging.getLogger(__name__)

# Substring of the on-screen label -> workout type, first match wins
SCREEN_TYPE_KEYWORDS: list[tuple[str, str]] = [
    ("run", WorkoutType.RUN.value),
    ("jog", WorkoutType.RUN.value),
    ("walk", WorkoutType.WALK.value),
    ("hike", WorkoutType.HIKE.value),
    ("hiking", WorkoutType.HIKE.value),
    ("cycl", WorkoutType.CYCLING.value),
    ("bike", WorkoutType.CYCLING.value),
    ("ride", WorkoutType.CYCLING.value),
    ("swim", WorkoutType.SWIM.value),
]


def map_screen_type(label: str | None) -> str:
    text = (label or "").lower()
    for keyword, workout_type in SCREEN_TYPE_KEYWORDS:
        if keyword in text:
            return workout_type
    return WorkoutType.RUN.value


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any) -> int | None:
    n = _number(value)
    return round(n) if n is not None else None


def coerce_date(value: Any) -> datetime:
    """Timestamp from 'YYYY-MM-DD' or an ISO datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        raw = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as e:
            raise ParseError(f"Extracted workout date is not a valid date: {value!r}") from e
    else:
        raise ParseError("Extracted workout data has no date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _splits(raw: Any) -> list[NormalizedSplit]:
    if not isinstance(raw, list):
        return []
    items = [s for s in raw if isinstance(s, dict)]
    numbers = [_int(s.get("splitNumber")) for s in items]
    # Renumber when the screen numbering is missing or not unique
    if any(n is None or n < 1 for n in numbers) or len(set(numbers)) != len(numbers):
        numbers = list(range(1, len(items) + 1))
    return [
        NormalizedSplit(
            split_number=number,
            time=str(s["time"]) if s.get("time") is not None else None,
            pace=str(s["pace"]) if s.get("pace") is not None else None,
            heart_rate_bpm=_int(s.get("heartRateBpm")),
        )
        for number, s in zip(numbers, items)
    ]


def normalize_screenshot_extraction(
    data: dict[str, Any],
    user_id: int,
    ocr_confidence: float | None = None,
    file_name: str | None = None,
    file_size: int | None = None,
    mime_type: str | None = None,
) -> NormalizedWorkout:
    """Canonical workout from extracted JSON. Raises ParseError when `date` is missing or invalid."""
    if not isinstance(data, dict):
        raise ParseError("Extracted workout data is not an object")
    start = coerce_date(data.get("date"))

    workout_time = data.get("workoutTime")
    elapsed_time = data.get("elapsedTime")
    duration_sec = parse_clock(workout_time) or 0.0
    elapsed_sec = parse_clock(elapsed_time)
    distance_km = max(_number(data.get("distanceKm")) or 0.0, 0.0)
    avg_pace = data.get("avgPace")
    active_kcal = _int(data.get("activeKcal"))
    total_kcal = _int(data.get("totalKcal"))
    effort_level = _int(data.get("effortLevel"))
    if effort_level is not None and not 1 <= effort_level <= 10:
        effort_level = None
    label = data.get("workoutType")

    warnings: list[str] = []
    if ocr_confidence is not None and ocr_confidence < 50:
        warnings.append(f"Low OCR confidence ({ocr_confidence:.0f}%); check the extracted values.")

    effort_description = data.get("effortDescription")
    try:
        return NormalizedWorkout(
            user_id=user_id,
            date=start,
            type=map_screen_type(label),
            source=WorkoutSource.SCREENSHOT.value,
            name=str(label) if label else None,
            distance_km=distance_km,
            duration_sec=duration_sec,
            elapsed_sec=elapsed_sec,
            pace_sec_per_km=parse_pace(avg_pace) or 0.0,
            workout_time=str(workout_time) if workout_time else None,
            elapsed_time=str(elapsed_time) if elapsed_time else None,
            avg_pace=str(avg_pace) if avg_pace else None,
            elevation_gain_m=max(_number(data.get("elevationGainM")) or 0.0, 0.0),
            calories=total_kcal if total_kcal is not None else (active_kcal or 0),
            active_kcal=active_kcal,
            total_kcal=total_kcal,
            heart_rate=_int(data.get("avgHeartRateBpm")),
            effort_level=effort_level,
            effort_description=str(effort_description) if effort_description else None,
            source_metadata=ScreenshotMetadata(
                ocr_confidence=ocr_confidence,
                original_file_name=file_name,
                file_size=file_size,
                mime_type=mime_type,
                workout_label=str(label) if label else None,
            ),
            splits=_splits(data.get("splits")),
            stats={"ocr_confidence": ocr_confidence},
            warnings=warnings,
        )
    except ValidationError as e:
        raise ParseError(f"Extracted workout data is invalid ({e.error_count()} field errors)") from e
