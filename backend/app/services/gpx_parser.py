"""Parse GPX track files into a canonical workout: distance, elevation gain and heart rate from track points."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

import gpxpy
import gpxpy.gpx

from app.models.workout import WorkoutSource, WorkoutType
from app.schemas.ingestion import NormalizedWorkout
from app.schemas.source_metadata import GpxMetadata
from app.services.errors import ParseError
from app.services.workout_metrics import (
    accumulate_distance,
    accumulate_elevation_gain,
    average_heart_rate,
    estimate_calories,
    format_duration,
    pace_seconds_per_km,
)

logger = logging.getLogger(__name__)

GPX_TYPE_MAP: dict[str, str] = {
    "running": WorkoutType.RUN.value,
    "run": WorkoutType.RUN.value,
    "cycling": WorkoutType.CYCLING.value,
    "bike": WorkoutType.CYCLING.value,
    "walking": WorkoutType.WALK.value,
    "walk": WorkoutType.WALK.value,
    "hiking": WorkoutType.HIKE.value,
    "hike": WorkoutType.HIKE.value,
    "swimming": WorkoutType.SWIM.value,
    "swim": WorkoutType.SWIM.value,
}

SYNTHESIZED_TIME_WARNING = "Track points have no timestamps; start time and duration are not real."


@dataclass
class TrackPoint:
    lat: float
    lon: float
    elevation: float | None = None
    time: datetime | None = None
    heart_rate: int | None = None


def map_gpx_type(track_type: str | None) -> str:
    """Workout type from the GPX <type> token; Run for anything unknown."""
    return GPX_TYPE_MAP.get((track_type or "").strip().lower(), WorkoutType.RUN.value)


def _local_name(tag) -> str:
    """Element tag without namespace URI or prefix."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1]


def _finite(value) -> float | None:
    """float(value), or None for missing, unreadable or non-finite values."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def extract_heart_rate(extensions: list) -> int | None:
    """
    Heart rate from a track point's extensions. Handles <TrackPointExtension><hr> both bare and in the
    Garmin gpxtpx namespace. Unreadable, non-finite or non-positive values are skipped.
    """
    for ext in extensions or []:
        candidates = [ext] if _local_name(ext.tag) == "TrackPointExtension" else list(ext.iter())
        for node in candidates:
            if _local_name(node.tag) != "TrackPointExtension":
                continue
            for child in node:
                if _local_name(child.tag) == "hr" and child.text:
                    bpm = _finite(child.text.strip())
                    if bpm is not None and bpm > 0:
                        return int(bpm)
    return None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _collect_points(track: gpxpy.gpx.GPXTrack) -> list[TrackPoint]:
    """Track points of all segments; points without finite coordinates are dropped."""
    points: list[TrackPoint] = []
    for segment in track.segments:
        for p in segment.points:
            lat, lon = _finite(p.latitude), _finite(p.longitude)
            if lat is None or lon is None:
                continue
            try:
                heart_rate = extract_heart_rate(p.extensions)
            except (ValueError, TypeError, AttributeError, OverflowError):
                # Per-point HR extraction is best-effort
                heart_rate = None
            points.append(
                TrackPoint(
                    lat=lat,
                    lon=lon,
                    elevation=_finite(p.elevation),
                    time=_as_utc(p.time),
                    heart_rate=heart_rate,
                )
            )
    return points


def parse_gpx_workout(content: str | bytes, user_id: int, file_name: str | None = None) -> NormalizedWorkout:
    """
    Parse GPX content into a NormalizedWorkout. Uses the first track, all of its segments.
    Raises ParseError if the XML is invalid or there is no track, segment or point.
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Failed to parse GPX file: not UTF-8 text ({e})") from e
    try:
        gpx = gpxpy.parse(content)
    except Exception as e:
        raise ParseError(f"Failed to parse GPX file: {e}") from e

    if not gpx.tracks:
        raise ParseError("No track data found in GPX file")
    track = gpx.tracks[0]
    if not track.segments:
        raise ParseError("No track segments found in GPX file")
    points = _collect_points(track)
    if not points:
        raise ParseError("No track points found in GPX file")

    distance_km = accumulate_distance([(p.lat, p.lon) for p in points])
    elevation_gain = accumulate_elevation_gain(p.elevation for p in points)
    avg_hr = average_heart_rate(p.heart_rate for p in points)

    warnings: list[str] = []
    start_time = points[0].time
    end_time = points[-1].time
    synthesized = start_time is None or end_time is None
    if synthesized:
        now = datetime.now(timezone.utc)
        start_time = start_time or now
        end_time = end_time or now
        warnings.append(SYNTHESIZED_TIME_WARNING)
        logger.info("GPX %s: missing timestamps, using current time", file_name or "<upload>")
    # Not clamped: malformed timestamps can yield zero or negative duration
    duration_sec = (end_time - start_time).total_seconds()

    metadata = GpxMetadata(
        track_name=track.name or "GPX Import",
        track_type=track.type,
        total_points=len(points),
        segments=len(track.segments),
        original_file_name=file_name,
        timestamps_synthesized=synthesized,
    )
    return NormalizedWorkout(
        user_id=user_id,
        date=start_time,
        type=map_gpx_type(track.type),
        source=WorkoutSource.GPX_FILE.value,
        name=track.name,
        distance_km=distance_km,
        duration_sec=duration_sec,
        pace_sec_per_km=pace_seconds_per_km(duration_sec, distance_km),
        workout_time=format_duration(max(duration_sec, 0)),
        elevation_gain_m=elevation_gain,
        calories=estimate_calories(distance_km, duration_sec),
        heart_rate=avg_hr,
        source_metadata=metadata,
        stats={"total_points": len(points), "distance_km": distance_km, "duration_sec": duration_sec},
        warnings=warnings,
    )
