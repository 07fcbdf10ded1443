"""
Derived workout metrics: geodesic distance, monotonic elevation gain, heart rate, calories, pace and
clock formatting. Pure functions shared by every normalizer.
"""
from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence

EARTH_RADIUS_KM = 6371.0
# Rough running estimate, not physiologically exact
CALORIES_PER_KM = 60

# (effort level 1-10, label)
EFFORT_EASY = (3, "Easy")
EFFORT_MODERATE = (5, "Moderate")
EFFORT_HARD = (8, "Hard")

_CLOCK_RE = re.compile(r"^\s*(?:(\d+):)?(\d{1,2}):(\d{1,2})\s*$")
_PACE_RE = re.compile(r"^\s*(\d+)\s*['′:]\s*(\d{1,2})")


def haversine_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two points given in degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def accumulate_distance(points: Sequence[tuple[float, float]]) -> float:
    """Sum of haversine distances between consecutive (lat, lon) points. 0 for fewer than two points."""
    total = 0.0
    for (lat1, lon1), (lat2, lon2) in zip(points, points[1:]):
        total += haversine_distance_km(lat1, lon1, lat2, lon2)
    return total


def accumulate_elevation_gain(altitudes: Iterable[float | None]) -> float:
    """
    Total climbed: sum of positive deltas between consecutive defined altitudes.
    Decreases are dropped, never subtracted. Samples without altitude are skipped and do not reset
    the reference altitude.
    """
    gain = 0.0
    previous: float | None = None
    for altitude in altitudes:
        if altitude is None:
            continue
        if previous is not None and altitude > previous:
            gain += altitude - previous
        previous = altitude
    return gain


def average_heart_rate(samples: Iterable[float | None]) -> int | None:
    """Rounded mean of samples that have a heart rate; None when none do."""
    values = [s for s in samples if s is not None]
    if not values:
        return None
    return round(sum(values) / len(values))


def estimate_calories(distance_km: float, duration_sec: float) -> int:
    """Fallback when a source does not supply calories. Duration is accepted but unused."""
    return round(distance_km * CALORIES_PER_KM)


def pace_seconds_per_km(duration_sec: float, distance_km: float) -> float:
    """Seconds per km, or 0 when there is no distance."""
    if distance_km > 0:
        return duration_sec / distance_km
    return 0.0


def format_duration(total_seconds: float) -> str:
    """HH:MM:SS, zero-padded, each component floored."""
    total = int(math.floor(total_seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    seconds = total % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_pace_min_per_km(minutes_per_km: float) -> str:
    """Pace as M'SS"/km from decimal minutes per km (e.g. 5.5 -> 5'30"/km)."""
    whole = int(math.floor(minutes_per_km))
    seconds = int(math.floor((minutes_per_km - whole) * 60))
    return f"{whole}'{seconds:02d}\"/km"


def format_split_time(total_seconds: float) -> str:
    """MM:SS for lap/split durations (minutes not capped at 60)."""
    total = int(math.floor(total_seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def parse_clock(text: str | None) -> float | None:
    """Seconds from 'H:MM:SS' or 'MM:SS'; None when the text is not a clock value."""
    if not text:
        return None
    m = _CLOCK_RE.match(str(text))
    if not m:
        return None
    hours = int(m.group(1) or 0)
    return float(hours * 3600 + int(m.group(2)) * 60 + int(m.group(3)))


def parse_pace(text: str | None) -> float | None:
    """Seconds per km from a pace label like 8'49\"/km or 8:49; None when unreadable."""
    if not text:
        return None
    m = _PACE_RE.match(str(text))
    if not m:
        return None
    return float(int(m.group(1)) * 60 + int(m.group(2)))


def effort_from_heart_rate(avg_heart_rate: float | None) -> tuple[int, str]:
    """Heuristic effort from average heart rate: <120 Easy, <150 Moderate, else Hard."""
    if not avg_heart_rate:
        return EFFORT_MODERATE
    if avg_heart_rate < 120:
        return EFFORT_EASY
    if avg_heart_rate < 150:
        return EFFORT_MODERATE
    return EFFORT_HARD
