"""
Source-specific facts attached to a workout. One variant per ingestion source, discriminated by
"source"; used for display and duplicate keys, never for core metrics.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class ManualMetadata(BaseModel):
    source: Literal["MANUAL"] = "MANUAL"
    entered_via: str | None = None


class GpxMetadata(BaseModel):
    source: Literal["GPX_FILE"] = "GPX_FILE"
    track_name: str | None = None
    track_type: str | None = None
    total_points: int = 0
    segments: int = 0
    original_file_name: str | None = None
    # Start/end time fell back to "now" because track points carry no timestamps
    timestamps_synthesized: bool = False


class FitMetadata(BaseModel):
    source: Literal["FIT_FILE"] = "FIT_FILE"
    sport: str | None = None
    sub_sport: str | None = None
    total_records: int = 0
    total_laps: int = 0
    avg_speed: float | None = None
    max_speed: float | None = None
    avg_cadence: float | None = None
    max_cadence: float | None = None
    avg_power: float | None = None
    max_power: float | None = None
    original_file_name: str | None = None
    start_time_synthesized: bool = False


class StravaMetadata(BaseModel):
    source: Literal["STRAVA"] = "STRAVA"
    provider_activity_id: str
    name: str | None = None
    sport_type: str | None = None
    avg_speed: float | None = None
    max_speed: float | None = None
    max_heartrate: float | None = None


class ScreenshotMetadata(BaseModel):
    source: Literal["SCREENSHOT"] = "SCREENSHOT"
    ocr_confidence: float | None = Field(None, ge=0, le=100)
    original_file_name: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    workout_label: str | None = None  # workout type exactly as shown on screen


SourceMetadata = Annotated[
    Union[ManualMetadata, GpxMetadata, FitMetadata, StravaMetadata, ScreenshotMetadata],
    Field(discriminator="source"),
]

source_metadata_adapter: TypeAdapter[SourceMetadata] = TypeAdapter(SourceMetadata)


def dump_source_metadata(metadata: SourceMetadata | None) -> dict | None:
    """JSON-safe dict for the workouts.source_metadata column."""
    if metadata is None:
        return None
    return metadata.model_dump(mode="json")


def load_source_metadata(raw: dict | None) -> SourceMetadata | None:
    """Typed variant from a stored dict; None when nothing is stored."""
    if raw is None:
        return None
    return source_metadata_adapter.validate_python(raw)
