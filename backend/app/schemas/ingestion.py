"""Normalizer output and import result shapes."""

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.source_metadata import SourceMetadata


class ImportStatus(str, enum.Enum):
    RECEIVED = "received"
    PARSING = "parsing"
    DUPLICATE_CHECK = "duplicate_check"
    PERSISTED = "imported"
    SKIPPED_DUPLICATE = "skipped"
    FAILED = "error"


class NormalizedSplit(BaseModel):
    split_number: int = Field(..., ge=1)
    time: str | None = None
    pace: str | None = None
    heart_rate_bpm: int | None = None


class NormalizedWorkout(BaseModel):
    """Canonical workout produced by exactly one normalizer, before it is stored."""

    user_id: int
    date: datetime
    type: str
    source: str
    name: str | None = None
    distance_km: float = Field(0.0, ge=0)
    duration_sec: float = 0.0
    elapsed_sec: float | None = None
    pace_sec_per_km: float = 0.0
    workout_time: str | None = None
    elapsed_time: str | None = None
    avg_pace: str | None = None
    elevation_gain_m: float = Field(0.0, ge=0)
    calories: int = 0
    active_kcal: int | None = None
    total_kcal: int | None = None
    heart_rate: int | None = None
    effort_level: int | None = Field(None, ge=1, le=10)
    effort_description: str | None = None
    external_id: str | None = None
    source_metadata: SourceMetadata | None = None
    splits: list[NormalizedSplit] = Field(default_factory=list)
    # Auxiliary facts for the caller (point/record counts); not stored as columns
    stats: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class ImportDetail(BaseModel):
    file_name: str | None = None
    status: ImportStatus
    workout: dict | None = None
    reason: str | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class ImportResponse(BaseModel):
    """Single-item import (one file or one screenshot)."""

    success: bool
    duplicate: bool = False
    message: str | None = None
    workout: dict | None = None
    stats: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class BatchImportResponse(BaseModel):
    success: bool = True
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[ImportDetail] = Field(default_factory=list)
    message: str | None = None
