"""Pydantic schemas for workout API (manual entry, updates, responses)."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.workout import WorkoutType


class SplitIn(BaseModel):
    split_number: int = Field(..., ge=1)
    time: str | None = Field(None, max_length=16)
    pace: str | None = Field(None, max_length=16)
    heart_rate_bpm: int | None = Field(None, gt=0)


class WorkoutCreate(BaseModel):
    """Body for creating a workout (manual entry)."""

    date: datetime
    type: WorkoutType = WorkoutType.RUN
    name: str | None = Field(None, max_length=512)
    distance_km: float = Field(0.0, ge=0)
    duration_sec: float | None = Field(None, ge=0)
    workout_time: str | None = Field(None, max_length=16)
    elevation_gain_m: float = Field(0.0, ge=0)
    calories: int | None = Field(None, ge=0)
    active_kcal: int | None = Field(None, ge=0)
    total_kcal: int | None = Field(None, ge=0)
    heart_rate: int | None = Field(None, gt=0)
    avg_pace: str | None = Field(None, max_length=16)
    effort_level: int | None = Field(None, ge=1, le=10)
    effort_description: str | None = Field(None, max_length=32)
    notes: str | None = None
    splits: list[SplitIn] | None = None


class WorkoutUpdate(BaseModel):
    """Body for updating a workout (partial). Source and source metadata are not editable."""

    date: datetime | None = None
    type: WorkoutType | None = None
    name: str | None = Field(None, max_length=512)
    distance_km: float | None = Field(None, ge=0)
    duration_sec: float | None = Field(None, ge=0)
    workout_time: str | None = Field(None, max_length=16)
    avg_pace: str | None = Field(None, max_length=16)
    elevation_gain_m: float | None = Field(None, ge=0)
    calories: int | None = Field(None, ge=0)
    heart_rate: int | None = Field(None, gt=0)
    effort_level: int | None = Field(None, ge=1, le=10)
    effort_description: str | None = Field(None, max_length=32)
    notes: str | None = None


class SplitResponse(BaseModel):
    split_number: int
    time: str | None
    pace: str | None
    heart_rate_bpm: int | None


class WorkoutResponse(BaseModel):
    """Single workout as returned by the API."""

    id: int
    date: str
    type: str
    name: str | None
    distance_km: float
    duration_sec: float
    elapsed_sec: float | None = None
    pace_sec_per_km: float
    workout_time: str | None
    elapsed_time: str | None = None
    avg_pace: str | None
    elevation_gain_m: float
    calories: int
    active_kcal: int | None = None
    total_kcal: int | None = None
    heart_rate: int | None
    effort_level: int | None = None
    effort_description: str | None = None
    source: str
    source_metadata: dict | None
    notes: str | None = None
    splits: list[SplitResponse]


class WorkoutPage(BaseModel):
    """Paginated workout list, newest first."""

    items: list[WorkoutResponse]
    total: int
    limit: int
    offset: int
    has_more: bool
