"""Canonical workout: every ingestion source (manual, screenshot, GPX, FIT, Strava) lands here."""

import enum
from datetime import datetime
from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base


class WorkoutSource(str, enum.Enum):
    MANUAL = "MANUAL"
    SCREENSHOT = "SCREENSHOT"
    STRAVA = "STRAVA"
    GARMIN = "GARMIN"
    GPX_FILE = "GPX_FILE"
    FIT_FILE = "FIT_FILE"
    APPLE_HEALTH = "APPLE_HEALTH"


class WorkoutType(str, enum.Enum):
    RUN = "Run"
    WALK = "Walk"
    HIKE = "Hike"
    CYCLING = "Cycling"
    SWIM = "Swim"


class Workout(Base):
    __tablename__ = "workouts"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "external_id", name="uq_workouts_user_source_external_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default=WorkoutType.RUN.value)
    name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    duration_sec: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    elapsed_sec: Mapped[float | None] = mapped_column(Float, nullable=True)
    pace_sec_per_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    workout_time: Mapped[str | None] = mapped_column(String(16), nullable=True)  # HH:MM:SS
    elapsed_time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    avg_pace: Mapped[str | None] = mapped_column(String(16), nullable=True)  # e.g. 5'12"/km
    elevation_gain_m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_kcal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_kcal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    effort_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    effort_description: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default=WorkoutSource.MANUAL.value)
    source_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)  # provider activity id
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="workouts")
    splits: Mapped[list["WorkoutSplit"]] = relationship(
        "WorkoutSplit",
        back_populates="workout",
        cascade="all, delete-orphan",
        order_by="WorkoutSplit.split_number",
        lazy="selectin",
    )


class WorkoutSplit(Base):
    __tablename__ = "workout_splits"
    __table_args__ = (UniqueConstraint("workout_id", "split_number", name="uq_workout_splits_number"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    workout_id: Mapped[int] = mapped_column(ForeignKey("workouts.id", ondelete="CASCADE"), nullable=False, index=True)
    split_number: Mapped[int] = mapped_column(Integer, nullable=False)
    time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    pace: Mapped[str | None] = mapped_column(String(16), nullable=True)
    heart_rate_bpm: Mapped[int | None] = mapped_column(Integer, nullable=True)

    workout: Mapped["Workout"] = relationship("Workout", back_populates="splits")
