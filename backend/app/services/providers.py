"""
Seams to the non-deterministic outside world. Each external service is one small protocol so tests can
substitute a deterministic fake.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class OcrResult:
    text: str
    confidence: float | None = None  # 0-100


class TextExtractor(Protocol):
    async def extract_text(self, image_bytes: bytes) -> OcrResult: ...


class WorkoutExtractor(Protocol):
    async def extract_workout_json(self, ocr_text: str, image_bytes: bytes | None = None) -> dict[str, Any]: ...


class ActivityFeed(Protocol):
    async def fetch_activities(
        self,
        access_token: str,
        page: int = 1,
        per_page: int = 30,
        after: int | None = None,
    ) -> list[dict[str, Any]]: ...


class TokenProvider(Protocol):
    async def exchange_code(self, code: str) -> dict[str, Any]: ...

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]: ...
