"""Tests for screenshot extraction mapping, JSON reply parsing and POST /screenshots with fake extractors."""

import io
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from PIL import Image

from app.api.v1.screenshots import get_text_extractor, get_workout_extractor
from app.main import app
from app.services.errors import ExtractionError, ParseError
from app.services.gemini_workout_extractor import parse_json_object
from app.services.providers import OcrResult
from app.services.screenshot_parser import map_screen_type, normalize_screenshot_extraction

EXTRACTED = {
    "date": "2024-10-21",
    "workoutType": "Outdoor Walk",
    "workoutTime": "1:02:03",
    "elapsedTime": "1:05:00",
    "distanceKm": 5.2,
    "activeKcal": 250,
    "totalKcal": 300,
    "avgPace": "11'55\"/km",
    "avgHeartRateBpm": 110,
    "elevationGainM": 35,
    "effortLevel": 3,
    "effortDescription": "Easy",
    "splits": [
        {"splitNumber": 1, "time": "11:50", "pace": "11'50\"", "heartRateBpm": 105},
        {"splitNumber": 2, "time": "12:00", "pace": "12'00\"", "heartRateBpm": 112},
    ],
}


def _png(size=(40, 20)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


class FakeOcr:
    def __init__(self, confidence: float | None = 91.0):
        self.confidence = confidence
        self.calls = 0

    async def extract_text(self, image_bytes: bytes) -> OcrResult:
        self.calls += 1
        return OcrResult(text="Outdoor Walk 5.20 km 1:02:03", confidence=self.confidence)


class FakeExtractor:
    def __init__(self, data: dict | None = None, error: Exception | None = None):
        self.data = data if data is not None else EXTRACTED
        self.error = error
        self.seen_text: str | None = None

    async def extract_workout_json(self, ocr_text: str, image_bytes: bytes | None = None) -> dict:
        self.seen_text = ocr_text
        if self.error:
            raise self.error
        return dict(self.data)


def test_normalize_maps_fields():
    w = normalize_screenshot_extraction(EXTRACTED, user_id=4, ocr_confidence=91.0, file_name="walk.png")
    assert w.source == "SCREENSHOT"
    assert w.type == "Walk"
    assert w.name == "Outdoor Walk"
    assert w.date == datetime(2024, 10, 21, tzinfo=timezone.utc)
    assert w.duration_sec == 3723
    assert w.elapsed_sec == 3900
    assert w.pace_sec_per_km == 715
    assert w.calories == 300
    assert (w.active_kcal, w.total_kcal) == (250, 300)
    assert w.heart_rate == 110
    assert w.elevation_gain_m == 35
    assert [s.split_number for s in w.splits] == [1, 2]
    assert w.splits[1].heart_rate_bpm == 112
    assert w.source_metadata.ocr_confidence == 91.0
    assert w.source_metadata.workout_label == "Outdoor Walk"
    assert w.warnings == []


def test_normalize_calories_fall_back_to_active():
    w = normalize_screenshot_extraction({**EXTRACTED, "totalKcal": None}, user_id=1)
    assert w.calories == 250


def test_normalize_requires_date():
    with pytest.raises(ParseError, match="no date"):
        normalize_screenshot_extraction({**EXTRACTED, "date": None}, user_id=1)
    with pytest.raises(ParseError):
        normalize_screenshot_extraction({**EXTRACTED, "date": "21st of October"}, user_id=1)


def test_normalize_renumbers_duplicate_splits():
    data = {**EXTRACTED, "splits": [{"splitNumber": 1, "time": "5:00"}, {"splitNumber": 1, "time": "5:10"}, {"time": "5:20"}]}
    w = normalize_screenshot_extraction(data, user_id=1)
    assert [s.split_number for s in w.splits] == [1, 2, 3]
    assert w.splits[2].time == "5:20"


def test_normalize_drops_out_of_range_effort_and_warns_on_low_confidence():
    w = normalize_screenshot_extraction({**EXTRACTED, "effortLevel": 14}, user_id=1, ocr_confidence=30)
    assert w.effort_level is None
    assert any("Low OCR confidence" in msg for msg in w.warnings)


@pytest.mark.parametrize(
    "label,expected",
    [("Outdoor Run", "Run"), ("Indoor Cycling", "Cycling"), ("Mountain Hike", "Hike"), ("Pool Swim", "Swim"), (None, "Run")],
)
def test_map_screen_type(label, expected):
    assert map_screen_type(label) == expected


def test_parse_json_object_tolerates_fences_and_trailing_commas():
    reply = '```json\n{"date": "2024-01-02", "distanceKm": 3.1, "splits": [1, 2,],}\n```'
    assert parse_json_object(reply) == {"date": "2024-01-02", "distanceKm": 3.1, "splits": [1, 2]}


def test_parse_json_object_closes_truncated_reply():
    assert parse_json_object('{"date": "2024-01-02", "distanceKm": 3.1') == {"date": "2024-01-02", "distanceKm": 3.1}


def test_parse_json_object_rejects_garbage():
    with pytest.raises(ExtractionError):
        parse_json_object("I could not read this image.")


@pytest.mark.asyncio
async def test_upload_screenshot_creates_workout(client: AsyncClient, auth_headers: dict):
    ocr, extractor = FakeOcr(), FakeExtractor()
    app.dependency_overrides[get_text_extractor] = lambda: ocr
    app.dependency_overrides[get_workout_extractor] = lambda: extractor
    resp = await client.post(
        "/api/v1/screenshots",
        files={"screenshot": ("walk.png", _png(), "image/png")},
        headers=auth_headers,
    )
    assert resp.status_code == 201
    workout = resp.json()["workout"]
    assert workout["source"] == "SCREENSHOT"
    assert workout["type"] == "Walk"
    assert workout["duration_sec"] == 3723
    assert [s["split_number"] for s in workout["splits"]] == [1, 2]
    assert workout["source_metadata"]["mime_type"] == "image/png"
    assert workout["source_metadata"]["original_file_name"] == "walk.png"
    assert extractor.seen_text.startswith("Outdoor Walk")


@pytest.mark.asyncio
async def test_same_screenshot_twice_creates_two_workouts(client: AsyncClient, auth_headers: dict):
    app.dependency_overrides[get_text_extractor] = lambda: FakeOcr()
    app.dependency_overrides[get_workout_extractor] = lambda: FakeExtractor()
    for _ in range(2):
        resp = await client.post(
            "/api/v1/screenshots",
            files={"screenshot": ("walk.png", _png(), "image/png")},
            headers=auth_headers,
        )
        assert resp.status_code == 201
    listing = await client.get("/api/v1/workouts", headers=auth_headers)
    assert listing.json()["total"] == 2


@pytest.mark.asyncio
async def test_upload_screenshot_rejects_other_types(client: AsyncClient, auth_headers: dict):
    resp = await client.post(
        "/api/v1/screenshots",
        files={"screenshot": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_extraction_failure_is_unprocessable(client: AsyncClient, auth_headers: dict):
    app.dependency_overrides[get_text_extractor] = lambda: FakeOcr()
    app.dependency_overrides[get_workout_extractor] = lambda: FakeExtractor(error=ExtractionError("model said no"))
    resp = await client.post(
        "/api/v1/screenshots",
        files={"screenshot": ("walk.png", _png(), "image/png")},
        headers=auth_headers,
    )
    assert resp.status_code == 422
    listing = await client.get("/api/v1/workouts", headers=auth_headers)
    assert listing.json()["total"] == 0


@pytest.mark.asyncio
async def test_missing_date_is_bad_request(client: AsyncClient, auth_headers: dict):
    app.dependency_overrides[get_text_extractor] = lambda: FakeOcr()
    app.dependency_overrides[get_workout_extractor] = lambda: FakeExtractor({**EXTRACTED, "date": None})
    resp = await client.post(
        "/api/v1/screenshots",
        files={"screenshot": ("walk.png", _png(), "image/png")},
        headers=auth_headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unconfigured_gemini_is_unprocessable(client: AsyncClient, auth_headers: dict):
    resp = await client.post(
        "/api/v1/screenshots",
        files={"screenshot": ("walk.png", _png(), "image/png")},
        headers=auth_headers,
    )
    assert resp.status_code == 422
    assert "GOOGLE_GEMINI_API_KEY" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_screenshot_status(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/api/v1/screenshots/status", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["gemini_configured"] is False
