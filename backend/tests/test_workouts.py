"""Tests for workouts API: manual entry with splits, paginated list, update, delete."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.db.session import async_session_maker
from app.models.audit_log import AuditLog
from app.models.workout import WorkoutSplit


async def _create(client: AsyncClient, headers: dict, **overrides) -> dict:
    body = {
        "date": "2024-04-10T06:30:00Z",
        "type": "Run",
        "name": "Easy Run",
        "distance_km": 5.0,
        "duration_sec": 1800,
        "heart_rate": 140,
    }
    body.update(overrides)
    resp = await client.post("/api/v1/workouts", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _split_count() -> int:
    async with async_session_maker() as s:
        r = await s.execute(select(func.count(WorkoutSplit.id)))
        return r.scalar()


@pytest.mark.asyncio
async def test_create_workout(client: AsyncClient, auth_headers: dict):
    data = await _create(client, auth_headers, notes="felt good")
    assert data["name"] == "Easy Run"
    assert data["source"] == "MANUAL"
    assert data["source_metadata"] == {"source": "MANUAL", "entered_via": "api"}
    assert data["pace_sec_per_km"] == 360
    assert data["workout_time"] == "00:30:00"
    assert data["notes"] == "felt good"
    assert data["calories"] == 0


@pytest.mark.asyncio
async def test_create_workout_with_splits_orders_them(client: AsyncClient, auth_headers: dict):
    data = await _create(
        client,
        auth_headers,
        splits=[
            {"split_number": 2, "time": "06:10", "pace": "6'10\""},
            {"split_number": 1, "time": "05:50", "pace": "5'50\"", "heart_rate_bpm": 138},
        ],
    )
    assert [s["split_number"] for s in data["splits"]] == [1, 2]
    assert data["splits"][0]["heart_rate_bpm"] == 138


@pytest.mark.asyncio
async def test_create_duration_from_clock_label(client: AsyncClient, auth_headers: dict):
    data = await _create(client, auth_headers, duration_sec=None, workout_time="0:45:00", distance_km=9)
    assert data["duration_sec"] == 2700
    assert data["pace_sec_per_km"] == 300


@pytest.mark.asyncio
async def test_create_rejects_invalid_values(client: AsyncClient, auth_headers: dict):
    resp = await client.post(
        "/api/v1/workouts",
        json={"date": "2024-04-10T06:30:00Z", "distance_km": -1},
        headers=auth_headers,
    )
    assert resp.status_code == 422
    resp = await client.post(
        "/api/v1/workouts",
        json={"date": "2024-04-10T06:30:00Z", "type": "Rowing"},
        headers=auth_headers,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_workouts_empty(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/api/v1/workouts", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["items"] == []
    assert data["total"] == 0
    assert data["has_more"] is False


@pytest.mark.asyncio
async def test_list_is_newest_first_and_paginated(client: AsyncClient, auth_headers: dict):
    for day in ("01", "03", "02"):
        await _create(client, auth_headers, date=f"2024-04-{day}T07:00:00Z", name=f"Day {day}")
    resp = await client.get("/api/v1/workouts?limit=2", headers=auth_headers)
    data = resp.json()
    assert data["total"] == 3
    assert data["has_more"] is True
    assert [w["name"] for w in data["items"]] == ["Day 03", "Day 02"]
    resp = await client.get("/api/v1/workouts?limit=2&offset=2", headers=auth_headers)
    assert [w["name"] for w in resp.json()["items"]] == ["Day 01"]


@pytest.mark.asyncio
async def test_list_filters_by_source(client: AsyncClient, auth_headers: dict):
    await _create(client, auth_headers)
    resp = await client.get("/api/v1/workouts?source=STRAVA", headers=auth_headers)
    assert resp.json()["total"] == 0
    resp = await client.get("/api/v1/workouts?source=MANUAL", headers=auth_headers)
    assert resp.json()["total"] == 1


@pytest.mark.asyncio
async def test_list_requires_auth(client: AsyncClient):
    resp = await client.get("/api/v1/workouts")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_get_workout(client: AsyncClient, auth_headers: dict):
    created = await _create(client, auth_headers)
    resp = await client.get(f"/api/v1/workouts/{created['id']}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_get_missing_workout(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/api/v1/workouts/999999", headers=auth_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_other_users_workout_is_not_found(client: AsyncClient, auth_headers: dict):
    created = await _create(client, auth_headers)
    other = await client.post(
        "/api/v1/auth/register",
        json={"email": "other@test.com", "password": "securepass123"},
    )
    headers = {"Authorization": f"Bearer {other.json()['access_token']}"}
    resp = await client.get(f"/api/v1/workouts/{created['id']}", headers=headers)
    assert resp.status_code == 404
    resp = await client.delete(f"/api/v1/workouts/{created['id']}", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_workout_keeps_source(client: AsyncClient, auth_headers: dict):
    created = await _create(client, auth_headers)
    resp = await client.patch(
        f"/api/v1/workouts/{created['id']}",
        json={"name": "Tempo", "distance_km": 6.0, "source": "STRAVA", "source_metadata": {"source": "STRAVA"}},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Tempo"
    assert data["distance_km"] == 6.0
    assert data["pace_sec_per_km"] == 300
    assert data["source"] == "MANUAL"
    assert data["source_metadata"]["source"] == "MANUAL"


@pytest.mark.asyncio
async def test_put_updates_given_fields(client: AsyncClient, auth_headers: dict):
    created = await _create(client, auth_headers)
    resp = await client.put(
        f"/api/v1/workouts/{created['id']}", json={"name": "Long run", "source": "GPX_FILE"}, headers=auth_headers
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Long run"
    assert data["source"] == "MANUAL"
    assert data["distance_km"] == created["distance_km"]
    missing = await client.put("/api/v1/workouts/999999", json={"name": "x"}, headers=auth_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_update_missing_workout(client: AsyncClient, auth_headers: dict):
    resp = await client.patch("/api/v1/workouts/999999", json={"name": "x"}, headers=auth_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_workout_removes_splits(client: AsyncClient, auth_headers: dict):
    created = await _create(client, auth_headers, splits=[{"split_number": 1, "time": "05:00"}])
    assert await _split_count() == 1
    resp = await client.delete(f"/api/v1/workouts/{created['id']}", headers=auth_headers)
    assert resp.status_code == 204
    assert await _split_count() == 0
    resp = await client.get(f"/api/v1/workouts/{created['id']}", headers=auth_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_changes_are_audited(client: AsyncClient, auth_headers: dict):
    created = await _create(client, auth_headers)
    await client.patch(f"/api/v1/workouts/{created['id']}", json={"name": "Renamed"}, headers=auth_headers)
    await client.delete(f"/api/v1/workouts/{created['id']}", headers=auth_headers)
    async with async_session_maker() as s:
        r = await s.execute(select(AuditLog.action).order_by(AuditLog.id))
        assert list(r.scalars().all()) == ["create", "update", "delete"]
