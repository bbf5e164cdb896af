"""Integration tests: academic calendar endpoints."""

import uuid
from datetime import date, timedelta

import pytest
from httpx import AsyncClient

from app.models.academic import AcademicYear
from app.services.period_registry import PeriodRegistry
from tests.conftest import race, requires_db

pytestmark = requires_db


@pytest.mark.asyncio
async def test_current_period(async_client: AsyncClient, api_base: str, current_period: dict):
    resp = await async_client.get(f"{api_base}/periods/current")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["academic_year"]["id"] == current_period["year_id"]
    assert data["academic_year"]["status"] == "active"
    assert data["term"]["id"] == current_period["term_id"]


@pytest.mark.asyncio
async def test_overlapping_year_rejected(async_client: AsyncClient, api_base: str, current_period: dict):
    today = date.today()
    resp = await async_client.post(
        f"{api_base}/periods/academic-years",
        json={
            "name": f"Overlap {uuid.uuid4().hex[:8]}",
            "start_date": (today - timedelta(days=30)).isoformat(),
            "end_date": (today + timedelta(days=300)).isoformat(),
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "PRECONDITION_FAILED"


@pytest.mark.asyncio
async def test_invalid_dates_rejected_by_schema(async_client: AsyncClient, api_base: str):
    resp = await async_client.post(
        f"{api_base}/periods/academic-years",
        json={"name": "Backwards", "start_date": "2030-07-01", "end_date": "2029-09-01"},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_completing_running_term_rejected(async_client: AsyncClient, api_base: str, current_period: dict):
    resp = await async_client.post(f"{api_base}/periods/terms/{current_period['term_id']}/complete")
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "PRECONDITION_FAILED"


@pytest.mark.asyncio
async def test_closing_year_with_open_terms_rejected(
    async_client: AsyncClient, api_base: str, current_period: dict
):
    resp = await async_client.post(f"{api_base}/periods/academic-years/{current_period['year_id']}/close")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_year_statistics(async_client: AsyncClient, api_base: str, current_period: dict):
    resp = await async_client.get(
        f"{api_base}/periods/academic-years/{current_period['year_id']}/statistics"
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["term_count"] >= 1
    assert data["bill_count"] >= 0


@pytest.mark.asyncio
async def test_unknown_term_is_404(async_client: AsyncClient, api_base: str, ledger_schema):
    resp = await async_client.get(f"{api_base}/periods/terms/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


async def _create_year(client: AsyncClient, api_base: str, start: date) -> dict:
    resp = await client.post(
        f"{api_base}/periods/academic-years",
        json={
            "name": f"Race {uuid.uuid4().hex[:8]}",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=300)).isoformat(),
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_concurrent_year_activation_leaves_one_active(
    async_client: AsyncClient, api_base: str, current_period: dict
):
    # Far-future years so the race never overlaps the real calendar
    base = 3000 + uuid.uuid4().int % 3000 * 2
    first = await _create_year(async_client, api_base, date(base, 1, 1))
    second = await _create_year(async_client, api_base, date(base + 1, 1, 1))

    try:
        results = await race(
            lambda db: PeriodRegistry.activate_academic_year(db, uuid.UUID(first["id"])),
            lambda db: PeriodRegistry.activate_academic_year(db, uuid.UUID(second["id"])),
        )
        assert all(isinstance(r, AcademicYear) for r in results), results

        resp = await async_client.get(f"{api_base}/periods/academic-years")
        active = [y["id"] for y in resp.json()["data"] if y["status"] == "active"]
        assert len(active) == 1
        assert active[0] in (first["id"], second["id"])
    finally:
        resp = await async_client.post(
            f"{api_base}/periods/academic-years/{current_period['year_id']}/activate"
        )
        assert resp.status_code == 200, resp.text
