"""Integration tests: enrollment changes keep counters and bills consistent."""

from uuid import UUID

import pytest
from httpx import AsyncClient

from app.core.exceptions import CapacityExceeded
from app.models.student import Student
from app.services.enrollment_manager import EnrollmentManager
from tests.conftest import attach, create_class, create_tariff, race, register, requires_db

pytestmark = requires_db


async def _class(client, api_base, class_id) -> dict:
    resp = await client.get(f"{api_base}/classes/{class_id}")
    assert resp.status_code == 200
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_register_into_class_bills_current_term(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    class_room = await create_class(async_client, api_base, grade_pair[0]["id"])
    tuition = await create_tariff(async_client, api_base, "300.00")
    meals = await create_tariff(async_client, api_base, "40.00", type="meal")
    await attach(async_client, api_base, class_room["id"], tuition["id"], meals["id"])

    result = await register(async_client, api_base, class_room["id"])

    assert result["student"]["class_id"] == class_room["id"]
    bill = result["bill"]
    assert bill["status"] == "pending"
    assert bill["term_id"] == current_period["term_id"]
    assert bill["total_amount"] == "340.00"
    assert len(bill["items"]) == 2
    assert (await _class(async_client, api_base, class_room["id"]))["current_enrollment"] == 1


@pytest.mark.asyncio
async def test_class_without_tariffs_still_enrolls(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    class_room = await create_class(async_client, api_base, grade_pair[0]["id"])

    result = await register(async_client, api_base, class_room["id"])

    assert result["bill"] is None
    assert result["billing_skipped_reason"]
    assert result["student"]["class_id"] == class_room["id"]
    assert (await _class(async_client, api_base, class_room["id"]))["current_enrollment"] == 1


@pytest.mark.asyncio
async def test_full_class_rejects_and_leaves_counter(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    class_room = await create_class(async_client, api_base, grade_pair[0]["id"], capacity=1)
    await register(async_client, api_base, class_room["id"])
    waiting = await register(async_client, api_base)

    resp = await async_client.post(
        f"{api_base}/students/{waiting['student']['id']}/assign",
        json={"class_id": class_room["id"]},
    )

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CAPACITY_EXCEEDED"
    assert (await _class(async_client, api_base, class_room["id"]))["current_enrollment"] == 1
    resp = await async_client.get(f"{api_base}/students/{waiting['student']['id']}")
    assert resp.json()["data"]["class_id"] is None


@pytest.mark.asyncio
async def test_double_assign_rejected(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    first = await create_class(async_client, api_base, grade_pair[0]["id"], name="A")
    second = await create_class(async_client, api_base, grade_pair[0]["id"], name="B")
    student = (await register(async_client, api_base, first["id"]))["student"]

    resp = await async_client.post(
        f"{api_base}/students/{student['id']}/assign", json={"class_id": second["id"]}
    )

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "ALREADY_ASSIGNED"
    assert (await _class(async_client, api_base, second["id"]))["current_enrollment"] == 0


@pytest.mark.asyncio
async def test_transfer_moves_counters(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    source = await create_class(async_client, api_base, grade_pair[0]["id"], name="A")
    target = await create_class(async_client, api_base, grade_pair[0]["id"], name="B")
    student = (await register(async_client, api_base, source["id"]))["student"]

    resp = await async_client.post(
        f"{api_base}/students/{student['id']}/transfer", json={"class_id": target["id"]}
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["student"]["class_id"] == target["id"]
    assert (await _class(async_client, api_base, source["id"]))["current_enrollment"] == 0
    assert (await _class(async_client, api_base, target["id"]))["current_enrollment"] == 1


@pytest.mark.asyncio
async def test_promote_to_next_grade(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    lower = await create_class(async_client, api_base, grade_pair[0]["id"])
    upper = await create_class(async_client, api_base, grade_pair[1]["id"])
    tuition = await create_tariff(async_client, api_base, "500.00")
    await attach(async_client, api_base, upper["id"], tuition["id"])
    student = (await register(async_client, api_base, lower["id"]))["student"]

    resp = await async_client.post(f"{api_base}/students/{student['id']}/promote", json={})

    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["student"]["class_id"] == upper["id"]
    assert data["bill"]["total_amount"] == "500.00"
    assert (await _class(async_client, api_base, lower["id"]))["current_enrollment"] == 0
    assert (await _class(async_client, api_base, upper["id"]))["current_enrollment"] == 1


@pytest.mark.asyncio
async def test_graduate_releases_seat(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    class_room = await create_class(async_client, api_base, grade_pair[1]["id"])
    student = (await register(async_client, api_base, class_room["id"]))["student"]

    resp = await async_client.post(f"{api_base}/students/{student['id']}/graduate")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "graduated"
    assert resp.json()["data"]["class_id"] is None
    assert (await _class(async_client, api_base, class_room["id"]))["current_enrollment"] == 0

    resp = await async_client.post(f"{api_base}/students/{student['id']}/graduate")
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_STATE"


@pytest.mark.asyncio
async def test_reconcile_reports_no_drift(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    class_room = await create_class(async_client, api_base, grade_pair[0]["id"])
    await register(async_client, api_base, class_room["id"])

    resp = await async_client.post(f"{api_base}/classes/{class_room['id']}/reconcile")

    assert resp.status_code == 200
    assert resp.json()["data"]["drift"] == 0
    assert resp.json()["data"]["actual"] == 1


@pytest.mark.asyncio
async def test_concurrent_assigns_for_last_seat(
    async_client: AsyncClient, api_base: str, current_period: dict, grade_pair: list
):
    class_room = await create_class(async_client, api_base, grade_pair[0]["id"], capacity=2)
    await register(async_client, api_base, class_room["id"])
    first = (await register(async_client, api_base, first_name="First"))["student"]
    second = (await register(async_client, api_base, first_name="Second"))["student"]
    class_id = UUID(class_room["id"])

    results = await race(
        lambda db: EnrollmentManager.assign(db, UUID(first["id"]), class_id),
        lambda db: EnrollmentManager.assign(db, UUID(second["id"]), class_id),
    )

    assert sum(isinstance(r, Student) for r in results) == 1
    assert sum(isinstance(r, CapacityExceeded) for r in results) == 1
    data = await _class(async_client, api_base, class_room["id"])
    assert data["current_enrollment"] == data["capacity"] == 2

    resp = await async_client.get(f"{api_base}/classes/{class_room['id']}/students")
    assert len(resp.json()["data"]) == 2
