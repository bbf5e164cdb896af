"""Shared pytest fixtures for unit and integration tests."""

import asyncio
import os
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from dotenv import load_dotenv
from pytest_asyncio import is_async_test

# Load .env so DATABASE_URL is available for the requires_db check
load_dotenv()
# Integration runs fire many requests from one address
os.environ["RATE_LIMIT_ENABLED"] = "false"

from httpx import ASGITransport, AsyncClient

from app.main import app
from app.config import settings
from app.database import AsyncSessionLocal
from app.models.academic import AcademicYear, ClassRoom, Grade, Term
from app.models.billing import Bill, BillItem, Tariff
from app.models.enums import (
    AcademicYearStatus,
    BillingFrequency,
    BillItemStatus,
    BillStatus,
    StudentStatus,
    TariffType,
    TermStatus,
)
from app.models.student import Student

# Skip integration tests if DATABASE_URL is not set
requires_db = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"),
    reason="DATABASE_URL must be set",
)


def pytest_collection_modifyitems(items):
    """Run every async test on one event loop so pooled DB connections stay usable."""
    session_loop = pytest.mark.asyncio(loop_scope="session")
    for item in items:
        if is_async_test(item):
            item.add_marker(session_loop, append=False)


def _get_api_base() -> str:
    """API base URL. In CI (TEST_USE_LIVE_SERVER=true), hit running server to avoid async teardown issues."""
    if os.getenv("TEST_USE_LIVE_SERVER", "").lower() == "true":
        base = os.getenv("LIVE_SERVER_URL", "http://localhost:8000")
        return f"{base}{settings.API_V1_PREFIX}"
    return f"http://test{settings.API_V1_PREFIX}"


@pytest.fixture
def api_base() -> str:
    """Base URL for API requests."""
    return _get_api_base()


@pytest.fixture
async def async_client(api_base: str):
    """Async HTTP client. Uses live server in CI to avoid RuntimeError: Task pending during teardown."""
    use_live = os.getenv("TEST_USE_LIVE_SERVER", "").lower() == "true"
    if use_live:
        client = AsyncClient(base_url=api_base, timeout=30.0)
    else:
        transport = ASGITransport(app=app)
        client = AsyncClient(transport=transport, base_url=api_base, timeout=30.0)
    yield client
    await client.aclose()


@pytest.fixture
def unique_suffix() -> str:
    """Unique suffix for test data to avoid collisions."""
    return str(uuid.uuid4())[:8]


@pytest.fixture(scope="session")
async def ledger_schema():
    """Create missing tables once per run (alembic owns the schema outside tests)."""
    from app.database import init_db

    await init_db()


@pytest.fixture
async def current_period(async_client: AsyncClient, api_base: str, ledger_schema):
    """
    Make sure an active year and term cover today and return their ids.

    The database is shared between runs, so an existing covering period
    is reused; a fresh one is only created when none exists.
    """
    today = date.today()
    resp = await async_client.get(f"{api_base}/periods/current")
    assert resp.status_code == 200, resp.text
    current = resp.json()["data"]
    if current["academic_year"] and current["term"]:
        return {"year_id": current["academic_year"]["id"], "term_id": current["term"]["id"]}

    resp = await async_client.get(f"{api_base}/periods/academic-years")
    covering = [
        y for y in resp.json()["data"]
        if y["start_date"] <= today.isoformat() <= y["end_date"]
    ]
    if covering:
        year = covering[0]
        if year["status"] == "closed":
            pytest.skip("A closed academic year covers today")
    else:
        resp = await async_client.post(
            f"{api_base}/periods/academic-years",
            json={
                "name": f"Test Year {uuid.uuid4().hex[:8]}",
                "start_date": (today - timedelta(days=100)).isoformat(),
                "end_date": (today + timedelta(days=200)).isoformat(),
            },
        )
        assert resp.status_code == 200, resp.text
        year = resp.json()["data"]
    resp = await async_client.post(f"{api_base}/periods/academic-years/{year['id']}/activate")
    assert resp.status_code == 200, resp.text

    resp = await async_client.get(f"{api_base}/periods/academic-years/{year['id']}/terms")
    terms = [
        t for t in resp.json()["data"]
        if t["start_date"] <= today.isoformat() <= t["end_date"]
    ]
    if terms:
        term = terms[0]
        if term["status"] == "completed":
            pytest.skip("A completed term covers today")
    else:
        start = max(today - timedelta(days=10), date.fromisoformat(year["start_date"]))
        end = min(today + timedelta(days=60), date.fromisoformat(year["end_date"]))
        resp = await async_client.post(
            f"{api_base}/periods/academic-years/{year['id']}/terms",
            json={
                "name": f"Test Term {uuid.uuid4().hex[:8]}",
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
            },
        )
        assert resp.status_code == 200, resp.text
        term = resp.json()["data"]
    resp = await async_client.post(f"{api_base}/periods/terms/{term['id']}/activate")
    assert resp.status_code == 200, resp.text
    return {"year_id": year["id"], "term_id": term["id"]}


@pytest.fixture
async def grade_pair(async_client: AsyncClient, api_base: str, ledger_schema):
    """Two consecutive grades with random levels so runs do not collide."""
    level = 1000 + uuid.uuid4().int % 1_000_000 * 2
    grades = []
    for offset in (0, 1):
        resp = await async_client.post(
            f"{api_base}/grades",
            json={"name": f"P{level + offset}", "level": level + offset},
        )
        assert resp.status_code == 200, resp.text
        grades.append(resp.json()["data"])
    return grades


async def create_class(client: AsyncClient, api_base: str, grade_id: str, name: str = "A", capacity: int = 30) -> dict:
    resp = await client.post(
        f"{api_base}/classes",
        json={"grade_id": grade_id, "name": name, "capacity": capacity},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


async def create_tariff(client: AsyncClient, api_base: str, amount: str, frequency: str = "per_term", type: str = "tuition") -> dict:
    resp = await client.post(
        f"{api_base}/tariffs",
        json={"name": f"{type} {amount}", "amount": amount, "type": type, "billing_frequency": frequency},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


async def attach(client: AsyncClient, api_base: str, class_id: str, *tariff_ids: str) -> None:
    resp = await client.post(f"{api_base}/classes/{class_id}/tariffs", json={"tariff_ids": list(tariff_ids)})
    assert resp.status_code == 200, resp.text


async def register(client: AsyncClient, api_base: str, class_id=None, first_name: str = "Test") -> dict:
    payload = {"first_name": first_name, "last_name": "Student"}
    if class_id:
        payload["class_id"] = class_id
    resp = await client.post(f"{api_base}/students", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


async def race(*operations) -> list:
    """Run each operation concurrently in its own session; failures come back as exceptions."""

    async def run(operation):
        async with AsyncSessionLocal() as session:
            return await operation(session)

    return await asyncio.gather(*(run(op) for op in operations), return_exceptions=True)


# --- In-memory model builders ---------------------------------------------
# Column defaults only apply on flush, so every field is set explicitly.

def make_year(status=AcademicYearStatus.ACTIVE, start=None, end=None, name="2025-2026") -> AcademicYear:
    start = start or date.today() - timedelta(days=60)
    end = end or start + timedelta(days=300)
    return AcademicYear(id=uuid.uuid4(), name=name, start_date=start, end_date=end, status=status)


def make_term(year: AcademicYear, status=TermStatus.ACTIVE, start=None, end=None, name="Term 1") -> Term:
    start = start or year.start_date
    end = end or start + timedelta(days=90)
    return Term(
        id=uuid.uuid4(),
        academic_year_id=year.id,
        name=name,
        start_date=start,
        end_date=end,
        status=status,
    )


def make_grade(name="P1", level=4) -> Grade:
    return Grade(id=uuid.uuid4(), name=name, level=level, is_active=True)


def make_class(grade: Grade, name="A", capacity=30, enrolled=0, is_active=True) -> ClassRoom:
    return ClassRoom(
        id=uuid.uuid4(),
        grade_id=grade.id,
        name=name,
        full_name=f"{grade.name}{name}",
        capacity=capacity,
        current_enrollment=enrolled,
        is_active=is_active,
    )


def make_student(class_id=None, status=StudentStatus.ACTIVE, number="2025-001") -> Student:
    return Student(
        id=uuid.uuid4(),
        student_number=number,
        first_name="Ada",
        last_name="Lovelace",
        enrollment_date=date.today(),
        status=status,
        class_id=class_id,
    )


def make_tariff(amount="100.00", frequency=BillingFrequency.PER_TERM, type=TariffType.TUITION, name="Tuition") -> Tariff:
    return Tariff(
        id=uuid.uuid4(),
        name=name,
        amount=Decimal(amount),
        type=type,
        billing_frequency=frequency,
        is_active=True,
    )


def make_bill(amounts=("100.00",), status=BillStatus.PENDING, due_date=None) -> Bill:
    """Unpaid bill with one item per amount."""
    bill = Bill(
        id=uuid.uuid4(),
        bill_number="BILL2025090001",
        student_id=uuid.uuid4(),
        academic_year_id=uuid.uuid4(),
        term_id=uuid.uuid4(),
        subtotal=Decimal("0.00"),
        discount=Decimal("0.00"),
        tax=Decimal("0.00"),
        total_amount=Decimal("0.00"),
        paid_amount=Decimal("0.00"),
        balance=Decimal("0.00"),
        status=status,
        payment_ledger=None,
        issue_date=date.today(),
        due_date=due_date or date.today() + timedelta(days=30),
        line_items=[],
        notes=None,
    )
    bill.items = [
        BillItem(
            id=uuid.uuid4(),
            bill_id=bill.id,
            tariff_id=uuid.uuid4(),
            position=position,
            name=f"Item {position}",
            type=TariffType.TUITION,
            amount=Decimal(amount),
            paid_amount=Decimal("0.00"),
            balance=Decimal(amount),
            status=BillItemStatus.PENDING,
            payment_history=[],
        )
        for position, amount in enumerate(amounts)
    ]
    bill.subtotal = sum((Decimal(a) for a in amounts), Decimal("0.00"))
    bill.recalculate()
    return bill
