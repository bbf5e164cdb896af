"""Unit tests for StudentService."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CapacityExceeded, NoAvailableClass, PreconditionFailed
from app.models.enums import StudentStatus
from app.services.consistency_coordinator import EnrollmentOutcome
from app.services.student_service import StudentService
from tests.conftest import make_bill, make_student

SERVICE = "app.services.student_service"


@pytest.fixture
def db():
    session = AsyncMock(spec=AsyncSession)
    no_rows = MagicMock()
    no_rows.first.return_value = None
    session.execute.return_value = no_rows
    return session


# --- validation -------------------------------------------------------------

@pytest.mark.parametrize(
    "born, ok",
    [
        (date(2022, 9, 1), True),   # turned 3 today
        (date(2022, 9, 2), False),  # 3 tomorrow
        (date(2006, 9, 2), True),   # 18, turns 19 tomorrow
        (date(2006, 9, 1), False),  # 19
    ],
)
def test_age_window(born, ok):
    today = date(2025, 9, 1)
    if ok:
        StudentService._check_age(born, today)
    else:
        with pytest.raises(PreconditionFailed):
            StudentService._check_age(born, today)


def test_age_optional():
    StudentService._check_age(None, date(2025, 9, 1))


@pytest.mark.asyncio
async def test_email_taken(db):
    taken = MagicMock()
    taken.first.return_value = (uuid4(),)
    db.execute.return_value = taken
    with pytest.raises(PreconditionFailed):
        await StudentService._check_email_free(db, "Ada@School.test")


@pytest.mark.asyncio
async def test_next_student_number(db):
    db.scalar.return_value = "2025-041"
    assert await StudentService._next_student_number(db, 2025) == "2025-042"
    db.scalar.return_value = None
    assert await StudentService._next_student_number(db, 2026) == "2026-001"


# --- registration -----------------------------------------------------------

@pytest.mark.asyncio
async def test_register_without_class(db):
    with patch(f"{SERVICE}.StudentService._next_student_number", new_callable=AsyncMock) as mock_number:
        mock_number.return_value = "2025-007"
        outcome = await StudentService.register_student(db, " Ada ", "Lovelace", enrollment_date=date(2025, 9, 1))

    student = outcome.student
    assert student.student_number == "2025-007"
    assert student.first_name == "Ada"
    assert student.status == StudentStatus.ACTIVE
    assert student.class_id is None
    assert outcome.bill is None
    mock_number.assert_awaited_once_with(db, 2025)
    assert db.commit.called


@pytest.mark.asyncio
async def test_register_with_class_routes_through_coordinator(db):
    class_id = uuid4()
    bill = make_bill()

    async def assign_and_bill(session, student_id, target, auto_commit=True):
        assert auto_commit is False
        return EnrollmentOutcome(student=make_student(class_id=target), bill=bill)

    with patch(f"{SERVICE}.StudentService._next_student_number", new_callable=AsyncMock) as mock_number, \
            patch(f"{SERVICE}.ConsistencyCoordinator.assign_and_bill", new=assign_and_bill):
        mock_number.return_value = "2025-008"
        outcome = await StudentService.register_student(db, "Ada", "Lovelace", class_id=class_id)

    assert outcome.bill is bill
    assert outcome.student.class_id == class_id
    assert db.commit.await_count == 1


@pytest.mark.asyncio
async def test_register_into_full_class_undoes_registration(db):
    with patch(f"{SERVICE}.StudentService._next_student_number", new_callable=AsyncMock) as mock_number, \
            patch(f"{SERVICE}.ConsistencyCoordinator.assign_and_bill", new_callable=AsyncMock) as mock_assign:
        mock_number.return_value = "2025-009"
        mock_assign.side_effect = CapacityExceeded("Class P1A is full (30/30)")
        with pytest.raises(CapacityExceeded):
            await StudentService.register_student(db, "Ada", "Lovelace", class_id=uuid4())

    assert db.rollback.called
    assert not db.commit.called


@pytest.mark.asyncio
async def test_update_student_sets_profile_fields(db):
    student = make_student()
    with patch(f"{SERVICE}.EnrollmentManager.get_student", new_callable=AsyncMock) as mock_student:
        mock_student.return_value = student
        result = await StudentService.update_student(db, student.id, {"parent_name": "Anne", "last_name": "Byron"})

    assert result.parent_name == "Anne"
    assert result.last_name == "Byron"


# --- bulk promotion -----------------------------------------------------------

@pytest.mark.asyncio
async def test_bulk_promote_collects_failures(db):
    first_id, second_id = uuid4(), uuid4()
    promoted = EnrollmentOutcome(student=make_student())

    with patch(f"{SERVICE}.ConsistencyCoordinator.promote_and_bill", new_callable=AsyncMock) as mock_promote:
        mock_promote.side_effect = [promoted, NoAvailableClass("No active class with free space in grade P2")]
        result = await StudentService.bulk_promote(db, [first_id, second_id])

    assert result["total_processed"] == 2
    assert result["successful"] == 1
    assert result["failed"] == 1
    assert result["promoted"] == [promoted]
    assert result["errors"] == [
        {"student_id": second_id, "code": "NO_AVAILABLE_CLASS", "error": "No active class with free space in grade P2"}
    ]
