"""Unit tests for ConsistencyCoordinator: enrollment and billing as one unit of work."""

import logging
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CapacityExceeded, NoActivePeriod, NoTariffsConfigured
from app.services.consistency_coordinator import ConsistencyCoordinator
from tests.conftest import make_bill, make_student

COORDINATOR = "app.services.consistency_coordinator"


@pytest.fixture
def db():
    session = AsyncMock(spec=AsyncSession)
    # Savepoint context manager must not swallow errors
    session.begin_nested.return_value.__aexit__.return_value = False
    return session


@pytest.mark.asyncio
async def test_assign_and_bill_commits_both(db):
    class_id = uuid4()
    student = make_student(class_id=class_id)
    bill = make_bill()

    with patch(f"{COORDINATOR}.EnrollmentManager.assign", new_callable=AsyncMock) as mock_assign, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_assign.return_value = student
        mock_generate.return_value = bill

        outcome = await ConsistencyCoordinator.assign_and_bill(db, student.id, class_id)

    mock_assign.assert_awaited_once_with(db, student.id, class_id, auto_commit=False)
    mock_generate.assert_awaited_once_with(db, student.id, auto_commit=False)
    assert outcome.student is student
    assert outcome.bill is bill
    assert outcome.billing_skipped_reason is None
    assert db.begin_nested.called
    assert db.commit.await_count == 1


@pytest.mark.asyncio
async def test_missing_tariffs_keeps_enrollment(db, caplog):
    class_id = uuid4()
    student = make_student(class_id=class_id)

    with patch(f"{COORDINATOR}.EnrollmentManager.assign", new_callable=AsyncMock) as mock_assign, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_assign.return_value = student
        mock_generate.side_effect = NoTariffsConfigured(
            "No active tariffs are attached to the student's class", {"class_id": str(class_id)}
        )

        with caplog.at_level(logging.WARNING, logger=COORDINATOR):
            outcome = await ConsistencyCoordinator.assign_and_bill(db, student.id, class_id)

    assert outcome.bill is None
    assert outcome.billing_skipped_reason == "No active tariffs are attached to the student's class"
    assert db.commit.called
    assert not db.rollback.called
    assert "Enrollment kept without a bill" in caplog.text


@pytest.mark.asyncio
async def test_other_billing_failure_undoes_enrollment(db):
    student = make_student(class_id=uuid4())

    with patch(f"{COORDINATOR}.EnrollmentManager.assign", new_callable=AsyncMock) as mock_assign, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_assign.return_value = student
        mock_generate.side_effect = NoActivePeriod("No active academic year covers today")

        with pytest.raises(NoActivePeriod):
            await ConsistencyCoordinator.assign_and_bill(db, student.id, student.class_id)

    assert db.rollback.called
    assert not db.commit.called


@pytest.mark.asyncio
async def test_enrollment_failure_skips_billing(db):
    with patch(f"{COORDINATOR}.EnrollmentManager.assign", new_callable=AsyncMock) as mock_assign, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_assign.side_effect = CapacityExceeded("Class P1A is full (30/30)")

        with pytest.raises(CapacityExceeded):
            await ConsistencyCoordinator.assign_and_bill(db, uuid4(), uuid4())

    assert not mock_generate.called
    assert db.rollback.called


@pytest.mark.asyncio
async def test_nested_call_leaves_commit_to_caller(db):
    student = make_student(class_id=uuid4())
    with patch(f"{COORDINATOR}.EnrollmentManager.assign", new_callable=AsyncMock) as mock_assign, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_assign.return_value = student
        mock_generate.return_value = make_bill()
        await ConsistencyCoordinator.assign_and_bill(db, student.id, student.class_id, auto_commit=False)

    assert not db.commit.called
    assert db.flush.called


@pytest.mark.asyncio
async def test_transfer_and_bill(db):
    target = uuid4()
    student = make_student(class_id=target)
    with patch(f"{COORDINATOR}.EnrollmentManager.transfer", new_callable=AsyncMock) as mock_transfer, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_transfer.return_value = student
        mock_generate.return_value = make_bill()
        outcome = await ConsistencyCoordinator.transfer_and_bill(db, student.id, target)

    mock_transfer.assert_awaited_once_with(db, student.id, target, auto_commit=False)
    assert outcome.bill is not None


@pytest.mark.asyncio
async def test_promote_and_bill_passes_targets(db):
    grade_id, class_id = uuid4(), uuid4()
    student = make_student(class_id=class_id)
    with patch(f"{COORDINATOR}.EnrollmentManager.promote", new_callable=AsyncMock) as mock_promote, \
            patch(f"{COORDINATOR}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_promote.return_value = student
        mock_generate.return_value = make_bill()
        await ConsistencyCoordinator.promote_and_bill(db, student.id, grade_id, class_id)

    mock_promote.assert_awaited_once_with(db, student.id, grade_id, class_id, auto_commit=False)
