"""Unit tests for BillingEngine (mocked session)."""

import logging
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NoActivePeriod, NoTariffsConfigured, Overpayment, PreconditionFailed
from app.models.enums import BillingFrequency, BillItemStatus, BillStatus, TariffType
from app.services.billing_engine import BillingEngine
from tests.conftest import make_bill, make_class, make_grade, make_student, make_tariff, make_term, make_year

ENGINE = "app.services.billing_engine"


@pytest.fixture
def db():
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def period():
    year = make_year(start=date(2025, 9, 1), end=date(2026, 7, 15))
    term = make_term(year, start=date(2025, 9, 8), end=date(2025, 12, 12))
    return year, term


# --- generate ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_builds_bill_from_tariffs(db, period):
    year, term = period
    student = make_student(class_id=uuid4())
    tariffs = [
        make_tariff("300.00", BillingFrequency.PER_TERM, TariffType.TUITION, "Tuition"),
        make_tariff("25.00", BillingFrequency.PER_MONTH, TariffType.MEAL, "Lunch"),
    ]

    with patch(f"{ENGINE}.EnrollmentManager.get_student", new_callable=AsyncMock) as mock_student, \
            patch(f"{ENGINE}.PeriodRegistry.require_current", new_callable=AsyncMock) as mock_period, \
            patch(f"{ENGINE}.CatalogService.billable_tariffs", new_callable=AsyncMock) as mock_tariffs, \
            patch(f"{ENGINE}.BillingEngine._next_bill_number", new_callable=AsyncMock) as mock_number:
        mock_student.return_value = student
        mock_period.return_value = (year, term)
        mock_tariffs.return_value = tariffs
        mock_number.return_value = "BILL2025090001"

        bill = await BillingEngine.generate(db, student.id)

    # Sep..Dec is four calendar months of lunch
    assert bill.subtotal == Decimal("400.00")
    assert bill.total_amount == Decimal("400.00")
    assert bill.balance == Decimal("400.00")
    assert bill.paid_amount == Decimal("0.00")
    assert bill.status == BillStatus.PENDING
    assert bill.bill_number == "BILL2025090001"
    assert bill.due_date == term.start_date + timedelta(days=30)
    assert bill.term_id == term.id
    assert bill.academic_year_id == year.id
    assert [i["amount"] for i in bill.line_items] == ["300.00", "100.00"]
    assert [i.position for i in bill.items] == [0, 1]
    assert all(i.status == BillItemStatus.PENDING for i in bill.items)
    assert sum(i.amount for i in bill.items) == bill.subtotal
    assert "Auto-generated bill for Term 1" in bill.notes
    db.add.assert_called_once_with(bill)
    assert db.commit.called


@pytest.mark.asyncio
async def test_generate_unassigned_student(db):
    student = make_student()
    with patch(f"{ENGINE}.EnrollmentManager.get_student", new_callable=AsyncMock) as mock_student:
        mock_student.return_value = student
        with pytest.raises(PreconditionFailed):
            await BillingEngine.generate(db, student.id)
    assert not db.add.called


@pytest.mark.asyncio
async def test_generate_without_tariffs(db, period):
    student = make_student(class_id=uuid4())
    with patch(f"{ENGINE}.EnrollmentManager.get_student", new_callable=AsyncMock) as mock_student, \
            patch(f"{ENGINE}.PeriodRegistry.require_current", new_callable=AsyncMock) as mock_period, \
            patch(f"{ENGINE}.CatalogService.billable_tariffs", new_callable=AsyncMock) as mock_tariffs:
        mock_student.return_value = student
        mock_period.return_value = period
        mock_tariffs.return_value = []
        with pytest.raises(NoTariffsConfigured) as exc_info:
            await BillingEngine.generate(db, student.id)

    assert exc_info.value.recoverable is True
    assert exc_info.value.details["class_id"] == str(student.class_id)
    assert db.rollback.called


@pytest.mark.asyncio
async def test_generate_without_active_period(db):
    student = make_student(class_id=uuid4())
    with patch(f"{ENGINE}.EnrollmentManager.get_student", new_callable=AsyncMock) as mock_student, \
            patch(f"{ENGINE}.PeriodRegistry.require_current", new_callable=AsyncMock) as mock_period:
        mock_student.return_value = student
        mock_period.side_effect = NoActivePeriod("No active academic year covers today")
        with pytest.raises(NoActivePeriod):
            await BillingEngine.generate(db, student.id)


@pytest.mark.asyncio
async def test_generate_flags_repeated_one_time_tariff(db, period, caplog):
    student = make_student(class_id=uuid4())
    registration = make_tariff("50.00", BillingFrequency.ONE_TIME, TariffType.OTHER, "Registration")

    with patch(f"{ENGINE}.EnrollmentManager.get_student", new_callable=AsyncMock) as mock_student, \
            patch(f"{ENGINE}.PeriodRegistry.require_current", new_callable=AsyncMock) as mock_period, \
            patch(f"{ENGINE}.CatalogService.billable_tariffs", new_callable=AsyncMock) as mock_tariffs, \
            patch(f"{ENGINE}.BillingEngine._next_bill_number", new_callable=AsyncMock) as mock_number, \
            patch(f"{ENGINE}.BillingEngine._one_time_already_billed", new_callable=AsyncMock) as mock_seen:
        mock_student.return_value = student
        mock_period.return_value = period
        mock_tariffs.return_value = [registration]
        mock_number.return_value = "BILL2025090002"
        mock_seen.return_value = True

        with caplog.at_level(logging.WARNING, logger=ENGINE):
            bill = await BillingEngine.generate(db, student.id)

    assert bill.subtotal == Decimal("50.00")
    assert "One-time tariff billed again" in caplog.text


@pytest.mark.asyncio
async def test_next_bill_number_continues_monthly_sequence(db):
    db.scalar.return_value = "BILL2025100007"
    number = await BillingEngine._next_bill_number(db, date(2025, 10, 3))
    assert number == "BILL2025100008"


@pytest.mark.asyncio
async def test_next_bill_number_starts_each_month_at_one(db):
    db.scalar.return_value = None
    number = await BillingEngine._next_bill_number(db, date(2025, 11, 1))
    assert number == "BILL2025110001"


@pytest.mark.asyncio
async def test_batch_reports_failures_per_student(db):
    grade = make_grade()
    class_room = make_class(grade)
    ok = make_student(class_id=class_room.id, number="2025-001")
    failing = make_student(class_id=class_room.id, number="2025-002")
    bill = make_bill()

    with patch(f"{ENGINE}.BillingEngine.generate", new_callable=AsyncMock) as mock_generate:
        mock_generate.side_effect = [bill, NoTariffsConfigured("No active tariffs", {})]
        summary = await BillingEngine._generate_batch(db, [ok, failing])

    assert summary["total_students"] == 2
    assert summary["successful"] == 1
    assert summary["failed"] == 1
    assert summary["generated"] == [bill]
    assert summary["errors"][0]["student_id"] == failing.id
    assert summary["errors"][0]["code"] == "NO_TARIFFS_CONFIGURED"


# --- payments ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_record_payment_locks_and_commits(db):
    bill = make_bill(("100.00",))
    with patch(f"{ENGINE}.BillingEngine.get_bill", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = bill
        result = await BillingEngine.record_payment(db, bill.id, Decimal("100.00"), "cash")

    mock_get.assert_awaited_once_with(db, bill.id, for_update=True)
    assert result.status == BillStatus.PAID
    assert db.commit.called


@pytest.mark.asyncio
async def test_record_payment_overpayment_rolls_back(db):
    bill = make_bill(("100.00",))
    with patch(f"{ENGINE}.BillingEngine.get_bill", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = bill
        with pytest.raises(Overpayment):
            await BillingEngine.record_payment(db, bill.id, Decimal("150.00"))

    assert db.rollback.called
    assert not db.commit.called


@pytest.mark.asyncio
async def test_record_item_payment_updates_bill(db):
    bill = make_bill(("100.00", "50.00"))
    item = bill.items[1]
    with patch(f"{ENGINE}.BillingEngine.get_bill_item", new_callable=AsyncMock) as mock_item, \
            patch(f"{ENGINE}.BillingEngine.get_bill", new_callable=AsyncMock) as mock_bill:
        mock_item.return_value = item
        mock_bill.return_value = bill
        result = await BillingEngine.record_item_payment(db, item.id, Decimal("50.00"))

    assert result is item
    assert item.status == BillItemStatus.PAID
    assert bill.paid_amount == Decimal("50.00")
    assert bill.balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_mark_overdue_counts_changed_bills(db):
    today = date(2025, 10, 1)
    late = make_bill(due_date=today - timedelta(days=3))
    also_late = make_bill(due_date=today - timedelta(days=1))
    result = MagicMock()
    result.scalars.return_value.all.return_value = [late, also_late]
    db.execute.return_value = result

    with patch(f"{ENGINE}.get_today", return_value=today):
        count = await BillingEngine.mark_overdue(db)

    assert count == 2
    assert late.status == BillStatus.OVERDUE
    assert db.commit.called


@pytest.mark.asyncio
async def test_billing_summary_skips_cancelled_totals(db):
    year_id = uuid4()
    result = MagicMock()
    result.all.return_value = [
        (BillStatus.PAID, 2, Decimal("200.00"), Decimal("200.00"), Decimal("0.00")),
        (BillStatus.PENDING, 1, Decimal("150.00"), Decimal("50.00"), Decimal("100.00")),
        (BillStatus.CANCELLED, 1, Decimal("80.00"), Decimal("0.00"), Decimal("80.00")),
    ]
    db.execute.return_value = result

    with patch(f"{ENGINE}.PeriodRegistry.get_academic_year", new_callable=AsyncMock):
        summary = await BillingEngine.billing_summary(db, year_id)

    assert summary["total_bills"] == 4
    assert summary["total_amount"] == Decimal("350.00")
    assert summary["paid_amount"] == Decimal("250.00")
    assert summary["outstanding_amount"] == Decimal("100.00")
    assert summary["bills_by_status"] == {"pending": 1, "overdue": 0, "paid": 2, "cancelled": 1}


def test_due_date_follows_term_start(period):
    _, term = period
    assert BillingEngine.due_date_for(term) == date(2025, 10, 8)
