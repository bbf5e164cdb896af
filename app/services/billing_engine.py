"""Bill generation, payments and the bill state machine.

Every mutation locks the bill row (SELECT ... FOR UPDATE) before reading
its balance, so concurrent payments against one bill serialize and two
partial payments can never together exceed what is owed. The arithmetic
and transition rules themselves live on the Bill and BillItem models.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.exceptions import LedgerError, NoTariffsConfigured, NotFound, PreconditionFailed
from app.database import transaction
from app.models.academic import ClassRoom, Term
from app.models.billing import Bill, BillItem, Tariff
from app.models.enums import BillingFrequency, BillItemStatus, BillStatus, StudentStatus, TariffType
from app.models.student import Student
from app.services.catalog_service import CatalogService
from app.services.enrollment_manager import EnrollmentManager
from app.services.period_registry import PeriodRegistry
from app.services.tariff_calculator import TariffCalculator
from app.utils.money import ZERO, round_money
from app.utils.time import get_today, get_utc_now

logger = logging.getLogger(__name__)


class BillingEngine:
    # --- Lookups --------------------------------------------------------

    @staticmethod
    async def get_bill(db: AsyncSession, bill_id: UUID, for_update: bool = False) -> Bill:
        stmt = select(Bill).options(selectinload(Bill.items)).where(Bill.id == bill_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        bill = result.scalar_one_or_none()
        if not bill:
            raise NotFound.for_entity("Bill", bill_id)
        return bill

    @staticmethod
    async def get_bill_item(db: AsyncSession, item_id: UUID) -> BillItem:
        item = await db.get(BillItem, item_id)
        if not item:
            raise NotFound.for_entity("Bill item", item_id)
        return item

    @staticmethod
    def due_date_for(term: Term) -> date:
        return term.start_date + timedelta(days=settings.BILL_DUE_DAYS)

    @staticmethod
    async def _next_bill_number(db: AsyncSession, issue_date: date) -> str:
        """BILL{yyyy}{mm}{seq:04d}, sequence restarting every month."""
        prefix = f"{settings.BILL_NUMBER_PREFIX}{issue_date.year:04d}{issue_date.month:02d}"
        # Held until commit so concurrent generations cannot pick the same number
        await db.execute(select(func.pg_advisory_xact_lock(func.hashtext(prefix))))
        last = await db.scalar(
            select(func.max(Bill.bill_number)).where(Bill.bill_number.like(f"{prefix}%"))
        )
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:04d}"

    @staticmethod
    async def _one_time_already_billed(db: AsyncSession, student_id: UUID, tariff_id: UUID) -> bool:
        result = await db.execute(
            select(BillItem.id)
            .join(Bill, Bill.id == BillItem.bill_id)
            .where(
                Bill.student_id == student_id,
                Bill.status != BillStatus.CANCELLED,
                BillItem.tariff_id == tariff_id,
            )
            .limit(1)
        )
        return result.first() is not None

    @staticmethod
    def build_line_items(tariffs: List[Tariff], term: Term) -> List[Dict[str, Any]]:
        """Snapshot each tariff's charge for the term, in tariff order."""
        return [
            {
                "tariff_id": str(tariff.id),
                "name": tariff.name,
                "type": TariffType(tariff.type).value,
                "amount": str(TariffCalculator.charge_for(tariff, term)),
                "description": tariff.description,
            }
            for tariff in tariffs
        ]

    # --- Generation -----------------------------------------------------

    @staticmethod
    async def generate(db: AsyncSession, student_id: UUID, auto_commit: bool = True) -> Bill:
        """
        Bill a student for the current term from the class's active tariffs.

        Raises NoTariffsConfigured when the class has none, which enrollment
        callers treat as recoverable, and NoActivePeriod without a current
        year and term.
        """
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            if student.class_id is None:
                raise PreconditionFailed(
                    f"Student {student.student_number} must be assigned to a class to be billed",
                    {"student_id": str(student.id)},
                )
            year, term = await PeriodRegistry.require_current(db)

            tariffs = await CatalogService.billable_tariffs(db, student.class_id)
            if not tariffs:
                raise NoTariffsConfigured(
                    "No active tariffs are attached to the student's class",
                    {"student_id": str(student.id), "class_id": str(student.class_id)},
                )

            for tariff in tariffs:
                if tariff.billing_frequency != BillingFrequency.ONE_TIME:
                    continue
                if await BillingEngine._one_time_already_billed(db, student.id, tariff.id):
                    # Charged again on purpose; flagged for review
                    logger.warning(
                        "One-time tariff billed again",
                        extra={"student_id": str(student.id), "tariff_id": str(tariff.id), "tariff": tariff.name},
                    )

            line_items = BillingEngine.build_line_items(tariffs, term)
            subtotal = round_money(sum((Decimal(item["amount"]) for item in line_items), ZERO))
            now = get_utc_now()

            bill = Bill(
                bill_number=await BillingEngine._next_bill_number(db, now.date()),
                student_id=student.id,
                academic_year_id=year.id,
                term_id=term.id,
                subtotal=subtotal,
                discount=ZERO,
                tax=ZERO,
                total_amount=subtotal,
                paid_amount=ZERO,
                balance=subtotal,
                status=BillStatus.PENDING,
                payment_ledger=None,
                issue_date=now.date(),
                due_date=BillingEngine.due_date_for(term),
                description=f"Term fees for {term.name}",
                line_items=line_items,
                notes=None,
            )
            bill.recalculate()
            bill.add_note(f"Auto-generated bill for {term.name}", now)
            bill.items = [
                BillItem(
                    tariff_id=UUID(item["tariff_id"]),
                    position=position,
                    name=item["name"],
                    description=item["description"],
                    type=TariffType(item["type"]),
                    amount=Decimal(item["amount"]),
                    paid_amount=ZERO,
                    balance=Decimal(item["amount"]),
                    status=BillItemStatus.PENDING,
                    payment_history=[],
                )
                for position, item in enumerate(line_items)
            ]
            db.add(bill)

        logger.info(
            "Bill generated for student",
            extra={
                "student_id": str(student_id),
                "bill_id": str(bill.id),
                "bill_number": bill.bill_number,
                "amount": str(bill.total_amount),
            },
        )
        return bill

    @staticmethod
    async def _generate_batch(db: AsyncSession, students: List[Student]) -> Dict[str, Any]:
        # A failed attempt rolls back and expires loaded rows; keep plain values
        roster = [(student.id, student.full_name) for student in students]
        generated, errors = [], []
        for student_id, student_name in roster:
            try:
                bill = await BillingEngine.generate(db, student_id)
                generated.append(bill)
            except LedgerError as e:
                errors.append(
                    {
                        "student_id": student_id,
                        "student_name": student_name,
                        "code": e.code,
                        "error": e.message,
                    }
                )
        return {
            "generated": generated,
            "errors": errors,
            "total_students": len(roster),
            "successful": len(generated),
            "failed": len(errors),
        }

    @staticmethod
    async def generate_for_class(db: AsyncSession, class_id: UUID) -> Dict[str, Any]:
        """Bill every active student in a class; one transaction per student."""
        await CatalogService.get_class(db, class_id)
        result = await db.execute(
            select(Student)
            .where(Student.class_id == class_id, Student.status == StudentStatus.ACTIVE)
            .order_by(Student.student_number)
        )
        students = list(result.scalars().all())
        summary = await BillingEngine._generate_batch(db, students)
        logger.info(
            "Class billing finished",
            extra={"class_id": str(class_id), "successful": summary["successful"], "failed": summary["failed"]},
        )
        return summary

    @staticmethod
    async def generate_for_grade(db: AsyncSession, grade_id: UUID) -> Dict[str, Any]:
        await CatalogService.get_grade(db, grade_id)
        result = await db.execute(
            select(Student)
            .join(ClassRoom, ClassRoom.id == Student.class_id)
            .where(ClassRoom.grade_id == grade_id, Student.status == StudentStatus.ACTIVE)
            .order_by(Student.student_number)
        )
        students = list(result.scalars().all())
        summary = await BillingEngine._generate_batch(db, students)
        logger.info(
            "Grade billing finished",
            extra={"grade_id": str(grade_id), "successful": summary["successful"], "failed": summary["failed"]},
        )
        return summary

    # --- Payments and adjustments ---------------------------------------

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        bill_id: UUID,
        amount: Decimal,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        auto_commit: bool = True,
    ) -> Bill:
        async with transaction(db, auto_commit):
            bill = await BillingEngine.get_bill(db, bill_id, for_update=True)
            bill.apply_payment(amount, get_utc_now(), method=method, reference=reference)

        logger.info(
            "Payment recorded",
            extra={
                "bill_id": str(bill.id),
                "amount": str(round_money(amount)),
                "balance": str(bill.balance),
                "status": BillStatus(bill.status).value,
            },
        )
        return bill

    @staticmethod
    async def reverse_payment(
        db: AsyncSession, bill_id: UUID, amount: Decimal, reason: str, auto_commit: bool = True
    ) -> Bill:
        async with transaction(db, auto_commit):
            bill = await BillingEngine.get_bill(db, bill_id, for_update=True)
            bill.reverse_payment(amount, reason, get_utc_now())

        logger.info(
            "Payment reversed",
            extra={"bill_id": str(bill.id), "amount": str(round_money(amount)), "reason": reason},
        )
        return bill

    @staticmethod
    async def cancel(db: AsyncSession, bill_id: UUID, reason: str, auto_commit: bool = True) -> Bill:
        async with transaction(db, auto_commit):
            bill = await BillingEngine.get_bill(db, bill_id, for_update=True)
            bill.cancel(reason, get_utc_now())

        logger.info("Bill cancelled", extra={"bill_id": str(bill.id), "reason": reason})
        return bill

    @staticmethod
    async def apply_discount(
        db: AsyncSession, bill_id: UUID, discount: Decimal, reason: str, auto_commit: bool = True
    ) -> Bill:
        async with transaction(db, auto_commit):
            bill = await BillingEngine.get_bill(db, bill_id, for_update=True)
            bill.apply_discount(discount, reason, get_utc_now())

        logger.info(
            "Discount applied",
            extra={"bill_id": str(bill.id), "discount": str(bill.discount), "total": str(bill.total_amount)},
        )
        return bill

    @staticmethod
    async def record_item_payment(
        db: AsyncSession,
        item_id: UUID,
        amount: Decimal,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        auto_commit: bool = True,
    ) -> BillItem:
        """Pay one bill line; the bill's paid amount becomes the sum of its items."""
        async with transaction(db, auto_commit):
            item = await BillingEngine.get_bill_item(db, item_id)
            bill = await BillingEngine.get_bill(db, item.bill_id, for_update=True)
            item = next(i for i in bill.items if i.id == item_id)
            bill.apply_item_payment(item, amount, get_utc_now(), method=method, reference=reference, notes=notes)

        logger.info(
            "Item payment recorded",
            extra={
                "bill_id": str(bill.id),
                "item_id": str(item_id),
                "amount": str(round_money(amount)),
                "item_status": BillItemStatus(item.status).value,
            },
        )
        return item

    @staticmethod
    async def mark_overdue(db: AsyncSession, auto_commit: bool = True) -> int:
        """Move every pending bill past its due date to overdue. Safe to re-run."""
        today = get_today()
        async with transaction(db, auto_commit):
            result = await db.execute(
                select(Bill)
                .where(Bill.status == BillStatus.PENDING, Bill.due_date < today)
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            count = sum(1 for bill in result.scalars().all() if bill.mark_overdue(today))

        logger.info("Marked overdue bills", extra={"count": count, "as_of": today.isoformat()})
        return count

    # --- Reads ----------------------------------------------------------

    @staticmethod
    async def student_bills(db: AsyncSession, student_id: UUID) -> List[Bill]:
        await EnrollmentManager.get_student(db, student_id)
        result = await db.execute(
            select(Bill)
            .options(selectinload(Bill.items))
            .where(Bill.student_id == student_id)
            .order_by(Bill.issue_date.desc(), Bill.bill_number.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def student_outstanding_balance(db: AsyncSession, student_id: UUID) -> Decimal:
        await EnrollmentManager.get_student(db, student_id)
        total = await db.scalar(
            select(func.coalesce(func.sum(Bill.balance), 0)).where(
                Bill.student_id == student_id,
                Bill.status.in_([BillStatus.PENDING, BillStatus.OVERDUE]),
            )
        )
        return round_money(Decimal(total or ZERO))

    @staticmethod
    async def billing_summary(db: AsyncSession, year_id: UUID) -> Dict[str, Any]:
        await PeriodRegistry.get_academic_year(db, year_id)
        result = await db.execute(
            select(
                Bill.status,
                func.count(Bill.id),
                func.coalesce(func.sum(Bill.total_amount), 0),
                func.coalesce(func.sum(Bill.paid_amount), 0),
                func.coalesce(func.sum(Bill.balance), 0),
            )
            .where(Bill.academic_year_id == year_id)
            .group_by(Bill.status)
        )
        summary: Dict[str, Any] = {
            "academic_year_id": year_id,
            "total_bills": 0,
            "total_amount": ZERO,
            "paid_amount": ZERO,
            "outstanding_amount": ZERO,
            "bills_by_status": {status.value: 0 for status in BillStatus},
        }
        for status, count, total, paid, balance in result.all():
            summary["total_bills"] += count
            summary["bills_by_status"][BillStatus(status).value] = count
            if status == BillStatus.CANCELLED:
                continue
            summary["total_amount"] += Decimal(total)
            summary["paid_amount"] += Decimal(paid)
            summary["outstanding_amount"] += Decimal(balance)
        for key in ("total_amount", "paid_amount", "outstanding_amount"):
            summary[key] = round_money(summary[key])
        return summary
