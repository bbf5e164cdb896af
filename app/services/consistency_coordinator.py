"""Enrollment changes and their billing side effect, as one unit of work.

The enrollment step and the bill generation share a transaction. Bill
generation runs inside a savepoint: when it fails with the recoverable
NoTariffsConfigured the savepoint is discarded, a warning is logged and
the enrollment still commits. Any other failure rolls everything back.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NoTariffsConfigured
from app.database import transaction
from app.models.billing import Bill
from app.models.student import Student
from app.services.billing_engine import BillingEngine
from app.services.enrollment_manager import EnrollmentManager

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentOutcome:
    """Result of an enrollment change; bill is None when nothing was billable."""
    student: Student
    bill: Optional[Bill] = None
    billing_skipped_reason: Optional[str] = None


class ConsistencyCoordinator:
    @staticmethod
    async def _bill_after(
        db: AsyncSession,
        action: str,
        enroll: Callable[[], Awaitable[Student]],
        auto_commit: bool,
    ) -> EnrollmentOutcome:
        async with transaction(db, auto_commit):
            student = await enroll()
            outcome = EnrollmentOutcome(student=student)
            try:
                async with db.begin_nested():
                    outcome.bill = await BillingEngine.generate(db, student.id, auto_commit=False)
            except NoTariffsConfigured as e:
                outcome.billing_skipped_reason = e.message
                logger.warning(
                    "Enrollment kept without a bill",
                    extra={
                        "action": action,
                        "student_id": str(student.id),
                        "class_id": e.details.get("class_id"),
                        "reason": e.message,
                    },
                )

        logger.info(
            "Enrollment change committed",
            extra={
                "action": action,
                "student_id": str(student.id),
                "class_id": str(student.class_id),
                "bill_id": str(outcome.bill.id) if outcome.bill else None,
            },
        )
        return outcome

    @staticmethod
    async def assign_and_bill(
        db: AsyncSession, student_id: UUID, class_id: UUID, auto_commit: bool = True
    ) -> EnrollmentOutcome:
        return await ConsistencyCoordinator._bill_after(
            db,
            "assign",
            lambda: EnrollmentManager.assign(db, student_id, class_id, auto_commit=False),
            auto_commit,
        )

    @staticmethod
    async def transfer_and_bill(
        db: AsyncSession, student_id: UUID, new_class_id: UUID, auto_commit: bool = True
    ) -> EnrollmentOutcome:
        return await ConsistencyCoordinator._bill_after(
            db,
            "transfer",
            lambda: EnrollmentManager.transfer(db, student_id, new_class_id, auto_commit=False),
            auto_commit,
        )

    @staticmethod
    async def promote_and_bill(
        db: AsyncSession,
        student_id: UUID,
        target_grade_id: Optional[UUID] = None,
        target_class_id: Optional[UUID] = None,
        auto_commit: bool = True,
    ) -> EnrollmentOutcome:
        return await ConsistencyCoordinator._bill_after(
            db,
            "promote",
            lambda: EnrollmentManager.promote(
                db, student_id, target_grade_id, target_class_id, auto_commit=False
            ),
            auto_commit,
        )
