"""Student registration, profile updates and bulk promotion."""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import LedgerError, PreconditionFailed
from app.database import transaction
from app.models.academic import ClassRoom
from app.models.enums import StudentStatus
from app.models.student import Student
from app.services.consistency_coordinator import ConsistencyCoordinator, EnrollmentOutcome
from app.services.enrollment_manager import EnrollmentManager
from app.utils.time import get_today

logger = logging.getLogger(__name__)

MIN_AGE = 3
MAX_AGE = 18


class StudentService:
    @staticmethod
    async def list_students(
        db: AsyncSession,
        class_id: Optional[UUID] = None,
        grade_id: Optional[UUID] = None,
        status: Optional[StudentStatus] = None,
        unassigned: bool = False,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Student], int]:
        stmt = select(Student)
        if class_id:
            stmt = stmt.where(Student.class_id == class_id)
        if grade_id:
            stmt = stmt.join(ClassRoom, ClassRoom.id == Student.class_id).where(ClassRoom.grade_id == grade_id)
        if status:
            stmt = stmt.where(Student.status == status)
        if unassigned:
            stmt = stmt.where(Student.class_id.is_(None))
        if search:
            term = f"%{search}%"
            stmt = stmt.where(
                Student.first_name.ilike(term)
                | Student.last_name.ilike(term)
                | Student.student_number.ilike(term)
            )

        total = await db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await db.execute(
            stmt.order_by(Student.last_name, Student.first_name)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    @staticmethod
    def _check_age(date_of_birth: Optional[date], today: date) -> None:
        if date_of_birth is None:
            return
        age = today.year - date_of_birth.year - ((today.month, today.day) < (date_of_birth.month, date_of_birth.day))
        if not MIN_AGE <= age <= MAX_AGE:
            raise PreconditionFailed(
                f"Student age must be between {MIN_AGE} and {MAX_AGE} years", {"age": age}
            )

    @staticmethod
    async def _check_email_free(db: AsyncSession, email: Optional[str], exclude_id: Optional[UUID] = None) -> None:
        if not email:
            return
        stmt = select(Student.id).where(func.lower(Student.email) == email.lower())
        if exclude_id:
            stmt = stmt.where(Student.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise PreconditionFailed("A student with this email already exists", {"email": email})

    @staticmethod
    async def _next_student_number(db: AsyncSession, year: int) -> str:
        """{year}-{seq:03d}; the sequence restarts every enrollment year."""
        prefix = f"{year}-"
        await db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f"student_number:{year}"))))
        last = await db.scalar(
            select(func.max(Student.student_number)).where(Student.student_number.like(f"{prefix}%"))
        )
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:03d}"

    @staticmethod
    async def register_student(
        db: AsyncSession,
        first_name: str,
        last_name: str,
        email: Optional[str] = None,
        date_of_birth: Optional[date] = None,
        enrollment_date: Optional[date] = None,
        parent_name: Optional[str] = None,
        parent_email: Optional[str] = None,
        parent_phone: Optional[str] = None,
        class_id: Optional[UUID] = None,
        auto_commit: bool = True,
    ) -> EnrollmentOutcome:
        """
        Create an active student. With class_id the student is placed and
        billed in the same transaction; a class without tariffs still
        enrolls, any other failure undoes the registration.
        """
        today = get_today()
        enrollment_date = enrollment_date or today
        async with transaction(db, auto_commit):
            StudentService._check_age(date_of_birth, today)
            await StudentService._check_email_free(db, email)

            student = Student(
                student_number=await StudentService._next_student_number(db, enrollment_date.year),
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=email,
                date_of_birth=date_of_birth,
                enrollment_date=enrollment_date,
                parent_name=parent_name,
                parent_email=parent_email,
                parent_phone=parent_phone,
                status=StudentStatus.ACTIVE,
                class_id=None,
            )
            db.add(student)
            await db.flush()

            if class_id is not None:
                outcome = await ConsistencyCoordinator.assign_and_bill(
                    db, student.id, class_id, auto_commit=False
                )
            else:
                outcome = EnrollmentOutcome(student=student)

        logger.info(
            "Student registered",
            extra={
                "student_id": str(student.id),
                "student_number": student.student_number,
                "class_id": str(class_id) if class_id else None,
            },
        )
        return outcome

    @staticmethod
    async def update_student(
        db: AsyncSession,
        student_id: UUID,
        updates: Dict[str, Any],
        auto_commit: bool = True,
    ) -> Student:
        """Profile fields only; class and status change through the enrollment operations."""
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            if "email" in updates and updates["email"] != student.email:
                await StudentService._check_email_free(db, updates["email"], exclude_id=student.id)
            if "date_of_birth" in updates:
                StudentService._check_age(updates["date_of_birth"], get_today())
            for field, value in updates.items():
                setattr(student, field, value)

        logger.info(
            "Student updated",
            extra={"student_id": str(student_id), "fields": sorted(updates.keys())},
        )
        return student

    @staticmethod
    async def bulk_promote(
        db: AsyncSession,
        student_ids: List[UUID],
        target_grade_id: Optional[UUID] = None,
        target_class_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Promote each student in its own transaction and report per-student failures."""
        promoted: List[EnrollmentOutcome] = []
        errors: List[Dict[str, Any]] = []
        for student_id in student_ids:
            try:
                outcome = await ConsistencyCoordinator.promote_and_bill(
                    db, student_id, target_grade_id, target_class_id
                )
                promoted.append(outcome)
            except LedgerError as e:
                errors.append({"student_id": student_id, "code": e.code, "error": e.message})

        logger.info(
            "Bulk promotion finished",
            extra={"total": len(student_ids), "successful": len(promoted), "failed": len(errors)},
        )
        return {
            "promoted": promoted,
            "errors": errors,
            "total_processed": len(student_ids),
            "successful": len(promoted),
            "failed": len(errors),
        }
