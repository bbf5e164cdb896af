"""Class membership and the enrollment counters.

ClassRoom.current_enrollment only changes through _increment/_decrement.
The increment is one conditional UPDATE, so the capacity check and the
write happen atomically in the database; concurrent assigns to the last
free seat cannot both succeed. Student rows are locked FOR UPDATE for
the whole operation, and class rows are locked in id order whenever two
counters move together.
"""

import logging
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AlreadyAssigned,
    CapacityExceeded,
    InvalidState,
    NoAvailableClass,
    NotFound,
    PreconditionFailed,
)
from app.database import transaction
from app.models.academic import ClassRoom, Grade
from app.models.enums import StudentStatus
from app.models.student import Student
from app.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


class EnrollmentManager:
    # --- Lookups --------------------------------------------------------

    @staticmethod
    async def get_student(db: AsyncSession, student_id: UUID, for_update: bool = False) -> Student:
        stmt = select(Student).where(Student.id == student_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        student = result.scalar_one_or_none()
        if not student:
            raise NotFound.for_entity("Student", student_id)
        return student

    @staticmethod
    async def get_class(db: AsyncSession, class_id: UUID) -> ClassRoom:
        result = await db.execute(
            select(ClassRoom)
            .where(ClassRoom.id == class_id)
            .execution_options(populate_existing=True)
        )
        class_room = result.scalar_one_or_none()
        if not class_room:
            raise NotFound.for_entity("Class", class_id)
        return class_room

    @staticmethod
    async def _lock_classes(db: AsyncSession, class_ids: Iterable[UUID]) -> None:
        """Lock class rows in a stable order so paired counter moves cannot deadlock."""
        ids = {cid for cid in class_ids if cid is not None}
        if ids:
            await db.execute(
                select(ClassRoom.id).where(ClassRoom.id.in_(ids)).order_by(ClassRoom.id).with_for_update()
            )

    # --- Counter primitives ---------------------------------------------

    @staticmethod
    async def _increment(db: AsyncSession, class_id: UUID) -> None:
        result = await db.execute(
            update(ClassRoom)
            .where(
                ClassRoom.id == class_id,
                ClassRoom.is_active.is_(True),
                ClassRoom.current_enrollment < ClassRoom.capacity,
            )
            .values(current_enrollment=ClassRoom.current_enrollment + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        # Nothing matched: work out which guard refused
        class_room = await EnrollmentManager.get_class(db, class_id)
        if not class_room.is_active:
            raise PreconditionFailed(
                f"Class {class_room.full_name} is not active", {"class_id": str(class_id)}
            )
        raise CapacityExceeded(
            f"Class {class_room.full_name} is full ({class_room.current_enrollment}/{class_room.capacity})",
            {
                "class_id": str(class_id),
                "capacity": class_room.capacity,
                "current_enrollment": class_room.current_enrollment,
            },
        )

    @staticmethod
    async def _decrement(db: AsyncSession, class_id: UUID) -> None:
        result = await db.execute(
            update(ClassRoom)
            .where(ClassRoom.id == class_id, ClassRoom.current_enrollment > 0)
            .values(current_enrollment=ClassRoom.current_enrollment - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Counter already at zero; reconcile_enrollment repairs the drift
            logger.warning(
                "Enrollment counter already at zero on decrement",
                extra={"class_id": str(class_id)},
            )

    @staticmethod
    def _require_active(student: Student) -> None:
        if not student.is_active:
            raise InvalidState(
                f"Student {student.student_number} is {StudentStatus(student.status).value}",
                {"student_id": str(student.id), "status": StudentStatus(student.status).value},
            )

    # --- Operations -----------------------------------------------------

    @staticmethod
    async def assign(
        db: AsyncSession, student_id: UUID, class_id: UUID, auto_commit: bool = True
    ) -> Student:
        """Place an unassigned active student into a class with free space."""
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            EnrollmentManager._require_active(student)
            if student.class_id is not None:
                raise AlreadyAssigned(
                    f"Student {student.student_number} already belongs to a class",
                    {"student_id": str(student.id), "class_id": str(student.class_id)},
                )
            await EnrollmentManager._increment(db, class_id)
            student.class_id = class_id

        logger.info(
            "Student assigned to class",
            extra={"student_id": str(student_id), "class_id": str(class_id)},
        )
        return student

    @staticmethod
    async def remove(db: AsyncSession, student_id: UUID, auto_commit: bool = True) -> Student:
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            previous = student.class_id
            if previous is None:
                raise InvalidState(
                    f"Student {student.student_number} is not assigned to a class",
                    {"student_id": str(student.id)},
                )
            await EnrollmentManager._decrement(db, previous)
            student.class_id = None

        logger.info(
            "Student removed from class",
            extra={"student_id": str(student_id), "class_id": str(previous)},
        )
        return student

    @staticmethod
    async def _move(db: AsyncSession, student: Student, target_class_id: UUID) -> Optional[UUID]:
        """Swap counters and reassign in one step. Returns the previous class id."""
        previous = student.class_id
        if previous == target_class_id:
            raise PreconditionFailed(
                f"Student {student.student_number} is already in this class",
                {"student_id": str(student.id), "class_id": str(target_class_id)},
            )
        await EnrollmentManager._lock_classes(db, [previous, target_class_id])
        await EnrollmentManager._increment(db, target_class_id)
        if previous is not None:
            await EnrollmentManager._decrement(db, previous)
        student.class_id = target_class_id
        return previous

    @staticmethod
    async def transfer(
        db: AsyncSession, student_id: UUID, new_class_id: UUID, auto_commit: bool = True
    ) -> Student:
        """Move a student to another class; counters and class_id change together."""
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            EnrollmentManager._require_active(student)
            previous = await EnrollmentManager._move(db, student, new_class_id)

        logger.info(
            "Student transferred",
            extra={
                "student_id": str(student_id),
                "from_class_id": str(previous) if previous else None,
                "to_class_id": str(new_class_id),
            },
        )
        return student

    @staticmethod
    async def find_available_class(db: AsyncSession, grade_id: UUID) -> Optional[ClassRoom]:
        """First active class of the grade with a free seat, by class name."""
        result = await db.execute(
            select(ClassRoom)
            .where(
                ClassRoom.grade_id == grade_id,
                ClassRoom.is_active.is_(True),
                ClassRoom.current_enrollment < ClassRoom.capacity,
            )
            .order_by(ClassRoom.name)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve_promotion_target(
        db: AsyncSession,
        student: Student,
        target_grade_id: Optional[UUID] = None,
        target_class_id: Optional[UUID] = None,
    ) -> ClassRoom:
        """Pick the class a student is promoted into."""
        current_class = await EnrollmentManager.get_class(db, student.class_id)
        current_grade = await db.get(Grade, current_class.grade_id)

        if target_grade_id is not None:
            target_grade = await db.get(Grade, target_grade_id)
            if not target_grade:
                raise NotFound.for_entity("Grade", target_grade_id)
        else:
            target_grade = await CatalogService.next_grade(db, current_grade)
            if not target_grade:
                raise PreconditionFailed(
                    f"Grade {current_grade.name} has no next grade to promote into",
                    {"student_id": str(student.id), "grade": current_grade.name},
                )

        if target_grade.id == current_grade.id:
            raise PreconditionFailed(
                f"Student {student.student_number} is already in grade {target_grade.name}",
                {"student_id": str(student.id)},
            )

        if target_class_id is not None:
            target_class = await EnrollmentManager.get_class(db, target_class_id)
            if target_class.grade_id != target_grade.id:
                raise PreconditionFailed(
                    f"Class {target_class.full_name} is not in grade {target_grade.name}",
                    {"class_id": str(target_class.id), "grade_id": str(target_grade.id)},
                )
            if not target_class.can_accept_student():
                if not target_class.is_active:
                    raise PreconditionFailed(
                        f"Class {target_class.full_name} is not active", {"class_id": str(target_class.id)}
                    )
                raise CapacityExceeded(
                    f"Class {target_class.full_name} is full ({target_class.current_enrollment}/{target_class.capacity})",
                    {
                        "class_id": str(target_class.id),
                        "capacity": target_class.capacity,
                        "current_enrollment": target_class.current_enrollment,
                    },
                )
            return target_class

        target_class = await EnrollmentManager.find_available_class(db, target_grade.id)
        if not target_class:
            raise NoAvailableClass(
                f"No active class with free space in grade {target_grade.name}",
                {"grade_id": str(target_grade.id)},
            )
        return target_class

    @staticmethod
    async def promote(
        db: AsyncSession,
        student_id: UUID,
        target_grade_id: Optional[UUID] = None,
        target_class_id: Optional[UUID] = None,
        auto_commit: bool = True,
    ) -> Student:
        """
        Move an assigned student into a class of the next grade (level + 1),
        or of target_grade_id when given. Without target_class_id the first
        active class with space in that grade, by name, is used.
        """
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            EnrollmentManager._require_active(student)
            if student.class_id is None:
                raise InvalidState(
                    f"Student {student.student_number} must be in a class to be promoted",
                    {"student_id": str(student.id)},
                )
            target = await EnrollmentManager.resolve_promotion_target(
                db, student, target_grade_id, target_class_id
            )
            previous = await EnrollmentManager._move(db, student, target.id)

        logger.info(
            "Student promoted",
            extra={
                "student_id": str(student_id),
                "from_class_id": str(previous),
                "to_class_id": str(target.id),
            },
        )
        return student

    @staticmethod
    async def _end_membership(
        db: AsyncSession,
        student_id: UUID,
        status: StudentStatus,
        reason: Optional[str],
        auto_commit: bool,
    ) -> Student:
        async with transaction(db, auto_commit):
            student = await EnrollmentManager.get_student(db, student_id, for_update=True)
            if student.status != StudentStatus.ACTIVE:
                raise InvalidState(
                    f"Student {student.student_number} is already {StudentStatus(student.status).value}",
                    {"student_id": str(student.id), "status": StudentStatus(student.status).value},
                )
            previous = student.class_id
            if previous is not None:
                await EnrollmentManager._decrement(db, previous)
            student.class_id = None
            student.status = status

        logger.info(
            "Student status changed",
            extra={
                "student_id": str(student_id),
                "status": status.value,
                "class_id": str(previous) if previous else None,
                "reason": reason,
            },
        )
        return student

    @staticmethod
    async def graduate(db: AsyncSession, student_id: UUID, auto_commit: bool = True) -> Student:
        return await EnrollmentManager._end_membership(
            db, student_id, StudentStatus.GRADUATED, None, auto_commit
        )

    @staticmethod
    async def deactivate(
        db: AsyncSession, student_id: UUID, reason: Optional[str] = None, auto_commit: bool = True
    ) -> Student:
        return await EnrollmentManager._end_membership(
            db, student_id, StudentStatus.INACTIVE, reason, auto_commit
        )

    @staticmethod
    async def mark_transferred(
        db: AsyncSession, student_id: UUID, reason: Optional[str] = None, auto_commit: bool = True
    ) -> Student:
        return await EnrollmentManager._end_membership(
            db, student_id, StudentStatus.TRANSFERRED, reason, auto_commit
        )

    @staticmethod
    async def students_in_class(db: AsyncSession, class_id: UUID) -> List[Student]:
        result = await db.execute(
            select(Student).where(Student.class_id == class_id).order_by(Student.last_name, Student.first_name)
        )
        return list(result.scalars().all())
