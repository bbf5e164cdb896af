"""Grades, classes, tariffs and the class-tariff association."""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFound, PreconditionFailed
from app.database import transaction
from app.models.academic import ClassRoom, Grade, class_tariffs
from app.models.billing import Tariff
from app.models.enums import BillingFrequency, TariffType
from app.models.student import Student
from app.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

GRADE_NAME_PATTERN = re.compile(r"^[NP]\d+$")
MIN_CAPACITY = 1
MAX_CAPACITY = 100


class CatalogService:
    # --- Grades ---------------------------------------------------------

    @staticmethod
    async def get_grade(db: AsyncSession, grade_id: UUID) -> Grade:
        grade = await db.get(Grade, grade_id)
        if not grade:
            raise NotFound.for_entity("Grade", grade_id)
        return grade

    @staticmethod
    async def list_grades(db: AsyncSession, active_only: bool = False) -> List[Grade]:
        stmt = select(Grade).order_by(Grade.level)
        if active_only:
            stmt = stmt.where(Grade.is_active.is_(True))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def next_grade(db: AsyncSession, grade: Grade) -> Optional[Grade]:
        """Active grade one level up, if any."""
        result = await db.execute(
            select(Grade).where(Grade.level == grade.level + 1, Grade.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create_grade(
        db: AsyncSession,
        name: str,
        level: int,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> Grade:
        name = name.strip().upper()
        async with transaction(db, auto_commit):
            if not GRADE_NAME_PATTERN.match(name):
                raise PreconditionFailed(
                    f"Grade name {name} must look like N1 or P3", {"name": name}
                )
            clash = await db.execute(
                select(Grade.id).where((Grade.name == name) | (Grade.level == level))
            )
            if clash.first():
                raise PreconditionFailed(
                    f"A grade named {name} or with level {level} already exists",
                    {"name": name, "level": level},
                )
            grade = Grade(name=name, level=level, description=description, is_active=True)
            db.add(grade)

        logger.info("Grade created", extra={"grade_id": str(grade.id), "name": name, "level": level})
        return grade

    @staticmethod
    async def delete_grade(db: AsyncSession, grade_id: UUID, auto_commit: bool = True) -> None:
        async with transaction(db, auto_commit):
            grade = await CatalogService.get_grade(db, grade_id)
            class_count = await db.scalar(
                select(func.count(ClassRoom.id)).where(ClassRoom.grade_id == grade.id)
            )
            if class_count:
                raise PreconditionFailed(
                    f"Grade {grade.name} still has {class_count} class(es)",
                    {"grade_id": str(grade.id), "classes": class_count},
                )
            await db.delete(grade)

        logger.info("Grade deleted", extra={"grade_id": str(grade_id)})

    # --- Classes --------------------------------------------------------

    @staticmethod
    async def get_class(db: AsyncSession, class_id: UUID) -> ClassRoom:
        class_room = await db.get(ClassRoom, class_id)
        if not class_room:
            raise NotFound.for_entity("Class", class_id)
        return class_room

    @staticmethod
    async def list_classes(db: AsyncSession, grade_id: Optional[UUID] = None) -> List[ClassRoom]:
        stmt = select(ClassRoom).order_by(ClassRoom.full_name)
        if grade_id:
            stmt = stmt.where(ClassRoom.grade_id == grade_id)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _check_capacity(capacity: int) -> None:
        if not MIN_CAPACITY <= capacity <= MAX_CAPACITY:
            raise PreconditionFailed(
                f"Capacity must be between {MIN_CAPACITY} and {MAX_CAPACITY}",
                {"capacity": capacity},
            )

    @staticmethod
    async def create_class(
        db: AsyncSession,
        grade_id: UUID,
        name: str,
        capacity: int,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> ClassRoom:
        name = name.strip().upper()
        async with transaction(db, auto_commit):
            grade = await CatalogService.get_grade(db, grade_id)
            CatalogService._check_capacity(capacity)
            clash = await db.execute(
                select(ClassRoom.id).where(ClassRoom.grade_id == grade.id, ClassRoom.name == name)
            )
            if clash.first():
                raise PreconditionFailed(
                    f"Class {grade.name}{name} already exists", {"grade_id": str(grade.id), "name": name}
                )
            class_room = ClassRoom(
                grade_id=grade.id,
                name=name,
                full_name=f"{grade.name}{name}",
                capacity=capacity,
                current_enrollment=0,
                description=description,
                is_active=True,
            )
            db.add(class_room)

        logger.info(
            "Class created",
            extra={"class_id": str(class_room.id), "full_name": class_room.full_name, "capacity": capacity},
        )
        return class_room

    @staticmethod
    async def update_class(
        db: AsyncSession,
        class_id: UUID,
        capacity: Optional[int] = None,
        is_active: Optional[bool] = None,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> ClassRoom:
        async with transaction(db, auto_commit):
            result = await db.execute(
                select(ClassRoom)
                .where(ClassRoom.id == class_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            class_room = result.scalar_one_or_none()
            if not class_room:
                raise NotFound.for_entity("Class", class_id)

            if capacity is not None:
                CatalogService._check_capacity(capacity)
                if capacity < class_room.current_enrollment:
                    raise PreconditionFailed(
                        f"Capacity {capacity} is below the current enrollment of {class_room.current_enrollment}",
                        {"class_id": str(class_room.id), "current_enrollment": class_room.current_enrollment},
                    )
                class_room.capacity = capacity
            if is_active is False and class_room.current_enrollment > 0:
                raise PreconditionFailed(
                    f"Class {class_room.full_name} still has students assigned",
                    {"class_id": str(class_room.id), "current_enrollment": class_room.current_enrollment},
                )
            if is_active is not None:
                class_room.is_active = is_active
            if description is not None:
                class_room.description = description

        logger.info("Class updated", extra={"class_id": str(class_id)})
        return class_room

    @staticmethod
    async def delete_class(db: AsyncSession, class_id: UUID, auto_commit: bool = True) -> None:
        async with transaction(db, auto_commit):
            class_room = await CatalogService.get_class(db, class_id)
            assigned = await db.scalar(select(func.count(Student.id)).where(Student.class_id == class_room.id))
            if assigned:
                raise PreconditionFailed(
                    f"Class {class_room.full_name} still has {assigned} student(s)",
                    {"class_id": str(class_room.id)},
                )
            await db.delete(class_room)

        logger.info("Class deleted", extra={"class_id": str(class_id)})

    @staticmethod
    async def reconcile_enrollment(
        db: AsyncSession, class_id: UUID, auto_commit: bool = True
    ) -> Dict[str, Any]:
        """Recount the students pointing at a class and repair the counter if it drifted."""
        async with transaction(db, auto_commit):
            result = await db.execute(
                select(ClassRoom)
                .where(ClassRoom.id == class_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            class_room = result.scalar_one_or_none()
            if not class_room:
                raise NotFound.for_entity("Class", class_id)
            actual = await db.scalar(select(func.count(Student.id)).where(Student.class_id == class_room.id))
            recorded = class_room.current_enrollment
            if actual != recorded:
                class_room.current_enrollment = actual

        drift = actual - recorded
        if drift:
            logger.warning(
                "Enrollment counter drift repaired",
                extra={"class_id": str(class_id), "recorded": recorded, "actual": actual},
            )
        return {"class_id": class_id, "recorded": recorded, "actual": actual, "drift": drift}

    @staticmethod
    async def reconcile_all(db: AsyncSession) -> List[Dict[str, Any]]:
        """Reconcile every class; returns only the ones that drifted."""
        class_ids = (await db.execute(select(ClassRoom.id).order_by(ClassRoom.id))).scalars().all()
        drifted = []
        for class_id in class_ids:
            report = await CatalogService.reconcile_enrollment(db, class_id)
            if report["drift"]:
                drifted.append(report)
        logger.info(
            "Enrollment reconciliation finished",
            extra={"classes": len(class_ids), "drifted": len(drifted)},
        )
        return drifted

    # --- Tariffs --------------------------------------------------------

    @staticmethod
    async def get_tariff(db: AsyncSession, tariff_id: UUID) -> Tariff:
        tariff = await db.get(Tariff, tariff_id)
        if not tariff:
            raise NotFound.for_entity("Tariff", tariff_id)
        return tariff

    @staticmethod
    async def list_tariffs(db: AsyncSession, active_only: bool = False) -> List[Tariff]:
        stmt = select(Tariff).order_by(Tariff.name)
        if active_only:
            stmt = stmt.where(Tariff.is_active.is_(True))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _check_amount(amount: Decimal) -> Decimal:
        amount = round_money(amount)
        if amount <= ZERO:
            raise PreconditionFailed("Tariff amount must be positive", {"amount": str(amount)})
        return amount

    @staticmethod
    async def create_tariff(
        db: AsyncSession,
        name: str,
        amount: Decimal,
        type: TariffType,
        billing_frequency: BillingFrequency = BillingFrequency.PER_TERM,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> Tariff:
        async with transaction(db, auto_commit):
            tariff = Tariff(
                name=name,
                amount=CatalogService._check_amount(amount),
                type=type,
                billing_frequency=billing_frequency,
                description=description,
                is_active=True,
            )
            db.add(tariff)

        logger.info(
            "Tariff created",
            extra={"tariff_id": str(tariff.id), "amount": str(tariff.amount), "frequency": billing_frequency.value},
        )
        return tariff

    @staticmethod
    async def update_tariff(
        db: AsyncSession,
        tariff_id: UUID,
        name: Optional[str] = None,
        amount: Optional[Decimal] = None,
        billing_frequency: Optional[BillingFrequency] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
        auto_commit: bool = True,
    ) -> Tariff:
        """Changes apply to future bills only; generated bills keep their snapshots."""
        async with transaction(db, auto_commit):
            tariff = await CatalogService.get_tariff(db, tariff_id)
            if name is not None:
                tariff.name = name
            if amount is not None:
                tariff.amount = CatalogService._check_amount(amount)
            if billing_frequency is not None:
                tariff.billing_frequency = billing_frequency
            if description is not None:
                tariff.description = description
            if is_active is not None:
                tariff.is_active = is_active

        logger.info("Tariff updated", extra={"tariff_id": str(tariff_id)})
        return tariff

    # --- Class <-> tariff association -------------------------------------

    @staticmethod
    async def attach_tariffs(
        db: AsyncSession, class_id: UUID, tariff_ids: List[UUID], auto_commit: bool = True
    ) -> int:
        """Attach active tariffs to a class. Existing links are re-activated. Returns links touched."""
        async with transaction(db, auto_commit):
            class_room = await CatalogService.get_class(db, class_id)
            result = await db.execute(
                select(Tariff).where(Tariff.id.in_(tariff_ids), Tariff.is_active.is_(True))
            )
            tariffs = list(result.scalars().all())
            if len(tariffs) != len(set(tariff_ids)):
                raise PreconditionFailed(
                    "Some tariffs do not exist or are inactive",
                    {"requested": [str(t) for t in tariff_ids], "found": [str(t.id) for t in tariffs]},
                )

            existing = await db.execute(
                select(class_tariffs.c.tariff_id).where(class_tariffs.c.class_id == class_room.id)
            )
            linked = set(existing.scalars().all())
            for tariff in tariffs:
                if tariff.id in linked:
                    await db.execute(
                        update(class_tariffs)
                        .where(
                            class_tariffs.c.class_id == class_room.id,
                            class_tariffs.c.tariff_id == tariff.id,
                        )
                        .values(is_active=True)
                    )
                else:
                    await db.execute(
                        insert(class_tariffs).values(class_id=class_room.id, tariff_id=tariff.id, is_active=True)
                    )

        logger.info(
            "Tariffs attached to class",
            extra={"class_id": str(class_id), "tariff_ids": [str(t.id) for t in tariffs]},
        )
        return len(tariffs)

    @staticmethod
    async def detach_tariff(
        db: AsyncSession, class_id: UUID, tariff_id: UUID, auto_commit: bool = True
    ) -> None:
        async with transaction(db, auto_commit):
            result = await db.execute(
                delete(class_tariffs).where(
                    class_tariffs.c.class_id == class_id,
                    class_tariffs.c.tariff_id == tariff_id,
                )
            )
            if result.rowcount == 0:
                raise NotFound(
                    "Tariff is not attached to this class",
                    {"class_id": str(class_id), "tariff_id": str(tariff_id)},
                )

        logger.info("Tariff detached from class", extra={"class_id": str(class_id), "tariff_id": str(tariff_id)})

    @staticmethod
    async def set_tariff_active(
        db: AsyncSession, class_id: UUID, tariff_id: UUID, is_active: bool, auto_commit: bool = True
    ) -> None:
        """Toggle the link's own flag; the tariff itself is untouched."""
        async with transaction(db, auto_commit):
            result = await db.execute(
                update(class_tariffs)
                .where(
                    class_tariffs.c.class_id == class_id,
                    class_tariffs.c.tariff_id == tariff_id,
                )
                .values(is_active=is_active)
            )
            if result.rowcount == 0:
                raise NotFound(
                    "Tariff is not attached to this class",
                    {"class_id": str(class_id), "tariff_id": str(tariff_id)},
                )

        logger.info(
            "Class tariff toggled",
            extra={"class_id": str(class_id), "tariff_id": str(tariff_id), "is_active": is_active},
        )

    @staticmethod
    async def billable_tariffs(db: AsyncSession, class_id: UUID) -> List[Tariff]:
        """Tariffs that are active themselves and actively linked to the class."""
        result = await db.execute(
            select(Tariff)
            .join(class_tariffs, class_tariffs.c.tariff_id == Tariff.id)
            .where(
                and_(
                    class_tariffs.c.class_id == class_id,
                    class_tariffs.c.is_active.is_(True),
                    Tariff.is_active.is_(True),
                )
            )
            .order_by(Tariff.type, Tariff.name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def class_tariff_links(db: AsyncSession, class_id: UUID) -> List[Dict[str, Any]]:
        """Every tariff attached to a class, with the link's own flag."""
        result = await db.execute(
            select(Tariff, class_tariffs.c.is_active)
            .join(class_tariffs, class_tariffs.c.tariff_id == Tariff.id)
            .where(class_tariffs.c.class_id == class_id)
            .order_by(Tariff.name)
        )
        return [{"tariff": tariff, "link_active": link_active} for tariff, link_active in result.all()]
