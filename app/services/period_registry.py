"""Academic year and term lifecycle.

At most one academic year is active, and at most one term per year.
Activation takes a transaction-scoped advisory lock per scope so two
concurrent activations serialize: the later one sees the earlier commit,
demotes it and wins. The partial unique indexes on both tables back
this up at the database level.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidState, NoActivePeriod, NotFound, PreconditionFailed
from app.database import transaction
from app.models.academic import AcademicYear, Term
from app.models.billing import Bill
from app.models.enums import AcademicYearStatus, BillStatus, TermStatus
from app.utils.money import ZERO, round_money
from app.utils.time import get_today

logger = logging.getLogger(__name__)


class PeriodRegistry:
    # --- Lookups --------------------------------------------------------

    @staticmethod
    async def get_academic_year(
        db: AsyncSession, year_id: UUID, for_update: bool = False
    ) -> AcademicYear:
        stmt = select(AcademicYear).where(AcademicYear.id == year_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        year = result.scalar_one_or_none()
        if not year:
            raise NotFound.for_entity("Academic year", year_id)
        return year

    @staticmethod
    async def get_term(db: AsyncSession, term_id: UUID, for_update: bool = False) -> Term:
        stmt = select(Term).where(Term.id == term_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        term = result.scalar_one_or_none()
        if not term:
            raise NotFound.for_entity("Term", term_id)
        return term

    @staticmethod
    async def list_academic_years(db: AsyncSession) -> list:
        result = await db.execute(select(AcademicYear).order_by(AcademicYear.start_date.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def list_terms(db: AsyncSession, year_id: UUID) -> list:
        result = await db.execute(
            select(Term).where(Term.academic_year_id == year_id).order_by(Term.start_date)
        )
        return list(result.scalars().all())

    @staticmethod
    async def current_academic_year(db: AsyncSession) -> Optional[AcademicYear]:
        """The active academic year, provided today falls inside it."""
        today = get_today()
        result = await db.execute(
            select(AcademicYear).where(
                AcademicYear.status == AcademicYearStatus.ACTIVE,
                AcademicYear.start_date <= today,
                AcademicYear.end_date >= today,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def current_term(db: AsyncSession) -> Optional[Term]:
        """The active term of the current academic year, provided today falls inside it."""
        year = await PeriodRegistry.current_academic_year(db)
        if not year:
            return None
        today = get_today()
        result = await db.execute(
            select(Term).where(
                Term.academic_year_id == year.id,
                Term.status == TermStatus.ACTIVE,
                Term.start_date <= today,
                Term.end_date >= today,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def current(db: AsyncSession) -> Tuple[Optional[AcademicYear], Optional[Term]]:
        year = await PeriodRegistry.current_academic_year(db)
        term = await PeriodRegistry.current_term(db) if year else None
        return year, term

    @staticmethod
    async def require_current(db: AsyncSession) -> Tuple[AcademicYear, Term]:
        """Current year and term, or NoActivePeriod."""
        year, term = await PeriodRegistry.current(db)
        if not year:
            raise NoActivePeriod("No active academic year covers today")
        if not term:
            raise NoActivePeriod(
                f"No active term covers today in academic year {year.name}",
                {"academic_year_id": str(year.id)},
            )
        return year, term

    # --- Validation -----------------------------------------------------

    @staticmethod
    async def _validate_year_dates(
        db: AsyncSession,
        start_date: date,
        end_date: date,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        if start_date >= end_date:
            raise PreconditionFailed("Academic year must start before it ends")
        span = (end_date - start_date).days
        if span < settings.ACADEMIC_YEAR_MIN_DAYS:
            raise PreconditionFailed(
                f"Academic year must span at least {settings.ACADEMIC_YEAR_MIN_DAYS} days",
                {"days": span},
            )
        if span > settings.ACADEMIC_YEAR_MAX_DAYS:
            raise PreconditionFailed(
                f"Academic year cannot span more than {settings.ACADEMIC_YEAR_MAX_DAYS} days",
                {"days": span},
            )

        stmt = select(AcademicYear.id, AcademicYear.name).where(
            AcademicYear.start_date <= end_date,
            AcademicYear.end_date >= start_date,
        )
        if exclude_id:
            stmt = stmt.where(AcademicYear.id != exclude_id)
        clash = (await db.execute(stmt)).first()
        if clash:
            raise PreconditionFailed(
                f"Dates overlap academic year {clash.name}",
                {"overlapping_id": str(clash.id)},
            )

    @staticmethod
    async def _validate_term_dates(
        db: AsyncSession,
        year: AcademicYear,
        start_date: date,
        end_date: date,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        if start_date >= end_date:
            raise PreconditionFailed("Term must start before it ends")
        if start_date < year.start_date or end_date > year.end_date:
            raise PreconditionFailed(
                f"Term dates must fall within academic year {year.name}",
                {"year_start": year.start_date.isoformat(), "year_end": year.end_date.isoformat()},
            )
        span = (end_date - start_date).days
        if span < settings.TERM_MIN_DAYS:
            raise PreconditionFailed(
                f"Term must span at least {settings.TERM_MIN_DAYS} days", {"days": span}
            )

        stmt = select(Term.id, Term.name).where(
            Term.academic_year_id == year.id,
            Term.start_date <= end_date,
            Term.end_date >= start_date,
        )
        if exclude_id:
            stmt = stmt.where(Term.id != exclude_id)
        clash = (await db.execute(stmt)).first()
        if clash:
            raise PreconditionFailed(
                f"Dates overlap term {clash.name}", {"overlapping_id": str(clash.id)}
            )

    @staticmethod
    async def _lock_activation_scope(db: AsyncSession, scope: str) -> None:
        """Serialize activations within one scope until the transaction ends."""
        await db.execute(select(func.pg_advisory_xact_lock(func.hashtext(scope))))

    # --- Academic years -------------------------------------------------

    @staticmethod
    async def create_academic_year(
        db: AsyncSession,
        name: str,
        start_date: date,
        end_date: date,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> AcademicYear:
        async with transaction(db, auto_commit):
            existing = await db.execute(select(AcademicYear.id).where(AcademicYear.name == name))
            if existing.first():
                raise PreconditionFailed(f"Academic year {name} already exists")
            await PeriodRegistry._validate_year_dates(db, start_date, end_date)

            year = AcademicYear(
                name=name,
                start_date=start_date,
                end_date=end_date,
                description=description,
                status=AcademicYearStatus.DRAFT,
            )
            db.add(year)

        logger.info("Academic year created", extra={"academic_year_id": str(year.id), "name": name})
        return year

    @staticmethod
    async def update_academic_year(
        db: AsyncSession,
        year_id: UUID,
        name: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> AcademicYear:
        async with transaction(db, auto_commit):
            year = await PeriodRegistry.get_academic_year(db, year_id, for_update=True)
            if year.is_closed:
                raise InvalidState(
                    f"Academic year {year.name} is closed and cannot be modified",
                    {"academic_year_id": str(year.id)},
                )

            new_start = start_date or year.start_date
            new_end = end_date or year.end_date
            if (new_start, new_end) != (year.start_date, year.end_date):
                await PeriodRegistry._validate_year_dates(db, new_start, new_end, exclude_id=year.id)
                outside = await db.execute(
                    select(Term.id).where(
                        Term.academic_year_id == year.id,
                        (Term.start_date < new_start) | (Term.end_date > new_end),
                    )
                )
                if outside.first():
                    raise PreconditionFailed(
                        "New dates would leave existing terms outside the academic year",
                        {"academic_year_id": str(year.id)},
                    )
                year.start_date = new_start
                year.end_date = new_end

            if name and name != year.name:
                taken = await db.execute(
                    select(AcademicYear.id).where(AcademicYear.name == name, AcademicYear.id != year.id)
                )
                if taken.first():
                    raise PreconditionFailed(f"Academic year {name} already exists")
                year.name = name
            if description is not None:
                year.description = description

        logger.info("Academic year updated", extra={"academic_year_id": str(year.id)})
        return year

    @staticmethod
    async def delete_academic_year(db: AsyncSession, year_id: UUID, auto_commit: bool = True) -> None:
        async with transaction(db, auto_commit):
            year = await PeriodRegistry.get_academic_year(db, year_id, for_update=True)
            term_count = await db.scalar(
                select(func.count(Term.id)).where(Term.academic_year_id == year.id)
            )
            bill_count = await db.scalar(
                select(func.count(Bill.id)).where(Bill.academic_year_id == year.id)
            )
            if term_count or bill_count:
                raise PreconditionFailed(
                    f"Academic year {year.name} owns terms or bills and cannot be deleted",
                    {"terms": term_count, "bills": bill_count},
                )
            await db.delete(year)

        logger.info("Academic year deleted", extra={"academic_year_id": str(year_id)})

    @staticmethod
    async def activate_academic_year(
        db: AsyncSession, year_id: UUID, auto_commit: bool = True
    ) -> AcademicYear:
        """Make this the only active academic year; any other active one returns to draft."""
        async with transaction(db, auto_commit):
            await PeriodRegistry._lock_activation_scope(db, "academic_year")
            year = await PeriodRegistry.get_academic_year(db, year_id, for_update=True)
            if year.is_closed:
                raise InvalidState(
                    f"Academic year {year.name} is closed and cannot be activated",
                    {"academic_year_id": str(year.id)},
                )
            if year.is_active:
                return year

            others = await db.execute(
                select(AcademicYear)
                .where(
                    AcademicYear.status == AcademicYearStatus.ACTIVE,
                    AcademicYear.id != year.id,
                )
                .with_for_update()
            )
            demoted = []
            for other in others.scalars().all():
                other.status = AcademicYearStatus.DRAFT
                demoted.append(str(other.id))
            # Demotions must reach the unique index before the promotion does
            await db.flush()
            year.status = AcademicYearStatus.ACTIVE

        logger.info(
            "Academic year activated",
            extra={"academic_year_id": str(year.id), "demoted": demoted},
        )
        return year

    @staticmethod
    async def close_academic_year(
        db: AsyncSession, year_id: UUID, auto_commit: bool = True
    ) -> AcademicYear:
        async with transaction(db, auto_commit):
            year = await PeriodRegistry.get_academic_year(db, year_id, for_update=True)
            if not year.is_active:
                raise InvalidState(
                    f"Only an active academic year can be closed; {year.name} is "
                    f"{AcademicYearStatus(year.status).value}",
                    {"academic_year_id": str(year.id)},
                )
            open_terms = await db.scalar(
                select(func.count(Term.id)).where(
                    Term.academic_year_id == year.id,
                    Term.status != TermStatus.COMPLETED,
                )
            )
            if open_terms:
                raise PreconditionFailed(
                    f"Academic year {year.name} has {open_terms} term(s) not yet completed",
                    {"academic_year_id": str(year.id), "open_terms": open_terms},
                )
            year.status = AcademicYearStatus.CLOSED

        logger.info("Academic year closed", extra={"academic_year_id": str(year.id)})
        return year

    # --- Terms ----------------------------------------------------------

    @staticmethod
    async def create_term(
        db: AsyncSession,
        year_id: UUID,
        name: str,
        start_date: date,
        end_date: date,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> Term:
        async with transaction(db, auto_commit):
            year = await PeriodRegistry.get_academic_year(db, year_id, for_update=True)
            if not year.is_active:
                raise PreconditionFailed(
                    f"Terms can only be added to the active academic year; {year.name} is "
                    f"{AcademicYearStatus(year.status).value}",
                    {"academic_year_id": str(year.id)},
                )
            existing = await db.execute(
                select(Term.id).where(Term.academic_year_id == year.id, Term.name == name)
            )
            if existing.first():
                raise PreconditionFailed(f"Term {name} already exists in {year.name}")
            await PeriodRegistry._validate_term_dates(db, year, start_date, end_date)

            term = Term(
                academic_year_id=year.id,
                name=name,
                start_date=start_date,
                end_date=end_date,
                description=description,
                status=TermStatus.UPCOMING,
            )
            db.add(term)

        logger.info(
            "Term created",
            extra={"term_id": str(term.id), "academic_year_id": str(year.id), "name": name},
        )
        return term

    @staticmethod
    async def update_term(
        db: AsyncSession,
        term_id: UUID,
        name: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        description: Optional[str] = None,
        auto_commit: bool = True,
    ) -> Term:
        async with transaction(db, auto_commit):
            term = await PeriodRegistry.get_term(db, term_id, for_update=True)
            if term.is_completed:
                raise InvalidState(
                    f"Term {term.name} is completed and cannot be modified", {"term_id": str(term.id)}
                )
            new_start = start_date or term.start_date
            new_end = end_date or term.end_date
            if (new_start, new_end) != (term.start_date, term.end_date):
                year = await PeriodRegistry.get_academic_year(db, term.academic_year_id)
                await PeriodRegistry._validate_term_dates(db, year, new_start, new_end, exclude_id=term.id)
                term.start_date = new_start
                term.end_date = new_end
            if name and name != term.name:
                taken = await db.execute(
                    select(Term.id).where(
                        Term.academic_year_id == term.academic_year_id,
                        Term.name == name,
                        Term.id != term.id,
                    )
                )
                if taken.first():
                    raise PreconditionFailed(f"Term {name} already exists in this academic year")
                term.name = name
            if description is not None:
                term.description = description

        logger.info("Term updated", extra={"term_id": str(term.id)})
        return term

    @staticmethod
    async def delete_term(db: AsyncSession, term_id: UUID, auto_commit: bool = True) -> None:
        async with transaction(db, auto_commit):
            term = await PeriodRegistry.get_term(db, term_id, for_update=True)
            if term.status != TermStatus.UPCOMING:
                raise InvalidState(
                    f"Only upcoming terms can be deleted; {term.name} is {TermStatus(term.status).value}",
                    {"term_id": str(term.id)},
                )
            bill_count = await db.scalar(select(func.count(Bill.id)).where(Bill.term_id == term.id))
            if bill_count:
                raise PreconditionFailed(
                    f"Term {term.name} has {bill_count} bill(s) and cannot be deleted",
                    {"term_id": str(term.id), "bills": bill_count},
                )
            await db.delete(term)

        logger.info("Term deleted", extra={"term_id": str(term_id)})

    @staticmethod
    async def activate_term(db: AsyncSession, term_id: UUID, auto_commit: bool = True) -> Term:
        """Make this the only active term of its year; any other active one returns to upcoming."""
        async with transaction(db, auto_commit):
            term = await PeriodRegistry.get_term(db, term_id)
            await PeriodRegistry._lock_activation_scope(db, f"term:{term.academic_year_id}")
            term = await PeriodRegistry.get_term(db, term_id, for_update=True)
            if term.is_completed:
                raise InvalidState(
                    f"Term {term.name} is completed and cannot be activated", {"term_id": str(term.id)}
                )
            year = await PeriodRegistry.get_academic_year(db, term.academic_year_id)
            if not year.is_active:
                raise PreconditionFailed(
                    f"Academic year {year.name} must be active before its terms",
                    {"term_id": str(term.id), "academic_year_id": str(year.id)},
                )
            if term.is_active:
                return term

            others = await db.execute(
                select(Term)
                .where(
                    and_(
                        Term.academic_year_id == term.academic_year_id,
                        Term.status == TermStatus.ACTIVE,
                        Term.id != term.id,
                    )
                )
                .with_for_update()
            )
            demoted = []
            for other in others.scalars().all():
                other.status = TermStatus.UPCOMING
                demoted.append(str(other.id))
            await db.flush()
            term.status = TermStatus.ACTIVE

        logger.info("Term activated", extra={"term_id": str(term.id), "demoted": demoted})
        return term

    @staticmethod
    async def complete_term(db: AsyncSession, term_id: UUID, auto_commit: bool = True) -> Term:
        async with transaction(db, auto_commit):
            term = await PeriodRegistry.get_term(db, term_id, for_update=True)
            if not term.is_active:
                raise InvalidState(
                    f"Only an active term can be completed; {term.name} is {TermStatus(term.status).value}",
                    {"term_id": str(term.id)},
                )
            today = get_today()
            if not term.has_ended(today):
                raise PreconditionFailed(
                    f"Term {term.name} runs until {term.end_date.isoformat()}",
                    {"term_id": str(term.id), "end_date": term.end_date.isoformat()},
                )
            term.status = TermStatus.COMPLETED

        logger.info("Term completed", extra={"term_id": str(term.id)})
        return term

    # --- Statistics -----------------------------------------------------

    @staticmethod
    async def _bill_statistics(db: AsyncSession, *criteria) -> Dict[str, Any]:
        result = await db.execute(
            select(
                func.count(Bill.id),
                func.coalesce(func.sum(Bill.total_amount), 0),
                func.coalesce(func.sum(Bill.paid_amount), 0),
                func.coalesce(func.sum(Bill.balance), 0),
            ).where(Bill.status != BillStatus.CANCELLED, *criteria)
        )
        count, billed, collected, outstanding = result.one()
        return {
            "bill_count": count,
            "total_billed": round_money(Decimal(billed or ZERO)),
            "total_collected": round_money(Decimal(collected or ZERO)),
            "total_outstanding": round_money(Decimal(outstanding or ZERO)),
        }

    @staticmethod
    async def academic_year_statistics(db: AsyncSession, year_id: UUID) -> Dict[str, Any]:
        year = await PeriodRegistry.get_academic_year(db, year_id)
        stats = await PeriodRegistry._bill_statistics(db, Bill.academic_year_id == year.id)
        term_count = await db.scalar(select(func.count(Term.id)).where(Term.academic_year_id == year.id))
        return {"academic_year_id": year.id, "name": year.name, "term_count": term_count, **stats}

    @staticmethod
    async def term_statistics(db: AsyncSession, term_id: UUID) -> Dict[str, Any]:
        term = await PeriodRegistry.get_term(db, term_id)
        stats = await PeriodRegistry._bill_statistics(db, Bill.term_id == term.id)
        return {"term_id": term.id, "name": term.name, **stats}
