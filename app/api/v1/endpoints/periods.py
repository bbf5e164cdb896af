"""Academic year and term endpoints"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.academic import (
    AcademicYearCreate,
    AcademicYearResponse,
    AcademicYearUpdate,
    CurrentPeriodResponse,
    PeriodStatistics,
    TermCreate,
    TermResponse,
    TermUpdate,
)
from app.schemas.responses import SuccessResponse
from app.services.period_registry import PeriodRegistry

router = APIRouter()


@router.get("/current", response_model=SuccessResponse[CurrentPeriodResponse])
async def get_current_period(db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Active academic year and term covering today, if any."""
    year, term = await PeriodRegistry.current(db)
    return SuccessResponse(
        data=CurrentPeriodResponse(
            academic_year=AcademicYearResponse.model_validate(year) if year else None,
            term=TermResponse.model_validate(term) if term else None,
        )
    )


@router.get("/academic-years", response_model=SuccessResponse[list[AcademicYearResponse]])
async def list_academic_years(db: AsyncSession = Depends(deps.get_db)) -> Any:
    years = await PeriodRegistry.list_academic_years(db)
    return SuccessResponse(data=[AcademicYearResponse.model_validate(y) for y in years])


@router.post("/academic-years", response_model=SuccessResponse[AcademicYearResponse])
async def create_academic_year(
    year_in: AcademicYearCreate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Create a draft academic year."""
    year = await PeriodRegistry.create_academic_year(
        db, year_in.name, year_in.start_date, year_in.end_date, year_in.description
    )
    return SuccessResponse(
        data=AcademicYearResponse.model_validate(year),
        message="Academic year created successfully",
    )


@router.get("/academic-years/{year_id}", response_model=SuccessResponse[AcademicYearResponse])
async def get_academic_year(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    year = await PeriodRegistry.get_academic_year(db, year_id)
    return SuccessResponse(data=AcademicYearResponse.model_validate(year))


@router.patch("/academic-years/{year_id}", response_model=SuccessResponse[AcademicYearResponse])
async def update_academic_year(
    year_id: UUID,
    year_in: AcademicYearUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    year = await PeriodRegistry.update_academic_year(db, year_id, **year_in.model_dump(exclude_unset=True))
    return SuccessResponse(data=AcademicYearResponse.model_validate(year), message="Academic year updated")


@router.delete("/academic-years/{year_id}", response_model=SuccessResponse[None])
async def delete_academic_year(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await PeriodRegistry.delete_academic_year(db, year_id)
    return SuccessResponse(data=None, message="Academic year deleted")


@router.post("/academic-years/{year_id}/activate", response_model=SuccessResponse[AcademicYearResponse])
async def activate_academic_year(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Activate a year; the previously active one returns to draft."""
    year = await PeriodRegistry.activate_academic_year(db, year_id)
    return SuccessResponse(data=AcademicYearResponse.model_validate(year), message="Academic year activated")


@router.post("/academic-years/{year_id}/close", response_model=SuccessResponse[AcademicYearResponse])
async def close_academic_year(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Close an active year once all its terms are completed."""
    year = await PeriodRegistry.close_academic_year(db, year_id)
    return SuccessResponse(data=AcademicYearResponse.model_validate(year), message="Academic year closed")


@router.get("/academic-years/{year_id}/statistics", response_model=SuccessResponse[PeriodStatistics])
async def academic_year_statistics(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    stats = await PeriodRegistry.academic_year_statistics(db, year_id)
    return SuccessResponse(data=PeriodStatistics(**stats))


@router.get("/academic-years/{year_id}/terms", response_model=SuccessResponse[list[TermResponse]])
async def list_terms(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await PeriodRegistry.get_academic_year(db, year_id)
    terms = await PeriodRegistry.list_terms(db, year_id)
    return SuccessResponse(data=[TermResponse.model_validate(t) for t in terms])


@router.post("/academic-years/{year_id}/terms", response_model=SuccessResponse[TermResponse])
async def create_term(
    year_id: UUID,
    term_in: TermCreate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Add an upcoming term to the active academic year."""
    term = await PeriodRegistry.create_term(
        db, year_id, term_in.name, term_in.start_date, term_in.end_date, term_in.description
    )
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term created successfully")


@router.get("/terms/{term_id}", response_model=SuccessResponse[TermResponse])
async def get_term(term_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    term = await PeriodRegistry.get_term(db, term_id)
    return SuccessResponse(data=TermResponse.model_validate(term))


@router.patch("/terms/{term_id}", response_model=SuccessResponse[TermResponse])
async def update_term(
    term_id: UUID,
    term_in: TermUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    term = await PeriodRegistry.update_term(db, term_id, **term_in.model_dump(exclude_unset=True))
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term updated")


@router.delete("/terms/{term_id}", response_model=SuccessResponse[None])
async def delete_term(term_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await PeriodRegistry.delete_term(db, term_id)
    return SuccessResponse(data=None, message="Term deleted")


@router.post("/terms/{term_id}/activate", response_model=SuccessResponse[TermResponse])
async def activate_term(term_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Activate a term; the previously active term of the year returns to upcoming."""
    term = await PeriodRegistry.activate_term(db, term_id)
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term activated")


@router.post("/terms/{term_id}/complete", response_model=SuccessResponse[TermResponse])
async def complete_term(term_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    term = await PeriodRegistry.complete_term(db, term_id)
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term completed")


@router.get("/terms/{term_id}/statistics", response_model=SuccessResponse[PeriodStatistics])
async def term_statistics(term_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    stats = await PeriodRegistry.term_statistics(db, term_id)
    return SuccessResponse(data=PeriodStatistics(**stats))
