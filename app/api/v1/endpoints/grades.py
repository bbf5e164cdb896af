"""Grade endpoints"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.academic import ClassResponse, GradeCreate, GradeResponse
from app.schemas.billing import BatchBillingResult
from app.schemas.responses import SuccessResponse
from app.services.billing_engine import BillingEngine
from app.services.catalog_service import CatalogService

router = APIRouter()


@router.get("", response_model=SuccessResponse[list[GradeResponse]])
async def list_grades(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Grades ordered by level (the promotion path)."""
    grades = await CatalogService.list_grades(db, active_only=active_only)
    return SuccessResponse(data=[GradeResponse.model_validate(g) for g in grades])


@router.post("", response_model=SuccessResponse[GradeResponse])
async def create_grade(grade_in: GradeCreate, db: AsyncSession = Depends(deps.get_db)) -> Any:
    grade = await CatalogService.create_grade(db, grade_in.name, grade_in.level, grade_in.description)
    return SuccessResponse(data=GradeResponse.model_validate(grade), message="Grade created successfully")


@router.delete("/{grade_id}", response_model=SuccessResponse[None])
async def delete_grade(grade_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await CatalogService.delete_grade(db, grade_id)
    return SuccessResponse(data=None, message="Grade deleted")


@router.get("/{grade_id}/classes", response_model=SuccessResponse[list[ClassResponse]])
async def list_grade_classes(grade_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await CatalogService.get_grade(db, grade_id)
    classes = await CatalogService.list_classes(db, grade_id=grade_id)
    return SuccessResponse(data=[ClassResponse.model_validate(c) for c in classes])


@router.post("/{grade_id}/bills", response_model=SuccessResponse[BatchBillingResult])
async def generate_grade_bills(grade_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Bill every active student in the grade for the current term."""
    summary = await BillingEngine.generate_for_grade(db, grade_id)
    return SuccessResponse(
        data=BatchBillingResult.model_validate(summary, from_attributes=True),
        message=f"Generated {summary['successful']} bill(s), {summary['failed']} failed",
    )
