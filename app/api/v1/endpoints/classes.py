"""Class endpoints - capacity, tariffs and enrollment counters"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.academic import (
    AttachTariffsRequest,
    ClassCreate,
    ClassResponse,
    ClassTariffResponse,
    ClassTariffToggle,
    ClassUpdate,
    EnrollmentReconciliation,
)
from app.schemas.billing import BatchBillingResult
from app.schemas.responses import SuccessResponse
from app.schemas.student import StudentResponse
from app.services.billing_engine import BillingEngine
from app.services.catalog_service import CatalogService
from app.services.enrollment_manager import EnrollmentManager

router = APIRouter()


@router.get("", response_model=SuccessResponse[list[ClassResponse]])
async def list_classes(
    grade_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    classes = await CatalogService.list_classes(db, grade_id=grade_id)
    return SuccessResponse(data=[ClassResponse.model_validate(c) for c in classes])


@router.post("", response_model=SuccessResponse[ClassResponse])
async def create_class(class_in: ClassCreate, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Create a class section in a grade. Fields: grade_id, name, capacity (1-100)."""
    class_room = await CatalogService.create_class(
        db, class_in.grade_id, class_in.name, class_in.capacity, class_in.description
    )
    return SuccessResponse(data=ClassResponse.model_validate(class_room), message="Class created successfully")


@router.post("/reconcile", response_model=SuccessResponse[list[EnrollmentReconciliation]])
async def reconcile_all_classes(db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Recount every class and repair drifted enrollment counters."""
    drifted = await CatalogService.reconcile_all(db)
    return SuccessResponse(
        data=[EnrollmentReconciliation(**report) for report in drifted],
        message=f"{len(drifted)} class(es) repaired",
    )


@router.get("/{class_id}", response_model=SuccessResponse[ClassResponse])
async def get_class(class_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    class_room = await CatalogService.get_class(db, class_id)
    return SuccessResponse(data=ClassResponse.model_validate(class_room))


@router.patch("/{class_id}", response_model=SuccessResponse[ClassResponse])
async def update_class(
    class_id: UUID,
    class_in: ClassUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Capacity cannot drop below current enrollment; a class with students cannot be deactivated."""
    class_room = await CatalogService.update_class(db, class_id, **class_in.model_dump(exclude_unset=True))
    return SuccessResponse(data=ClassResponse.model_validate(class_room), message="Class updated")


@router.delete("/{class_id}", response_model=SuccessResponse[None])
async def delete_class(class_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await CatalogService.delete_class(db, class_id)
    return SuccessResponse(data=None, message="Class deleted")


@router.get("/{class_id}/students", response_model=SuccessResponse[list[StudentResponse]])
async def list_class_students(class_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await CatalogService.get_class(db, class_id)
    students = await EnrollmentManager.students_in_class(db, class_id)
    return SuccessResponse(data=[StudentResponse.model_validate(s) for s in students])


@router.post("/{class_id}/reconcile", response_model=SuccessResponse[EnrollmentReconciliation])
async def reconcile_class(class_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    report = await CatalogService.reconcile_enrollment(db, class_id)
    return SuccessResponse(data=EnrollmentReconciliation(**report))


@router.get("/{class_id}/tariffs", response_model=SuccessResponse[list[ClassTariffResponse]])
async def list_class_tariffs(class_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await CatalogService.get_class(db, class_id)
    links = await CatalogService.class_tariff_links(db, class_id)
    return SuccessResponse(data=[ClassTariffResponse.model_validate(link, from_attributes=True) for link in links])


@router.post("/{class_id}/tariffs", response_model=SuccessResponse[list[ClassTariffResponse]])
async def attach_tariffs(
    class_id: UUID,
    body: AttachTariffsRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Attach active tariffs to the class; links that already exist are re-activated."""
    await CatalogService.attach_tariffs(db, class_id, body.tariff_ids)
    links = await CatalogService.class_tariff_links(db, class_id)
    return SuccessResponse(
        data=[ClassTariffResponse.model_validate(link, from_attributes=True) for link in links],
        message="Tariffs attached",
    )


@router.patch("/{class_id}/tariffs/{tariff_id}", response_model=SuccessResponse[None])
async def toggle_class_tariff(
    class_id: UUID,
    tariff_id: UUID,
    body: ClassTariffToggle,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Enable or disable billing of an attached tariff for this class only."""
    await CatalogService.set_tariff_active(db, class_id, tariff_id, body.is_active)
    return SuccessResponse(data=None, message="Class tariff updated")


@router.delete("/{class_id}/tariffs/{tariff_id}", response_model=SuccessResponse[None])
async def detach_tariff(class_id: UUID, tariff_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    await CatalogService.detach_tariff(db, class_id, tariff_id)
    return SuccessResponse(data=None, message="Tariff detached")


@router.post("/{class_id}/bills", response_model=SuccessResponse[BatchBillingResult])
async def generate_class_bills(class_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Bill every active student in the class for the current term."""
    summary = await BillingEngine.generate_for_class(db, class_id)
    return SuccessResponse(
        data=BatchBillingResult.model_validate(summary, from_attributes=True),
        message=f"Generated {summary['successful']} bill(s), {summary['failed']} failed",
    )
