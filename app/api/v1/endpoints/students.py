"""Student endpoints - registration and enrollment changes"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.enums import StudentStatus
from app.schemas.billing import BillResponse, OutstandingBalance
from app.schemas.responses import PaginatedResponse, PaginationMeta, SuccessResponse
from app.schemas.student import (
    AssignClassRequest,
    BulkPromoteRequest,
    BulkPromoteResult,
    EnrollmentResult,
    PromoteRequest,
    StatusChangeRequest,
    StudentCreate,
    StudentResponse,
    StudentUpdate,
    TransferRequest,
)
from app.services.billing_engine import BillingEngine
from app.services.consistency_coordinator import ConsistencyCoordinator
from app.services.enrollment_manager import EnrollmentManager
from app.services.student_service import StudentService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[StudentResponse])
async def list_students(
    class_id: Optional[UUID] = Query(None),
    grade_id: Optional[UUID] = Query(None),
    status: Optional[StudentStatus] = Query(None),
    unassigned: bool = Query(False, description="Only students without a class"),
    search: Optional[str] = Query(None, min_length=1),
    paging: deps.Pagination = Depends(deps.pagination),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    students, total = await StudentService.list_students(
        db,
        class_id=class_id,
        grade_id=grade_id,
        status=status,
        unassigned=unassigned,
        search=search,
        page=paging.page,
        page_size=paging.page_size,
    )
    return PaginatedResponse(
        data=[StudentResponse.model_validate(s) for s in students],
        meta=PaginationMeta(
            page=paging.page,
            page_size=paging.page_size,
            total=total,
            total_pages=(total + paging.page_size - 1) // paging.page_size,
        ),
    )


@router.post("", response_model=SuccessResponse[EnrollmentResult])
async def register_student(student_in: StudentCreate, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Register a student; with class_id the student is also placed and billed."""
    outcome = await StudentService.register_student(db, **student_in.model_dump())
    return SuccessResponse(
        data=EnrollmentResult.model_validate(outcome),
        message="Student registered successfully",
    )


@router.post("/bulk-promote", response_model=SuccessResponse[BulkPromoteResult])
async def bulk_promote(body: BulkPromoteRequest, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Promote many students; each succeeds or fails on its own."""
    result = await StudentService.bulk_promote(
        db, body.student_ids, body.target_grade_id, body.target_class_id
    )
    return SuccessResponse(
        data=BulkPromoteResult.model_validate(result, from_attributes=True),
        message=f"Promoted {result['successful']} student(s), {result['failed']} failed",
    )


@router.get("/{student_id}", response_model=SuccessResponse[StudentResponse])
async def get_student(student_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    student = await EnrollmentManager.get_student(db, student_id)
    return SuccessResponse(data=StudentResponse.model_validate(student))


@router.patch("/{student_id}", response_model=SuccessResponse[StudentResponse])
async def update_student(
    student_id: UUID,
    student_in: StudentUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    student = await StudentService.update_student(db, student_id, student_in.model_dump(exclude_unset=True))
    return SuccessResponse(data=StudentResponse.model_validate(student), message="Student updated")


@router.post("/{student_id}/assign", response_model=SuccessResponse[EnrollmentResult])
async def assign_student(
    student_id: UUID,
    body: AssignClassRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Place an unassigned student in a class and bill the current term."""
    outcome = await ConsistencyCoordinator.assign_and_bill(db, student_id, body.class_id)
    return SuccessResponse(data=EnrollmentResult.model_validate(outcome), message="Student assigned to class")


@router.post("/{student_id}/remove", response_model=SuccessResponse[StudentResponse])
async def remove_student(student_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    student = await EnrollmentManager.remove(db, student_id)
    return SuccessResponse(data=StudentResponse.model_validate(student), message="Student removed from class")


@router.post("/{student_id}/transfer", response_model=SuccessResponse[EnrollmentResult])
async def transfer_student(
    student_id: UUID,
    body: TransferRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    outcome = await ConsistencyCoordinator.transfer_and_bill(db, student_id, body.class_id)
    return SuccessResponse(data=EnrollmentResult.model_validate(outcome), message="Student transferred")


@router.post("/{student_id}/promote", response_model=SuccessResponse[EnrollmentResult])
async def promote_student(
    student_id: UUID,
    body: PromoteRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Promote to the next grade, or to target_grade_id / target_class_id when given."""
    outcome = await ConsistencyCoordinator.promote_and_bill(
        db, student_id, body.target_grade_id, body.target_class_id
    )
    return SuccessResponse(data=EnrollmentResult.model_validate(outcome), message="Student promoted")


@router.post("/{student_id}/graduate", response_model=SuccessResponse[StudentResponse])
async def graduate_student(student_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    student = await EnrollmentManager.graduate(db, student_id)
    return SuccessResponse(data=StudentResponse.model_validate(student), message="Student graduated")


@router.post("/{student_id}/deactivate", response_model=SuccessResponse[StudentResponse])
async def deactivate_student(
    student_id: UUID,
    body: StatusChangeRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    student = await EnrollmentManager.deactivate(db, student_id, body.reason)
    return SuccessResponse(data=StudentResponse.model_validate(student), message="Student deactivated")


@router.post("/{student_id}/mark-transferred", response_model=SuccessResponse[StudentResponse])
async def mark_student_transferred(
    student_id: UUID,
    body: StatusChangeRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Record that the student left for another school."""
    student = await EnrollmentManager.mark_transferred(db, student_id, body.reason)
    return SuccessResponse(data=StudentResponse.model_validate(student), message="Student marked as transferred")


@router.get("/{student_id}/bills", response_model=SuccessResponse[list[BillResponse]])
async def list_student_bills(student_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    bills = await BillingEngine.student_bills(db, student_id)
    return SuccessResponse(data=[BillResponse.model_validate(b) for b in bills])


@router.post("/{student_id}/bills", response_model=SuccessResponse[BillResponse])
async def generate_student_bill(student_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Bill the student for the current term."""
    bill = await BillingEngine.generate(db, student_id)
    return SuccessResponse(data=BillResponse.model_validate(bill), message="Bill generated successfully")


@router.get("/{student_id}/balance", response_model=SuccessResponse[OutstandingBalance])
async def student_balance(student_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    balance = await BillingEngine.student_outstanding_balance(db, student_id)
    return SuccessResponse(data=OutstandingBalance(student_id=student_id, outstanding_balance=balance))
