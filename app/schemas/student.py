from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.enums import StudentStatus
from app.schemas.billing import BillResponse


class StudentCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    date_of_birth: Optional[date] = None
    enrollment_date: Optional[date] = None
    parent_name: Optional[str] = Field(None, max_length=200)
    parent_email: Optional[EmailStr] = None
    parent_phone: Optional[str] = Field(None, max_length=30)
    class_id: Optional[UUID] = None


class StudentUpdate(BaseModel):
    """Profile fields only; placement and status have their own endpoints."""
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    date_of_birth: Optional[date] = None
    parent_name: Optional[str] = Field(None, max_length=200)
    parent_email: Optional[EmailStr] = None
    parent_phone: Optional[str] = Field(None, max_length=30)


class StudentResponse(BaseModel):
    id: UUID
    student_number: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    enrollment_date: date
    status: StudentStatus
    class_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class AssignClassRequest(BaseModel):
    class_id: UUID


class TransferRequest(BaseModel):
    class_id: UUID


class PromoteRequest(BaseModel):
    target_grade_id: Optional[UUID] = None
    target_class_id: Optional[UUID] = None


class BulkPromoteRequest(PromoteRequest):
    student_ids: List[UUID] = Field(..., min_length=1)


class StatusChangeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class EnrollmentResult(BaseModel):
    """Student after an enrollment change, with the bill it produced if any."""
    student: StudentResponse
    bill: Optional[BillResponse] = None
    billing_skipped_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BulkPromoteError(BaseModel):
    student_id: UUID
    code: str
    error: str


class BulkPromoteResult(BaseModel):
    promoted: List[EnrollmentResult]
    errors: List[BulkPromoteError]
    total_processed: int
    successful: int
    failed: int
