from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.enums import AcademicYearStatus, BillingFrequency, TariffType, TermStatus


# --- Academic years and terms -------------------------------------------

class AcademicYearCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self) -> "AcademicYearCreate":
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class AcademicYearUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None


class AcademicYearResponse(BaseModel):
    id: UUID
    name: str
    start_date: date
    end_date: date
    status: AcademicYearStatus
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TermCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self) -> "TermCreate":
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class TermUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None


class TermResponse(BaseModel):
    id: UUID
    academic_year_id: UUID
    name: str
    start_date: date
    end_date: date
    status: TermStatus
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CurrentPeriodResponse(BaseModel):
    academic_year: Optional[AcademicYearResponse] = None
    term: Optional[TermResponse] = None


class PeriodStatistics(BaseModel):
    name: str
    bill_count: int
    total_billed: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    term_count: Optional[int] = None


# --- Grades and classes -------------------------------------------------

class GradeCreate(BaseModel):
    name: str = Field(..., pattern=r"^[NPnp]\d+$", description="N1..N3 nursery, P1..P6 primary")
    level: int = Field(..., ge=0)
    description: Optional[str] = None


class GradeResponse(BaseModel):
    id: UUID
    name: str
    level: int
    is_active: bool
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ClassCreate(BaseModel):
    grade_id: UUID
    name: str = Field(..., min_length=1, max_length=50, description="Section letter, e.g. 'A'")
    capacity: int = Field(..., ge=1, le=100)
    description: Optional[str] = None


class ClassUpdate(BaseModel):
    capacity: Optional[int] = Field(None, ge=1, le=100)
    is_active: Optional[bool] = None
    description: Optional[str] = None


class ClassResponse(BaseModel):
    id: UUID
    grade_id: UUID
    name: str
    full_name: str
    capacity: int
    current_enrollment: int
    available_space: int
    is_active: bool
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EnrollmentReconciliation(BaseModel):
    class_id: UUID
    recorded: int
    actual: int
    drift: int


# --- Tariffs ------------------------------------------------------------

class TariffCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    type: TariffType
    billing_frequency: BillingFrequency = BillingFrequency.PER_TERM
    description: Optional[str] = None


class TariffUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    billing_frequency: Optional[BillingFrequency] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class TariffResponse(BaseModel):
    id: UUID
    name: str
    amount: Decimal
    type: TariffType
    billing_frequency: BillingFrequency
    is_active: bool
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ClassTariffResponse(BaseModel):
    tariff: TariffResponse
    link_active: bool


class AttachTariffsRequest(BaseModel):
    tariff_ids: List[UUID] = Field(..., min_length=1)

    @field_validator("tariff_ids")
    @classmethod
    def unique_ids(cls, v: List[UUID]) -> List[UUID]:
        return list(dict.fromkeys(v))


class ClassTariffToggle(BaseModel):
    is_active: bool
