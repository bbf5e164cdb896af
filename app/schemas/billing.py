from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import BillItemStatus, BillStatus, PaymentLedger, TariffType


class LineItem(BaseModel):
    """Charge snapshot stored on the bill at generation time"""
    tariff_id: UUID
    name: str
    type: TariffType
    amount: Decimal
    description: Optional[str] = None


class BillItemResponse(BaseModel):
    id: UUID
    tariff_id: Optional[UUID] = None
    name: str
    type: TariffType
    amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: BillItemStatus
    paid_date: Optional[date] = None
    payment_history: List[Dict[str, Any]] = []

    model_config = ConfigDict(from_attributes=True)


class BillResponse(BaseModel):
    id: UUID
    bill_number: str
    student_id: UUID
    academic_year_id: UUID
    term_id: UUID
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: BillStatus
    payment_ledger: Optional[PaymentLedger] = None
    issue_date: date
    due_date: date
    paid_date: Optional[date] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    line_items: List[LineItem] = []
    items: List[BillItemResponse] = []

    model_config = ConfigDict(from_attributes=True)


class PaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    method: Optional[str] = Field(None, max_length=50, description="e.g. cash, bank_transfer, mobile_money")
    reference: Optional[str] = Field(None, max_length=100)


class ItemPaymentRequest(PaymentRequest):
    notes: Optional[str] = Field(None, max_length=500)


class ReversalRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class DiscountRequest(BaseModel):
    discount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class BatchBillingError(BaseModel):
    student_id: UUID
    student_name: str
    code: str
    error: str


class BatchBillingResult(BaseModel):
    generated: List[BillResponse]
    errors: List[BatchBillingError]
    total_students: int
    successful: int
    failed: int


class OverdueSweepResult(BaseModel):
    marked_overdue: int


class OutstandingBalance(BaseModel):
    student_id: UUID
    outstanding_balance: Decimal


class BillingSummary(BaseModel):
    academic_year_id: UUID
    total_bills: int
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    bills_by_status: Dict[str, int]
