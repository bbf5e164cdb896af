"""Billing endpoints - payments, reversals, cancellation and discounts"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.billing import (
    BillItemResponse,
    BillingSummary,
    BillResponse,
    CancelRequest,
    DiscountRequest,
    ItemPaymentRequest,
    OverdueSweepResult,
    PaymentRequest,
    ReversalRequest,
)
from app.schemas.responses import SuccessResponse
from app.services.billing_engine import BillingEngine

router = APIRouter()


@router.post("/overdue-sweep", response_model=SuccessResponse[OverdueSweepResult])
async def mark_overdue_bills(db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Flag pending bills past their due date as overdue. Safe to repeat."""
    count = await BillingEngine.mark_overdue(db)
    return SuccessResponse(data=OverdueSweepResult(marked_overdue=count))


@router.get("/summary/{year_id}", response_model=SuccessResponse[BillingSummary])
async def billing_summary(year_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Totals for an academic year; cancelled bills are counted but not summed."""
    summary = await BillingEngine.billing_summary(db, year_id)
    return SuccessResponse(data=BillingSummary(**summary))


@router.post("/items/{item_id}/payments", response_model=SuccessResponse[BillItemResponse])
async def pay_bill_item(
    item_id: UUID,
    body: ItemPaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Record a payment against one line; the bill is then tracked per item."""
    item = await BillingEngine.record_item_payment(
        db, item_id, body.amount, body.method, body.reference, body.notes
    )
    return SuccessResponse(data=BillItemResponse.model_validate(item), message="Payment recorded")


@router.get("/{bill_id}", response_model=SuccessResponse[BillResponse])
async def get_bill(bill_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    bill = await BillingEngine.get_bill(db, bill_id)
    return SuccessResponse(data=BillResponse.model_validate(bill))


@router.post("/{bill_id}/payments", response_model=SuccessResponse[BillResponse])
async def pay_bill(
    bill_id: UUID,
    body: PaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Record a settled payment. Fails with OVERPAYMENT above the balance."""
    bill = await BillingEngine.record_payment(db, bill_id, body.amount, body.method, body.reference)
    return SuccessResponse(data=BillResponse.model_validate(bill), message="Payment recorded")


@router.post("/{bill_id}/reversals", response_model=SuccessResponse[BillResponse])
async def reverse_payment(
    bill_id: UUID,
    body: ReversalRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    bill = await BillingEngine.reverse_payment(db, bill_id, body.amount, body.reason)
    return SuccessResponse(data=BillResponse.model_validate(bill), message="Payment reversed")


@router.post("/{bill_id}/cancel", response_model=SuccessResponse[BillResponse])
async def cancel_bill(
    bill_id: UUID,
    body: CancelRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Cancel an unpaid bill. Bills with any payment cannot be cancelled."""
    bill = await BillingEngine.cancel(db, bill_id, body.reason)
    return SuccessResponse(data=BillResponse.model_validate(bill), message="Bill cancelled")


@router.post("/{bill_id}/discount", response_model=SuccessResponse[BillResponse])
async def apply_discount(
    bill_id: UUID,
    body: DiscountRequest,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    bill = await BillingEngine.apply_discount(db, bill_id, body.discount, body.reason)
    return SuccessResponse(data=BillResponse.model_validate(bill), message="Discount applied")
