"""Domain 3-4: Tariffs and Billing

Bill and BillItem carry their own arithmetic and state-machine rules so
the billing engine only has to lock, load and persist them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.core.exceptions import InvalidState, Overpayment, PreconditionFailed
from app.models.academic import class_tariffs
from app.models.base import BaseModel, StatusMixin, enum_column_type
from app.models.enums import (
    BillingFrequency,
    BillItemStatus,
    BillStatus,
    PaymentLedger,
    TariffType,
)
from app.utils.money import ZERO, round_money
from app.utils.time import stamp


class Tariff(BaseModel, StatusMixin):
    """Priced fee template attachable to classes."""
    __tablename__ = "tariffs"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(enum_column_type(TariffType, "tariff_type"), nullable=False, index=True)
    billing_frequency = Column(
        enum_column_type(BillingFrequency, "billing_frequency"),
        default=BillingFrequency.PER_TERM,
        nullable=False,
    )

    classes = relationship("ClassRoom", secondary=class_tariffs, back_populates="tariffs")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_tariffs_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Tariff {self.name} {self.amount} ({self.billing_frequency})>"


# Legal bill status moves; PAID -> PENDING only through a payment reversal
BILL_TRANSITIONS = {
    BillStatus.PENDING: {BillStatus.OVERDUE, BillStatus.PAID, BillStatus.CANCELLED},
    BillStatus.OVERDUE: {BillStatus.PAID, BillStatus.CANCELLED},
    BillStatus.PAID: {BillStatus.PENDING},
    BillStatus.CANCELLED: set(),
}

PAYABLE_STATUSES = (BillStatus.PENDING, BillStatus.OVERDUE)


class Bill(BaseModel):
    """
    One student's charges for one term.

    Invariants kept by every mutator below:
    - total_amount = subtotal - discount + tax
    - paid_amount + balance == total_amount, balance >= 0
    - status == PAID exactly when balance == 0
    """
    __tablename__ = "bills"

    bill_number = Column(String(30), nullable=False, unique=True, index=True)
    student_id = Column(
        UUID(as_uuid=True),
        ForeignKey("students.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    term_id = Column(
        UUID(as_uuid=True),
        ForeignKey("terms.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    subtotal = Column(Numeric(12, 2), nullable=False, default=ZERO)
    discount = Column(Numeric(12, 2), nullable=False, default=ZERO)
    tax = Column(Numeric(12, 2), nullable=False, default=ZERO)
    total_amount = Column(Numeric(12, 2), nullable=False, default=ZERO)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=ZERO)
    balance = Column(Numeric(12, 2), nullable=False, default=ZERO)

    status = Column(
        enum_column_type(BillStatus, "bill_status"),
        default=BillStatus.PENDING,
        nullable=False,
        index=True,
    )
    # NULL until the first payment fixes the granularity
    payment_ledger = Column(enum_column_type(PaymentLedger, "payment_ledger"), nullable=True)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    paid_date = Column(Date, nullable=True)

    description = Column(Text, nullable=True)
    line_items = Column(JSONB, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    student = relationship("Student", back_populates="bills")
    academic_year = relationship("AcademicYear", back_populates="bills")
    term = relationship("Term", back_populates="bills")
    items = relationship(
        "BillItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.position",
    )

    __table_args__ = (
        CheckConstraint("paid_amount >= 0", name="ck_bills_paid_non_negative"),
        CheckConstraint("paid_amount <= total_amount", name="ck_bills_paid_within_total"),
        CheckConstraint("balance >= 0", name="ck_bills_balance_non_negative"),
    )

    # --- Derived values -------------------------------------------------

    @property
    def is_payable(self) -> bool:
        return self.status in PAYABLE_STATUSES

    def recalculate(self) -> None:
        """Recompute total and balance from the stored components."""
        self.total_amount = round_money(
            Decimal(self.subtotal) - Decimal(self.discount) + Decimal(self.tax)
        )
        balance = round_money(Decimal(self.total_amount) - Decimal(self.paid_amount))
        self.balance = balance if balance > ZERO else ZERO

    def add_note(self, line: str, at: datetime) -> None:
        entry = f"[{stamp(at)}] {line}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    def _transition(self, target: BillStatus) -> None:
        if target == self.status:
            return
        if target not in BILL_TRANSITIONS[BillStatus(self.status)]:
            raise InvalidState(
                f"Bill {self.bill_number} cannot move from {BillStatus(self.status).value} to {target.value}",
                {"bill_id": str(self.id), "status": BillStatus(self.status).value, "target": target.value},
            )
        self.status = target

    def _settle_if_cleared(self, at: datetime) -> None:
        if self.balance == ZERO:
            self._transition(BillStatus.PAID)
            self.paid_date = at.date()

    def _require_payable(self) -> None:
        if not self.is_payable:
            raise InvalidState(
                f"Bill {self.bill_number} is {BillStatus(self.status).value} and cannot take payments",
                {"bill_id": str(self.id), "status": BillStatus(self.status).value},
            )

    def _require_ledger(self, ledger: PaymentLedger) -> None:
        if self.payment_ledger is not None and self.payment_ledger != ledger:
            raise InvalidState(
                f"Bill {self.bill_number} is tracked on the {PaymentLedger(self.payment_ledger).value} ledger",
                {"bill_id": str(self.id), "payment_ledger": PaymentLedger(self.payment_ledger).value},
            )

    # --- Mutators -------------------------------------------------------

    def apply_payment(
        self,
        amount: Decimal,
        at: datetime,
        method: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> None:
        amount = round_money(amount)
        if amount <= ZERO:
            raise PreconditionFailed("Payment amount must be positive", {"amount": str(amount)})
        self._require_payable()
        self._require_ledger(PaymentLedger.BILL)
        if amount > Decimal(self.balance):
            raise Overpayment(
                f"Payment {amount} exceeds outstanding balance {self.balance}",
                {"bill_id": str(self.id), "amount": str(amount), "balance": str(self.balance)},
            )

        self.payment_ledger = PaymentLedger.BILL
        self.paid_amount = round_money(Decimal(self.paid_amount) + amount)
        self.recalculate()
        self._settle_if_cleared(at)

        line = f"Payment received: {amount}"
        if method:
            line += f" via {method}"
        if reference:
            line += f" (Ref: {reference})"
        self.add_note(line, at)

    def reverse_payment(self, amount: Decimal, reason: str, at: datetime) -> None:
        amount = round_money(amount)
        if amount <= ZERO or amount > Decimal(self.paid_amount):
            raise PreconditionFailed(
                f"Reversal amount must be between 0 and the paid amount {self.paid_amount}",
                {"bill_id": str(self.id), "amount": str(amount), "paid_amount": str(self.paid_amount)},
            )
        if self.payment_ledger == PaymentLedger.ITEM:
            raise InvalidState(
                f"Bill {self.bill_number} is paid per item; reverse item payments instead",
                {"bill_id": str(self.id)},
            )

        self.paid_amount = round_money(Decimal(self.paid_amount) - amount)
        self.recalculate()
        if self.status == BillStatus.PAID and self.balance > ZERO:
            self._transition(BillStatus.PENDING)
            self.paid_date = None
        if self.paid_amount == ZERO:
            self.payment_ledger = None
        self.add_note(f"Payment reversed: {amount}. Reason: {reason}", at)

    def apply_discount(self, discount: Decimal, reason: str, at: datetime) -> None:
        discount = round_money(discount)
        if self.status != BillStatus.PENDING:
            raise InvalidState(
                f"Discounts apply to pending bills only; bill {self.bill_number} is {BillStatus(self.status).value}",
                {"bill_id": str(self.id), "status": BillStatus(self.status).value},
            )
        if discount < ZERO:
            raise PreconditionFailed("Discount cannot be negative", {"discount": str(discount)})
        new_total = round_money(Decimal(self.subtotal) - discount + Decimal(self.tax))
        if new_total < ZERO:
            raise PreconditionFailed(
                f"Discount {discount} would make the bill total negative",
                {"bill_id": str(self.id), "discount": str(discount), "subtotal": str(self.subtotal)},
            )
        if new_total < Decimal(self.paid_amount):
            raise PreconditionFailed(
                f"Discount {discount} would push the total below the amount already paid",
                {"bill_id": str(self.id), "discount": str(discount), "paid_amount": str(self.paid_amount)},
            )

        self.discount = discount
        self.recalculate()
        self._settle_if_cleared(at)
        self.add_note(f"Discount applied: {discount}. Reason: {reason}", at)

    def cancel(self, reason: str, at: datetime) -> None:
        if Decimal(self.paid_amount) > ZERO:
            raise InvalidState(
                f"Bill {self.bill_number} has payments of {self.paid_amount} and cannot be cancelled",
                {"bill_id": str(self.id), "paid_amount": str(self.paid_amount)},
            )
        self._transition(BillStatus.CANCELLED)
        self.add_note(f"Cancelled: {reason}", at)

    def mark_overdue(self, today: date) -> bool:
        """Flag an unpaid bill past its due date. Returns True when it changed."""
        if self.status != BillStatus.PENDING or self.due_date >= today:
            return False
        self._transition(BillStatus.OVERDUE)
        return True

    def apply_item_payment(
        self,
        item: "BillItem",
        amount: Decimal,
        at: datetime,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        """Pay one line and roll the item totals up into this bill."""
        if item.bill_id != self.id:
            raise PreconditionFailed(
                "Item does not belong to this bill",
                {"bill_id": str(self.id), "item_id": str(item.id)},
            )
        self._require_payable()
        self._require_ledger(PaymentLedger.ITEM)
        # A discount can leave the bill owing less than its items do
        if round_money(amount) > Decimal(self.balance):
            raise Overpayment(
                f"Payment {round_money(amount)} exceeds outstanding balance {self.balance}",
                {"bill_id": str(self.id), "amount": str(round_money(amount)), "balance": str(self.balance)},
            )

        item.apply_payment(amount, at, method=method, reference=reference, notes=notes)

        self.payment_ledger = PaymentLedger.ITEM
        self.paid_amount = round_money(sum((Decimal(i.paid_amount) for i in self.items), ZERO))
        self.recalculate()
        self._settle_if_cleared(at)
        self.add_note(f"Item payment received: {round_money(amount)} for {item.name}", at)

    def __repr__(self) -> str:
        return f"<Bill {self.bill_number} {self.total_amount} - {self.status}>"


class BillItem(BaseModel):
    """Per-tariff payment line of a bill."""
    __tablename__ = "bill_items"

    bill_id = Column(
        UUID(as_uuid=True),
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tariff_id = Column(
        UUID(as_uuid=True),
        ForeignKey("tariffs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(enum_column_type(TariffType, "tariff_type"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=ZERO)
    balance = Column(Numeric(12, 2), nullable=False)
    status = Column(
        enum_column_type(BillItemStatus, "bill_item_status"),
        default=BillItemStatus.PENDING,
        nullable=False,
    )
    paid_date = Column(Date, nullable=True)
    payment_history = Column(JSONB, nullable=False, default=list)

    bill = relationship("Bill", back_populates="items")

    __table_args__ = (
        CheckConstraint("paid_amount >= 0", name="ck_bill_items_paid_non_negative"),
        CheckConstraint("paid_amount <= amount", name="ck_bill_items_paid_within_amount"),
        CheckConstraint("balance >= 0", name="ck_bill_items_balance_non_negative"),
    )

    def apply_payment(
        self,
        amount: Decimal,
        at: datetime,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        amount = round_money(amount)
        if amount <= ZERO:
            raise PreconditionFailed("Payment amount must be positive", {"amount": str(amount)})
        if self.status == BillItemStatus.PAID:
            raise InvalidState(f"Item {self.name} is already paid", {"item_id": str(self.id)})
        if amount > Decimal(self.balance):
            raise Overpayment(
                f"Payment {amount} exceeds item balance {self.balance}",
                {"item_id": str(self.id), "amount": str(amount), "balance": str(self.balance)},
            )

        self.paid_amount = round_money(Decimal(self.paid_amount) + amount)
        balance = round_money(Decimal(self.amount) - Decimal(self.paid_amount))
        self.balance = balance if balance > ZERO else ZERO
        if self.balance == ZERO:
            self.status = BillItemStatus.PAID
            self.paid_date = at.date()
        else:
            self.status = BillItemStatus.PARTIAL

        entry: Dict[str, Any] = {
            "amount": str(amount),
            "method": method,
            "reference": reference,
            "notes": notes,
            "paid_at": at.isoformat(),
        }
        # Reassign so the JSONB column is flagged dirty
        history: List[Dict[str, Any]] = list(self.payment_history or [])
        history.append(entry)
        self.payment_history = history

    def __repr__(self) -> str:
        return f"<BillItem {self.name} {self.amount} - {self.status}>"
