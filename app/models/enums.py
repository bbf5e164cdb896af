"""Centralized Enum Definitions"""

import enum


# Domain 1: Academic calendar
class AcademicYearStatus(str, enum.Enum):
    """Academic year lifecycle. CLOSED is terminal."""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class TermStatus(str, enum.Enum):
    """Term lifecycle. COMPLETED is terminal."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


# Domain 2: Students
class StudentStatus(str, enum.Enum):
    """Student status. Everything but ACTIVE ends class membership."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    GRADUATED = "graduated"
    TRANSFERRED = "transferred"

    @property
    def is_terminal(self) -> bool:
        return self is not StudentStatus.ACTIVE


# Domain 3: Tariffs
class TariffType(str, enum.Enum):
    """Fee categories"""
    TUITION = "tuition"
    ACTIVITY_FEE = "activity_fee"
    TRANSPORT = "transport"
    MEAL = "meal"
    OTHER = "other"


class BillingFrequency(str, enum.Enum):
    """How a tariff's base amount maps to a per-term charge"""
    PER_TERM = "per_term"
    PER_MONTH = "per_month"
    PER_YEAR = "per_year"
    ONE_TIME = "one_time"


# Domain 4: Billing
class BillStatus(str, enum.Enum):
    """Bill payment status"""
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class BillItemStatus(str, enum.Enum):
    """Per-line payment status"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentLedger(str, enum.Enum):
    """Granularity a bill's payments are tracked at, fixed by its first payment"""
    BILL = "bill"
    ITEM = "item"
