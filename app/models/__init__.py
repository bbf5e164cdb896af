"""Models Package - Export all models for easy imports"""

from app.models.base import BaseModel, StatusMixin
from app.models.enums import *
from app.models.academic import AcademicYear, Term, Grade, ClassRoom, class_tariffs
from app.models.student import Student
from app.models.billing import Tariff, Bill, BillItem


__all__ = [
    # Base classes
    "BaseModel",
    "StatusMixin",

    # Academic calendar and classes
    "AcademicYear",
    "Term",
    "Grade",
    "ClassRoom",
    "class_tariffs",

    # Students
    "Student",

    # Tariffs and billing
    "Tariff",
    "Bill",
    "BillItem",
]
