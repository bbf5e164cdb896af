"""Domain 1: Academic calendar, grades and classes"""

from datetime import date

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, StatusMixin, enum_column_type
from app.models.enums import AcademicYearStatus, TermStatus
from app.utils.time import get_utc_now


class AcademicYear(BaseModel):
    """
    School year. At most one is ACTIVE at a time, enforced both by the
    activation transaction and by a partial unique index.
    Owns its terms and bills; CLOSED is terminal.
    """
    __tablename__ = "academic_years"

    name = Column(String(100), nullable=False, unique=True)  # e.g., "2025-2026"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(
        enum_column_type(AcademicYearStatus, "academic_year_status"),
        default=AcademicYearStatus.DRAFT,
        nullable=False,
        index=True,
    )
    description = Column(Text, nullable=True)

    terms = relationship(
        "Term",
        back_populates="academic_year",
        order_by="Term.start_date",
        passive_deletes=True,
    )
    bills = relationship("Bill", back_populates="academic_year", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_academic_years_date_order"),
        Index(
            "uq_academic_years_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == AcademicYearStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == AcademicYearStatus.CLOSED

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return f"<AcademicYear {self.name} ({self.status})>"


class Term(BaseModel):
    """
    Billing period inside an academic year. At most one ACTIVE term per
    year; dates must fall inside the parent year. COMPLETED is terminal.
    """
    __tablename__ = "terms"

    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(100), nullable=False)  # e.g., "Term 1"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(
        enum_column_type(TermStatus, "term_status"),
        default=TermStatus.UPCOMING,
        nullable=False,
        index=True,
    )
    description = Column(Text, nullable=True)

    academic_year = relationship("AcademicYear", back_populates="terms")
    bills = relationship("Bill", back_populates="term", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_terms_date_order"),
        UniqueConstraint("academic_year_id", "name", name="uq_terms_year_name"),
        Index(
            "uq_terms_single_active_per_year",
            "academic_year_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TermStatus.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.status == TermStatus.COMPLETED

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def has_ended(self, today: date) -> bool:
        """True on or after the last day of the term."""
        return today >= self.end_date

    @property
    def month_span(self) -> int:
        """Calendar months touched by the term, at least 1 (Jan 15 - Mar 10 is 3)."""
        months = (
            (self.end_date.year - self.start_date.year) * 12
            + (self.end_date.month - self.start_date.month)
            + 1
        )
        return max(1, months)

    def __repr__(self) -> str:
        return f"<Term {self.name} ({self.status})>"


class Grade(BaseModel, StatusMixin):
    """
    School grade (N1..N3 nursery, P1..P6 primary). Levels are unique and
    define the promotion path: the next grade has level + 1.
    """
    __tablename__ = "grades"

    name = Column(String(10), nullable=False, unique=True)
    level = Column(Integer, nullable=False, unique=True)
    description = Column(Text, nullable=True)

    classes = relationship("ClassRoom", back_populates="grade", order_by="ClassRoom.name")

    def __repr__(self) -> str:
        return f"<Grade {self.name} (level {self.level})>"


# Association table for Class <-> Tariff; the link carries its own is_active flag
class_tariffs = Table(
    "class_tariffs",
    BaseModel.metadata,
    Column("class_id", UUID(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True),
    Column("tariff_id", UUID(as_uuid=True), ForeignKey("tariffs.id", ondelete="CASCADE"), primary_key=True),
    Column("is_active", Boolean, default=True, nullable=False),
    Column("created_at", DateTime, default=get_utc_now, nullable=False),
    Index("ix_class_tariffs_class_active", "class_id", "is_active"),
)


class ClassRoom(BaseModel, StatusMixin):
    """
    A class (section) inside a grade, e.g. P1 + "A" = "P1A".

    current_enrollment is a denormalized counter of students whose
    class_id points here. It only moves through the enrollment manager's
    atomic increment/decrement statements.
    """
    __tablename__ = "classes"

    grade_id = Column(
        UUID(as_uuid=True),
        ForeignKey("grades.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(50), nullable=False)  # Section: "A", "B"
    full_name = Column(String(60), nullable=False)
    capacity = Column(Integer, nullable=False)
    current_enrollment = Column(Integer, default=0, nullable=False)
    description = Column(Text, nullable=True)

    grade = relationship("Grade", back_populates="classes")
    students = relationship("Student", back_populates="class_room")
    tariffs = relationship("Tariff", secondary=class_tariffs, back_populates="classes")

    __table_args__ = (
        UniqueConstraint("grade_id", "name", name="uq_classes_grade_name"),
        CheckConstraint("capacity BETWEEN 1 AND 100", name="ck_classes_capacity_range"),
        CheckConstraint(
            "current_enrollment >= 0 AND current_enrollment <= capacity",
            name="ck_classes_enrollment_within_capacity",
        ),
    )

    @property
    def available_space(self) -> int:
        return self.capacity - self.current_enrollment

    @property
    def is_full(self) -> bool:
        return self.current_enrollment >= self.capacity

    def can_accept_student(self) -> bool:
        return bool(self.is_active) and not self.is_full

    def __repr__(self) -> str:
        return f"<ClassRoom {self.full_name} {self.current_enrollment}/{self.capacity}>"
