"""Domain 2: Students"""

from sqlalchemy import Column, Date, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, enum_column_type
from app.models.enums import StudentStatus


class Student(BaseModel):
    """
    A student. Belongs to at most one class at a time; any status other
    than ACTIVE ends class membership (class_id is forced to NULL).
    """
    __tablename__ = "students"

    student_number = Column(String(20), nullable=False, unique=True, index=True)  # e.g., "2025-001"
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    parent_name = Column(String(200), nullable=True)
    parent_email = Column(String(255), nullable=True)
    parent_phone = Column(String(30), nullable=True)
    enrollment_date = Column(Date, nullable=False)
    status = Column(
        enum_column_type(StudentStatus, "student_status"),
        default=StudentStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    class_id = Column(
        UUID(as_uuid=True),
        ForeignKey("classes.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    class_room = relationship("ClassRoom", back_populates="students")
    bills = relationship("Bill", back_populates="student", passive_deletes=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE

    @property
    def is_assigned(self) -> bool:
        return self.class_id is not None

    def __repr__(self) -> str:
        return f"<Student {self.student_number} ({self.status})>"
