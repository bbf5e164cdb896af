"""initial ledger schema: calendar, classes, students, tariffs, bills

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "academic_year_status": ("draft", "active", "closed"),
    "term_status": ("upcoming", "active", "completed"),
    "student_status": ("active", "inactive", "graduated", "transferred"),
    "tariff_type": ("tuition", "activity_fee", "transport", "meal", "other"),
    "billing_frequency": ("per_term", "per_month", "per_year", "one_time"),
    "bill_status": ("pending", "overdue", "paid", "cancelled"),
    "bill_item_status": ("pending", "partial", "paid"),
    "payment_ledger": ("bill", "item"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list:
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "academic_years",
        *_timestamps(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("academic_year_status"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sa.CheckConstraint("start_date < end_date", name="ck_academic_years_date_order"),
    )
    op.create_index(op.f("ix_academic_years_id"), "academic_years", ["id"])
    op.create_index(op.f("ix_academic_years_status"), "academic_years", ["status"])
    op.create_index(
        "uq_academic_years_single_active",
        "academic_years",
        ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "terms",
        *_timestamps(),
        sa.Column("academic_year_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("term_status"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["academic_year_id"], ["academic_years.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("academic_year_id", "name", name="uq_terms_year_name"),
        sa.CheckConstraint("start_date < end_date", name="ck_terms_date_order"),
    )
    op.create_index(op.f("ix_terms_id"), "terms", ["id"])
    op.create_index(op.f("ix_terms_academic_year_id"), "terms", ["academic_year_id"])
    op.create_index(op.f("ix_terms_status"), "terms", ["status"])
    op.create_index(
        "uq_terms_single_active_per_year",
        "terms",
        ["academic_year_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "grades",
        *_timestamps(),
        sa.Column("name", sa.String(10), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sa.UniqueConstraint("level"),
    )
    op.create_index(op.f("ix_grades_id"), "grades", ["id"])
    op.create_index(op.f("ix_grades_is_active"), "grades", ["is_active"])

    op.create_table(
        "classes",
        *_timestamps(),
        sa.Column("grade_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("full_name", sa.String(60), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("current_enrollment", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["grade_id"], ["grades.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("grade_id", "name", name="uq_classes_grade_name"),
        sa.CheckConstraint("capacity BETWEEN 1 AND 100", name="ck_classes_capacity_range"),
        sa.CheckConstraint(
            "current_enrollment >= 0 AND current_enrollment <= capacity",
            name="ck_classes_enrollment_within_capacity",
        ),
    )
    op.create_index(op.f("ix_classes_id"), "classes", ["id"])
    op.create_index(op.f("ix_classes_grade_id"), "classes", ["grade_id"])
    op.create_index(op.f("ix_classes_is_active"), "classes", ["is_active"])

    op.create_table(
        "tariffs",
        *_timestamps(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", _enum("tariff_type"), nullable=False),
        sa.Column("billing_frequency", _enum("billing_frequency"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount > 0", name="ck_tariffs_amount_positive"),
    )
    op.create_index(op.f("ix_tariffs_id"), "tariffs", ["id"])
    op.create_index(op.f("ix_tariffs_type"), "tariffs", ["type"])
    op.create_index(op.f("ix_tariffs_is_active"), "tariffs", ["is_active"])

    op.create_table(
        "class_tariffs",
        sa.Column("class_id", sa.UUID(), nullable=False),
        sa.Column("tariff_id", sa.UUID(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["class_id"], ["classes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tariff_id"], ["tariffs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("class_id", "tariff_id"),
    )
    op.create_index("ix_class_tariffs_class_active", "class_tariffs", ["class_id", "is_active"])

    op.create_table(
        "students",
        *_timestamps(),
        sa.Column("student_number", sa.String(20), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("parent_name", sa.String(200), nullable=True),
        sa.Column("parent_email", sa.String(255), nullable=True),
        sa.Column("parent_phone", sa.String(30), nullable=True),
        sa.Column("enrollment_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("student_status"), nullable=False),
        sa.Column("class_id", sa.UUID(), nullable=True),
        sa.ForeignKeyConstraint(["class_id"], ["classes.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_students_id"), "students", ["id"])
    op.create_index(op.f("ix_students_student_number"), "students", ["student_number"], unique=True)
    op.create_index(op.f("ix_students_status"), "students", ["status"])
    op.create_index(op.f("ix_students_class_id"), "students", ["class_id"])

    op.create_table(
        "bills",
        *_timestamps(),
        sa.Column("bill_number", sa.String(30), nullable=False),
        sa.Column("student_id", sa.UUID(), nullable=False),
        sa.Column("academic_year_id", sa.UUID(), nullable=False),
        sa.Column("term_id", sa.UUID(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("bill_status"), nullable=False),
        sa.Column("payment_ledger", _enum("payment_ledger"), nullable=True),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("line_items", postgresql.JSONB(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["academic_year_id"], ["academic_years.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["term_id"], ["terms.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_bills_paid_non_negative"),
        sa.CheckConstraint("paid_amount <= total_amount", name="ck_bills_paid_within_total"),
        sa.CheckConstraint("balance >= 0", name="ck_bills_balance_non_negative"),
    )
    op.create_index(op.f("ix_bills_id"), "bills", ["id"])
    op.create_index(op.f("ix_bills_bill_number"), "bills", ["bill_number"], unique=True)
    op.create_index(op.f("ix_bills_student_id"), "bills", ["student_id"])
    op.create_index(op.f("ix_bills_academic_year_id"), "bills", ["academic_year_id"])
    op.create_index(op.f("ix_bills_term_id"), "bills", ["term_id"])
    op.create_index(op.f("ix_bills_status"), "bills", ["status"])
    op.create_index(op.f("ix_bills_due_date"), "bills", ["due_date"])

    op.create_table(
        "bill_items",
        *_timestamps(),
        sa.Column("bill_id", sa.UUID(), nullable=False),
        sa.Column("tariff_id", sa.UUID(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", _enum("tariff_type"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("bill_item_status"), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("payment_history", postgresql.JSONB(), nullable=False),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tariff_id"], ["tariffs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_bill_items_paid_non_negative"),
        sa.CheckConstraint("paid_amount <= amount", name="ck_bill_items_paid_within_amount"),
        sa.CheckConstraint("balance >= 0", name="ck_bill_items_balance_non_negative"),
    )
    op.create_index(op.f("ix_bill_items_id"), "bill_items", ["id"])
    op.create_index(op.f("ix_bill_items_bill_id"), "bill_items", ["bill_id"])
    op.create_index(op.f("ix_bill_items_tariff_id"), "bill_items", ["tariff_id"])


def downgrade() -> None:
    for table in (
        "bill_items",
        "bills",
        "students",
        "class_tariffs",
        "tariffs",
        "classes",
        "grades",
        "terms",
        "academic_years",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
