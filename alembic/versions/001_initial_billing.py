"""Initial billing schema: branches, users, courses, students, invoices, payments, notices

Revision ID: 001_initial_billing
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_billing"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Branches
    op.create_table(
        "branches",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_branches_code", "branches", ["code"], unique=True)

    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("branch_id", sa.BigInteger(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_branch_id", "users", ["branch_id"], unique=False)

    # Courses and fee structures
    op.create_table(
        "courses",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("branch_id", sa.BigInteger(), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
    )
    op.create_index("ix_courses_branch_id", "courses", ["branch_id"], unique=False)
    op.create_index("ix_courses_code", "courses", ["code"], unique=False)

    op.create_table(
        "course_fee_structures",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("course_id", sa.BigInteger(), nullable=False),
        sa.Column("billing_frequency", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("per_period_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("create_invoice_on_enrollment", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("academic_year", sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("course_id"),
    )
    op.create_index(
        "ix_course_fee_structures_billing_frequency",
        "course_fee_structures",
        ["billing_frequency"],
        unique=False,
    )

    op.create_table(
        "course_fee_components",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("fee_structure_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("category", sa.String(20), nullable=False, server_default="tuition"),
        sa.Column("is_optional", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["fee_structure_id"], ["course_fee_structures.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_course_fee_components_fee_structure_id",
        "course_fee_components",
        ["fee_structure_id"],
        unique=False,
    )

    # Students and enrollments
    op.create_table(
        "students",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_number", sa.String(50), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone_number", sa.String(50), nullable=True),
        sa.Column("branch_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("enrollment_date", sa.Date(), nullable=True),
        sa.Column("scholarship_percentage", sa.Numeric(5, 2), nullable=False, server_default="0.00"),
        sa.Column("academic_status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
    )
    op.create_index("ix_students_student_number", "students", ["student_number"], unique=True)
    op.create_index("ix_students_branch_id", "students", ["branch_id"], unique=False)
    op.create_index("ix_students_academic_status", "students", ["academic_status"], unique=False)

    op.create_table(
        "course_enrollments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("course_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("enrolled_on", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.UniqueConstraint("student_id", "course_id", name="uq_course_enrollments_student_course"),
    )
    op.create_index("ix_course_enrollments_student_id", "course_enrollments", ["student_id"], unique=False)
    op.create_index("ix_course_enrollments_course_id", "course_enrollments", ["course_id"], unique=False)
    op.create_index("ix_course_enrollments_status", "course_enrollments", ["status"], unique=False)

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("branch_id", sa.BigInteger(), nullable=False),
        sa.Column("course_id", sa.BigInteger(), nullable=True),
        sa.Column("fee_structure_id", sa.BigInteger(), nullable=True),
        sa.Column("academic_year", sa.String(20), nullable=False),
        sa.Column("invoice_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="unpaid"),
        sa.Column("period_year", sa.Integer(), nullable=False),
        sa.Column("period_month", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("is_consolidated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fee_components", sa.JSON(), nullable=False),
        sa.Column("total_amount_due", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("discount_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("scholarship_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("amount_paid", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_by_id", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
    )
    op.create_index("ix_invoices_student_id", "invoices", ["student_id"], unique=False)
    op.create_index("ix_invoices_branch_id", "invoices", ["branch_id"], unique=False)
    op.create_index("ix_invoices_course_id", "invoices", ["course_id"], unique=False)
    op.create_index("ix_invoices_invoice_type", "invoices", ["invoice_type"], unique=False)
    op.create_index("ix_invoices_status", "invoices", ["status"], unique=False)
    op.create_index("ix_invoices_period_start", "invoices", ["period_start"], unique=False)
    op.create_index(
        "ix_invoices_course_period", "invoices", ["course_id", "period_year", "period_month"], unique=False
    )
    # Natural keys: one consolidated invoice per student per period,
    # one per-course invoice per student, course and period
    op.create_index(
        "uq_invoices_student_period_consolidated",
        "invoices",
        ["student_id", "period_start"],
        unique=True,
        postgresql_where=sa.text("is_consolidated AND fee_structure_id IS NULL"),
    )
    op.create_index(
        "uq_invoices_student_course_period",
        "invoices",
        ["student_id", "course_id", "period_start"],
        unique=True,
        postgresql_where=sa.text("NOT is_consolidated"),
    )

    # Payments and credit allocations
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("branch_id", sa.BigInteger(), nullable=True),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
    )
    op.create_index("ix_payments_student_id", "payments", ["student_id"], unique=False)
    op.create_index("ix_payments_branch_id", "payments", ["branch_id"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)

    op.create_table(
        "credit_allocations",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("invoice_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("allocated_by_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["allocated_by_id"], ["users.id"]),
    )
    op.create_index("ix_credit_allocations_student_id", "credit_allocations", ["student_id"], unique=False)
    op.create_index("ix_credit_allocations_invoice_id", "credit_allocations", ["invoice_id"], unique=False)
    op.create_index("ix_credit_allocations_created_at", "credit_allocations", ["created_at"], unique=False)

    # Notices
    op.create_table(
        "notices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("branch_id", sa.BigInteger(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("notice_type", sa.String(30), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("target_audience", sa.String(20), nullable=False, server_default="all"),
        sa.Column("recipient_user_id", sa.BigInteger(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["recipient_user_id"], ["users.id"]),
    )
    op.create_index("ix_notices_branch_id", "notices", ["branch_id"], unique=False)
    op.create_index("ix_notices_notice_type", "notices", ["notice_type"], unique=False)
    op.create_index("ix_notices_recipient_user_id", "notices", ["recipient_user_id"], unique=False)

    # Audit log
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("entity_identifier", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("notices")
    op.drop_table("credit_allocations")
    op.drop_table("payments")
    op.drop_index("uq_invoices_student_course_period", table_name="invoices")
    op.drop_index("uq_invoices_student_period_consolidated", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("course_enrollments")
    op.drop_table("students")
    op.drop_table("course_fee_components")
    op.drop_table("course_fee_structures")
    op.drop_table("courses")
    op.drop_table("users")
    op.drop_table("branches")
