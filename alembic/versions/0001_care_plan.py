"""Create care-plan, reminder and access tables.

Revision ID: 0001_care_plan
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_care_plan"
down_revision = None
branch_labels = None
depends_on = None


def _enum(length: int = 50) -> sa.String:
    """Enums are stored as validated strings."""
    return sa.String(length)


def upgrade() -> None:
    """Create all engine tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("role", _enum(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "patient_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("doctor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("doctor_id", "patient_id", name="uq_patient_records_pair"),
    )
    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("doctor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recurrence", _enum(), nullable=False),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("analysis_id", sa.Integer(), nullable=True),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("task_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_reminders_user_id", "reminders", ["user_id"])
    op.create_table(
        "reminder_deliveries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "reminder_id",
            sa.Integer(),
            sa.ForeignKey("reminders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel", _enum(), nullable=False),
        sa.Column("status", _enum(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_reminder_deliveries_reminder_id", "reminder_deliveries", ["reminder_id"]
    )
    op.create_table(
        "reminder_preferences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True
        ),
        sa.Column("email", sa.Boolean(), nullable=False),
        sa.Column("push", sa.Boolean(), nullable=False),
        sa.Column("sms", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "care_plan_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "created_by_doctor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("kind", _enum(), nullable=False),
        sa.Column("request_type", _enum(), nullable=True),
        sa.Column("request_meta", sa.JSON(), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recurrence", _enum(), nullable=False),
        sa.Column("status", _enum(), nullable=False),
        sa.Column("approval_status", _enum(), nullable=False),
        sa.Column("approval_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("protocol_key", sa.String(100), nullable=True),
        sa.Column(
            "reminder_id",
            sa.Integer(),
            sa.ForeignKey("reminders.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("analysis_id", sa.Integer(), nullable=True),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "approval_status != 'PENDING' OR reminder_id IS NULL",
            name="ck_care_plan_tasks_pending_without_reminder",
        ),
        sa.CheckConstraint(
            "kind = 'REQUEST' OR request_type IS NULL",
            name="ck_care_plan_tasks_request_type_kind",
        ),
    )
    op.create_index("ix_care_plan_tasks_patient_id", "care_plan_tasks", ["patient_id"])
    op.create_table(
        "care_plan_check_ins",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("care_plan_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", _enum(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_care_plan_check_ins_task_id", "care_plan_check_ins", ["task_id"])
    op.create_table(
        "care_relationships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("caretaker_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("caretaker_id", "patient_id", name="uq_care_relationships_pair"),
        sa.CheckConstraint("caretaker_id != patient_id", name="ck_care_relationships_distinct"),
    )
    op.create_index(
        "ix_care_relationships_caretaker_id", "care_relationships", ["caretaker_id"]
    )
    op.create_index("ix_care_relationships_patient_id", "care_relationships", ["patient_id"])
    op.create_table(
        "diary_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("systolic", sa.Integer(), nullable=True),
        sa.Column("diastolic", sa.Integer(), nullable=True),
        sa.Column("pulse", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_diary_entries_user_id", "diary_entries", ["user_id"])


def downgrade() -> None:
    """Drop all engine tables."""
    op.drop_table("diary_entries")
    op.drop_table("care_relationships")
    op.drop_table("care_plan_check_ins")
    op.drop_table("care_plan_tasks")
    op.drop_table("reminder_preferences")
    op.drop_table("reminder_deliveries")
    op.drop_table("reminders")
    op.drop_table("appointments")
    op.drop_table("patient_records")
    op.drop_table("users")
