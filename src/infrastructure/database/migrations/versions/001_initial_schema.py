# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial risk engine schema.

Revision ID: 001_initial
Revises: None
Create Date: 2025-06-02

Creates schools, staff, students, attendance and performance records,
risk flags, detection runs, guardian messages and staff notifications.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    """Create risk engine tables."""
    # ==========================================================================
    # 1. schools and staff
    # ==========================================================================
    op.create_table(
        "schools",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(50), unique=True, nullable=True),
        sa.Column("district", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("settings", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "staff_users",
        _id(),
        sa.Column(
            "school_id",
            sa.String(36),
            sa.ForeignKey("schools.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="TEACHER"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_staff_users_school_id", "staff_users", ["school_id"])

    # ==========================================================================
    # 2. students
    # ==========================================================================
    op.create_table(
        "students",
        _id(),
        sa.Column(
            "school_id",
            sa.String(36),
            sa.ForeignKey("schools.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("student_code", sa.String(50), nullable=True),
        sa.Column("class_name", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("ubudehe_level", sa.Integer, nullable=True),
        sa.Column("has_parents", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("family_stable", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("distance_to_school_km", sa.Float, nullable=True),
        sa.Column("sibling_count", sa.Integer, nullable=True),
        sa.Column("parent_education_level", sa.String(30), nullable=True),
        sa.Column(
            "guardian_contacts", postgresql.JSONB, nullable=False, server_default="[]"
        ),
        sa.Column("risk_level", sa.String(10), nullable=False, server_default="NONE"),
        sa.Column("risk_level_updated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_students_school_active", "students", ["school_id", "is_active"])

    # ==========================================================================
    # 3. attendance and performance records
    # ==========================================================================
    op.create_table(
        "attendance_records",
        _id(),
        sa.Column(
            "student_id",
            sa.String(36),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("recorded_by", sa.String(36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("student_id", "date", name="uq_attendance_student_date"),
    )
    op.create_index("ix_attendance_records_school_id", "attendance_records", ["school_id"])

    op.create_table(
        "performance_records",
        _id(),
        sa.Column(
            "student_id",
            sa.String(36),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("subject", sa.String(100), nullable=False),
        sa.Column("term", sa.String(20), nullable=False),
        sa.Column("academic_year", sa.String(20), nullable=False),
        sa.Column("score", sa.Float, nullable=False),
        sa.Column("max_score", sa.Float, nullable=False, server_default="100"),
        sa.Column("grade", sa.String(2), nullable=False),
        sa.Column("recorded_by", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_performance_student_term",
        "performance_records",
        ["student_id", "academic_year", "term"],
    )
    op.create_index(
        "ix_performance_records_school_id", "performance_records", ["school_id"]
    )

    # ==========================================================================
    # 4. risk flags and detection runs
    # ==========================================================================
    op.create_table(
        "risk_flags",
        _id(),
        sa.Column(
            "student_id",
            sa.String(36),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("evidence", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_generated", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("resolved_by", sa.String(36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text, nullable=True),
        *_timestamps(),
    )
    # At most one active flag per (student, type)
    op.create_index(
        "uq_risk_flags_active_student_type",
        "risk_flags",
        ["student_id", "type"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
    )
    op.create_index("ix_risk_flags_school_active", "risk_flags", ["school_id", "is_active"])

    op.create_table(
        "detection_runs",
        _id(),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("requested_by", sa.String(36), nullable=True),
        sa.Column("trigger", sa.String(20), nullable=False, server_default="MANUAL"),
        sa.Column("status", sa.String(20), nullable=False, server_default="QUEUED"),
        sa.Column("students_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("students_scanned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risks_detected", sa.Integer, nullable=False, server_default="0"),
        sa.Column("flags_created", sa.Integer, nullable=False, server_default="0"),
        sa.Column("errors", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("task_message_id", sa.String(64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_detection_runs_school_id", "detection_runs", ["school_id"])

    # ==========================================================================
    # 5. guardian messages and staff notifications
    # ==========================================================================
    op.create_table(
        "messages",
        _id(),
        sa.Column(
            "student_id",
            sa.String(36),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("sender_id", sa.String(36), nullable=True),
        sa.Column("recipient_name", sa.String(200), nullable=True),
        sa.Column("recipient_phone", sa.String(30), nullable=True),
        sa.Column("recipient_email", sa.String(255), nullable=True),
        sa.Column("channel", sa.String(10), nullable=False),
        sa.Column("message_type", sa.String(30), nullable=False, server_default="GENERAL"),
        sa.Column("template", sa.String(50), nullable=True),
        sa.Column("language", sa.String(5), nullable=False, server_default="en"),
        sa.Column("variables", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("email_body", sa.Text, nullable=True),
        sa.Column("status", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("sms_status", sa.String(15), nullable=False, server_default="NOT_REQUESTED"),
        sa.Column(
            "email_status", sa.String(15), nullable=False, server_default="NOT_REQUESTED"
        ),
        sa.Column("sms_sid", sa.String(64), nullable=True),
        sa.Column("email_message_id", sa.String(255), nullable=True),
        sa.Column("sms_error", sa.Text, nullable=True),
        sa.Column("email_error", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("related_flag_id", sa.String(36), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_messages_student_id", "messages", ["student_id"])
    op.create_index("ix_messages_status_created", "messages", ["status", "created_at"])

    op.create_table(
        "notifications",
        _id(),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("staff_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("notification_type", sa.String(30), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False, server_default="NORMAL"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("related_flag_id", sa.String(36), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_notifications_user_flag", "notifications", ["user_id", "related_flag_id"]
    )


def downgrade() -> None:
    """Drop risk engine tables."""
    op.drop_table("notifications")
    op.drop_table("messages")
    op.drop_table("detection_runs")
    op.drop_table("risk_flags")
    op.drop_table("performance_records")
    op.drop_table("attendance_records")
    op.drop_table("students")
    op.drop_table("staff_users")
    op.drop_table("schools")
