"""initial schema - suppliers, requests, quotations, follow-ups, access codes, audit log

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

For NEW databases: `alembic upgrade head`.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("specialization", sa.String(255)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime),
    )

    op.create_table(
        "service_requests",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False),
        sa.Column("assigned_supplier_id", sa.Integer, sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        sa.Column("response_deadline", sa.DateTime),
        sa.Column("quotation_deadline", sa.DateTime),
        sa.Column("escalation_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("escalated_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
    )
    op.create_index("ix_requests_status", "service_requests", ["status"])
    op.create_index("ix_requests_created", "service_requests", ["created_at"])
    op.create_index("ix_requests_deadline", "service_requests", ["response_deadline"])

    op.create_table(
        "quotations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("request_id", sa.Integer, sa.ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("supplier_id", sa.Integer, sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("approved_at", sa.DateTime),
        sa.Column("approved_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_quotations_request", "quotations", ["request_id"])
    op.create_index("ix_quotations_status", "quotations", ["status"])

    op.create_table(
        "follow_up_schedules",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("request_id", sa.Integer, sa.ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("supplier_id", sa.Integer, sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("scheduled_for", sa.DateTime, nullable=False),
        sa.Column("sent_at", sa.DateTime),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("next_attempt_at", sa.DateTime),
        sa.Column("metadata", sa.JSON),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
        sa.CheckConstraint("attempt_count >= 0", name="ck_followups_attempts_nonneg"),
        sa.CheckConstraint("max_attempts >= 1", name="ck_followups_max_attempts"),
        sa.CheckConstraint("attempt_count <= max_attempts", name="ck_followups_attempts_cap"),
    )
    op.create_index("ix_followups_status_due", "follow_up_schedules", ["status", "scheduled_for"])
    op.create_index("ix_followups_next_attempt", "follow_up_schedules", ["status", "next_attempt_at"])
    op.create_index("ix_followups_request", "follow_up_schedules", ["request_id"])
    op.create_index("ix_followups_supplier", "follow_up_schedules", ["supplier_id"])

    op.create_table(
        "supplier_access_codes",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("supplier_id", sa.Integer, sa.ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("request_id", sa.Integer, sa.ForeignKey("service_requests.id", ondelete="SET NULL")),
        sa.Column("issued_at", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("last_used_at", sa.DateTime),
        sa.Column("access_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("extension_count", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_access_codes_supplier", "supplier_access_codes", ["supplier_id"])
    op.create_index("ix_access_codes_expires", "supplier_access_codes", ["expires_at"])

    op.create_table(
        "access_attempts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("attempted_at", sa.DateTime, nullable=False),
        sa.Column("code_prefix", sa.String(16), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("supplier_id", sa.Integer),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(255)),
    )
    op.create_index("ix_access_attempts_time", "access_attempts", ["attempted_at"])
    op.create_index("ix_access_attempts_outcome", "access_attempts", ["outcome", "attempted_at"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("request_id", sa.Integer),
        sa.Column("supplier_id", sa.Integer),
        sa.Column("schedule_id", sa.Integer),
        sa.Column("actor", sa.String(100), nullable=False, server_default="system"),
        sa.Column("details", sa.Text),
        sa.Column("metadata", sa.JSON),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_activity_request", "activity_log", ["request_id", "created_at"])
    op.create_index("ix_activity_action", "activity_log", ["action", "created_at"])
    op.create_index("ix_activity_schedule", "activity_log", ["schedule_id"])


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE: dev/test environments only."""
    for table in (
        "activity_log",
        "access_attempts",
        "supplier_access_codes",
        "follow_up_schedules",
        "quotations",
        "service_requests",
        "suppliers",
    ):
        op.drop_table(table)
