"""Initial schema — reports, entries, assignments, audit log

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ── activity_reports ──────────────────────────────────────────────────────
    op.create_table(
        "activity_reports",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("month", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("total_days", sa.Numeric, nullable=False, server_default="0"),
        sa.Column(
            "total_amount",
            sa.BigInteger,
            nullable=False,
            server_default="0",
            comment="Minor currency units",
        ),
        sa.Column("created_by_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_activity_reports_month"),
        sa.CheckConstraint("year > 2000", name="ck_activity_reports_year"),
        sa.CheckConstraint(
            "status IN ('draft', 'submitted', 'locked')",
            name="ck_activity_reports_status",
        ),
    )
    op.create_index("ix_activity_reports_year", "activity_reports", ["year"])
    op.create_index("ix_activity_reports_status", "activity_reports", ["status"])
    op.create_index(
        "ix_activity_reports_created_by_user_id",
        "activity_reports",
        ["created_by_user_id"],
    )
    op.create_index("ix_activity_reports_deleted_at", "activity_reports", ["deleted_at"])

    # ── report_assignments ────────────────────────────────────────────────────
    op.create_table(
        "report_assignments",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "report_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("activity_reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assignment_id", postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("report_id", "assignment_id", name="uq_report_assignment"),
    )
    op.create_index(
        "ix_report_assignments_report_id", "report_assignments", ["report_id"]
    )

    # ── activity_entries ──────────────────────────────────────────────────────
    op.create_table(
        "activity_entries",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "report_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("activity_reports.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("assignment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("quantity", sa.Numeric, nullable=False),
        sa.Column(
            "unit_price",
            sa.BigInteger,
            nullable=False,
            comment="Minor currency units",
        ),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_activity_entries_quantity"),
        sa.CheckConstraint("unit_price >= 0", name="ck_activity_entries_unit_price"),
    )
    op.create_index("ix_activity_entries_report_id", "activity_entries", ["report_id"])
    op.create_index(
        "ix_activity_entries_assignment_id", "activity_entries", ["assignment_id"]
    )
    op.create_index("ix_activity_entries_deleted_at", "activity_entries", ["deleted_at"])

    # ── audit_events ──────────────────────────────────────────────────────────
    op.create_table(
        "audit_events",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("actor_type", sa.String(16), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("audit_events")
    op.drop_table("activity_entries")
    op.drop_table("report_assignments")
    op.drop_table("activity_reports")
