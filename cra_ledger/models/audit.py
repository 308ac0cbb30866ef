"""
AuditEvent — the immutable audit log.

CRITICAL DESIGN RULE:
  This table is append-only. No UPDATE or DELETE statements should ever
  be issued against it.

  The DB-level server_default on created_at (not application code) ensures
  the timestamp is authoritative and cannot be spoofed.

  Ledger commit identifiers are NOT recorded here. The git ledger history is
  the only record of a lock commit; duplicating it would give two sources of
  truth that could disagree.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from cra_ledger.models.base import Base


class ActorType:
    SYSTEM = "SYSTEM"
    USER = "USER"


class AuditEvent(Base):
    """
    Immutable record of every report state change.

    entity_type + entity_id: the thing that changed
    event_type: what happened (past-tense verb, e.g. "report.submitted")
    actor_*: who caused it
    payload: JSON snapshot of relevant state at the time of the event
    """

    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── What changed ─────────────────────────────────────────────────────────
    entity_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="activity_report | activity_entry",
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment=(
            "Past-tense dot-namespaced: report.submitted, report.locked, "
            "entry.created, entry.updated, entry.discarded, ..."
        ),
    )

    # ── Who caused it ────────────────────────────────────────────────────────
    actor_type: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="SYSTEM | USER"
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
        comment="User id if human-triggered; NULL for system events",
    )

    # ── State snapshot ────────────────────────────────────────────────────────
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    # ── Timestamp (server-authoritative, never set by application code) ─────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent event={self.event_type!r} "
            f"entity={self.entity_type}:{self.entity_id} "
            f"actor={self.actor_type}>"
        )
