"""
Audit Logger — the only way to write AuditEvent rows.

Design rules enforced here:
  - created_at is always server-set (DB default), never passed by application
  - Payload is always serialized to a plain dict (no ORM objects)
  - All writes go through log_event(); no direct AuditEvent instantiation elsewhere
  - Events join the caller's transaction: a rolled-back lock leaves no event
  - This module never raises; audit failures are logged but do not block the main flow
"""

import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from cra_ledger.models.audit import ActorType, AuditEvent

logger = logging.getLogger(__name__)

REPORT_ENTITY = "activity_report"
ENTRY_ENTITY = "activity_entry"


def log_event(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    event_type: str,
    payload: dict[str, Any],
    actor_type: str = ActorType.SYSTEM,
    actor_id: Optional[uuid.UUID] = None,
    flush: bool = True,
) -> None:
    """
    Write an immutable audit event to the database.

    Args:
        db:          SQLAlchemy session (caller manages transaction)
        entity_type: The type of entity that changed (e.g. "activity_report")
        entity_id:   UUID of the entity
        event_type:  Past-tense event name (e.g. "report.submitted")
        payload:     Dict snapshot of relevant state, JSON-serializable
        actor_type:  SYSTEM | USER
        actor_id:    User id if human-triggered; None for system events
        flush:       If True, flush to DB immediately (within the caller's transaction)

    Does not raise: exceptions are caught and logged as warnings.
    """
    try:
        event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            payload=_safe_payload(payload),
        )
        db.add(event)
        if flush:
            db.flush()
    except Exception as exc:
        logger.warning(
            "Failed to write audit event %r for %s:%s: %s",
            event_type,
            entity_type,
            entity_id,
            exc,
        )


def _safe_payload(payload: dict) -> dict:
    """
    Ensure payload is JSON-serializable.
    Converts common non-serializable types (UUID, datetime, date, Decimal) to strings.
    """

    def default(obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    # Round-trip through JSON to strip any non-serializable types
    return json.loads(json.dumps(payload, default=default))


# ── Convenience wrappers for common events ────────────────────────────────────


def log_report_status_changed(
    db: Session,
    report,
    from_status: str,
    to_status: str,
    actor_id: Optional[uuid.UUID] = None,
) -> None:
    log_event(
        db,
        REPORT_ENTITY,
        report.id,
        f"report.{to_status}",
        payload={
            "from_status": from_status,
            "to_status": to_status,
            "period": f"{report.month:02d}/{report.year}",
            "total_days": report.total_days,
            "total_amount": report.total_amount,
        },
        actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
        actor_id=actor_id,
    )


def log_entry_changed(
    db: Session,
    entry,
    event_type: str,
    actor_id: uuid.UUID,
) -> None:
    log_event(
        db,
        ENTRY_ENTITY,
        entry.id,
        event_type,
        payload={
            "report_id": entry.report_id,
            "date": entry.entry_date,
            "quantity": entry.quantity,
            "unit_price": entry.unit_price,
            "assignment_id": entry.assignment_id,
        },
        actor_type=ActorType.USER,
        actor_id=actor_id,
    )


def log_report_discarded(db: Session, report, actor_id: uuid.UUID) -> None:
    log_event(
        db,
        REPORT_ENTITY,
        report.id,
        "report.discarded",
        payload={"period": f"{report.month:02d}/{report.year}", "status": report.status},
        actor_type=ActorType.USER,
        actor_id=actor_id,
    )


def log_report_created(db: Session, report, actor_id: uuid.UUID) -> None:
    log_event(
        db,
        REPORT_ENTITY,
        report.id,
        "report.created",
        payload={
            "period": f"{report.month:02d}/{report.year}",
            "currency": report.currency,
            "assignment_ids": report.assignment_ids,
        },
        actor_type=ActorType.USER,
        actor_id=actor_id,
    )
