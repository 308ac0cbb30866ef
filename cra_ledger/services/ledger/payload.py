"""
Canonical Payload Builder.

Builds the JSON document committed to the git ledger when a report is
locked. The document is a permanent audit artifact, so serialization must be
byte-identical for unchanged data:

  - entries sorted by (date, id), whatever order they were inserted in
  - assignment ids sorted ascending
  - totals recomputed by the totals calculator, never read from stored columns
  - Decimals as plain fixed-point strings ("1.5", never "1.50E+0"),
    money as JSON integers, dates/timestamps as ISO 8601
  - fixed key order, two-space indent, trailing newline
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from cra_ledger.services.totals.calculator import recalculate

SCHEMA_VERSION = 1


def format_decimal(value: Decimal) -> str:
    """Fixed-point string with no exponent and no trailing zeros ("1.5", "100", "0")."""
    normalized = Decimal(value).normalize()
    text = format(normalized, "f")
    return "0" if text in ("-0", "") else text


def _iso(value: Optional[date | datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _entry(entry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "date": entry.entry_date.isoformat(),
        "quantity": format_decimal(entry.quantity),
        "unit_price": int(entry.unit_price),
        "description": entry.description,
        "assignment_id": str(entry.assignment_id) if entry.assignment_id else None,
    }


def build(report) -> dict[str, Any]:
    """Assemble the canonical payload for a report and its active entries."""
    active = [e for e in report.entries if e.deleted_at is None]
    entries = sorted(
        (_entry(e) for e in active), key=lambda e: (e["date"], e["id"])
    )
    totals = recalculate(active)

    return {
        "schema_version": SCHEMA_VERSION,
        "report_id": str(report.id),
        "month": report.month,
        "year": report.year,
        "assignments": sorted(str(a) for a in report.assignment_ids),
        "entries": entries,
        "totals": {
            "total_days": format_decimal(totals.total_days),
            "total_amount": totals.total_amount,
        },
        "locked_at": _iso(report.locked_at),
        "currency": report.currency,
        "description": report.description,
        "status": report.status,
        "created_by_user_id": str(report.created_by_user_id),
        "created_at": _iso(report.created_at),
        "updated_at": _iso(report.updated_at),
    }


def serialize(payload: dict[str, Any]) -> str:
    """Render a payload to its canonical text form."""
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
