"""
Totals Calculator — deterministic, fully testable.

Aggregates the active (non soft-deleted) entries of a report into the two
server-authoritative totals:

  total_days   = Σ quantity
  total_amount = Σ round(quantity × unit_price)

Each amount term is rounded half away from zero to a whole minor-currency
unit BEFORE summation, so the total equals the sum of the amounts a reader
would see line by line. All arithmetic is Decimal; no floats anywhere.

Design principle: recalculate() is a pure function of the entry set.
apply_totals() writes the result onto the report; the caller flushes and
commits.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
WHOLE_UNIT = Decimal("1")


@dataclass(frozen=True)
class Totals:
    total_days: Decimal
    total_amount: int  # minor currency units


def line_amount(quantity: Decimal, unit_price: int) -> int:
    """quantity × unit_price rounded to the nearest minor unit (half away from zero)."""
    raw = Decimal(quantity) * Decimal(unit_price)
    return int(raw.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP))


def recalculate(entries: Iterable) -> Totals:
    """
    Compute totals from an iterable of entries.
    Soft-deleted entries (deleted_at set) are ignored.
    """
    total_days = ZERO
    total_amount = 0
    for entry in entries:
        if entry.deleted_at is not None:
            continue
        total_days += Decimal(entry.quantity)
        total_amount += line_amount(entry.quantity, entry.unit_price)
    return Totals(total_days=total_days, total_amount=total_amount)


def apply_totals(report) -> Totals:
    """Recalculate from the report's entries and store the result on the report."""
    totals = recalculate(report.entries)
    report.total_days = totals.total_days
    report.total_amount = totals.total_amount
    return totals
