"""
Entry Service — the only way to create a report or change its entries.

Every entry operation:
  1. loads the report with a row lock and checks ownership
  2. refuses unless the report is an active draft (submitted and locked
     reports and their entries are immutable)
  3. validates the entry (positive quantity, non-negative price, date inside
     the report's month, assignment linked to the report)
  4. applies the change, recomputes totals, writes an audit event, commits

create_report() opens a new draft for one creator and period; a creator has
at most one active report per month.

Removals are soft deletes. Returns LifecycleResult, like the lifecycle service.
"""

import calendar
import logging
import re
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cra_ledger.models.report import (
    DEFAULT_CURRENCY,
    ActivityEntry,
    ActivityReport,
    ReportAssignment,
    ReportStatus,
)
from cra_ledger.schemas.report import ReportSnapshot
from cra_ledger.services.audit import logger as audit
from cra_ledger.services.lifecycle.lifecycle import (
    as_uuid,
    load_report_for_update,
    utcnow,
)
from cra_ledger.services.lifecycle.result import LifecycleError, LifecycleResult
from cra_ledger.services.totals.calculator import apply_totals

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"entry_date", "quantity", "unit_price", "description", "assignment_id"}
_CURRENCY_PATTERN = re.compile(r"[A-Z]{3}")
MAX_DESCRIPTION_LENGTH = 2000
MAX_YEARS_AHEAD = 5


class EntryService:
    def __init__(self, db: Session):
        self.db = db

    # ── Reports ───────────────────────────────────────────────────────────────

    def create_report(
        self,
        actor_id,
        month: int,
        year: int,
        description: Optional[str] = None,
        currency: str = DEFAULT_CURRENCY,
        assignment_ids: Iterable[uuid.UUID] = (),
    ) -> LifecycleResult:
        """Open a draft report for the actor's month. Totals start at zero."""
        creator = as_uuid(actor_id)
        if creator is None:
            return self._fail(LifecycleError.ownership())

        error = self._validate_report(month, year, description, currency)
        if error:
            return self._fail(error)

        existing = self.db.execute(
            select(ActivityReport.id).where(
                ActivityReport.created_by_user_id == creator,
                ActivityReport.month == month,
                ActivityReport.year == year,
                ActivityReport.deleted_at.is_(None),
            )
        ).first()
        if existing is not None:
            return self._fail(LifecycleError.duplicate_report(month, year))

        report = ActivityReport(
            month=month,
            year=year,
            status=ReportStatus.DRAFT,
            description=description,
            currency=currency,
            total_days=Decimal("0"),
            total_amount=0,
            created_by_user_id=creator,
        )
        # dict.fromkeys keeps the caller's order while dropping repeats
        for assignment_id in dict.fromkeys(assignment_ids):
            report.assignments.append(ReportAssignment(assignment_id=assignment_id))

        try:
            self.db.add(report)
            self.db.flush()
            audit.log_report_created(self.db, report, actor_id=creator)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Create failed for %02d/%s report of %s", month, year, creator)
            return LifecycleResult.failure(LifecycleError.storage_unavailable())

        logger.info("Report %s created for %02d/%s", report.id, month, year)
        return LifecycleResult.success(
            data={"report": ReportSnapshot.model_validate(report)},
            message="Report created successfully",
        )

    # ── Entries ───────────────────────────────────────────────────────────────

    def add_entry(
        self,
        report_id,
        actor_id,
        entry_date: date,
        quantity,
        unit_price: int,
        description: Optional[str] = None,
        assignment_id: Optional[uuid.UUID] = None,
    ) -> LifecycleResult:
        report, error = self._modifiable_report(report_id, actor_id)
        if error:
            return self._fail(error)

        fields = {
            "entry_date": entry_date,
            "quantity": quantity,
            "unit_price": unit_price,
            "description": description,
            "assignment_id": assignment_id,
        }
        error = self._validate(report, fields)
        if error:
            return self._fail(error)

        entry = ActivityEntry(
            report=report,
            created_by_user_id=report.created_by_user_id,
            **fields,
        )
        self.db.add(entry)
        return self._persist(report, entry, "entry.created")

    def update_entry(self, entry_id, actor_id, **changes: Any) -> LifecycleResult:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update entry fields: {sorted(unknown)}")

        entry = self._get_entry(entry_id)
        if entry is None:
            return self._fail(LifecycleError.entry_not_found(entry_id))
        report, error = self._modifiable_report(entry.report_id, actor_id)
        if error:
            return self._fail(error)

        merged = {field: getattr(entry, field) for field in _UPDATABLE_FIELDS}
        merged.update(changes)
        error = self._validate(report, merged)
        if error:
            return self._fail(error)

        for field, value in merged.items():
            setattr(entry, field, value)
        return self._persist(report, entry, "entry.updated")

    def discard_entry(self, entry_id, actor_id) -> LifecycleResult:
        entry = self._get_entry(entry_id)
        if entry is None:
            return self._fail(LifecycleError.entry_not_found(entry_id))
        report, error = self._modifiable_report(entry.report_id, actor_id)
        if error:
            return self._fail(error)

        entry.deleted_at = utcnow()
        return self._persist(report, entry, "entry.discarded")

    def discard_report(self, report_id, actor_id) -> LifecycleResult:
        """Soft-delete a draft report together with its entries."""
        report, error = self._modifiable_report(report_id, actor_id)
        if error:
            return self._fail(error)

        now = utcnow()
        try:
            for entry in report.active_entries:
                entry.deleted_at = now
            report.deleted_at = now
            self.db.flush()
            audit.log_report_discarded(self.db, report, actor_id=report.created_by_user_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Discard failed for report %s", report_id)
            return LifecycleResult.failure(LifecycleError.storage_unavailable())

        logger.info("Report %s discarded", report.id)
        return LifecycleResult.success(data={"report_id": report.id}, message="Report deleted")

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _modifiable_report(
        self, report_id, actor_id
    ) -> tuple[Optional[ActivityReport], Optional[LifecycleError]]:
        report = load_report_for_update(self.db, report_id)
        if report is None:
            return None, LifecycleError.not_found(report_id)
        if report.created_by_user_id != as_uuid(actor_id):
            return None, LifecycleError.ownership()
        if not report.is_modifiable():
            return None, LifecycleError.not_modifiable(report.status)
        return report, None

    def _get_entry(self, entry_id) -> Optional[ActivityEntry]:
        eid = as_uuid(entry_id)
        if eid is None:
            return None
        stmt = select(ActivityEntry).where(
            ActivityEntry.id == eid, ActivityEntry.deleted_at.is_(None)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def _validate(self, report: ActivityReport, fields: dict) -> Optional[LifecycleError]:
        try:
            quantity = Decimal(str(fields["quantity"]))
        except (InvalidOperation, ValueError):
            return LifecycleError.invalid_entry("Quantity must be a number", "quantity")
        if not quantity.is_finite() or quantity <= 0:
            return LifecycleError.invalid_entry("Quantity must be greater than 0", "quantity")
        fields["quantity"] = quantity

        unit_price = fields["unit_price"]
        if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
            return LifecycleError.invalid_entry(
                "Unit price must be a non-negative integer amount in minor units",
                "unit_price",
            )

        entry_date = fields["entry_date"]
        last_day = calendar.monthrange(report.year, report.month)[1]
        period_start = date(report.year, report.month, 1)
        period_end = date(report.year, report.month, last_day)
        # datetime is a date subclass but does not compare with one
        if (
            isinstance(entry_date, datetime)
            or not isinstance(entry_date, date)
            or not (period_start <= entry_date <= period_end)
        ):
            return LifecycleError.invalid_entry(
                "Entry date is outside the report period", "entry_date"
            )

        assignment_id = fields["assignment_id"]
        if assignment_id is not None and assignment_id not in report.assignment_ids:
            return LifecycleError.assignment_not_linked(assignment_id)
        return None

    def _validate_report(
        self, month, year, description: Optional[str], currency
    ) -> Optional[LifecycleError]:
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
            return LifecycleError.invalid_report("Month must be between 1 and 12", "month")
        if isinstance(year, bool) or not isinstance(year, int) or year <= 2000:
            return LifecycleError.invalid_report("Year must be after 2000", "year")
        if year > utcnow().year + MAX_YEARS_AHEAD:
            return LifecycleError.invalid_report(
                f"Year cannot be more than {MAX_YEARS_AHEAD} years in the future", "year"
            )
        if not isinstance(currency, str) or not _CURRENCY_PATTERN.fullmatch(currency):
            return LifecycleError.invalid_report(
                "Currency must be a valid ISO 4217 code", "currency"
            )
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            return LifecycleError.invalid_report(
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
                "description",
            )
        return None

    def _persist(self, report: ActivityReport, entry: ActivityEntry, event_type: str) -> LifecycleResult:
        try:
            self.db.flush()
            apply_totals(report)
            self.db.flush()
            audit.log_entry_changed(
                self.db, entry, event_type, actor_id=report.created_by_user_id
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("%s failed for report %s", event_type, report.id)
            return LifecycleResult.failure(LifecycleError.storage_unavailable())

        return LifecycleResult.success(
            data={"report": ReportSnapshot.model_validate(report), "entry_id": entry.id},
            message=event_type,
        )

    def _fail(self, error: LifecycleError) -> LifecycleResult:
        self.db.rollback()
        return LifecycleResult.failure(error)
