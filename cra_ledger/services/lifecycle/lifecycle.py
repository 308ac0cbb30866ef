"""
Report Lifecycle Service — draft → submitted → locked.

CONTRACT:
  - submit() and lock() return LifecycleResult exclusively
  - No business exceptions raised; guard failures are typed failure values
  - Ledger faults become infrastructure/integrity failures, never swallowed
  - No HTTP concerns in the service

Guards run before any mutation, in this order:
  submit: exists → owner → status is draft → at least one active entry
  lock:   exists → owner → not already locked → status is submitted

The report row is loaded SELECT ... FOR UPDATE, so two lock() calls for the
same report serialize in the database; the second one sees `locked` and
fails with already_locked.

@example
    service = ReportLifecycleService(db, GitLedgerService(db, repository))
    result = service.lock(report_id, actor_id)
    result.is_success   # => True / False
    result.data         # => {"report": ReportSnapshot, "commit": CommitInfo}
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cra_ledger.models.report import ActivityReport, ReportStatus
from cra_ledger.schemas.report import ReportSnapshot
from cra_ledger.services.audit import logger as audit
from cra_ledger.services.ledger.errors import LedgerError
from cra_ledger.services.ledger.service import GitLedgerService
from cra_ledger.services.lifecycle.result import LifecycleError, LifecycleResult
from cra_ledger.services.totals.calculator import apply_totals

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_uuid(value) -> Optional[uuid.UUID]:
    """Coerce a caller-supplied id to UUID; None if it is not one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def load_report_for_update(db: Session, report_id) -> Optional[ActivityReport]:
    """Fetch an active report with a row lock, refreshing any cached state."""
    rid = as_uuid(report_id)
    if rid is None:
        return None
    stmt = (
        select(ActivityReport)
        .where(ActivityReport.id == rid, ActivityReport.deleted_at.is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


class ReportLifecycleService:
    def __init__(
        self,
        db: Session,
        ledger: GitLedgerService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ledger = ledger
        self.clock = clock

    # ── Submit ────────────────────────────────────────────────────────────────

    def submit(self, report_id, actor_id) -> LifecycleResult:
        report = load_report_for_update(self.db, report_id)
        if report is None:
            return self._fail(LifecycleError.not_found(report_id))
        if report.created_by_user_id != as_uuid(actor_id):
            return self._fail(LifecycleError.ownership())
        if not report.can_transition_to(ReportStatus.SUBMITTED):
            return self._fail(
                LifecycleError.invalid_transition(report.status, ReportStatus.SUBMITTED)
            )
        if not report.active_entries:
            return self._fail(LifecycleError.missing_entries())

        try:
            apply_totals(report)
            report.status = ReportStatus.SUBMITTED
            report.submitted_at = self.clock()
            self.db.flush()
            audit.log_report_status_changed(
                self.db,
                report,
                from_status=ReportStatus.DRAFT,
                to_status=ReportStatus.SUBMITTED,
                actor_id=report.created_by_user_id,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Submit failed for report %s", report_id)
            return LifecycleResult.failure(LifecycleError.storage_unavailable())

        logger.info("Report %s submitted", report.id)
        return LifecycleResult.success(
            data={"report": ReportSnapshot.model_validate(report)},
            message="Report submitted successfully",
        )

    # ── Lock ──────────────────────────────────────────────────────────────────

    def lock(self, report_id, actor_id) -> LifecycleResult:
        report = load_report_for_update(self.db, report_id)
        if report is None:
            return self._fail(LifecycleError.not_found(report_id))
        if report.created_by_user_id != as_uuid(actor_id):
            return self._fail(LifecycleError.ownership())
        if report.status == ReportStatus.LOCKED:
            commit = self._existing_commit(report.id)
            return self._fail(LifecycleError.already_locked(commit))
        if not report.can_transition_to(ReportStatus.LOCKED):
            return self._fail(
                LifecycleError.invalid_transition(report.status, ReportStatus.LOCKED)
            )

        try:
            apply_totals(report)
            report.status = ReportStatus.LOCKED
            report.locked_at = self.clock()
            self.db.flush()
            audit.log_report_status_changed(
                self.db,
                report,
                from_status=ReportStatus.SUBMITTED,
                to_status=ReportStatus.LOCKED,
                actor_id=report.created_by_user_id,
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Lock failed for report %s before ledger commit", report_id)
            return LifecycleResult.failure(LifecycleError.storage_unavailable())

        try:
            outcome = self.ledger.commit_lock(report)
        except LedgerError as exc:
            # commit_lock has already rolled the session back
            return LifecycleResult.failure(LifecycleError.from_ledger_error(exc))

        return LifecycleResult.success(
            data={"report": outcome.report, "commit": outcome.commit},
            message="Report locked successfully",
        )

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _fail(self, error: LifecycleError) -> LifecycleResult:
        # Nothing was mutated; release the row lock.
        self.db.rollback()
        return LifecycleResult.failure(error)

    def _existing_commit(self, report_id: uuid.UUID) -> Optional[dict]:
        try:
            commit = self.ledger.find_existing_commit(report_id)
        except LedgerError as exc:
            logger.warning(
                "Could not read ledger commit for locked report %s: %s", report_id, exc
            )
            return None
        return commit.to_dict() if commit else None
