"""
GitLedgerService — commits a report's final state to the ledger and persists
the lock in the same database transaction.

commit_lock(report) steps:
  1. Precondition: report is persistent and already marked `locked` in the
     session (the lifecycle service does this; drafts are rejected here)
  2. ensure_initialized() on the repository
  3. Idempotency: if a lock commit for this report already exists, commit the
     pending transition and return the existing commit; no second commit
  4. Recompute totals, build the canonical payload
  5. repository.create_commit(); any failure rolls the session back, so the
     report stays `submitted` in the database
  6. Commit the session: the report is `locked` exactly when its commit exists

Every failure leaves as LedgerInfrastructureError (retryable) or
LedgerIntegrityError (fatal). A retry after an infrastructure fault is safe
because step 3 finds any commit that did land.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from cra_ledger.models.report import ActivityReport, ReportStatus
from cra_ledger.schemas.report import ReportSnapshot
from cra_ledger.services.ledger import payload as ledger_payload
from cra_ledger.services.ledger.errors import (
    LedgerInfrastructureError,
    LedgerIntegrityError,
)
from cra_ledger.services.ledger.repository import CommitInfo, LedgerRepository
from cra_ledger.services.totals.calculator import apply_totals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockOutcome:
    report: ReportSnapshot
    commit: CommitInfo
    created: bool  # False when an existing commit was returned


class GitLedgerService:
    """
    Usage:
        service = GitLedgerService(db, get_ledger_repository())
        outcome = service.commit_lock(report)
    """

    def __init__(self, db: Session, repository: LedgerRepository):
        self.db = db
        self.repository = repository

    def commit_lock(self, report: ActivityReport) -> LockOutcome:
        self._validate(report)
        report_id = report.id

        try:
            self.repository.ensure_initialized()
            if self.repository.commit_exists_for(report_id):
                return self._handle_existing_commit(report)
            return self._execute_commit(report)
        except LedgerIntegrityError:
            self.db.rollback()
            logger.critical("Integrity violation while locking report %s; lock aborted", report_id)
            raise
        except LedgerInfrastructureError as exc:
            self.db.rollback()
            logger.error("Failed to commit report %s: %s", report_id, exc)
            raise
        except Exception as exc:
            self.db.rollback()
            logger.exception("Failed to commit report %s", report_id)
            raise LedgerInfrastructureError(f"Ledger commit failed: {exc}") from exc

    # ── Read-only helpers ─────────────────────────────────────────────────────

    def is_committed(self, report_id: uuid.UUID) -> bool:
        return self.repository.commit_exists_for(report_id)

    def find_existing_commit(self, report_id: uuid.UUID) -> Optional[CommitInfo]:
        return self.repository.find_commit(report_id)

    def repository_info(self) -> dict[str, Any]:
        return self.repository.info()

    def is_valid(self) -> bool:
        return self.repository.is_valid()

    def cleanup_repository(self, force: bool = False) -> bool:
        return self.repository.cleanup(force=force)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _validate(self, report: ActivityReport) -> None:
        if report.status != ReportStatus.LOCKED:
            raise ValueError("Report must be transitioning to locked")
        if not inspect(report).persistent:
            raise ValueError("Report must be persisted")

    def _handle_existing_commit(self, report: ActivityReport) -> LockOutcome:
        logger.warning("Report %s already committed", report.id)
        commit = self.repository.find_commit(report.id)
        if commit is None:
            raise LedgerInfrastructureError(
                f"Ledger reports a commit for {report.id} but it could not be read"
            )
        self.db.commit()
        return LockOutcome(
            report=ReportSnapshot.model_validate(report), commit=commit, created=False
        )

    def _execute_commit(self, report: ActivityReport) -> LockOutcome:
        apply_totals(report)
        self.db.flush()
        document = ledger_payload.build(report)

        commit = self.repository.create_commit(report, document)
        try:
            self.db.commit()
        except Exception:
            # The ledger commit exists; the retry path (step 3) will find it
            # and complete the transition.
            logger.error(
                "Commit %s written for report %s but the "
                "database transaction failed; a retry will complete the lock",
                commit.commit_hash,
                commit.report_id,
            )
            raise

        logger.info("Committed report %s to ledger as %s", commit.report_id, commit.commit_hash)
        return LockOutcome(
            report=ReportSnapshot.model_validate(report), commit=commit, created=True
        )
