"""
Test fixtures and shared setup.

Each test gets its own throwaway SQLite database file under tmp_path. The
services under test commit and roll back their own transactions, so the
"wrap everything in one outer transaction" trick does not apply here.

The git ledger is replaced by InMemoryLedgerRepository (lifecycle / service
tests) or driven through ScriptedExecutor (repository unit tests). Tests that
need the real git binary live in test_git_repository_integration.py.
"""

import hashlib
import os
import tempfile
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# ── Override settings BEFORE importing app modules ────────────────────────────
_TMP = tempfile.gettempdir()
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP}/cra_ledger_test.db")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LEDGER_PATH", os.path.join(_TMP, "cra_ledger_test_ledger"))

from cra_ledger.models import *  # noqa: F401,F403 (registers all models)
from cra_ledger.models.base import Base
from cra_ledger.models.report import (
    ActivityEntry,
    ActivityReport,
    ReportAssignment,
    ReportStatus,
)
from cra_ledger.services.ledger.errors import LedgerInfrastructureError
from cra_ledger.services.ledger.executor import ExitResult, ProcessExecutor
from cra_ledger.services.ledger.repository import (
    CommitInfo,
    LedgerRepository,
    commit_marker,
    commit_message,
)
from cra_ledger.services.ledger.payload import serialize

FAKE_HASH = "3f786850e387550fdab836ed7e6dc881de23001b"
FAKE_TIMESTAMP = "2025-04-01T10:00:00+00:00"


# ── Database ──────────────────────────────────────────────────────────────────


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


# ── Fake ledger ───────────────────────────────────────────────────────────────


class InMemoryLedgerRepository(LedgerRepository):
    """
    Append-only ledger kept in a list. Set `fail_with` to make the next
    create_commit raise, or `fail_on_ensure` to break initialization.
    """

    def __init__(self):
        self.initialized = False
        self.commits: list[tuple[CommitInfo, dict[str, Any]]] = []
        self.fail_with: Optional[Exception] = None
        self.fail_on_ensure: Optional[Exception] = None
        self.cleaned_up = False

    def ensure_initialized(self) -> None:
        if self.fail_on_ensure is not None:
            raise self.fail_on_ensure
        self.initialized = True

    def is_valid(self) -> bool:
        return self.initialized

    def commit_exists_for(self, report_id) -> bool:
        return self.find_commit(report_id) is not None

    def find_commit(self, report_id) -> Optional[CommitInfo]:
        marker = commit_marker(report_id)
        for info, _ in reversed(self.commits):
            if marker in info.message:
                return info
        return None

    def create_commit(self, report, payload: dict[str, Any]) -> CommitInfo:
        if self.fail_with is not None:
            raise self.fail_with
        digest = hashlib.sha1(
            f"{len(self.commits)}:{serialize(payload)}".encode("utf-8")
        ).hexdigest()
        info = CommitInfo(
            commit_hash=digest,
            message=commit_message(report),
            timestamp=FAKE_TIMESTAMP,
            report_id=str(report.id),
        )
        self.commits.append((info, payload))
        return info

    def info(self) -> dict[str, Any]:
        last = self.commits[-1][0] if self.commits else None
        return {
            "exists": True,
            "path": "memory://ledger",
            "branch": "main",
            "initialized": self.initialized,
            "commit_count": len(self.commits),
            "last_commit": (
                {
                    "commit_hash": last.commit_hash[:7],
                    "message": last.message,
                    "timestamp": last.timestamp,
                }
                if last
                else None
            ),
        }

    def cleanup(self, force: bool = False) -> bool:
        self.cleaned_up = True
        self.commits.clear()
        return True

    def commits_for(self, report_id) -> list[CommitInfo]:
        marker = commit_marker(report_id)
        return [info for info, _ in self.commits if marker in info.message]


@pytest.fixture
def ledger() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


# ── Scripted process executor ─────────────────────────────────────────────────


class ScriptedExecutor(ProcessExecutor):
    """
    Plays the part of the git binary. Records every invocation.

    Defaults mimic a healthy repository: `init` creates .git, the anti-rewrite
    guard reads "true", rev-parse returns FAKE_HASH. Override a sub-command
    with script(subcommand, ExitResult | Exception).
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.responses: dict[str, Any] = {}
        self.guard_value: Optional[str] = "true"
        self.grep_output = ""
        self.commit_hash = FAKE_HASH
        self.timestamp = FAKE_TIMESTAMP

    def script(self, subcommand: str, response) -> None:
        self.responses[subcommand] = response

    def run(self, args: list[str], cwd: Path) -> ExitResult:
        self.calls.append(list(args))
        sub = args[1]
        response = self.responses.get(sub)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, ExitResult):
            return response

        if sub == "init":
            (Path(cwd) / ".git").mkdir(parents=True, exist_ok=True)
        elif sub == "config" and "--get" in args:
            if self.guard_value is None:
                return ExitResult(1)
            return ExitResult(0, f"{self.guard_value}\n")
        elif sub == "rev-parse" and args[-1] == "HEAD":
            return ExitResult(0, f"{self.commit_hash}\n")
        elif sub == "rev-list":
            return ExitResult(0, "3\n")
        elif sub == "log":
            if any(a.startswith("--grep=") for a in args):
                return ExitResult(0, self.grep_output)
            if "--format=%cI" in args:
                return ExitResult(0, f"{self.timestamp}\n")
            return ExitResult(0, f"{self.commit_hash[:7]}\x1fInitial commit\x1f{self.timestamp}\n")
        return ExitResult(0)

    @property
    def subcommands(self) -> list[str]:
        return [call[1] for call in self.calls]


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


# ── Data builder fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_report(db: Session, owner_id):
    """
    Build and COMMIT a report. entries is a list of (date, quantity, unit_price)
    tuples; assignments a list of assignment ids to link.
    """

    def _make(
        status: str = ReportStatus.DRAFT,
        month: int = 3,
        year: int = 2025,
        entries: Optional[list[tuple]] = None,
        assignments: Optional[list[uuid.UUID]] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> ActivityReport:
        creator = created_by or owner_id
        report = ActivityReport(
            month=month,
            year=year,
            status=status,
            description="Monthly activity",
            created_by_user_id=creator,
        )
        if status in (ReportStatus.SUBMITTED, ReportStatus.LOCKED):
            report.submitted_at = datetime(year, month, 28, tzinfo=timezone.utc)
        db.add(report)
        for assignment_id in assignments or []:
            db.add(ReportAssignment(report=report, assignment_id=assignment_id))
        for entry_date, quantity, unit_price in entries or []:
            db.add(
                ActivityEntry(
                    report=report,
                    entry_date=entry_date,
                    quantity=Decimal(quantity),
                    unit_price=unit_price,
                    created_by_user_id=creator,
                )
            )
        db.commit()
        return report

    return _make


@pytest.fixture
def draft_report(make_report):
    """Draft with one 1.5-day entry at 800.00 EUR/day."""
    return make_report(entries=[(date(2025, 3, 10), "1.5", 80000)])


@pytest.fixture
def submitted_report(make_report):
    return make_report(
        status=ReportStatus.SUBMITTED,
        entries=[(date(2025, 3, 10), "1.5", 80000), (date(2025, 3, 11), "0.5", 80000)],
    )


@pytest.fixture
def infrastructure_error() -> LedgerInfrastructureError:
    return LedgerInfrastructureError("git commit failed with exit status 128")
