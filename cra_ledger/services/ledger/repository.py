"""
Ledger repository — the append-only store that snapshots locked reports.

LedgerRepository is the capability set the ledger service depends on. Any
append-only, tamper-evident store whose commits can be found again by report
id satisfies it. GitLedgerRepository is the production implementation: one
git repository on local disk, written through a ProcessExecutor.

Design rules enforced here:
  - The store path is injected at construction; nothing reads a global path
  - ensure_initialized / create_commit / cleanup hold one process-wide lock,
    because concurrent git writers on one working tree are not safe.
    Read-only lookups do not take it.
  - receive.denyNonFastForwards is set once at init and RE-VERIFIED (never
    re-set) before every commit. Missing or altered → LedgerIntegrityError.
  - A CommitInfo is only returned for a commit that genuinely succeeded.
  - Process failures surface as LedgerInfrastructureError naming the git
    sub-command and exit status; raw output goes to the debug log only.
"""

import abc
import logging
import shutil
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from cra_ledger.services.ledger.errors import (
    LedgerError,
    LedgerInfrastructureError,
    LedgerIntegrityError,
)
from cra_ledger.services.ledger.executor import ExitResult, ProcessExecutor
from cra_ledger.services.ledger.payload import serialize

logger = logging.getLogger(__name__)

ANTI_REWRITE_KEY = "receive.denyNonFastForwards"
GITIGNORE_CONTENT = "# CRA Ledger\n.DS_Store\n*.log\n"
_FIELD_SEP = "\x1f"  # unit separator; never appears in commit subjects we write

# One lock per process: every GitLedgerRepository shares it unless a test
# injects its own.
_WRITE_LOCK = threading.Lock()


@dataclass(frozen=True)
class CommitInfo:
    commit_hash: str
    message: str
    timestamp: str
    report_id: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def commit_marker(report_id) -> str:
    """Searchable tag embedded in every lock commit message."""
    return f"report:{report_id} -"


def commit_message(report) -> str:
    return f"CRA locked - report:{report.id} - {report.month:02d}/{report.year}"


def payload_filename(report) -> str:
    return f"report_{report.id}_{report.year}-{report.month:02d}.json"


# ── Interface ─────────────────────────────────────────────────────────────────


class LedgerRepository(abc.ABC):
    @abc.abstractmethod
    def ensure_initialized(self) -> None:
        """Create and configure the store if it does not exist. Idempotent."""

    @abc.abstractmethod
    def is_valid(self) -> bool:
        """Cheap structural health check."""

    @abc.abstractmethod
    def commit_exists_for(self, report_id) -> bool:
        """Return True if a lock commit for this report is already in history."""

    @abc.abstractmethod
    def find_commit(self, report_id) -> Optional[CommitInfo]:
        """Return the lock commit for this report, if any."""

    @abc.abstractmethod
    def create_commit(self, report, payload: dict[str, Any]) -> CommitInfo:
        """Durably record the payload and return the new commit's metadata."""

    @abc.abstractmethod
    def info(self) -> dict[str, Any]:
        """Observability summary: exists, path, branch, commit_count, last_commit."""

    @abc.abstractmethod
    def cleanup(self, force: bool = False) -> bool:
        """Destroy the store. Refused in production unless forced."""


# ── Git implementation ────────────────────────────────────────────────────────


class GitLedgerRepository(LedgerRepository):
    """
    Usage:
        repo = GitLedgerRepository(Path("/app/cra-ledger"), SubprocessExecutor())
        repo.ensure_initialized()
        info = repo.create_commit(report, payload)
    """

    def __init__(
        self,
        path: Path,
        executor: ProcessExecutor,
        branch: str = "main",
        author_name: str = "cra-ledger",
        author_email: str = "ledger@cra-ledger.internal",
        git_binary: str = "git",
        environment: str = "development",
        write_lock: Optional[threading.Lock] = None,
    ):
        self.path = Path(path)
        self.executor = executor
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email
        self.git_binary = git_binary
        self.environment = environment
        self._write_lock = write_lock or _WRITE_LOCK

    # ── State checks ──────────────────────────────────────────────────────────

    def exists(self) -> bool:
        return self.path.exists()

    def is_initialized(self) -> bool:
        return (self.path / ".git").exists()

    def is_valid(self) -> bool:
        if not self.is_initialized():
            return False
        try:
            return self._git("rev-parse", "--git-dir", check=False).ok
        except LedgerInfrastructureError:
            return False

    # ── Initialization ────────────────────────────────────────────────────────

    def ensure_initialized(self) -> None:
        if self.is_initialized():
            return
        with self._write_lock:
            if self.is_initialized():
                return
            self._initialize()

    def _initialize(self) -> None:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LedgerInfrastructureError(
                f"Cannot create ledger directory {self.path}: {exc.strerror or exc}"
            )

        try:
            self._git("init", "--quiet")
            self._git("symbolic-ref", "HEAD", f"refs/heads/{self.branch}")
            self._git("config", "user.name", self.author_name)
            self._git("config", "user.email", self.author_email)
            self._git("config", "commit.gpgsign", "false")
            self._git("config", ANTI_REWRITE_KEY, "true")
            self._write_file(".gitignore", GITIGNORE_CONTENT)
            self._git("add", "--", ".gitignore")
            self._git("commit", "--quiet", "-m", "Initial commit")
        except LedgerError:
            # A half-built .git would be mistaken for an initialized store
            shutil.rmtree(self.path / ".git", ignore_errors=True)
            raise

        logger.info("Initialized ledger at %s", self.path)

    # ── Queries (no lock) ─────────────────────────────────────────────────────

    def commit_exists_for(self, report_id) -> bool:
        if not self.is_initialized():
            return False
        result = self._git(
            "log", "--fixed-strings", f"--grep={commit_marker(report_id)}",
            "-n", "1", "--format=%H",
        )
        return bool(result.stdout.strip())

    def find_commit(self, report_id) -> Optional[CommitInfo]:
        if not self.is_initialized():
            return None
        result = self._git(
            "log", "--fixed-strings", f"--grep={commit_marker(report_id)}",
            "-n", "1", f"--format=%H{_FIELD_SEP}%s{_FIELD_SEP}%cI",
        )
        parsed = _parse_log_line(result.stdout)
        if parsed is None:
            return None
        commit_hash, message, timestamp = parsed
        return CommitInfo(
            commit_hash=commit_hash,
            message=message,
            timestamp=timestamp,
            report_id=str(report_id),
        )

    # ── Commit ────────────────────────────────────────────────────────────────

    def create_commit(self, report, payload: dict[str, Any]) -> CommitInfo:
        filename = payload_filename(report)
        message = commit_message(report)

        with self._write_lock:
            self._write_file(filename, serialize(payload))
            try:
                self._git("add", "--", filename)
                self._verify_anti_rewrite_guard()
                self._git("commit", "--quiet", "-m", message)
                commit_hash = self._git("rev-parse", "HEAD").stdout.strip()
                timestamp = self._git("log", "-1", "--format=%cI", "HEAD").stdout.strip()
            except LedgerError:
                self._discard_working_file(filename)
                raise

            # The history entry is the durable artifact; the working file is not.
            # The commit already exists at this point, so a failed unlink must
            # not turn into an error the caller would roll back on.
            try:
                (self.path / filename).unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(
                    "Could not remove %s after commit: %s",
                    filename,
                    exc,
                )

        logger.info(
            "Committed report %s as %s", report.id, commit_hash
        )
        return CommitInfo(
            commit_hash=commit_hash,
            message=message,
            timestamp=timestamp,
            report_id=str(report.id),
        )

    def _verify_anti_rewrite_guard(self) -> None:
        result = self._git("config", "--get", ANTI_REWRITE_KEY, check=False)
        if result.returncode not in (0, 1):
            raise LedgerInfrastructureError(
                f"git config failed with exit status {result.returncode}"
            )
        value = result.stdout.strip().lower()
        if value != "true":
            logger.critical(
                "Anti-rewrite guard %s is %r at %s; "
                "ledger may have been tampered with; refusing to commit",
                ANTI_REWRITE_KEY,
                value or None,
                self.path,
            )
            raise LedgerIntegrityError(
                f"Ledger anti-rewrite guard {ANTI_REWRITE_KEY} is missing or altered"
            )

    def _discard_working_file(self, filename: str) -> None:
        try:
            self._git("reset", "--quiet", "--", filename, check=False)
        except LedgerInfrastructureError:
            logger.warning("Could not unstage %s", filename)
        (self.path / filename).unlink(missing_ok=True)

    # ── Observability ─────────────────────────────────────────────────────────

    def info(self) -> dict[str, Any]:
        if not self.exists():
            return {"exists": False, "path": str(self.path)}

        base = {"exists": True, "path": str(self.path), "branch": self.branch}
        if not self.is_initialized():
            return {**base, "initialized": False, "commit_count": 0, "last_commit": None}

        try:
            count = int(self._git("rev-list", "--count", "HEAD").stdout.strip() or 0)
            last = self._git(
                "log", "-1", f"--format=%h{_FIELD_SEP}%s{_FIELD_SEP}%cI"
            ).stdout
        except (LedgerInfrastructureError, ValueError) as exc:
            logger.warning("Failed to read info: %s", exc)
            return {**base, "error": "Failed to read repository info"}

        parsed = _parse_log_line(last)
        last_commit = (
            {"commit_hash": parsed[0], "message": parsed[1], "timestamp": parsed[2]}
            if parsed
            else None
        )
        return {
            **base,
            "initialized": True,
            "commit_count": count,
            "last_commit": last_commit,
        }

    # ── Cleanup ───────────────────────────────────────────────────────────────

    def cleanup(self, force: bool = False) -> bool:
        if self.environment == "production" and not force:
            logger.warning(
                "Refusing to remove ledger at %s in production "
                "without force",
                self.path,
            )
            return False

        with self._write_lock:
            if not self.exists():
                return False
            try:
                shutil.rmtree(self.path)
            except OSError as exc:
                raise LedgerInfrastructureError(
                    f"Cannot remove ledger at {self.path}: {exc.strerror or exc}"
                )
        logger.info("Cleaned up ledger at %s", self.path)
        return True

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _git(self, *args: str, check: bool = True) -> ExitResult:
        result = self.executor.run([self.git_binary, *args], cwd=self.path)
        if check and not result.ok:
            logger.error(
                "git %s failed (exit %d)", args[0], result.returncode
            )
            logger.debug("git %s stderr: %s", args[0], result.stderr)
            raise LedgerInfrastructureError(
                f"git {args[0]} failed with exit status {result.returncode}"
            )
        return result

    def _write_file(self, filename: str, content: str) -> None:
        try:
            (self.path / filename).write_text(content, encoding="utf-8")
        except OSError as exc:
            raise LedgerInfrastructureError(
                f"Cannot write {filename} in ledger: {exc.strerror or exc}"
            )


def _parse_log_line(output: str) -> Optional[tuple[str, str, str]]:
    line = output.strip()
    if not line:
        return None
    parts = line.split(_FIELD_SEP)
    if len(parts) != 3:
        return None
    return parts[0], parts[1], parts[2]


def get_ledger_repository() -> LedgerRepository:
    """Factory: returns the configured ledger repository."""
    from cra_ledger.services.ledger.executor import SubprocessExecutor
    from cra_ledger.settings import settings

    return GitLedgerRepository(
        path=Path(settings.ledger_path),
        executor=SubprocessExecutor(timeout=settings.ledger_git_timeout_seconds),
        branch=settings.ledger_branch,
        author_name=settings.ledger_author_name,
        author_email=settings.ledger_author_email,
        git_binary=settings.ledger_git_binary,
        environment=settings.environment,
    )
