"""
GitLedgerRepository unit tests.

The git binary is replaced by ScriptedExecutor, so these run anywhere and can
inject every failure mode: non-zero exits, a missing or altered anti-rewrite
guard, a process that cannot be started.
"""

import subprocess
import threading
import time
import uuid
from types import SimpleNamespace

import pytest

from cra_ledger.services.ledger.errors import (
    LedgerInfrastructureError,
    LedgerIntegrityError,
)
from cra_ledger.services.ledger.executor import ExitResult, SubprocessExecutor
from cra_ledger.services.ledger.repository import (
    _WRITE_LOCK,
    ANTI_REWRITE_KEY,
    GitLedgerRepository,
    commit_marker,
    payload_filename,
)


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "ledger"


@pytest.fixture
def repo(ledger_path, executor):
    return GitLedgerRepository(ledger_path, executor, write_lock=threading.Lock())


@pytest.fixture
def initialized_repo(repo, executor):
    repo.ensure_initialized()
    executor.calls.clear()
    return repo


@pytest.fixture
def report():
    return SimpleNamespace(id=uuid.uuid4(), month=3, year=2025)


_PAYLOAD = {"schema_version": 1, "totals": {"total_days": "1.5", "total_amount": 120000}}


# ── Initialization ────────────────────────────────────────────────────────────


class TestInitialization:
    def test_init_sequence(self, repo, executor, ledger_path):
        repo.ensure_initialized()
        assert executor.subcommands == [
            "init",
            "symbolic-ref",
            "config",
            "config",
            "config",
            "config",
            "add",
            "commit",
        ]
        assert executor.calls[1][2:] == ["HEAD", "refs/heads/main"]
        assert ["git", "config", ANTI_REWRITE_KEY, "true"] in executor.calls
        assert ["git", "config", "commit.gpgsign", "false"] in executor.calls
        assert executor.calls[-1] == ["git", "commit", "--quiet", "-m", "Initial commit"]

    def test_gitignore_does_not_hide_payload_files(self, repo, ledger_path):
        repo.ensure_initialized()
        content = (ledger_path / ".gitignore").read_text(encoding="utf-8")
        assert ".json" not in content

    def test_idempotent(self, repo, executor):
        repo.ensure_initialized()
        count = len(executor.calls)
        repo.ensure_initialized()
        assert len(executor.calls) == count

    def test_racing_initializers_run_init_once(self, ledger_path, executor, monkeypatch):
        scripted_run = executor.run

        def slow_run(args, cwd):
            if args[1] == "init":
                time.sleep(0.05)
            return scripted_run(args, cwd)

        monkeypatch.setattr(executor, "run", slow_run)
        shared_lock = threading.Lock()
        repos = [
            GitLedgerRepository(ledger_path, executor, write_lock=shared_lock)
            for _ in range(2)
        ]
        start = threading.Barrier(len(repos))
        errors = []

        def initialize(repo):
            start.wait()
            try:
                repo.ensure_initialized()
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=initialize, args=(r,)) for r in repos]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert errors == []
        assert executor.subcommands.count("init") == 1
        assert executor.subcommands.count("commit") == 1

    def test_repositories_share_the_process_write_lock(self, ledger_path, executor, tmp_path):
        first = GitLedgerRepository(ledger_path, executor)
        second = GitLedgerRepository(tmp_path / "other", executor)
        assert first._write_lock is second._write_lock is _WRITE_LOCK

    def test_author_identity_from_constructor(self, ledger_path, executor):
        repo = GitLedgerRepository(
            ledger_path,
            executor,
            author_name="Ledger Bot",
            author_email="bot@example.com",
            write_lock=threading.Lock(),
        )
        repo.ensure_initialized()
        assert ["git", "config", "user.name", "Ledger Bot"] in executor.calls
        assert ["git", "config", "user.email", "bot@example.com"] in executor.calls

    def test_failed_init_leaves_no_half_built_repository(self, repo, executor, ledger_path):
        executor.script("commit", ExitResult(1, "", "fatal: unable to write"))
        with pytest.raises(LedgerInfrastructureError):
            repo.ensure_initialized()
        assert not (ledger_path / ".git").exists()
        assert not repo.is_initialized()

    def test_missing_git_binary(self, ledger_path):
        repo = GitLedgerRepository(
            ledger_path,
            SubprocessExecutor(timeout=5),
            git_binary="/nonexistent/bin/git-for-tests",
            write_lock=threading.Lock(),
        )
        with pytest.raises(LedgerInfrastructureError, match="not found"):
            repo.ensure_initialized()
        assert not repo.is_initialized()


# ── Commit ────────────────────────────────────────────────────────────────────


class TestCreateCommit:
    def test_success(self, initialized_repo, executor, report, ledger_path):
        info = initialized_repo.create_commit(report, _PAYLOAD)

        assert info.commit_hash == executor.commit_hash
        assert info.message == f"CRA locked - report:{report.id} - 03/2025"
        assert info.timestamp == executor.timestamp
        assert info.report_id == str(report.id)
        assert executor.subcommands == ["add", "config", "commit", "rev-parse", "log"]
        # Working file removed once the commit exists
        assert not (ledger_path / payload_filename(report)).exists()

    def test_guard_checked_before_commit(self, initialized_repo, executor, report):
        initialized_repo.create_commit(report, _PAYLOAD)
        guard_call = executor.calls[1]
        assert guard_call == ["git", "config", "--get", ANTI_REWRITE_KEY]
        # Verified, never re-set
        assert ["git", "config", ANTI_REWRITE_KEY, "true"] not in executor.calls

    @pytest.mark.parametrize("guard_value", [None, "false", ""])
    def test_integrity_violation_blocks_commit(
        self, initialized_repo, executor, report, ledger_path, guard_value, caplog
    ):
        executor.guard_value = guard_value
        with pytest.raises(LedgerIntegrityError):
            initialized_repo.create_commit(report, _PAYLOAD)

        assert "commit" not in executor.subcommands
        assert "reset" in executor.subcommands
        assert not (ledger_path / payload_filename(report)).exists()
        assert any(r.levelname == "CRITICAL" for r in caplog.records)

    def test_guard_read_failure_is_infrastructure(self, initialized_repo, executor, report):
        executor.script("config", ExitResult(128, "", "fatal: bad config"))
        with pytest.raises(LedgerInfrastructureError):
            initialized_repo.create_commit(report, _PAYLOAD)
        assert "commit" not in executor.subcommands

    def test_non_zero_commit_exit(self, initialized_repo, executor, report, ledger_path):
        executor.script("commit", ExitResult(128, "", "fatal: secret details"))
        with pytest.raises(LedgerInfrastructureError) as exc_info:
            initialized_repo.create_commit(report, _PAYLOAD)

        assert str(exc_info.value) == "git commit failed with exit status 128"
        assert "secret details" not in str(exc_info.value)
        assert not (ledger_path / payload_filename(report)).exists()

    def test_timeout_is_infrastructure(self, initialized_repo, executor, report):
        executor.script("add", LedgerInfrastructureError("git add timed out after 10s"))
        with pytest.raises(LedgerInfrastructureError, match="timed out"):
            initialized_repo.create_commit(report, _PAYLOAD)
        assert "commit" not in executor.subcommands


# ── Lookup ────────────────────────────────────────────────────────────────────


class TestLookup:
    def test_commit_exists_for(self, initialized_repo, executor, report):
        assert initialized_repo.commit_exists_for(report.id) is False
        executor.grep_output = f"{executor.commit_hash}\n"
        assert initialized_repo.commit_exists_for(report.id) is True

    def test_lookup_uses_fixed_string_marker(self, initialized_repo, executor, report):
        initialized_repo.commit_exists_for(report.id)
        args = executor.calls[-1]
        assert "--fixed-strings" in args
        assert f"--grep={commit_marker(report.id)}" in args

    def test_find_commit_parses_log(self, initialized_repo, executor, report):
        message = f"CRA locked - report:{report.id} - 03/2025"
        executor.grep_output = f"{executor.commit_hash}\x1f{message}\x1f{executor.timestamp}\n"
        info = initialized_repo.find_commit(report.id)
        assert info.commit_hash == executor.commit_hash
        assert info.message == message
        assert info.report_id == str(report.id)

    def test_find_commit_none(self, initialized_repo, report):
        assert initialized_repo.find_commit(report.id) is None

    def test_uninitialized_lookups_do_not_run_git(self, repo, executor, report):
        assert repo.commit_exists_for(report.id) is False
        assert repo.find_commit(report.id) is None
        assert executor.calls == []


# ── Info / cleanup ────────────────────────────────────────────────────────────


class TestInfo:
    def test_missing_directory(self, repo, ledger_path):
        assert repo.info() == {"exists": False, "path": str(ledger_path)}

    def test_initialized(self, initialized_repo, executor):
        info = initialized_repo.info()
        assert info["initialized"] is True
        assert info["branch"] == "main"
        assert info["commit_count"] == 3
        assert info["last_commit"]["message"] == "Initial commit"

    def test_git_failure_reported_not_raised(self, initialized_repo, executor):
        executor.script("rev-list", ExitResult(128))
        info = initialized_repo.info()
        assert info["error"] == "Failed to read repository info"


class TestCleanup:
    def test_refused_in_production(self, ledger_path, executor):
        repo = GitLedgerRepository(
            ledger_path, executor, environment="production", write_lock=threading.Lock()
        )
        repo.ensure_initialized()
        assert repo.cleanup() is False
        assert ledger_path.exists()

    def test_forced_in_production(self, ledger_path, executor):
        repo = GitLedgerRepository(
            ledger_path, executor, environment="production", write_lock=threading.Lock()
        )
        repo.ensure_initialized()
        assert repo.cleanup(force=True) is True
        assert not ledger_path.exists()

    def test_allowed_outside_production(self, initialized_repo, ledger_path):
        assert initialized_repo.cleanup() is True
        assert not ledger_path.exists()


# ── SubprocessExecutor ────────────────────────────────────────────────────────


class TestSubprocessExecutor:
    def test_timeout(self, monkeypatch, tmp_path):
        def _timeout(*args, **kwargs):
            raise subprocess.TimeoutExpired(cmd=args[0], timeout=0.01)

        monkeypatch.setattr(subprocess, "run", _timeout)
        with pytest.raises(LedgerInfrastructureError, match="timed out"):
            SubprocessExecutor(timeout=0.01).run(["git", "status"], tmp_path)

    def test_permission_denied(self, monkeypatch, tmp_path):
        def _denied(*args, **kwargs):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(subprocess, "run", _denied)
        with pytest.raises(LedgerInfrastructureError, match="Permission denied"):
            SubprocessExecutor().run(["git", "status"], tmp_path)

    def test_non_zero_exit_is_returned_not_raised(self, monkeypatch, tmp_path):
        def _fail(args, **kwargs):
            return subprocess.CompletedProcess(args, 1, stdout="", stderr="nope")

        monkeypatch.setattr(subprocess, "run", _fail)
        result = SubprocessExecutor().run(["git", "status"], tmp_path)
        assert result.returncode == 1
        assert not result.ok
