"""
ProcessExecutor abstract interface.

The ledger repository never calls subprocess directly; it goes through
run(args, cwd) so tests can substitute a scripted executor and never touch a
real git binary.
"""

import abc
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from cra_ledger.services.ledger.errors import LedgerInfrastructureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessExecutor(abc.ABC):
    @abc.abstractmethod
    def run(self, args: list[str], cwd: Path) -> ExitResult:
        """
        Run a command and return its exit status and output.

        Raises:
            LedgerInfrastructureError: the process could not be started or
                did not finish within the timeout. A non-zero exit is NOT an
                error here; callers inspect ExitResult.returncode.
        """


class SubprocessExecutor(ProcessExecutor):
    """Runs commands with subprocess.run and a hard timeout."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def run(self, args: list[str], cwd: Path) -> ExitResult:
        command = args[1] if len(args) > 1 else args[0]
        try:
            completed = subprocess.run(
                args,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
                env={**os.environ, "LC_ALL": "C", "GIT_TERMINAL_PROMPT": "0"},
            )
        except FileNotFoundError:
            raise LedgerInfrastructureError(f"Executable not found: {args[0]!r}")
        except PermissionError:
            raise LedgerInfrastructureError(
                f"Permission denied running {args[0]!r} in {cwd}"
            )
        except subprocess.TimeoutExpired:
            raise LedgerInfrastructureError(
                f"{args[0]} {command} timed out after {self.timeout}s"
            )
        except OSError as exc:
            raise LedgerInfrastructureError(
                f"Could not run {args[0]} {command}: {exc.strerror or exc}"
            )

        if completed.returncode != 0:
            logger.debug(
                "%s exited %d: %s", " ".join(args), completed.returncode, completed.stderr
            )
        return ExitResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
