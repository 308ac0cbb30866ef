"""
LifecycleResult — the only thing submit() and lock() ever return.

Business-rule violations are values, not exceptions: a failed guard returns
LifecycleResult.failure(...) with a typed LifecycleError. Ledger faults are
caught at the lifecycle boundary and converted into failures of kind
"infrastructure" or "integrity"; they are never dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


class ErrorKind:
    VALIDATION = "validation"  # business rule; never retried
    INFRASTRUCTURE = "infrastructure"  # ledger/db fault; safe to retry
    INTEGRITY = "integrity"  # anti-rewrite guard broken; fatal


class ErrorCode:
    NOT_FOUND = "not_found"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    INVALID_TRANSITION = "invalid_transition"
    MISSING_ENTRIES = "missing_entries"
    ALREADY_LOCKED = "already_locked"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    LEDGER_INTEGRITY_VIOLATION = "ledger_integrity_violation"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    REPORT_NOT_MODIFIABLE = "report_not_modifiable"
    ENTRY_NOT_FOUND = "entry_not_found"
    INVALID_ENTRY = "invalid_entry"
    ASSIGNMENT_NOT_LINKED = "assignment_not_linked"
    INVALID_REPORT = "invalid_report"
    DUPLICATE_REPORT = "duplicate_report"


@dataclass(frozen=True)
class LifecycleError:
    code: str
    message: str
    kind: str = ErrorKind.VALIDATION
    http_status: int = 422
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.INFRASTRUCTURE

    def to_dict(self) -> dict[str, Any]:
        data = {
            "error": self.code,
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data

    # ── Constructors for the known failures ───────────────────────────────────

    @classmethod
    def not_found(cls, report_id) -> "LifecycleError":
        return cls(ErrorCode.NOT_FOUND, f"Report {report_id} not found", http_status=404)

    @classmethod
    def ownership(cls) -> "LifecycleError":
        return cls(
            ErrorCode.INSUFFICIENT_PERMISSIONS,
            "Only the report creator can perform this action",
            http_status=403,
        )

    @classmethod
    def invalid_transition(cls, from_status: str, to_status: str) -> "LifecycleError":
        return cls(
            ErrorCode.INVALID_TRANSITION,
            f"Invalid transition from '{from_status}' to '{to_status}'",
            http_status=409,
        )

    @classmethod
    def missing_entries(cls) -> "LifecycleError":
        return cls(
            ErrorCode.MISSING_ENTRIES,
            "Report must have at least one entry to be submitted",
            http_status=422,
        )

    @classmethod
    def already_locked(cls, commit: Optional[dict] = None) -> "LifecycleError":
        return cls(
            ErrorCode.ALREADY_LOCKED,
            "Report is already locked",
            http_status=409,
            details={"commit": commit} if commit else {},
        )

    @classmethod
    def not_modifiable(cls, status: str) -> "LifecycleError":
        return cls(
            ErrorCode.REPORT_NOT_MODIFIABLE,
            f"Report is {status} and cannot be modified",
            http_status=409,
        )

    @classmethod
    def entry_not_found(cls, entry_id) -> "LifecycleError":
        return cls(ErrorCode.ENTRY_NOT_FOUND, f"Entry {entry_id} not found", http_status=404)

    @classmethod
    def invalid_entry(cls, message: str, field_name: str) -> "LifecycleError":
        return cls(
            ErrorCode.INVALID_ENTRY, message, http_status=422, details={"field": field_name}
        )

    @classmethod
    def assignment_not_linked(cls, assignment_id) -> "LifecycleError":
        return cls(
            ErrorCode.ASSIGNMENT_NOT_LINKED,
            f"Assignment {assignment_id} is not linked to this report",
            http_status=422,
        )

    @classmethod
    def invalid_report(cls, message: str, field_name: str) -> "LifecycleError":
        return cls(
            ErrorCode.INVALID_REPORT, message, http_status=422, details={"field": field_name}
        )

    @classmethod
    def duplicate_report(cls, month: int, year: int) -> "LifecycleError":
        return cls(
            ErrorCode.DUPLICATE_REPORT,
            f"A report already exists for {month:02d}/{year}",
            http_status=409,
        )

    @classmethod
    def storage_unavailable(cls) -> "LifecycleError":
        return cls(
            ErrorCode.STORAGE_UNAVAILABLE,
            "The report could not be saved; please retry",
            kind=ErrorKind.INFRASTRUCTURE,
            http_status=503,
        )

    @classmethod
    def from_ledger_error(cls, exc: Exception) -> "LifecycleError":
        if getattr(exc, "kind", None) == ErrorKind.INTEGRITY:
            return cls(
                ErrorCode.LEDGER_INTEGRITY_VIOLATION,
                str(exc),
                kind=ErrorKind.INTEGRITY,
                http_status=500,
            )
        return cls(
            ErrorCode.LEDGER_UNAVAILABLE,
            str(exc),
            kind=ErrorKind.INFRASTRUCTURE,
            http_status=503,
        )


@dataclass(frozen=True)
class LifecycleResult:
    data: Optional[dict[str, Any]] = None
    error: Optional[LifecycleError] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, data: dict[str, Any], message: Optional[str] = None) -> "LifecycleResult":
        return cls(data=data, message=message)

    @classmethod
    def failure(cls, error: LifecycleError) -> "LifecycleResult":
        return cls(error=error, message=error.message)

    @property
    def is_success(self) -> bool:
        return self.error is None
