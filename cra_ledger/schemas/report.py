"""
Report schemas — snapshots returned by the lifecycle service and the API.

total_days is exposed as a string-serialized Decimal (pydantic's default) so
callers never see float rounding.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field

from cra_ledger.schemas.common import BaseSchema, TimestampedSchema


class ReportSnapshot(TimestampedSchema):
    """State of a report right after a lifecycle transition."""

    month: int
    year: int
    status: str
    description: Optional[str] = None
    currency: str
    total_days: Decimal
    total_amount: int
    created_by_user_id: uuid.UUID
    submitted_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None


# ── Requests ─────────────────────────────────────────────────────────────────


class ReportCreate(BaseSchema):
    month: int
    year: int
    description: Optional[str] = None
    currency: str = "EUR"
    assignment_ids: list[uuid.UUID] = []


class EntryCreate(BaseSchema):
    model_config = ConfigDict(populate_by_name=True)

    entry_date: date = Field(alias="date")
    quantity: Decimal
    unit_price: int = Field(description="Minor currency units")
    description: Optional[str] = None
    assignment_id: Optional[uuid.UUID] = None


class EntryUpdate(BaseSchema):
    """Partial update; only the fields present in the request change."""

    model_config = ConfigDict(populate_by_name=True)

    entry_date: Optional[date] = Field(default=None, alias="date")
    quantity: Optional[Decimal] = None
    unit_price: Optional[int] = None
    description: Optional[str] = None
    assignment_id: Optional[uuid.UUID] = None


# ── Responses ────────────────────────────────────────────────────────────────


class ReportResponse(BaseSchema):
    report: ReportSnapshot
    message: str


class EntryResponse(BaseSchema):
    report: ReportSnapshot
    entry_id: uuid.UUID
    message: str


class DiscardReportResponse(BaseSchema):
    report_id: uuid.UUID
    message: str


class CommitInfoSchema(BaseSchema):
    commit_hash: str
    message: str
    timestamp: str
    report_id: str


class SubmitResponse(BaseSchema):
    report: ReportSnapshot
    message: str


class LockResponse(BaseSchema):
    report: ReportSnapshot
    commit: CommitInfoSchema
    message: str


class LastCommit(BaseSchema):
    commit_hash: str
    message: str
    timestamp: str


class LedgerInfoResponse(BaseSchema):
    exists: bool
    path: str
    branch: Optional[str] = None
    initialized: Optional[bool] = None
    commit_count: Optional[int] = None
    last_commit: Optional[LastCommit] = None
    error: Optional[str] = None
