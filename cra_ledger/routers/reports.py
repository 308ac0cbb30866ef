"""
Report routes.

Thin HTTP layer over EntryService and ReportLifecycleService. The caller
identity arrives in the X-Actor-Id header (authentication happens upstream);
ownership is checked by the services, not here.

Workflow:
  POST   /reports                     → open a draft report for a month
  POST   /reports/{id}/entries        → add an entry to a draft
  PATCH  /entries/{id}                → change an entry of a draft
  DELETE /entries/{id}                → soft-delete an entry of a draft
  DELETE /reports/{id}                → soft-delete a draft and its entries
  POST   /reports/{id}/submit         → draft → submitted (totals recomputed)
  POST   /reports/{id}/lock           → submitted → locked (ledger commit written)
  GET    /ledger                      → ledger repository info

A failed LifecycleResult is returned as ErrorResponse with the failure's own
HTTP status (403/404/409/422 for business rules, 503 retryable, 500 integrity).
"""

import uuid

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cra_ledger.database import get_db
from cra_ledger.schemas.common import ErrorResponse
from cra_ledger.schemas.report import (
    DiscardReportResponse,
    EntryCreate,
    EntryResponse,
    EntryUpdate,
    LedgerInfoResponse,
    LockResponse,
    ReportCreate,
    ReportResponse,
    SubmitResponse,
)
from cra_ledger.services.ledger.repository import LedgerRepository, get_ledger_repository
from cra_ledger.services.ledger.service import GitLedgerService
from cra_ledger.services.lifecycle.entries import EntryService
from cra_ledger.services.lifecycle.lifecycle import ReportLifecycleService
from cra_ledger.services.lifecycle.result import LifecycleResult

router = APIRouter(tags=["reports"])

_ERROR_RESPONSES = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ── Dependencies ──────────────────────────────────────────────────────────────


def get_ledger(request: Request) -> LedgerRepository:
    """The repository built at startup; falls back to a fresh one from settings."""
    repository = getattr(request.app.state, "ledger_repository", None)
    if repository is None:
        repository = get_ledger_repository()
        request.app.state.ledger_repository = repository
    return repository


def get_lifecycle_service(
    db: Session = Depends(get_db),
    repository: LedgerRepository = Depends(get_ledger),
) -> ReportLifecycleService:
    return ReportLifecycleService(db, GitLedgerService(db, repository))


def get_entry_service(db: Session = Depends(get_db)) -> EntryService:
    return EntryService(db)


def _error_response(result: LifecycleResult) -> JSONResponse:
    error = result.error
    body = ErrorResponse(**error.to_dict())
    return JSONResponse(status_code=error.http_status, content=body.model_dump(mode="json"))


def _entry_response(result: LifecycleResult):
    if not result.is_success:
        return _error_response(result)
    return EntryResponse(
        report=result.data["report"],
        entry_id=result.data["entry_id"],
        message=result.message,
    )


# ── Drafts ────────────────────────────────────────────────────────────────────


@router.post(
    "/reports",
    response_model=ReportResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
)
def create_report(
    body: ReportCreate,
    x_actor_id: uuid.UUID = Header(...),
    service: EntryService = Depends(get_entry_service),
):
    """Open a draft report. One active report per creator and month."""
    result = service.create_report(
        x_actor_id,
        month=body.month,
        year=body.year,
        description=body.description,
        currency=body.currency,
        assignment_ids=body.assignment_ids,
    )
    if not result.is_success:
        return _error_response(result)
    return ReportResponse(report=result.data["report"], message=result.message)


@router.delete(
    "/reports/{report_id}",
    response_model=DiscardReportResponse,
    responses=_ERROR_RESPONSES,
)
def discard_report(
    report_id: uuid.UUID,
    x_actor_id: uuid.UUID = Header(...),
    service: EntryService = Depends(get_entry_service),
):
    result = service.discard_report(report_id, x_actor_id)
    if not result.is_success:
        return _error_response(result)
    return DiscardReportResponse(report_id=result.data["report_id"], message=result.message)


@router.post(
    "/reports/{report_id}/entries",
    response_model=EntryResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
)
def add_entry(
    report_id: uuid.UUID,
    body: EntryCreate,
    x_actor_id: uuid.UUID = Header(...),
    service: EntryService = Depends(get_entry_service),
):
    result = service.add_entry(
        report_id,
        x_actor_id,
        body.entry_date,
        body.quantity,
        body.unit_price,
        description=body.description,
        assignment_id=body.assignment_id,
    )
    return _entry_response(result)


@router.patch(
    "/entries/{entry_id}",
    response_model=EntryResponse,
    responses=_ERROR_RESPONSES,
)
def update_entry(
    entry_id: uuid.UUID,
    body: EntryUpdate,
    x_actor_id: uuid.UUID = Header(...),
    service: EntryService = Depends(get_entry_service),
):
    """Change only the fields sent; totals are recomputed."""
    result = service.update_entry(entry_id, x_actor_id, **body.model_dump(exclude_unset=True))
    return _entry_response(result)


@router.delete(
    "/entries/{entry_id}",
    response_model=EntryResponse,
    responses=_ERROR_RESPONSES,
)
def discard_entry(
    entry_id: uuid.UUID,
    x_actor_id: uuid.UUID = Header(...),
    service: EntryService = Depends(get_entry_service),
):
    result = service.discard_entry(entry_id, x_actor_id)
    return _entry_response(result)


# ── Lifecycle ─────────────────────────────────────────────────────────────────


@router.post(
    "/reports/{report_id}/submit",
    response_model=SubmitResponse,
    responses=_ERROR_RESPONSES,
)
def submit_report(
    report_id: uuid.UUID,
    x_actor_id: uuid.UUID = Header(...),
    service: ReportLifecycleService = Depends(get_lifecycle_service),
):
    """Submit a draft report. Requires at least one active entry."""
    result = service.submit(report_id, x_actor_id)
    if not result.is_success:
        return _error_response(result)
    return SubmitResponse(report=result.data["report"], message=result.message)


@router.post(
    "/reports/{report_id}/lock",
    response_model=LockResponse,
    responses=_ERROR_RESPONSES,
)
def lock_report(
    report_id: uuid.UUID,
    x_actor_id: uuid.UUID = Header(...),
    service: ReportLifecycleService = Depends(get_lifecycle_service),
):
    """
    Lock a submitted report and snapshot it to the git ledger.
    The report is locked in the database only if the ledger commit succeeded.
    """
    result = service.lock(report_id, x_actor_id)
    if not result.is_success:
        return _error_response(result)
    commit = result.data["commit"]
    return LockResponse(
        report=result.data["report"],
        commit=commit.to_dict(),
        message=result.message,
    )


# ── Ledger ────────────────────────────────────────────────────────────────────


@router.get("/ledger", response_model=LedgerInfoResponse)
def ledger_info(repository: LedgerRepository = Depends(get_ledger)) -> LedgerInfoResponse:
    return LedgerInfoResponse(**repository.info())
