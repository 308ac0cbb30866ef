"""Health check endpoint — required by Render for service health monitoring."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from cra_ledger.database import check_db_connection
from cra_ledger.routers.reports import get_ledger
from cra_ledger.services.ledger.repository import LedgerRepository
from cra_ledger.settings import settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    environment: str
    database: str
    ledger: str
    version: str = "1.0.0"


@router.get("/health", response_model=HealthResponse, include_in_schema=False)
def health_check(
    response: Response,
    repository: LedgerRepository = Depends(get_ledger),
) -> HealthResponse:
    """
    Returns 200 if the database is reachable and the ledger is a valid git store.
    Returns 503 otherwise (Render will restart the service).
    """
    db_ok = check_db_connection()
    ledger_ok = repository.is_valid()
    if not (db_ok and ledger_ok):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="ok" if db_ok and ledger_ok else "degraded",
        environment=settings.environment,
        database="connected" if db_ok else "unreachable",
        ledger="valid" if ledger_ok else "invalid",
    )
