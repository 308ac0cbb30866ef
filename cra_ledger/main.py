"""
FastAPI application factory.

Uses lifespan context manager (preferred over on_event decorators in FastAPI 0.93+)
to handle startup/shutdown tasks cleanly.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cra_ledger.routers import health, reports
from cra_ledger.settings import settings

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("Starting CRA Ledger API [env=%s]", settings.environment)

    from cra_ledger.database import check_db_connection
    from cra_ledger.services.ledger.errors import LedgerError
    from cra_ledger.services.ledger.repository import get_ledger_repository

    if not check_db_connection():
        logger.error("Database is not reachable on startup; check DATABASE_URL")
    else:
        logger.info("Database connection verified")

    # A test may have installed its own repository already
    if getattr(app.state, "ledger_repository", None) is None:
        app.state.ledger_repository = get_ledger_repository()
    try:
        app.state.ledger_repository.ensure_initialized()
        logger.info("Ledger ready at %s", settings.ledger_path)
    except LedgerError as exc:
        # Locks will fail with ledger_unavailable until this is fixed
        logger.error("Ledger could not be initialized: %s", exc)

    yield  # ── Application runs here ──

    logger.info("Shutting down CRA Ledger API")


# ── App factory ───────────────────────────────────────────────────────────────
def create_app() -> FastAPI:
    app = FastAPI(
        title="CRA Ledger",
        description=(
            "Monthly activity report lifecycle (draft, submitted, locked). "
            "Locking snapshots the report into an append-only git ledger."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    # ── CORS ──────────────────────────────────────────────────────────────────
    # Dev: allow all origins. Staging/prod: explicit allowlist from ALLOWED_ORIGINS env var.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(reports.router)

    return app


app = create_app()
