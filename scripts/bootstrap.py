"""
Bootstrap script — initialize the git ledger and verify the database.

Usage (local):
    python scripts/bootstrap.py

Usage (Render Shell):
    python scripts/bootstrap.py

Idempotent and safe to re-run; an existing ledger is left untouched.
Exits non-zero if the database is unreachable or the ledger cannot be created.
"""

import json
import os
import sys

# Ensure the project root is on the path when run directly
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cra_ledger.database import check_db_connection
from cra_ledger.services.ledger.errors import LedgerError
from cra_ledger.services.ledger.repository import get_ledger_repository
from cra_ledger.settings import settings


def main() -> None:
    print("\n=== CRA Ledger — Bootstrap ===\n")

    # ── Database ──────────────────────────────────────────────────────────────
    if not check_db_connection():
        print("ERROR: database is not reachable; check DATABASE_URL.")
        sys.exit(1)
    print("✓ Database connection verified")

    # ── Ledger ────────────────────────────────────────────────────────────────
    repository = get_ledger_repository()
    try:
        repository.ensure_initialized()
    except LedgerError as e:
        print(f"ERROR: ledger could not be initialized at {settings.ledger_path}: {e}")
        sys.exit(1)

    if not repository.is_valid():
        print(f"ERROR: {settings.ledger_path} exists but is not a valid git repository.")
        sys.exit(1)
    print(f"✓ Ledger ready at {settings.ledger_path}")

    print(json.dumps(repository.info(), indent=2))
    print("\n✅ Bootstrap complete.\n")


if __name__ == "__main__":
    main()
