# Import all models here so Alembic's env.py can discover them via Base.metadata
from cra_ledger.models.base import Base  # noqa: F401
from cra_ledger.models.report import ActivityReport, ActivityEntry, ReportAssignment  # noqa: F401
from cra_ledger.models.audit import AuditEvent  # noqa: F401
