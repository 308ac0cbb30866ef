"""
Activity report entities: ActivityReport, ActivityEntry, ReportAssignment.

An ActivityReport ("CRA") is a creator's monthly declaration of work.
Entries carry the detail (one dated quantity × unit price line each).

Money is always integer minor-currency units (cents); quantities are exact
Decimals. total_days / total_amount are server-computed and must never be
written from user input.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cra_ledger.models.base import (
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


# ── Lifecycle state constants ────────────────────────────────────────────────


class ReportStatus:
    DRAFT = "draft"
    SUBMITTED = "submitted"
    LOCKED = "locked"

    # Allowed forward transitions; nothing ever moves backwards
    TRANSITIONS = {
        DRAFT: {SUBMITTED},
        SUBMITTED: {LOCKED},
        LOCKED: set(),
    }


DEFAULT_CURRENCY = "EUR"


# ── Models ───────────────────────────────────────────────────────────────────


class ActivityReport(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """
    Monthly activity report owned by its creator.

    Only the lifecycle service moves `status`; only the entry service touches
    entries, and only while the report is draft.
    """

    __tablename__ = "activity_reports"
    __table_args__ = (
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_activity_reports_month"),
        CheckConstraint("year > 2000", name="ck_activity_reports_year"),
        CheckConstraint(
            "status IN ('draft', 'submitted', 'locked')",
            name="ck_activity_reports_status",
        ),
    )

    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ReportStatus.DRAFT,
        index=True,
    )
    description: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=DEFAULT_CURRENCY
    )

    # ── Server-computed totals ───────────────────────────────────────────────
    total_days: Mapped[Decimal] = mapped_column(
        Numeric, nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, comment="Minor currency units"
    )

    created_by_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, index=True
    )

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    entries: Mapped[list["ActivityEntry"]] = relationship(
        "ActivityEntry",
        back_populates="report",
        order_by="ActivityEntry.entry_date",
    )
    assignments: Mapped[list["ReportAssignment"]] = relationship(
        "ReportAssignment",
        back_populates="report",
        cascade="all, delete-orphan",
    )

    @property
    def active_entries(self) -> list["ActivityEntry"]:
        return [e for e in self.entries if e.is_active]

    @property
    def assignment_ids(self) -> list[uuid.UUID]:
        return [a.assignment_id for a in self.assignments]

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ReportStatus.TRANSITIONS.get(self.status, set())

    def is_modifiable(self) -> bool:
        """Entries may only change while the report is an active draft."""
        return self.status == ReportStatus.DRAFT and self.is_active

    def __repr__(self) -> str:
        return (
            f"<ActivityReport id={self.id} period={self.month:02d}/{self.year} "
            f"status={self.status!r}>"
        )


class ReportAssignment(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Relation record linking a report to an external work assignment.
    The assignment itself lives outside this service.
    """

    __tablename__ = "report_assignments"
    __table_args__ = (
        UniqueConstraint("report_id", "assignment_id", name="uq_report_assignment"),
    )

    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("activity_reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    report: Mapped["ActivityReport"] = relationship(
        "ActivityReport", back_populates="assignments"
    )

    def __repr__(self) -> str:
        return f"<ReportAssignment report={self.report_id} assignment={self.assignment_id}>"


class ActivityEntry(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """
    One dated line item: quantity (days, any granularity) × unit_price (cents).
    Belongs to exactly one report; optionally tied to one assignment.
    """

    __tablename__ = "activity_entries"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_activity_entries_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_activity_entries_unit_price"),
    )

    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("activity_reports.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    assignment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True, index=True
    )

    entry_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    unit_price: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="Minor currency units"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    report: Mapped["ActivityReport"] = relationship(
        "ActivityReport", back_populates="entries"
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityEntry date={self.entry_date} quantity={self.quantity} "
            f"unit_price={self.unit_price}>"
        )
