"""
Module: approval_kernel.models.accounting_period
Responsibility: ORM persistence for monthly accounting periods, the
    temporal resource that gates voucher mutation.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

Invariants enforced:
    - UNIQUE(company_id, year, period); period in 1..12.
    - LOCKED is absorbing.  PeriodService refuses every transition out of
      it, and the listener below refuses a flushed status change away
      from LOCKED.

Failure modes:
    - IntegrityError on a duplicate (company, year, period).
    - PeriodLockedError when a LOCKED period's status is changed.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString
from approval_kernel.domain.period import AccountingPeriodInfo, PeriodStatus, period_label
from approval_kernel.exceptions import PeriodLockedError


class AccountingPeriodModel(TrackedBase):
    """One calendar month of one company's books."""

    __tablename__ = "accounting_periods"

    __table_args__ = (
        UniqueConstraint("company_id", "year", "period", name="uq_accounting_periods"),
        CheckConstraint("period BETWEEN 1 AND 12", name="ck_accounting_periods_month"),
        CheckConstraint(
            "status IN ('open', 'closed', 'locked')",
            name="ck_accounting_periods_valid_status",
        ),
        Index("ix_accounting_periods_dates", "company_id", "start_date", "end_date"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(10), default=PeriodStatus.OPEN.value, nullable=False,
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def label(self) -> str:
        return period_label(self.year, self.period)

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.label} company={self.company_id} status={self.status}>"

    def to_dto(self) -> AccountingPeriodInfo:
        return AccountingPeriodInfo(
            period_id=self.id,
            company_id=self.company_id,
            year=self.year,
            period=self.period,
            start_date=self.start_date,
            end_date=self.end_date,
            status=PeriodStatus(self.status),
            closed_at=self.closed_at,
            closed_by_id=self.closed_by_id,
        )


@event.listens_for(AccountingPeriodModel, "before_update")
def prevent_locked_period_change(mapper, connection, target):
    """A LOCKED period never changes status again."""
    history = inspect(target).attrs.status.history
    if history.deleted and history.deleted[0] == PeriodStatus.LOCKED.value:
        raise PeriodLockedError(target.label, f"change status to {target.status}")
