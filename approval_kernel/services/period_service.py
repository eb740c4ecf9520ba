"""
PeriodService -- accounting period lifecycle.

Responsibility:
    Create a fiscal year of monthly periods and drive each period through
    OPEN -> CLOSED -> (OPEN | LOCKED).

Architecture position:
    Kernel > Services -- imperative shell, flush-only.
    VoucherService asks this service for the period covering a voucher
    date, locked in shared mode, before every guarded mutation.

Invariants enforced:
    - UNIQUE(company, year, period); a year is initialized at most once.
    - LOCKED is absorbing, whatever the caller's role
      (``next_period_status``).
    - Close refuses while DRAFT or PENDING vouchers remain in the period.
    - Lifecycle changes take an exclusive row lock on the period; voucher
      mutations take a shared one, so a close cannot slip between a
      voucher's guard check and its write.

Failure modes:
    - PeriodNotFoundError, PeriodsAlreadyInitializedError,
      PeriodHasOpenVouchersError, PeriodLockedError,
      InvalidTransitionError (e.g. closing a CLOSED period).

Audit relevance:
    ``period_closed``, ``period_reopened`` and ``period_locked`` are logged
    with the period label and actor.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.period import (
    OPEN_VOUCHER_STATUSES,
    AccountingPeriodInfo,
    PeriodAction,
    PeriodStatus,
    month_bounds,
    next_period_status,
)
from approval_kernel.exceptions import (
    InvalidTransitionError,
    PeriodHasOpenVouchersError,
    PeriodLockedError,
    PeriodNotFoundError,
    PeriodsAlreadyInitializedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.accounting_period import AccountingPeriodModel
from approval_kernel.models.voucher import VoucherModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.period")

MONTHS_PER_YEAR = 12


class PeriodService(BaseService[AccountingPeriodModel]):
    """
    Service for the accounting period lifecycle.

    Contract:
        Returns frozen ``AccountingPeriodInfo`` DTOs.  Never commits.

    Non-goals:
        - Does NOT post, carry forward or close the books; it only gates
          voucher mutation.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def initialize_year(
        self,
        company_id: UUID,
        year: int,
        actor_id: UUID,
    ) -> list[AccountingPeriodInfo]:
        """Create the twelve monthly OPEN periods of ``year``."""
        existing = self.session.execute(
            select(func.count(AccountingPeriodModel.id)).where(
                AccountingPeriodModel.company_id == company_id,
                AccountingPeriodModel.year == year,
            )
        ).scalar()
        if existing:
            raise PeriodsAlreadyInitializedError(str(company_id), year)

        periods = []
        for month in range(1, MONTHS_PER_YEAR + 1):
            start, end = month_bounds(year, month)
            period = AccountingPeriodModel(
                company_id=company_id,
                year=year,
                period=month,
                start_date=start,
                end_date=end,
                status=PeriodStatus.OPEN.value,
                created_by_id=actor_id,
            )
            self.session.add(period)
            periods.append(period)
        self.session.flush()

        logger.info(
            "periods_initialized",
            extra={"company_id": str(company_id), "year": year, "count": len(periods)},
        )
        return [p.to_dto() for p in periods]

    def close(self, period_id: UUID, actor_id: UUID) -> AccountingPeriodInfo:
        """OPEN -> CLOSED.  Refused while unposted vouchers remain."""
        period = self._get_for_update(period_id)
        new_status = self._transition(period, PeriodAction.CLOSE)

        open_vouchers = self.session.execute(
            select(func.count(VoucherModel.id)).where(
                VoucherModel.period_id == period.id,
                VoucherModel.status.in_([s.value for s in OPEN_VOUCHER_STATUSES]),
            )
        ).scalar()
        if open_vouchers:
            logger.warning(
                "period_close_refused_open_vouchers",
                extra={"period": period.label, "open_vouchers": open_vouchers},
            )
            raise PeriodHasOpenVouchersError(period.label, open_vouchers)

        period.status = new_status.value
        period.closed_at = self._clock.now()
        period.closed_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_closed",
            extra={"period": period.label, "company_id": str(period.company_id)},
        )
        return period.to_dto()

    def reopen(self, period_id: UUID, actor_id: UUID) -> AccountingPeriodInfo:
        """CLOSED -> OPEN.  Never allowed from LOCKED."""
        period = self._get_for_update(period_id)
        new_status = self._transition(period, PeriodAction.REOPEN)
        period.status = new_status.value
        period.closed_at = None
        period.closed_by_id = None
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info("period_reopened", extra={"period": period.label})
        return period.to_dto()

    def lock(self, period_id: UUID, actor_id: UUID) -> AccountingPeriodInfo:
        """CLOSED -> LOCKED, permanently."""
        period = self._get_for_update(period_id)
        new_status = self._transition(period, PeriodAction.LOCK)
        period.status = new_status.value
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info("period_locked", extra={"period": period.label})
        return period.to_dto()

    def get_period(self, period_id: UUID) -> AccountingPeriodInfo:
        period = self.session.get(AccountingPeriodModel, period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period.to_dto()

    def get_current(self, company_id: UUID) -> AccountingPeriodInfo | None:
        """Period containing today's clock date."""
        return self.find_period_for_date(company_id, self._clock.today())

    def find_period_for_date(
        self,
        company_id: UUID,
        day: date,
    ) -> AccountingPeriodInfo | None:
        period = self._period_for_date(company_id, day)
        return period.to_dto() if period else None

    def list_periods(
        self,
        company_id: UUID,
        year: int | None = None,
    ) -> list[AccountingPeriodInfo]:
        stmt = select(AccountingPeriodModel).where(AccountingPeriodModel.company_id == company_id)
        if year is not None:
            stmt = stmt.where(AccountingPeriodModel.year == year)
        stmt = stmt.order_by(AccountingPeriodModel.year, AccountingPeriodModel.period)
        return [p.to_dto() for p in self.session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Used by VoucherService
    # ------------------------------------------------------------------

    def lock_period_for_date(self, company_id: UUID, day: date) -> AccountingPeriodModel:
        """Shared-lock the period covering ``day``."""
        period = self._period_for_date(company_id, day, shared_lock=True)
        if period is None:
            raise PeriodNotFoundError(f"{company_id} on {day}")
        return period

    def lock_period_shared(self, period_id: UUID) -> AccountingPeriodModel:
        period = self.session.execute(
            select(AccountingPeriodModel)
            .where(AccountingPeriodModel.id == period_id)
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _transition(self, period: AccountingPeriodModel, action: PeriodAction) -> PeriodStatus:
        try:
            return next_period_status(PeriodStatus(period.status), action, period.label)
        except (InvalidTransitionError, PeriodLockedError):
            logger.warning(
                "period_transition_refused",
                extra={"period": period.label, "status": period.status, "action": action.value},
            )
            raise

    def _get_for_update(self, period_id: UUID) -> AccountingPeriodModel:
        period = self.session.execute(
            select(AccountingPeriodModel)
            .where(AccountingPeriodModel.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def _period_for_date(
        self,
        company_id: UUID,
        day: date,
        shared_lock: bool = False,
    ) -> AccountingPeriodModel | None:
        stmt = select(AccountingPeriodModel).where(
            AccountingPeriodModel.company_id == company_id,
            AccountingPeriodModel.start_date <= day,
            AccountingPeriodModel.end_date >= day,
        )
        if shared_lock:
            stmt = stmt.with_for_update(read=True).execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()
