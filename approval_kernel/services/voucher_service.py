"""
VoucherService -- accounting voucher lifecycle under the period guard.

Responsibility:
    Create, edit, delete, submit, post and void vouchers.  Every mutation
    loads the voucher's period under a shared lock and runs
    ``check_mutation`` before writing, so no voucher changes inside a
    period that is CLOSED or LOCKED (void excepted).

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - CREATE/UPDATE/DELETE/SUBMIT/POST need an OPEN period; VOID does not.
    - Only DRAFT vouchers are edited or deleted.
    - PENDING and POSTED vouchers are balanced; an unbalanced submit or post
      raises and leaves the status unchanged.
    - Voucher numbers are V{year}{period:02}{seq:06}, seq taken from the
      company's locked counter row, strictly increasing and never reused.

Failure modes:
    - VoucherNotFoundError, PeriodNotFoundError, PeriodNotOpenError,
      InvalidTransitionError, InvalidVoucherLineError, UnbalancedVoucherError.
"""

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.period import (
    PeriodStatus,
    VoucherInfo,
    VoucherLine,
    VoucherOperation,
    VoucherStatus,
    VoucherType,
    check_mutation,
    format_voucher_no,
    next_voucher_status,
    validate_lines,
    voucher_totals,
)
from approval_kernel.exceptions import (
    InvalidTransitionError,
    PeriodNotOpenError,
    UnbalancedVoucherError,
    VoucherNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.accounting_period import AccountingPeriodModel
from approval_kernel.models.voucher import VoucherLineModel, VoucherModel
from approval_kernel.services.base import BaseService
from approval_kernel.services.period_service import PeriodService
from approval_kernel.services.sequence_service import VoucherSequenceService

logger = get_logger("services.voucher")


def _line_rows(lines: Iterable[VoucherLine]) -> list[VoucherLineModel]:
    return [
        VoucherLineModel(
            line_no=line.line_no,
            account_code=line.account_code,
            debit_amount=line.debit_amount,
            credit_amount=line.credit_amount,
            description=line.description,
        )
        for line in lines
    ]


class VoucherService(BaseService[VoucherModel]):
    """
    Guarded voucher operations.

    Contract:
        Returns frozen ``VoucherInfo`` DTOs.  Never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._periods = PeriodService(session, self._clock)
        self._sequences = VoucherSequenceService(session)

    def create(
        self,
        company_id: UUID,
        voucher_date: date,
        voucher_type: VoucherType,
        lines: Iterable[VoucherLine],
        actor_id: UUID,
        description: str = "",
    ) -> VoucherInfo:
        """Create a DRAFT voucher in the OPEN period covering ``voucher_date``."""
        voucher_type = VoucherType(voucher_type)
        numbered = validate_lines(lines)
        period = self._periods.lock_period_for_date(company_id, voucher_date)
        self._guard(None, period, VoucherOperation.CREATE)

        sequence = self._sequences.next_value(company_id)
        debit, credit = voucher_totals(numbered)
        voucher = VoucherModel(
            company_id=company_id,
            voucher_no=format_voucher_no(period.year, period.period, sequence),
            sequence_no=sequence,
            voucher_date=voucher_date,
            voucher_type=voucher_type.value,
            description=description,
            status=VoucherStatus.DRAFT.value,
            period_id=period.id,
            total_debit=debit,
            total_credit=credit,
            created_by_id=actor_id,
        )
        voucher.lines = _line_rows(numbered)
        self.session.add(voucher)
        self.session.flush()

        logger.info(
            "voucher_created",
            extra={
                "voucher_id": str(voucher.id),
                "voucher_no": voucher.voucher_no,
                "period": period.label,
                "balanced": debit == credit,
            },
        )
        return voucher.to_dto()

    def update(
        self,
        voucher_id: UUID,
        actor_id: UUID,
        voucher_date: date | None = None,
        voucher_type: VoucherType | None = None,
        description: str | None = None,
        lines: Iterable[VoucherLine] | None = None,
    ) -> VoucherInfo:
        """Edit a DRAFT voucher.  Moving the date re-checks the target period."""
        voucher = self._get_for_update(voucher_id)
        period = self._periods.lock_period_shared(voucher.period_id)
        self._guard(voucher, period, VoucherOperation.UPDATE)

        if voucher_date is not None and voucher_date != voucher.voucher_date:
            target = self._periods.lock_period_for_date(voucher.company_id, voucher_date)
            if target.id != period.id:
                self._guard(voucher, target, VoucherOperation.UPDATE)
                voucher.period_id = target.id
            voucher.voucher_date = voucher_date

        if voucher_type is not None:
            voucher.voucher_type = VoucherType(voucher_type).value
        if description is not None:
            voucher.description = description
        if lines is not None:
            numbered = validate_lines(lines)
            voucher.lines.clear()
            # Old line numbers must be gone before the new ones are inserted.
            self.session.flush()
            voucher.lines = _line_rows(numbered)
            voucher.total_debit, voucher.total_credit = voucher_totals(numbered)

        voucher.updated_by_id = actor_id
        self.session.flush()

        logger.info("voucher_updated", extra={"voucher_no": voucher.voucher_no})
        return voucher.to_dto()

    def delete(self, voucher_id: UUID, actor_id: UUID) -> None:
        voucher = self._get_for_update(voucher_id)
        period = self._periods.lock_period_shared(voucher.period_id)
        self._guard(voucher, period, VoucherOperation.DELETE)
        voucher_no = voucher.voucher_no
        self.session.delete(voucher)
        self.session.flush()
        logger.info(
            "voucher_deleted",
            extra={"voucher_no": voucher_no, "actor_id": str(actor_id)},
        )

    def submit(self, voucher_id: UUID, actor_id: UUID) -> VoucherInfo:
        """DRAFT -> PENDING.  Requires a balanced voucher."""
        return self._move(voucher_id, actor_id, VoucherOperation.SUBMIT)

    def post(self, voucher_id: UUID, actor_id: UUID) -> VoucherInfo:
        """DRAFT/PENDING -> POSTED.  Requires a balanced voucher."""
        return self._move(voucher_id, actor_id, VoucherOperation.POST)

    def void(self, voucher_id: UUID, actor_id: UUID) -> VoucherInfo:
        """Any status except VOID -> VOID, whatever the period status."""
        return self._move(voucher_id, actor_id, VoucherOperation.VOID)

    def get(self, voucher_id: UUID) -> VoucherInfo:
        voucher = self.session.get(VoucherModel, voucher_id)
        if voucher is None:
            raise VoucherNotFoundError(str(voucher_id))
        return voucher.to_dto()

    def list_vouchers(
        self,
        company_id: UUID,
        period_id: UUID | None = None,
        status: VoucherStatus | None = None,
    ) -> list[VoucherInfo]:
        stmt = select(VoucherModel).where(VoucherModel.company_id == company_id)
        if period_id is not None:
            stmt = stmt.where(VoucherModel.period_id == period_id)
        if status is not None:
            stmt = stmt.where(VoucherModel.status == VoucherStatus(status).value)
        stmt = stmt.order_by(VoucherModel.sequence_no)
        return [v.to_dto() for v in self.session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _move(
        self,
        voucher_id: UUID,
        actor_id: UUID,
        operation: VoucherOperation,
    ) -> VoucherInfo:
        voucher = self._get_for_update(voucher_id)
        period = self._periods.lock_period_shared(voucher.period_id)
        self._guard(voucher, period, operation)
        new_status = next_voucher_status(VoucherStatus(voucher.status), operation)

        if operation in (VoucherOperation.SUBMIT, VoucherOperation.POST):
            debit, credit = voucher_totals(voucher.line_values())
            if debit != credit:
                logger.warning(
                    "voucher_unbalanced",
                    extra={
                        "voucher_no": voucher.voucher_no,
                        "operation": operation.value,
                        "debits": str(debit),
                        "credits": str(credit),
                    },
                )
                raise UnbalancedVoucherError(str(voucher.id), debit, credit)

        old_status = voucher.status
        voucher.status = new_status.value
        now = self._clock.now()
        if new_status == VoucherStatus.POSTED:
            voucher.posted_by_id = actor_id
            voucher.posted_at = now
        elif new_status == VoucherStatus.VOID:
            voucher.voided_by_id = actor_id
            voucher.voided_at = now
        voucher.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "voucher_status_changed",
            extra={
                "voucher_no": voucher.voucher_no,
                "from_status": old_status,
                "to_status": new_status.value,
                "period": period.label,
            },
        )
        return voucher.to_dto()

    def _guard(
        self,
        voucher: VoucherModel | None,
        period: AccountingPeriodModel,
        operation: VoucherOperation,
    ) -> None:
        voucher_status = VoucherStatus(voucher.status) if voucher is not None else None
        try:
            check_mutation(voucher_status, PeriodStatus(period.status), operation, period.label)
        except (InvalidTransitionError, PeriodNotOpenError):
            logger.warning(
                "voucher_mutation_refused",
                extra={
                    "voucher_no": voucher.voucher_no if voucher is not None else None,
                    "operation": operation.value,
                    "voucher_status": voucher_status.value if voucher_status else None,
                    "period": period.label,
                    "period_status": period.status,
                },
            )
            raise

    def _get_for_update(self, voucher_id: UUID) -> VoucherModel:
        voucher = self.session.execute(
            select(VoucherModel)
            .where(VoucherModel.id == voucher_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if voucher is None:
            raise VoucherNotFoundError(str(voucher_id))
        return voucher
