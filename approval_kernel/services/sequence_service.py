"""
VoucherSequenceService -- per-company voucher numbers from a locked counter.

Responsibility:
    Hand out the sequence part of voucher numbers.  One counter row per
    company, read with ``SELECT ... FOR UPDATE`` and incremented in the
    caller's transaction.

Architecture position:
    Kernel > Services -- flush-only infrastructure used by VoucherService.

Invariants enforced:
    - Values are strictly increasing per company and never reused, even
      after the voucher that took a value is deleted.  The counter row is
      the only source of the next value; vouchers are never scanned for it.
    - A rolled-back transaction gives its value back.

Failure modes:
    - IntegrityError when two transactions create the first counter row for
      a company at once.  Handled with a savepoint: the loser re-reads the
      winner's row under lock and increments it.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.logging_config import get_logger
from approval_kernel.models.voucher import VoucherSequenceModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class VoucherSequenceService(BaseService[VoucherSequenceModel]):
    """
    Allocate voucher sequence values.

    Contract:
        ``next_value`` returns an integer > 0, greater than every value
        already returned for the company.  Does NOT commit.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def next_value(self, company_id: UUID) -> int:
        counter = self._locked_counter(company_id)

        if counter is None:
            try:
                with self.session.begin_nested():
                    counter = VoucherSequenceModel(company_id=company_id, current_value=1)
                    self.session.add(counter)
                    self.session.flush()
                logger.debug(
                    "voucher_sequence_allocated",
                    extra={"company_id": str(company_id), "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "voucher_sequence_counter_race_retry",
                    extra={"company_id": str(company_id)},
                )
                counter = self._locked_counter(company_id)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "voucher_sequence_allocated",
            extra={"company_id": str(company_id), "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, company_id: UUID) -> int:
        """Last value handed out, 0 before the first voucher."""
        value = self.session.execute(
            select(VoucherSequenceModel.current_value).where(
                VoucherSequenceModel.company_id == company_id,
            )
        ).scalar_one_or_none()
        return value or 0

    def _locked_counter(self, company_id: UUID) -> VoucherSequenceModel | None:
        return self.session.execute(
            select(VoucherSequenceModel)
            .where(VoucherSequenceModel.company_id == company_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
