"""
Tests for PeriodService -- accounting period lifecycle.

Covers:
- initialize_year(): twelve monthly OPEN periods, refused twice
- close(): refused with DRAFT/PENDING vouchers, allowed once posted or void
- reopen() / lock(): lifecycle edges, LOCKED is absorbing
- get_current() / find_period_for_date() / list_periods()
- ORM listener refusing any status change out of LOCKED
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.period import (
    PeriodStatus,
    VoucherLine,
    VoucherType,
)
from approval_kernel.exceptions import (
    InvalidTransitionError,
    PeriodHasOpenVouchersError,
    PeriodLockedError,
    PeriodNotFoundError,
    PeriodsAlreadyInitializedError,
)
from approval_kernel.models.accounting_period import AccountingPeriodModel

JUNE_10 = date(2024, 6, 10)


def balanced(amount="100.00"):
    return [
        VoucherLine("1001", debit_amount=Decimal(amount)),
        VoucherLine("4001", credit_amount=Decimal(amount)),
    ]


@pytest.fixture
def june(open_year):
    return next(p for p in open_year if p.contains(JUNE_10))


class TestInitializeYear:
    def test_twelve_open_months(self, open_year):
        assert [p.period for p in open_year] == list(range(1, 13))
        assert all(p.status == PeriodStatus.OPEN for p in open_year)
        assert open_year[1].end_date == date(2024, 2, 29)
        assert open_year[11].label == "2024-12"

    def test_second_initialization_refused(self, period_service, open_year, org, test_actor_id):
        with pytest.raises(PeriodsAlreadyInitializedError):
            period_service.initialize_year(org.company_id, 2024, test_actor_id)

    def test_other_year_and_company_independent(self, period_service, open_year, org, test_actor_id):
        assert len(period_service.initialize_year(org.company_id, 2025, test_actor_id)) == 12
        assert len(period_service.initialize_year(uuid4(), 2024, test_actor_id)) == 12


class TestClose:
    def test_close_empty_period(self, period_service, june, test_actor_id):
        closed = period_service.close(june.period_id, test_actor_id)
        assert closed.status == PeriodStatus.CLOSED
        assert closed.closed_by_id == test_actor_id
        assert closed.closed_at is not None

    def test_draft_voucher_blocks_close(
        self, period_service, voucher_service, june, org, test_actor_id,
    ):
        voucher_service.create(org.company_id, JUNE_10, VoucherType.RECEIPT, balanced(), test_actor_id)
        with pytest.raises(PeriodHasOpenVouchersError) as exc_info:
            period_service.close(june.period_id, test_actor_id)
        assert exc_info.value.open_count == 1
        assert period_service.get_period(june.period_id).status == PeriodStatus.OPEN

    def test_pending_voucher_blocks_close(
        self, period_service, voucher_service, june, org, test_actor_id,
    ):
        voucher = voucher_service.create(
            org.company_id, JUNE_10, VoucherType.RECEIPT, balanced(), test_actor_id,
        )
        voucher_service.submit(voucher.voucher_id, test_actor_id)
        with pytest.raises(PeriodHasOpenVouchersError):
            period_service.close(june.period_id, test_actor_id)

    def test_posted_and_void_vouchers_allow_close(
        self, period_service, voucher_service, june, org, test_actor_id,
    ):
        posted = voucher_service.create(
            org.company_id, JUNE_10, VoucherType.RECEIPT, balanced(), test_actor_id,
        )
        voucher_service.post(posted.voucher_id, test_actor_id)
        voided = voucher_service.create(
            org.company_id, JUNE_10, VoucherType.PAYMENT, balanced(), test_actor_id,
        )
        voucher_service.void(voided.voucher_id, test_actor_id)

        assert period_service.close(june.period_id, test_actor_id).status == PeriodStatus.CLOSED

    def test_close_twice_refused(self, period_service, june, test_actor_id):
        period_service.close(june.period_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            period_service.close(june.period_id, test_actor_id)

    def test_refusal_logged(self, captured_logs, period_service, june, test_actor_id):
        period_service.close(june.period_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            period_service.close(june.period_id, test_actor_id)
        refused = [r for r in captured_logs() if r["message"] == "period_transition_refused"]
        assert refused and refused[0]["level"] == "WARNING"
        assert refused[0]["period"] == "2024-06"

    def test_unknown_period(self, period_service, test_actor_id):
        with pytest.raises(PeriodNotFoundError):
            period_service.close(uuid4(), test_actor_id)


class TestReopenAndLock:
    def test_reopen_clears_close_stamp(self, period_service, june, test_actor_id):
        period_service.close(june.period_id, test_actor_id)
        reopened = period_service.reopen(june.period_id, test_actor_id)
        assert reopened.status == PeriodStatus.OPEN
        assert reopened.closed_at is None
        assert reopened.closed_by_id is None

    def test_reopen_open_period_refused(self, period_service, june, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            period_service.reopen(june.period_id, test_actor_id)

    def test_lock_requires_closed(self, period_service, june, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            period_service.lock(june.period_id, test_actor_id)

    def test_locked_is_permanent(self, period_service, june, test_actor_id):
        period_service.close(june.period_id, test_actor_id)
        locked = period_service.lock(june.period_id, test_actor_id)
        assert locked.status == PeriodStatus.LOCKED

        with pytest.raises(PeriodLockedError):
            period_service.reopen(june.period_id, test_actor_id)
        with pytest.raises(PeriodLockedError):
            period_service.close(june.period_id, test_actor_id)
        with pytest.raises(PeriodLockedError):
            period_service.lock(june.period_id, test_actor_id)
        assert period_service.get_period(june.period_id).status == PeriodStatus.LOCKED

    def test_orm_refuses_leaving_locked(self, session, period_service, june, test_actor_id):
        period_service.close(june.period_id, test_actor_id)
        period_service.lock(june.period_id, test_actor_id)

        row = session.get(AccountingPeriodModel, june.period_id)
        row.status = PeriodStatus.OPEN.value
        with pytest.raises(PeriodLockedError):
            session.flush()


class TestQueries:
    def test_current_period_follows_clock(self, period_service, open_year, org, deterministic_clock):
        assert period_service.get_current(org.company_id).label == "2024-06"
        deterministic_clock.set_date(date(2024, 11, 30))
        assert period_service.get_current(org.company_id).label == "2024-11"

    def test_no_period_outside_initialized_years(self, period_service, open_year, org):
        assert period_service.find_period_for_date(org.company_id, date(2023, 12, 31)) is None

    def test_month_edges(self, period_service, open_year, org):
        assert period_service.find_period_for_date(org.company_id, date(2024, 3, 1)).period == 3
        assert period_service.find_period_for_date(org.company_id, date(2024, 3, 31)).period == 3

    def test_list_by_year(self, period_service, open_year, org, test_actor_id):
        period_service.initialize_year(org.company_id, 2025, test_actor_id)
        assert len(period_service.list_periods(org.company_id)) == 24
        labels = [p.label for p in period_service.list_periods(org.company_id, year=2025)]
        assert labels[0] == "2025-01"
        assert len(labels) == 12
