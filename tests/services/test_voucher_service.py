"""
Tests for VoucherService -- vouchers guarded by their accounting period.

Covers:
- create(): numbering per company, period resolution, closed and missing
  periods refused, unbalanced drafts allowed
- update(): DRAFT only, moving the date re-checks the target period,
  replacing lines recomputes totals
- delete(): DRAFT in an OPEN period only
- submit() / post(): balance required, status unchanged on refusal
- void(): allowed in any period status, never twice
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.period import VoucherLine, VoucherStatus, VoucherType
from approval_kernel.exceptions import (
    InvalidTransitionError,
    InvalidVoucherLineError,
    PeriodNotFoundError,
    PeriodNotOpenError,
    UnbalancedVoucherError,
    VoucherNotFoundError,
)

JUNE_10 = date(2024, 6, 10)
JULY_5 = date(2024, 7, 5)


def lines(debit="100.00", credit="100.00"):
    return [
        VoucherLine("1001", debit_amount=Decimal(debit), description="cash"),
        VoucherLine("4001", credit_amount=Decimal(credit), description="revenue"),
    ]


@pytest.fixture
def periods(open_year):
    return {p.period: p for p in open_year}


@pytest.fixture
def create(voucher_service, org, test_actor_id, open_year):
    def _create(day=JUNE_10, voucher_lines=None, voucher_type=VoucherType.RECEIPT):
        return voucher_service.create(
            org.company_id, day, voucher_type, voucher_lines or lines(), test_actor_id,
        )

    return _create


class TestCreate:
    def test_draft_in_covering_period(self, create, periods):
        voucher = create()
        assert voucher.status == VoucherStatus.DRAFT
        assert voucher.period_id == periods[6].period_id
        assert voucher.total_debit == Decimal("100.00")
        assert voucher.is_balanced
        assert [line.line_no for line in voucher.lines] == [1, 2]

    def test_numbering_is_sequential_per_company(self, create):
        first = create()
        second = create()
        july = create(JULY_5)
        assert first.voucher_no == "V202406000001"
        assert second.voucher_no == "V202406000002"
        assert july.voucher_no == "V202407000003"

    def test_deleted_draft_number_not_reused(self, voucher_service, create, test_actor_id):
        create()
        second = create(date(2024, 6, 2))
        voucher_service.delete(second.voucher_id, test_actor_id)

        third = create(date(2024, 6, 3))
        assert third.voucher_no == "V202406000003"
        assert third.voucher_no != second.voucher_no

    def test_numbering_independent_per_company(self, voucher_service, period_service, create, test_actor_id):
        other_company = uuid4()
        period_service.initialize_year(other_company, 2024, test_actor_id)
        create()
        other = voucher_service.create(other_company, JUNE_10, VoucherType.RECEIPT, lines(), test_actor_id)
        assert other.voucher_no == "V202406000001"

    def test_refused_create_consumes_no_number(self, create, period_service, periods, test_actor_id):
        period_service.close(periods[5].period_id, test_actor_id)
        with pytest.raises(PeriodNotOpenError):
            create(date(2024, 5, 20))
        assert create().voucher_no == "V202406000001"

    def test_unbalanced_draft_allowed(self, create):
        voucher = create(voucher_lines=lines("100.00", "90.00"))
        assert not voucher.is_balanced

    def test_invalid_lines_refused(self, create):
        with pytest.raises(InvalidVoucherLineError):
            create(voucher_lines=[VoucherLine("1001", debit_amount=Decimal("1"))])

    def test_closed_period_refused(self, create, period_service, periods, test_actor_id, captured_logs):
        period_service.close(periods[6].period_id, test_actor_id)
        with pytest.raises(PeriodNotOpenError) as exc_info:
            create()
        assert exc_info.value.period_label == "2024-06"
        assert any(r["message"] == "voucher_mutation_refused" for r in captured_logs())

    def test_no_period_for_date(self, create):
        with pytest.raises(PeriodNotFoundError):
            create(date(2030, 1, 1))


class TestUpdate:
    def test_replace_lines_recomputes_totals(self, voucher_service, create, test_actor_id):
        voucher = create()
        updated = voucher_service.update(
            voucher.voucher_id, test_actor_id,
            lines=[
                VoucherLine("1001", debit_amount=Decimal("60")),
                VoucherLine("1002", debit_amount=Decimal("40")),
                VoucherLine("4001", credit_amount=Decimal("100")),
            ],
            description="split",
        )
        assert len(updated.lines) == 3
        assert updated.total_debit == Decimal("100")
        assert updated.description == "split"

    def test_move_to_other_open_period_keeps_number(self, voucher_service, create, periods, test_actor_id):
        voucher = create()
        moved = voucher_service.update(voucher.voucher_id, test_actor_id, voucher_date=JULY_5)
        assert moved.period_id == periods[7].period_id
        assert moved.voucher_date == JULY_5
        assert moved.voucher_no == voucher.voucher_no

    def test_move_into_closed_period_refused(
        self, voucher_service, period_service, create, periods, test_actor_id,
    ):
        voucher = create()
        period_service.close(periods[5].period_id, test_actor_id)
        with pytest.raises(PeriodNotOpenError):
            voucher_service.update(voucher.voucher_id, test_actor_id, voucher_date=date(2024, 5, 20))

    def test_posted_voucher_not_editable(self, voucher_service, create, test_actor_id):
        voucher = create()
        voucher_service.post(voucher.voucher_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            voucher_service.update(voucher.voucher_id, test_actor_id, description="late edit")

    def test_unknown_voucher(self, voucher_service, test_actor_id):
        with pytest.raises(VoucherNotFoundError):
            voucher_service.update(uuid4(), test_actor_id, description="x")


class TestDelete:
    def test_delete_draft(self, voucher_service, create, test_actor_id):
        voucher = create()
        voucher_service.delete(voucher.voucher_id, test_actor_id)
        with pytest.raises(VoucherNotFoundError):
            voucher_service.get(voucher.voucher_id)

    def test_pending_voucher_not_deletable(self, voucher_service, create, test_actor_id):
        voucher = create()
        voucher_service.submit(voucher.voucher_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            voucher_service.delete(voucher.voucher_id, test_actor_id)


class TestStatusMoves:
    def test_submit_then_post(self, voucher_service, create, test_actor_id):
        voucher = create()
        assert voucher_service.submit(voucher.voucher_id, test_actor_id).status == VoucherStatus.PENDING
        posted = voucher_service.post(voucher.voucher_id, test_actor_id)
        assert posted.status == VoucherStatus.POSTED
        assert posted.posted_by_id == test_actor_id
        assert posted.posted_at is not None

    @pytest.mark.parametrize("move", ["submit", "post"])
    def test_unbalanced_refused_and_status_kept(self, voucher_service, create, test_actor_id, move):
        voucher = create(voucher_lines=lines("100.00", "99.99"))
        with pytest.raises(UnbalancedVoucherError):
            getattr(voucher_service, move)(voucher.voucher_id, test_actor_id)
        assert voucher_service.get(voucher.voucher_id).status == VoucherStatus.DRAFT

    def test_void_posted_voucher_in_closed_period(
        self, voucher_service, period_service, create, periods, test_actor_id,
    ):
        voucher = create()
        voucher_service.post(voucher.voucher_id, test_actor_id)
        period_service.close(periods[6].period_id, test_actor_id)

        voided = voucher_service.void(voucher.voucher_id, test_actor_id)
        assert voided.status == VoucherStatus.VOID
        assert voided.voided_at is not None

    def test_void_in_locked_period(
        self, voucher_service, period_service, create, periods, test_actor_id,
    ):
        voucher = create()
        voucher_service.post(voucher.voucher_id, test_actor_id)
        period_service.close(periods[6].period_id, test_actor_id)
        period_service.lock(periods[6].period_id, test_actor_id)
        assert voucher_service.void(voucher.voucher_id, test_actor_id).status == VoucherStatus.VOID

    def test_void_twice_refused(self, voucher_service, create, test_actor_id):
        voucher = create()
        voucher_service.void(voucher.voucher_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            voucher_service.void(voucher.voucher_id, test_actor_id)


class TestQueries:
    def test_list_filters(self, voucher_service, create, periods, org, test_actor_id):
        first = create()
        create(JULY_5)
        voucher_service.post(first.voucher_id, test_actor_id)

        june_only = voucher_service.list_vouchers(org.company_id, period_id=periods[6].period_id)
        assert [v.voucher_id for v in june_only] == [first.voucher_id]
        drafts = voucher_service.list_vouchers(org.company_id, status=VoucherStatus.DRAFT)
        assert [v.voucher_date for v in drafts] == [JULY_5]
        assert len(voucher_service.list_vouchers(org.company_id)) == 2
