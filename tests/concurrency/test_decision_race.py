"""
Concurrent decision, start and period-close races.

Each worker thread gets its own session from ``session_factory`` and really
commits.  On SQLite the engine begins every transaction with BEGIN
IMMEDIATE, so writers are serialized; on PostgreSQL (DATABASE_URL) the
row locks and the write-once UPDATE do the work.

Verifies:
- N approvers racing on one step: exactly one decision is recorded, every
  other caller gets AlreadyDecidedError.
- N submissions of one document: exactly one running execution.
- Period close racing voucher creation: either the voucher exists and the
  period is still OPEN, or the period closed and the voucher was refused.
- N vouchers created at once in one company: every number distinct, the
  counter ends at N.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest

from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.document import DocumentStatus, ModuleType
from approval_kernel.domain.flow import ExecutionStatus, FlowDecision
from approval_kernel.domain.period import PeriodStatus, VoucherLine, VoucherType
from approval_kernel.exceptions import (
    AlreadyDecidedError,
    ExecutionAlreadyRunningError,
    PeriodHasOpenVouchersError,
    PeriodNotOpenError,
)
from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.document_service import DocumentService
from approval_kernel.services.flow_engine import FlowEngine
from approval_kernel.services.period_service import PeriodService
from approval_kernel.services.sequence_service import VoucherSequenceService
from approval_kernel.services.voucher_service import VoucherService

pytestmark = pytest.mark.slow_locks

WORKERS = 8
BARRIER_TIMEOUT = 30


def _draft_document(session_factory, org, clock):
    session = session_factory()
    try:
        doc = DocumentService(session, clock).create_document(
            ModuleType.LEAVE, org.company_id, org.applicant_id, title="race",
        )
        session.commit()
        return doc
    finally:
        session.close()


def _run_workers(count, work):
    barrier = Barrier(count, timeout=BARRIER_TIMEOUT)

    def _guarded(index):
        barrier.wait()
        return work(index)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(_guarded, range(count)))


class TestDecisionRace:
    def test_exactly_one_decision_wins(self, session_factory, org, org_directory):
        clock = DeterministicClock()
        doc = _draft_document(session_factory, org, clock)

        session = session_factory()
        execution = FlowEngine(session, org_directory, clock=clock).start(
            doc.document_id, org.applicant_id,
        )
        session.commit()
        session.close()

        def decide(index):
            worker_session = session_factory()
            engine = FlowEngine(worker_session, org_directory, clock=DeterministicClock())
            decision = FlowDecision.APPROVED if index % 2 == 0 else FlowDecision.REJECTED
            try:
                engine.decide(
                    execution.execution_id, 1, org.supervisor_id, decision, f"worker {index}",
                )
                worker_session.commit()
                return decision
            except AlreadyDecidedError:
                worker_session.rollback()
                return "already_decided"
            finally:
                worker_session.close()

        outcomes = _run_workers(WORKERS, decide)

        winners = [o for o in outcomes if o != "already_decided"]
        assert len(winners) == 1
        assert outcomes.count("already_decided") == WORKERS - 1

        check = session_factory()
        try:
            final = FlowEngine(check, org_directory, clock=clock).get_execution(execution.execution_id)
            (approval,) = final.approvals
            assert approval.decision == winners[0]
            expected = (
                ExecutionStatus.APPROVED
                if winners[0] == FlowDecision.APPROVED
                else ExecutionStatus.REJECTED
            )
            assert final.status == expected
        finally:
            check.close()

    def test_principal_and_delegate_race(self, session_factory, org, org_directory):
        clock = DeterministicClock()
        doc = _draft_document(session_factory, org, clock)

        session = session_factory()
        grant = DelegationService(session, clock).create(
            org.supervisor_id, org.delegate_id,
            date(2024, 1, 1), date(2024, 1, 31),
            actor_id=org.supervisor_id,
        )
        execution = FlowEngine(session, org_directory, clock=clock).start(
            doc.document_id, org.applicant_id,
        )
        session.commit()
        session.close()

        def decide(index):
            worker_session = session_factory()
            engine = FlowEngine(worker_session, org_directory, clock=DeterministicClock())
            actor, proxy = (
                (org.supervisor_id, None) if index % 2 == 0 else (org.delegate_id, grant.grant_id)
            )
            try:
                engine.decide(
                    execution.execution_id, 1, actor, FlowDecision.APPROVED,
                    proxy_delegation_id=proxy,
                )
                worker_session.commit()
                return actor
            except AlreadyDecidedError:
                worker_session.rollback()
                return None
            finally:
                worker_session.close()

        outcomes = _run_workers(4, decide)
        assert len([o for o in outcomes if o is not None]) == 1


class TestStartRace:
    def test_one_running_execution(self, session_factory, org, org_directory):
        clock = DeterministicClock()
        doc = _draft_document(session_factory, org, clock)

        def start(index):
            worker_session = session_factory()
            try:
                FlowEngine(worker_session, org_directory, clock=clock).start(
                    doc.document_id, org.applicant_id,
                )
                worker_session.commit()
                return "started"
            except ExecutionAlreadyRunningError:
                worker_session.rollback()
                return "refused"
            finally:
                worker_session.close()

        outcomes = _run_workers(WORKERS, start)
        assert outcomes.count("started") == 1
        assert outcomes.count("refused") == WORKERS - 1

        check = session_factory()
        try:
            stored = DocumentService(check, clock).get_document(doc.document_id)
            assert stored.status == DocumentStatus.PENDING
        finally:
            check.close()


class TestPeriodCloseRace:
    def test_close_versus_voucher_create(self, session_factory, org):
        clock = DeterministicClock()
        actor = uuid4()
        setup = session_factory()
        periods = PeriodService(setup, clock).initialize_year(org.company_id, 2024, actor)
        setup.commit()
        setup.close()
        january = periods[0]

        def work(index):
            worker_session = session_factory()
            try:
                if index == 0:
                    PeriodService(worker_session, clock).close(january.period_id, actor)
                else:
                    VoucherService(worker_session, clock).create(
                        org.company_id, date(2024, 1, 15), VoucherType.RECEIPT,
                        [
                            VoucherLine("1001", debit_amount=Decimal("5")),
                            VoucherLine("4001", credit_amount=Decimal("5")),
                        ],
                        actor,
                    )
                worker_session.commit()
                return "ok"
            except (PeriodHasOpenVouchersError, PeriodNotOpenError) as exc:
                worker_session.rollback()
                return exc.code
            finally:
                worker_session.close()

        outcomes = _run_workers(2, work)

        check = session_factory()
        try:
            status = PeriodService(check, clock).get_period(january.period_id).status
            vouchers = VoucherService(check, clock).list_vouchers(
                org.company_id, period_id=january.period_id,
            )
        finally:
            check.close()

        if status == PeriodStatus.CLOSED:
            assert vouchers == []
            assert outcomes == ["ok", "PERIOD_NOT_OPEN"]
        else:
            assert status == PeriodStatus.OPEN
            assert len(vouchers) == 1
            assert outcomes == ["PERIOD_HAS_OPEN_VOUCHERS", "ok"]


class TestVoucherNumberRace:
    def test_concurrent_creates_get_distinct_numbers(self, session_factory, org):
        clock = DeterministicClock()
        actor = uuid4()
        setup = session_factory()
        PeriodService(setup, clock).initialize_year(org.company_id, 2024, actor)
        setup.commit()
        setup.close()

        def work(index):
            worker_session = session_factory()
            try:
                voucher = VoucherService(worker_session, clock).create(
                    org.company_id, date(2024, index + 1, 15), VoucherType.PAYMENT,
                    [
                        VoucherLine("5001", debit_amount=Decimal("1")),
                        VoucherLine("1001", credit_amount=Decimal("1")),
                    ],
                    actor,
                )
                worker_session.commit()
                return voucher.voucher_no
            finally:
                worker_session.close()

        numbers = _run_workers(WORKERS, work)

        assert len(set(numbers)) == WORKERS
        assert sorted(int(no[-6:]) for no in numbers) == list(range(1, WORKERS + 1))

        check = session_factory()
        try:
            assert VoucherSequenceService(check).current_value(org.company_id) == WORKERS
        finally:
            check.close()
