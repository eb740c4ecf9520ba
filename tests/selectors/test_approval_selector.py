"""
ApprovalSelector query tests.

Verifies:
- Pending: only the current, undecided step of a running flow shows up,
  and only for its assignee.
- Proxy pending: steps of principals whose active grant to the caller
  covers the request's module and company on the given date.  Each item
  carries the grant id to pass back to decide().
- History: decisions made by the caller, including proxy decisions.
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import (
    ApproverRule,
    ExecutionStatus,
    FlowDecision,
    StepDefinition,
)
from approval_kernel.exceptions import ExecutionNotFoundError
from approval_kernel.selectors.approval_selector import ApprovalSelector

TODAY = date(2024, 6, 15)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def selector(session):
    return ApprovalSelector(session)


@pytest.fixture
def start(flow_engine, make_document, org):
    def _start(module_type=ModuleType.LEAVE):
        doc = make_document(module_type)
        return flow_engine.start(doc.document_id, org.applicant_id)

    return _start


@pytest.fixture
def leave_grant(delegation_service, org):
    return delegation_service.create(
        principal_id=org.supervisor_id,
        delegate_id=org.delegate_id,
        start_date=TODAY - timedelta(days=2),
        end_date=TODAY + timedelta(days=2),
        actor_id=org.supervisor_id,
        request_types=[ModuleType.LEAVE],
    )


# ---------------------------------------------------------------------------
# Pending
# ---------------------------------------------------------------------------


class TestPending:
    def test_assignee_sees_current_step(self, selector, start, org):
        info = start()
        (item,) = selector.get_pending(org.supervisor_id)
        assert item.approval.execution_id == info.execution_id
        assert item.document_id == info.document_id
        assert item.module_type == ModuleType.LEAVE
        assert item.applicant_id == org.applicant_id
        assert item.proxy_delegation_id is None

    def test_others_see_nothing(self, selector, start, org):
        start()
        assert selector.get_pending(org.department_head_id) == []
        assert selector.get_pending(org.applicant_id) == []

    def test_decided_step_leaves_pending(self, selector, start, flow_engine, org):
        info = start()
        flow_engine.decide(info.execution_id, 1, org.supervisor_id, FlowDecision.APPROVED)
        assert selector.get_pending(org.supervisor_id) == []

    def test_next_step_moves_to_next_approver(
        self, selector, start, flow_engine, org, template_service, test_actor_id,
    ):
        template_service.upsert_template(
            org.company_id, ModuleType.LEAVE, "Leave",
            [
                StepDefinition(1, "Supervisor", ApproverRule.direct_supervisor()),
                StepDefinition(2, "Finance", ApproverRule.position(org.finance_position_id)),
            ],
            test_actor_id,
        )
        info = start()
        assert selector.get_pending(org.finance_manager_id) == []

        flow_engine.decide(info.execution_id, 1, org.supervisor_id, FlowDecision.APPROVED)
        (item,) = selector.get_pending(org.finance_manager_id)
        assert item.approval.step_order == 2

    def test_cancelled_flow_not_pending(self, selector, start, flow_engine, org):
        info = start()
        flow_engine.cancel(info.execution_id, org.applicant_id)
        assert selector.get_pending(org.supervisor_id) == []

    def test_several_requests(self, selector, start, org):
        first = start(ModuleType.LEAVE)
        second = start(ModuleType.OVERTIME)
        pending = selector.get_pending(org.supervisor_id)
        assert {p.approval.execution_id for p in pending} == {first.execution_id, second.execution_id}


# ---------------------------------------------------------------------------
# Proxy pending
# ---------------------------------------------------------------------------


class TestProxyPending:
    def test_only_covered_modules(self, selector, start, org, leave_grant):
        leave = start(ModuleType.LEAVE)
        start(ModuleType.EXPENSE)

        (item,) = selector.get_proxy_pending(org.delegate_id, TODAY)
        assert item.approval.execution_id == leave.execution_id
        assert item.approval.assigned_approver_id == org.supervisor_id
        assert item.proxy_delegation_id == leave_grant.grant_id
        assert selector.get_pending(org.delegate_id) == []

    def test_outside_window(self, selector, start, org, leave_grant):
        start()
        assert selector.get_proxy_pending(org.delegate_id, leave_grant.end_date + timedelta(days=1)) == []
        assert selector.get_proxy_pending(org.delegate_id, leave_grant.start_date - timedelta(days=1)) == []

    def test_inactive_grant(self, selector, start, org, leave_grant, delegation_service):
        start()
        delegation_service.update(leave_grant.grant_id, org.supervisor_id, is_active=False)
        assert selector.get_proxy_pending(org.delegate_id, TODAY) == []

    def test_company_scope(self, selector, start, org, delegation_service):
        delegation_service.create(
            org.supervisor_id, org.delegate_id, TODAY, TODAY,
            actor_id=org.supervisor_id, company_ids=[uuid4()],
        )
        start()
        assert selector.get_proxy_pending(org.delegate_id, TODAY) == []

    def test_one_item_per_approval_with_overlapping_grants(
        self, selector, start, org, leave_grant, delegation_service,
    ):
        delegation_service.create(
            org.supervisor_id, org.delegate_id, TODAY, TODAY + timedelta(days=30),
            actor_id=org.supervisor_id,
        )
        start()
        (item,) = selector.get_proxy_pending(org.delegate_id, TODAY)
        # Grants are tried in start_date order.
        assert item.proxy_delegation_id == leave_grant.grant_id

    def test_proxy_item_can_be_decided(self, selector, start, flow_engine, org, leave_grant):
        start()
        (item,) = selector.get_proxy_pending(org.delegate_id, TODAY)
        info = flow_engine.decide(
            item.approval.execution_id, item.approval.step_order, org.delegate_id,
            FlowDecision.APPROVED, proxy_delegation_id=item.proxy_delegation_id,
        )
        assert info.status == ExecutionStatus.APPROVED
        assert selector.get_proxy_pending(org.delegate_id, TODAY) == []


# ---------------------------------------------------------------------------
# History and executions
# ---------------------------------------------------------------------------


class TestHistory:
    def test_direct_and_proxy_decisions(self, selector, start, flow_engine, org, leave_grant):
        direct = start(ModuleType.EXPENSE)
        flow_engine.decide(direct.execution_id, 1, org.supervisor_id, FlowDecision.REJECTED)
        proxied = start(ModuleType.LEAVE)
        flow_engine.decide(
            proxied.execution_id, 1, org.delegate_id, FlowDecision.APPROVED,
            proxy_delegation_id=leave_grant.grant_id,
        )

        (own,) = selector.get_history(org.supervisor_id)
        assert own.execution_id == direct.execution_id
        assert own.decision == FlowDecision.REJECTED

        (by_proxy,) = selector.get_history(org.delegate_id)
        assert by_proxy.execution_id == proxied.execution_id
        assert by_proxy.proxy_delegation_id == leave_grant.grant_id

    def test_undecided_not_in_history(self, selector, start, org):
        start()
        assert selector.get_history(org.supervisor_id) == []


class TestExecutions:
    def test_get_execution(self, selector, start):
        info = start()
        assert selector.get_execution(info.execution_id).execution_id == info.execution_id

    def test_unknown_execution(self, selector):
        with pytest.raises(ExecutionNotFoundError):
            selector.get_execution(uuid4())

    def test_executions_for_document(self, selector, start, flow_engine, org):
        info = start()
        flow_engine.cancel(info.execution_id, org.applicant_id)
        (only,) = selector.executions_for_document(info.document_id)
        assert only.status == ExecutionStatus.CANCELLED
