"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only approval queries: an employee's own pending
    steps, steps they may decide as a delegate, their decision history, and
    execution detail.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - A pending item is the undecided current step of a RUNNING execution.
    - Proxy-pending filters with ``grant_covers``, the same predicate that
      ``FlowEngine.decide`` authorizes with, and reports the grant id to
      pass back as ``proxy_delegation_id``.
    - One proxy item per approval even when several grants cover it.

Failure modes:
    - ExecutionNotFoundError from get_execution().
    - Empty lists when nothing matches.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.delegation import DelegationGrant, grant_covers
from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import (
    ExecutionStatus,
    FlowApprovalInfo,
    FlowExecutionInfo,
    PendingApproval,
)
from approval_kernel.exceptions import ExecutionNotFoundError
from approval_kernel.models.delegation import DelegationGrantModel
from approval_kernel.models.flow import FlowApprovalModel, FlowExecutionModel
from approval_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[FlowApprovalModel]):
    """Queries over flow executions and approval rows."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get_pending(self, employee_id: UUID) -> list[PendingApproval]:
        """Steps currently assigned to ``employee_id``, oldest first."""
        rows = self._open_steps([employee_id])
        return [self._pending(approval, execution) for approval, execution in rows]

    def get_proxy_pending(self, employee_id: UUID, on_date: date) -> list[PendingApproval]:
        """Steps ``employee_id`` may decide on ``on_date`` through a delegation."""
        grants = self._active_grants_to(employee_id, on_date)
        if not grants:
            return []

        principals = sorted({g.principal_id for g in grants}, key=str)
        result = []
        for approval, execution in self._open_steps(principals):
            module_type = ModuleType(execution.module_type)
            for grant in grants:
                if grant_covers(
                    grant,
                    approval.assigned_approver_id,
                    module_type,
                    execution.company_id,
                    on_date,
                ):
                    result.append(self._pending(approval, execution, grant.grant_id))
                    break
        return result

    def get_history(self, employee_id: UUID) -> list[FlowApprovalInfo]:
        """Decisions made by ``employee_id``, directly or as a delegate, newest first."""
        rows = self.session.execute(
            select(FlowApprovalModel)
            .where(FlowApprovalModel.decided_by_id == employee_id)
            .order_by(FlowApprovalModel.decided_at.desc(), FlowApprovalModel.id)
        ).scalars().all()
        return [a.to_dto() for a in rows]

    def get_execution(self, execution_id: UUID) -> FlowExecutionInfo:
        execution = self.session.get(FlowExecutionModel, execution_id)
        if execution is None:
            raise ExecutionNotFoundError(str(execution_id))
        return execution.to_dto()

    def executions_for_document(self, document_id: UUID) -> list[FlowExecutionInfo]:
        """Every flow run for a document, oldest first (resubmissions included)."""
        rows = self.session.execute(
            select(FlowExecutionModel)
            .where(FlowExecutionModel.document_id == document_id)
            .order_by(FlowExecutionModel.created_at, FlowExecutionModel.id)
        ).scalars().all()
        return [e.to_dto() for e in rows]

    def _open_steps(
        self,
        approver_ids: list[UUID],
    ) -> list[tuple[FlowApprovalModel, FlowExecutionModel]]:
        stmt = (
            select(FlowApprovalModel, FlowExecutionModel)
            .join(FlowExecutionModel, FlowApprovalModel.execution_id == FlowExecutionModel.id)
            .where(
                FlowApprovalModel.assigned_approver_id.in_(approver_ids),
                FlowApprovalModel.decision.is_(None),
                FlowApprovalModel.step_order == FlowExecutionModel.current_step_order,
                FlowExecutionModel.status == ExecutionStatus.RUNNING.value,
            )
            .order_by(FlowApprovalModel.activated_at, FlowApprovalModel.id)
        )
        return [(row[0], row[1]) for row in self.session.execute(stmt).all()]

    def _active_grants_to(self, delegate_id: UUID, on_date: date) -> list[DelegationGrant]:
        rows = self.session.execute(
            select(DelegationGrantModel)
            .where(
                DelegationGrantModel.delegate_id == delegate_id,
                DelegationGrantModel.is_active.is_(True),
                DelegationGrantModel.start_date <= on_date,
                DelegationGrantModel.end_date >= on_date,
            )
            .order_by(DelegationGrantModel.start_date, DelegationGrantModel.id)
        ).scalars().all()
        return [g.to_dto() for g in rows]

    @staticmethod
    def _pending(
        approval: FlowApprovalModel,
        execution: FlowExecutionModel,
        grant_id: UUID | None = None,
    ) -> PendingApproval:
        return PendingApproval(
            approval=approval.to_dto(),
            document_id=execution.document_id,
            module_type=ModuleType(execution.module_type),
            company_id=execution.company_id,
            applicant_id=execution.applicant_id,
            proxy_delegation_id=grant_id,
        )
