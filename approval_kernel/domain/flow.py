"""
Flow domain types (``approval_kernel.domain.flow``).

Responsibility
--------------
Pure value objects for approval flows: the rule that picks a step's
approver, step definitions, template/execution/approval snapshots and the
step-list validation applied before a template is stored.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A template has 1..``max_steps`` steps whose orders are exactly 1..N.
* A POSITION step names a position; a SPECIFIC_EMPLOYEE step names an
  employee.
* ``FlowApprovalInfo.decision`` is None until decided and never changes
  afterwards (enforced by the store, mirrored by ``is_decided``).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from approval_kernel.domain.document import ModuleType
from approval_kernel.exceptions import InvalidFlowTemplateError

MAX_APPROVAL_STEPS = 4
DEFAULT_STEP_NAME = "Default approval"


class ExecutionStatus(str, Enum):
    """Flow execution lifecycle.  Only RUNNING is non-terminal."""

    RUNNING = "running"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class FlowDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ApproverRuleType(str, Enum):
    """Built-in approver resolution rules.

    Rule types are plain strings at the registry level, so additional rules
    can be registered without extending this enum.
    """

    SPECIFIC_EMPLOYEE = "specific_employee"
    POSITION = "position"
    DIRECT_SUPERVISOR = "direct_supervisor"
    DEPARTMENT_HEAD = "department_head"


@dataclass(frozen=True)
class ApproverRule:
    """How a step's approver is found when the step activates."""

    rule_type: str
    employee_id: UUID | None = None
    position_id: UUID | None = None

    def __post_init__(self) -> None:
        # Enum members and their string values are interchangeable here.
        if isinstance(self.rule_type, Enum):
            object.__setattr__(self, "rule_type", self.rule_type.value)

    @classmethod
    def specific_employee(cls, employee_id: UUID) -> ApproverRule:
        return cls(ApproverRuleType.SPECIFIC_EMPLOYEE.value, employee_id=employee_id)

    @classmethod
    def position(cls, position_id: UUID) -> ApproverRule:
        return cls(ApproverRuleType.POSITION.value, position_id=position_id)

    @classmethod
    def direct_supervisor(cls) -> ApproverRule:
        return cls(ApproverRuleType.DIRECT_SUPERVISOR.value)

    @classmethod
    def department_head(cls) -> ApproverRule:
        return cls(ApproverRuleType.DEPARTMENT_HEAD.value)


@dataclass(frozen=True)
class StepDefinition:
    """One ordered step of a flow template.

    Optional steps (``is_required=False``) whose rule resolves nobody are
    skipped when the flow reaches them.
    """

    order: int
    name: str
    approver_rule: ApproverRule
    is_required: bool = True


def validate_steps(
    template_name: str,
    steps: Iterable[StepDefinition],
    max_steps: int = MAX_APPROVAL_STEPS,
) -> tuple[StepDefinition, ...]:
    """Return the steps sorted by order, or raise InvalidFlowTemplateError."""
    ordered = tuple(sorted(steps, key=lambda s: s.order))
    if not ordered:
        raise InvalidFlowTemplateError(template_name, "at least one step is required")
    if len(ordered) > max_steps:
        raise InvalidFlowTemplateError(
            template_name, f"at most {max_steps} steps allowed, got {len(ordered)}"
        )
    orders = [s.order for s in ordered]
    if orders != list(range(1, len(ordered) + 1)):
        raise InvalidFlowTemplateError(
            template_name, f"step orders must be 1..{len(ordered)}, got {orders}"
        )
    for step in ordered:
        if not step.name or not step.name.strip():
            raise InvalidFlowTemplateError(template_name, f"step {step.order} has no name")
        rule = step.approver_rule
        if rule.rule_type == ApproverRuleType.POSITION and rule.position_id is None:
            raise InvalidFlowTemplateError(
                template_name, f"step {step.order} uses a position rule without a position"
            )
        if rule.rule_type == ApproverRuleType.SPECIFIC_EMPLOYEE and rule.employee_id is None:
            raise InvalidFlowTemplateError(
                template_name, f"step {step.order} uses a specific-employee rule without an employee"
            )
    return ordered


def default_flow_steps(rule: ApproverRule | None = None) -> tuple[StepDefinition, ...]:
    """The implicit single-step flow used when a company has no template."""
    return (
        StepDefinition(
            order=1,
            name=DEFAULT_STEP_NAME,
            approver_rule=rule or ApproverRule.direct_supervisor(),
            is_required=True,
        ),
    )


# =========================================================================
# Snapshots returned to callers
# =========================================================================


@dataclass(frozen=True)
class FlowTemplateInfo:
    template_id: UUID
    company_id: UUID
    module_type: ModuleType
    name: str
    version: int
    is_current: bool
    steps: tuple[StepDefinition, ...]
    description: str = ""
    created_by_id: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class FlowApprovalInfo:
    """One step's approval record."""

    approval_id: UUID
    execution_id: UUID
    step_order: int
    step_name: str
    assigned_approver_id: UUID
    decision: FlowDecision | None = None
    decided_by_id: UUID | None = None
    proxy_delegation_id: UUID | None = None
    comment: str = ""
    activated_at: datetime | None = None
    decided_at: datetime | None = None

    @property
    def is_decided(self) -> bool:
        return self.decision is not None

    @property
    def decided_by_proxy(self) -> bool:
        return self.proxy_delegation_id is not None


@dataclass(frozen=True)
class FlowExecutionInfo:
    """A flow run with its approval rows (in step order)."""

    execution_id: UUID
    template_id: UUID | None
    document_id: UUID
    module_type: ModuleType
    applicant_id: UUID
    company_id: UUID
    current_step_order: int
    status: ExecutionStatus
    created_at: datetime | None = None
    completed_at: datetime | None = None
    approvals: tuple[FlowApprovalInfo, ...] = ()

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    def approval_for(self, step_order: int) -> FlowApprovalInfo | None:
        for approval in self.approvals:
            if approval.step_order == step_order:
                return approval
        return None


@dataclass(frozen=True)
class PendingApproval:
    """An undecided current step, as seen by someone who may decide it.

    ``proxy_delegation_id`` is set for proxy-pending items; pass it back to
    ``decide()`` unchanged.
    """

    approval: FlowApprovalInfo
    document_id: UUID
    module_type: ModuleType
    company_id: UUID
    applicant_id: UUID
    proxy_delegation_id: UUID | None = None

    @property
    def execution_id(self) -> UUID:
        return self.approval.execution_id

    @property
    def step_order(self) -> int:
        return self.approval.step_order

    @property
    def principal_id(self) -> UUID:
        return self.approval.assigned_approver_id
