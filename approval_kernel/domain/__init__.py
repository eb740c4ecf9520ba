"""
Pure domain layer.

Value objects, transition tables and pure functions with NO dependencies on
the ORM, the database or I/O.  Time enters only through an injected Clock.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.delegation import (
    DelegationGrant,
    covering_grants,
    grant_covers,
    resolve_effective_approvers,
)
from approval_kernel.domain.document import (
    Capability,
    DocumentAction,
    DocumentRecord,
    DocumentStatus,
    DocumentStore,
    ModuleType,
    allowed_actions,
    is_terminal,
    next_status,
    reachable_statuses,
)
from approval_kernel.domain.flow import (
    MAX_APPROVAL_STEPS,
    ApproverRule,
    ApproverRuleType,
    ExecutionStatus,
    FlowApprovalInfo,
    FlowDecision,
    FlowExecutionInfo,
    FlowTemplateInfo,
    PendingApproval,
    StepDefinition,
    validate_steps,
)
from approval_kernel.domain.period import (
    PeriodAction,
    PeriodStatus,
    VoucherLine,
    VoucherOperation,
    VoucherStatus,
    VoucherType,
    can_mutate,
    check_mutation,
    is_balanced,
)
from approval_kernel.domain.resolution import (
    ApproverResolver,
    ApproverResolverRegistry,
    OrgDirectory,
    ResolutionContext,
)

__all__ = [
    "ApproverResolver",
    "ApproverResolverRegistry",
    "ApproverRule",
    "ApproverRuleType",
    "Capability",
    "Clock",
    "DelegationGrant",
    "DeterministicClock",
    "DocumentAction",
    "DocumentRecord",
    "DocumentStatus",
    "DocumentStore",
    "ExecutionStatus",
    "FlowApprovalInfo",
    "FlowDecision",
    "FlowExecutionInfo",
    "FlowTemplateInfo",
    "MAX_APPROVAL_STEPS",
    "ModuleType",
    "OrgDirectory",
    "PendingApproval",
    "PeriodAction",
    "PeriodStatus",
    "ResolutionContext",
    "StepDefinition",
    "SystemClock",
    "VoucherLine",
    "VoucherOperation",
    "VoucherStatus",
    "VoucherType",
    "allowed_actions",
    "can_mutate",
    "check_mutation",
    "covering_grants",
    "grant_covers",
    "is_balanced",
    "is_terminal",
    "next_status",
    "reachable_statuses",
    "resolve_effective_approvers",
    "validate_steps",
]
