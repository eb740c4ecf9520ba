"""ApproverResolverRegistry -- rule-type to approver-resolution strategy dispatch.

A step's approver is resolved when the step activates, not when the template
is written, so org-chart changes between steps are picked up.  Each rule type
has one resolver strategy; adding a rule means registering a strategy, not
editing the flow engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Protocol
from uuid import UUID

from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import ApproverRule, ApproverRuleType
from approval_kernel.exceptions import ApprovalKernelError


class OrgDirectory(Protocol):
    """Identity / org-chart collaborator.  Each lookup returns None when unknown."""

    def resolve_supervisor(self, employee_id: UUID) -> UUID | None:
        ...

    def resolve_position_holder(self, position_id: UUID, company_id: UUID) -> UUID | None:
        ...

    def resolve_department_head(self, employee_id: UUID) -> UUID | None:
        ...


@dataclass(frozen=True)
class ResolutionContext:
    """Facts about the flow a resolver may look at."""

    applicant_id: UUID
    company_id: UUID
    module_type: ModuleType
    document_id: UUID


class ApproverResolver(ABC):
    """Strategy resolving one rule type to an employee id (or None)."""

    rule_type: ClassVar[str]

    @abstractmethod
    def resolve(
        self,
        rule: ApproverRule,
        context: ResolutionContext,
        directory: OrgDirectory,
    ) -> UUID | None:
        ...


class SpecificEmployeeResolver(ApproverResolver):
    rule_type = ApproverRuleType.SPECIFIC_EMPLOYEE.value

    def resolve(self, rule, context, directory):
        return rule.employee_id


class PositionResolver(ApproverResolver):
    """Current holder of a position within the applicant's company."""

    rule_type = ApproverRuleType.POSITION.value

    def resolve(self, rule, context, directory):
        if rule.position_id is None:
            return None
        return directory.resolve_position_holder(rule.position_id, context.company_id)


class DirectSupervisorResolver(ApproverResolver):
    rule_type = ApproverRuleType.DIRECT_SUPERVISOR.value

    def resolve(self, rule, context, directory):
        return directory.resolve_supervisor(context.applicant_id)


class DepartmentHeadResolver(ApproverResolver):
    rule_type = ApproverRuleType.DEPARTMENT_HEAD.value

    def resolve(self, rule, context, directory):
        return directory.resolve_department_head(context.applicant_id)


class ResolverNotFoundError(ApprovalKernelError):
    """No resolver strategy registered for a rule type."""

    code: str = "RESOLVER_NOT_FOUND"

    def __init__(self, rule_type: str):
        self.rule_type = rule_type
        super().__init__(f"No approver resolver registered for rule type: {rule_type}")


def _key(rule_type) -> str:
    return rule_type.value if isinstance(rule_type, Enum) else str(rule_type)


class ApproverResolverRegistry:
    """Registry of approver resolver strategies, keyed by rule type."""

    _resolvers: ClassVar[dict[str, ApproverResolver]] = {}

    @classmethod
    def register(cls, resolver: ApproverResolver) -> None:
        rule_type = _key(resolver.rule_type)
        if rule_type in cls._resolvers:
            existing = cls._resolvers[rule_type]
            raise ValueError(
                f"Resolver already registered for {rule_type}: "
                f"{existing.__class__.__name__}"
            )
        cls._resolvers[rule_type] = resolver

    @classmethod
    def unregister(cls, rule_type: str) -> None:
        cls._resolvers.pop(_key(rule_type), None)

    @classmethod
    def get(cls, rule_type: str) -> ApproverResolver:
        key = _key(rule_type)
        if key not in cls._resolvers:
            raise ResolverNotFoundError(key)
        return cls._resolvers[key]

    @classmethod
    def has_resolver(cls, rule_type: str) -> bool:
        return _key(rule_type) in cls._resolvers

    @classmethod
    def list_rule_types(cls) -> list[str]:
        return sorted(cls._resolvers)

    @classmethod
    def resolve(
        cls,
        rule: ApproverRule,
        context: ResolutionContext,
        directory: OrgDirectory,
    ) -> UUID | None:
        """Resolve ``rule`` with the registered strategy for its type."""
        return cls.get(rule.rule_type).resolve(rule, context, directory)


for _resolver in (
    SpecificEmployeeResolver(),
    PositionResolver(),
    DirectSupervisorResolver(),
    DepartmentHeadResolver(),
):
    ApproverResolverRegistry.register(_resolver)
