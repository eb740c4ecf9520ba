"""
ApprovalConfiguration schema.

Frozen dataclasses that the YAML configuration set is parsed into.  The
kernel never sees these types; ``approval_config.bridges`` turns them into
kernel inputs (approver rules, step definitions, engine parameters).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ApproverRuleDef:
    """How a step finds its approver."""

    rule_type: str  # specific_employee, position, direct_supervisor, department_head
    employee_id: UUID | None = None
    position_id: UUID | None = None


@dataclass(frozen=True)
class StepDef:
    order: int
    name: str
    rule: ApproverRuleDef
    is_required: bool = True


@dataclass(frozen=True)
class FlowTemplateDef:
    """A flow template to install for one (company, module type)."""

    company_id: UUID
    module_type: str
    name: str
    steps: tuple[StepDef, ...]
    description: str = ""


@dataclass(frozen=True)
class EngineSettings:
    max_approval_steps: int = 4
    # module_type -> rule used by the implicit single-step flow
    default_rules: tuple[tuple[str, ApproverRuleDef], ...] = ()
    cc_employee_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///approval.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class ApprovalConfiguration:
    """The whole configuration set plus its content checksum."""

    config_id: str
    version: int
    engine: EngineSettings
    database: DatabaseSettings
    templates: tuple[FlowTemplateDef, ...] = ()
    checksum: str = ""

    def default_rule_for(self, module_type: str) -> ApproverRuleDef | None:
        for module, rule in self.engine.default_rules:
            if module == module_type:
                return rule
        return None
