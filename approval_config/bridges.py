"""
Config -> Kernel Bridges.

Functions that turn an ``ApprovalConfiguration`` into kernel inputs.  They
live here because the kernel must never import ``approval_config``.

Usage:
    from approval_config.bridges import build_default_rules, install_templates

    config = get_active_config()
    engine = FlowEngine(session, directory, default_rules=build_default_rules(config))
    install_templates(session, config, actor_id)
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.schema import ApprovalConfiguration, ApproverRuleDef, FlowTemplateDef
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import ApproverRule, FlowTemplateInfo, StepDefinition
from approval_kernel.logging_config import get_logger
from approval_kernel.services.flow_template_service import FlowTemplateService

logger = get_logger("config.bridges")


def build_rule(rule: ApproverRuleDef) -> ApproverRule:
    return ApproverRule(
        rule_type=rule.rule_type,
        employee_id=rule.employee_id,
        position_id=rule.position_id,
    )


def build_default_rules(config: ApprovalConfiguration) -> dict[ModuleType, ApproverRule]:
    """Per-module rule for the implicit single-step flow."""
    return {
        ModuleType(module): build_rule(rule)
        for module, rule in config.engine.default_rules
    }


def build_steps(template: FlowTemplateDef) -> tuple[StepDefinition, ...]:
    return tuple(
        StepDefinition(
            order=step.order,
            name=step.name,
            approver_rule=build_rule(step.rule),
            is_required=step.is_required,
        )
        for step in template.steps
    )


def install_templates(
    session: Session,
    config: ApprovalConfiguration,
    actor_id: UUID,
    clock: Clock | None = None,
) -> list[FlowTemplateInfo]:
    """Upsert every configured template.  Flushes, never commits.

    A template whose current stored version already has the same name and
    steps is left alone, so re-running the install does not bump versions.
    Returns the templates that were stored.
    """
    service = FlowTemplateService(
        session, clock, max_steps=config.engine.max_approval_steps,
    )
    stored = []
    for template in config.templates:
        module_type = ModuleType(template.module_type)
        steps = build_steps(template)
        current = service.get_current_template(template.company_id, module_type)
        if (
            current is not None
            and current.name == template.name
            and current.steps == tuple(sorted(steps, key=lambda s: s.order))
        ):
            continue
        stored.append(
            service.upsert_template(
                company_id=template.company_id,
                module_type=module_type,
                name=template.name,
                steps=steps,
                actor_id=actor_id,
                description=template.description,
            )
        )

    logger.info(
        "config_templates_installed",
        extra={
            "config_id": config.config_id,
            "configured": len(config.templates),
            "stored": len(stored),
        },
    )
    return stored
