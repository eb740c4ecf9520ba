"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``approval_config.schema`` dataclasses.  Runtime code calls
``approval_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Unknown module types and approver rule types raise ``ValueError``.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  form of the raw document.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad values (ids, enum names, step counts)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from approval_config.schema import (
    ApprovalConfiguration,
    ApproverRuleDef,
    DatabaseSettings,
    EngineSettings,
    FlowTemplateDef,
    StepDef,
)
from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import ApproverRuleType


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _optional_uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    return UUID(str(value))


def _module_type(value: Any) -> str:
    try:
        return ModuleType(str(value).lower()).value
    except ValueError:
        raise ValueError(f"Unknown module type {value!r}") from None


def parse_rule(data: dict[str, Any]) -> ApproverRuleDef:
    rule_type = str(data["rule_type"]).lower()
    if rule_type not in {t.value for t in ApproverRuleType}:
        raise ValueError(f"Unknown approver rule type {data['rule_type']!r}")
    return ApproverRuleDef(
        rule_type=rule_type,
        employee_id=_optional_uuid(data.get("employee_id")),
        position_id=_optional_uuid(data.get("position_id")),
    )


def parse_step(data: dict[str, Any]) -> StepDef:
    return StepDef(
        order=int(data["order"]),
        name=data["name"],
        rule=parse_rule(data["approver"]),
        is_required=bool(data.get("is_required", True)),
    )


def parse_template(data: dict[str, Any]) -> FlowTemplateDef:
    steps = tuple(parse_step(s) for s in data.get("steps", []))
    if not steps:
        raise ValueError(f"Template {data.get('name')!r} has no steps")
    return FlowTemplateDef(
        company_id=UUID(str(data["company_id"])),
        module_type=_module_type(data["module_type"]),
        name=data["name"],
        steps=steps,
        description=data.get("description", ""),
    )


def parse_engine(data: dict[str, Any]) -> EngineSettings:
    max_steps = int(data.get("max_approval_steps", 4))
    if max_steps < 1:
        raise ValueError(f"max_approval_steps must be positive, got {max_steps}")
    default_rules = tuple(
        (_module_type(module), parse_rule(rule))
        for module, rule in sorted((data.get("default_rules") or {}).items())
    )
    return EngineSettings(
        max_approval_steps=max_steps,
        default_rules=default_rules,
        cc_employee_ids=tuple(UUID(str(e)) for e in data.get("cc_employee_ids") or ()),
    )


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=data.get("url", defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        pool_timeout=int(data.get("pool_timeout", defaults.pool_timeout)),
        pool_recycle=int(data.get("pool_recycle", defaults.pool_recycle)),
    )


def parse_configuration(data: dict[str, Any]) -> ApprovalConfiguration:
    """Parse a whole configuration document."""
    return ApprovalConfiguration(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        engine=parse_engine(data.get("engine") or {}),
        database=parse_database(data.get("database") or {}),
        templates=tuple(parse_template(t) for t in data.get("templates") or ()),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> ApprovalConfiguration:
    return parse_configuration(load_yaml_file(path))
