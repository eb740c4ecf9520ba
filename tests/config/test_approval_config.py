"""
Tests for approval configuration loading and the config -> kernel bridges.

Covers:
- get_active_config(): bundled default set, custom files, trace log
- Loader: rule/module validation, step limits, checksum stability
- Bridges: default rules, step building, idempotent template install
"""

from __future__ import annotations

import dataclasses
from uuid import uuid4

import pytest
import yaml

from approval_config import DEFAULT_CONFIG_PATH, get_active_config
from approval_config.bridges import build_default_rules, build_steps, install_templates
from approval_config.loader import compute_checksum, parse_configuration, parse_rule
from approval_config.schema import ApproverRuleDef
from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import ApproverRule
from approval_kernel.exceptions import InvalidFlowTemplateError
from approval_kernel.services.flow_template_service import FlowTemplateService


def config_document(company_id, position_id, **overrides):
    data = {
        "config_id": "test-config",
        "version": 3,
        "engine": {
            "max_approval_steps": 3,
            "default_rules": {"expense": {"rule_type": "department_head"}},
            "cc_employee_ids": [str(uuid4())],
        },
        "templates": [
            {
                "company_id": str(company_id),
                "module_type": "leave",
                "name": "Leave approval",
                "steps": [
                    {"order": 1, "name": "Supervisor", "approver": {"rule_type": "direct_supervisor"}},
                    {
                        "order": 2,
                        "name": "Finance",
                        "approver": {"rule_type": "position", "position_id": str(position_id)},
                        "is_required": False,
                    },
                ],
            }
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def config_file(tmp_path, org):
    path = tmp_path / "approval.yaml"
    path.write_text(yaml.safe_dump(config_document(org.company_id, org.finance_position_id)))
    return path


# =========================================================================
# get_active_config
# =========================================================================


class TestGetActiveConfig:
    def test_bundled_default_set(self):
        config = get_active_config()
        assert DEFAULT_CONFIG_PATH.exists()
        assert config.config_id == "approval-default"
        assert config.engine.max_approval_steps == 4
        assert config.templates == ()
        assert config.default_rule_for("expense") == ApproverRuleDef("department_head")
        assert config.default_rule_for("leave") == ApproverRuleDef("direct_supervisor")

    def test_default_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_custom_file(self, config_file, org):
        config = get_active_config(config_file)
        assert config.config_id == "test-config"
        assert config.version == 3
        (template,) = config.templates
        assert template.company_id == org.company_id
        assert template.module_type == "leave"
        assert template.steps[1].rule.position_id == org.finance_position_id
        assert not template.steps[1].is_required
        assert config.database.url == "sqlite:///approval.db"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")

    def test_trace_logged(self, captured_logs, config_file):
        config = get_active_config(config_file)
        (trace,) = [r for r in captured_logs() if r["message"] == "APPROVAL_CONFIG_TRACE"]
        assert trace["config_id"] == "test-config"
        assert trace["checksum"] == config.checksum
        assert trace["template_count"] == 1

    def test_configuration_is_frozen(self):
        config = get_active_config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.version = 99


# =========================================================================
# Loader
# =========================================================================


class TestLoader:
    def test_unknown_module_type(self, org):
        data = config_document(org.company_id, org.finance_position_id)
        data["templates"][0]["module_type"] = "payroll"
        with pytest.raises(ValueError, match="Unknown module type"):
            parse_configuration(data)

    def test_unknown_rule_type(self):
        with pytest.raises(ValueError, match="Unknown approver rule type"):
            parse_rule({"rule_type": "round_robin"})

    def test_rule_type_case_insensitive(self):
        assert parse_rule({"rule_type": "DIRECT_SUPERVISOR"}).rule_type == "direct_supervisor"

    def test_template_without_steps(self, org):
        data = config_document(org.company_id, org.finance_position_id)
        data["templates"][0]["steps"] = []
        with pytest.raises(ValueError):
            parse_configuration(data)

    def test_non_positive_step_limit(self, org):
        data = config_document(
            org.company_id, org.finance_position_id, engine={"max_approval_steps": 0},
        )
        with pytest.raises(ValueError):
            parse_configuration(data)

    def test_bad_position_id(self):
        with pytest.raises(ValueError):
            parse_rule({"rule_type": "position", "position_id": "not-a-uuid"})

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


# =========================================================================
# Bridges
# =========================================================================


class TestBridges:
    def test_default_rules(self, config_file):
        rules = build_default_rules(get_active_config(config_file))
        assert rules == {ModuleType.EXPENSE: ApproverRule.department_head()}

    def test_build_steps(self, config_file, org):
        (template,) = get_active_config(config_file).templates
        first, second = build_steps(template)
        assert first.approver_rule == ApproverRule.direct_supervisor()
        assert second.approver_rule == ApproverRule.position(org.finance_position_id)
        assert not second.is_required

    def test_install_is_idempotent(self, session, config_file, org, test_actor_id, deterministic_clock):
        config = get_active_config(config_file)

        stored = install_templates(session, config, test_actor_id, deterministic_clock)
        assert len(stored) == 1
        assert stored[0].version == 1

        assert install_templates(session, config, test_actor_id, deterministic_clock) == []
        current = FlowTemplateService(session, deterministic_clock).get_current_template(
            org.company_id, ModuleType.LEAVE,
        )
        assert current.version == 1

    def test_changed_template_gets_new_version(
        self, session, org, test_actor_id, deterministic_clock,
    ):
        data = config_document(org.company_id, org.finance_position_id)
        install_templates(session, parse_configuration(data), test_actor_id, deterministic_clock)

        data["templates"][0]["steps"] = data["templates"][0]["steps"][:1]
        (stored,) = install_templates(
            session, parse_configuration(data), test_actor_id, deterministic_clock,
        )
        assert stored.version == 2
        assert len(stored.steps) == 1

    def test_configured_step_limit_applies(self, session, org, test_actor_id):
        data = config_document(
            org.company_id, org.finance_position_id, engine={"max_approval_steps": 1},
        )
        with pytest.raises(InvalidFlowTemplateError):
            install_templates(session, parse_configuration(data), test_actor_id)
