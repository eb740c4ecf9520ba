"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration: engine settings (step limit, default approver rules,
    CC recipients), database settings and the flow templates to install.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``; ``approval_config.bridges`` translates parsed
    settings into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- malformed configuration.

Audit relevance:
    Every successful call logs ``APPROVAL_CONFIG_TRACE`` with the config id,
    version and SHA-256 checksum of the source document.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.loader import load_configuration
from approval_config.schema import (
    ApprovalConfiguration,
    ApproverRuleDef,
    DatabaseSettings,
    EngineSettings,
    FlowTemplateDef,
    StepDef,
)
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> ApprovalConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ``approval_config/sets/default.yaml``.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_configuration(path)

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "template_count": len(config.templates),
            "max_approval_steps": config.engine.max_approval_steps,
        },
    )
    return config


__all__ = [
    "ApprovalConfiguration",
    "ApproverRuleDef",
    "DEFAULT_CONFIG_PATH",
    "DatabaseSettings",
    "EngineSettings",
    "FlowTemplateDef",
    "StepDef",
    "get_active_config",
]
