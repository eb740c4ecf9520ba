"""
FlowTemplateService -- versioned approval flow templates.

Responsibility:
    Store, retire and look up the approval chain configured for a
    (company, module type).  Editing a template stores a new version and
    retires the previous one; running executions keep referencing the
    version they started with, so edits are never retroactive.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - 1..max_steps steps with contiguous orders; POSITION steps name a
      position and SPECIFIC_EMPLOYEE steps name an employee
      (``validate_steps``).
    - At most one current template per (company, module type): the old
      current row is locked and retired before the new one is inserted.

Failure modes:
    - InvalidFlowTemplateError on an invalid step list.
    - FlowTemplateNotFoundError for unknown ids or when deactivating a
      (company, module type) with no current template.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import (
    MAX_APPROVAL_STEPS,
    FlowTemplateInfo,
    StepDefinition,
    validate_steps,
)
from approval_kernel.exceptions import FlowTemplateNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.flow import FlowTemplateModel, FlowTemplateStepModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.flow_template")


class FlowTemplateService(BaseService[FlowTemplateModel]):
    """
    Manage flow templates.

    Contract:
        Returns frozen ``FlowTemplateInfo`` DTOs.  Never commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        max_steps: int = MAX_APPROVAL_STEPS,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._max_steps = max_steps

    def upsert_template(
        self,
        company_id: UUID,
        module_type: ModuleType,
        name: str,
        steps: Iterable[StepDefinition],
        actor_id: UUID,
        description: str = "",
    ) -> FlowTemplateInfo:
        """Store a new current version of the template for (company, module)."""
        module_type = ModuleType(module_type)
        ordered = validate_steps(name, steps, self._max_steps)

        current = self._current_for_update(company_id, module_type)
        if current is not None:
            self._retire(current, actor_id)
            # The partial unique index needs the retirement flushed first.
            self.session.flush()

        latest_version = self.session.execute(
            select(func.max(FlowTemplateModel.version)).where(
                FlowTemplateModel.company_id == company_id,
                FlowTemplateModel.module_type == module_type.value,
            )
        ).scalar()

        template = FlowTemplateModel(
            company_id=company_id,
            module_type=module_type.value,
            name=name,
            description=description,
            version=(latest_version or 0) + 1,
            is_current=True,
            created_by_id=actor_id,
        )
        template.steps = [FlowTemplateStepModel.from_dto(s) for s in ordered]
        self.session.add(template)
        self.session.flush()

        logger.info(
            "flow_template_stored",
            extra={
                "template_id": str(template.id),
                "company_id": str(company_id),
                "module_type": module_type.value,
                "version": template.version,
                "step_count": len(ordered),
                "replaced_template_id": str(current.id) if current else None,
            },
        )
        return template.to_dto()

    def deactivate_template(
        self,
        company_id: UUID,
        module_type: ModuleType,
        actor_id: UUID,
    ) -> FlowTemplateInfo:
        """Retire the current template; new flows fall back to the default step."""
        module_type = ModuleType(module_type)
        current = self._current_for_update(company_id, module_type)
        if current is None:
            raise FlowTemplateNotFoundError(f"{company_id}/{module_type.value}")
        self._retire(current, actor_id)
        self.session.flush()
        logger.info(
            "flow_template_deactivated",
            extra={"template_id": str(current.id), "module_type": module_type.value},
        )
        return current.to_dto()

    def get_current_template(
        self,
        company_id: UUID,
        module_type: ModuleType,
    ) -> FlowTemplateInfo | None:
        row = self.session.execute(
            select(FlowTemplateModel).where(
                FlowTemplateModel.company_id == company_id,
                FlowTemplateModel.module_type == ModuleType(module_type).value,
                FlowTemplateModel.is_current.is_(True),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def get_template(self, template_id: UUID) -> FlowTemplateInfo:
        """Any version, current or retired."""
        row = self.session.get(FlowTemplateModel, template_id)
        if row is None:
            raise FlowTemplateNotFoundError(str(template_id))
        return row.to_dto()

    def list_templates(
        self,
        company_id: UUID,
        module_type: ModuleType | None = None,
        include_retired: bool = False,
    ) -> list[FlowTemplateInfo]:
        stmt = select(FlowTemplateModel).where(FlowTemplateModel.company_id == company_id)
        if module_type is not None:
            stmt = stmt.where(FlowTemplateModel.module_type == ModuleType(module_type).value)
        if not include_retired:
            stmt = stmt.where(FlowTemplateModel.is_current.is_(True))
        stmt = stmt.order_by(FlowTemplateModel.module_type, FlowTemplateModel.version)
        return [t.to_dto() for t in self.session.execute(stmt).scalars().all()]

    def _current_for_update(
        self,
        company_id: UUID,
        module_type: ModuleType,
    ) -> FlowTemplateModel | None:
        return self.session.execute(
            select(FlowTemplateModel)
            .where(
                FlowTemplateModel.company_id == company_id,
                FlowTemplateModel.module_type == module_type.value,
                FlowTemplateModel.is_current.is_(True),
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _retire(self, template: FlowTemplateModel, actor_id: UUID) -> None:
        template.is_current = False
        template.retired_at = self._clock.now()
        template.updated_by_id = actor_id
