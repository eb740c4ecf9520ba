"""
Module: approval_kernel.models.flow
Responsibility: ORM persistence for flow templates, their steps, flow
    executions and per-step approval records.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

Invariants enforced:
    - One current template per (company_id, module_type): partial unique
      index on is_current.
    - Templates are versioned.  A stored template's definition and steps
      never change; editing stores a new version and retires the old one,
      so running executions keep the exact steps they started with.
    - At most one RUNNING execution per document: partial unique index.
    - One approval row per (execution_id, step_order).
    - FlowApproval.decision is write-once.  The service records it with a
      conditional UPDATE (WHERE decision IS NULL); the listeners below
      refuse ORM updates of decided rows and any delete.

Failure modes:
    - IntegrityError on a second current template or a second running
      execution for the same document.
    - ImmutabilityViolationError on modifying a decided approval, deleting
      any approval, or changing a stored template's definition.
    - StaleDataError when an execution row was changed underneath a session
      (version counter).

Audit relevance:
    FlowApproval rows are the decision audit trail: assigned approver,
    deciding actor, delegation used, comment and timestamps.  Deleting a
    delegation grant leaves proxy_delegation_id in place (no foreign key).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.domain.document import ModuleType
from approval_kernel.domain.flow import (
    ApproverRule,
    ExecutionStatus,
    FlowApprovalInfo,
    FlowDecision,
    FlowExecutionInfo,
    FlowTemplateInfo,
    StepDefinition,
)
from approval_kernel.exceptions import ImmutabilityViolationError


class FlowTemplateModel(TrackedBase):
    """
    Versioned approval flow template.

    Contract:
        Only is_current, retired_at and the updated_* metadata may change
        after insert.
    """

    __tablename__ = "flow_templates"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "module_type", "version",
            name="uq_flow_templates_version",
        ),
        Index(
            "ix_flow_templates_current_unique",
            "company_id", "module_type",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    module_type: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    retired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    steps: Mapped[list["FlowTemplateStepModel"]] = relationship(
        "FlowTemplateStepModel",
        back_populates="template",
        order_by="FlowTemplateStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<FlowTemplate {self.name} v{self.version} "
            f"{self.module_type} current={self.is_current}>"
        )

    def to_dto(self) -> FlowTemplateInfo:
        return FlowTemplateInfo(
            template_id=self.id,
            company_id=self.company_id,
            module_type=ModuleType(self.module_type),
            name=self.name,
            description=self.description,
            version=self.version,
            is_current=self.is_current,
            steps=tuple(s.to_dto() for s in self.steps),
            created_by_id=self.created_by_id,
            created_at=self.created_at,
        )


class FlowTemplateStepModel(Base):
    """One step of a stored template.  Immutable."""

    __tablename__ = "flow_template_steps"

    __table_args__ = (
        UniqueConstraint("template_id", "step_order", name="uq_flow_template_steps_order"),
        CheckConstraint("step_order >= 1", name="ck_flow_template_steps_order_positive"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("flow_templates.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rule_employee_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rule_position_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    template: Mapped[FlowTemplateModel] = relationship(
        "FlowTemplateModel", back_populates="steps",
    )

    def to_dto(self) -> StepDefinition:
        return StepDefinition(
            order=self.step_order,
            name=self.name,
            approver_rule=ApproverRule(
                rule_type=self.rule_type,
                employee_id=self.rule_employee_id,
                position_id=self.rule_position_id,
            ),
            is_required=self.is_required,
        )

    @classmethod
    def from_dto(cls, step: StepDefinition) -> FlowTemplateStepModel:
        return cls(
            step_order=step.order,
            name=step.name,
            rule_type=step.approver_rule.rule_type,
            rule_employee_id=step.approver_rule.employee_id,
            rule_position_id=step.approver_rule.position_id,
            is_required=step.is_required,
        )


class FlowExecutionModel(Base):
    """
    One approval run of one document.

    Guarantees:
        - version increments on every UPDATE (optimistic concurrency).
        - completed_at is set when status leaves RUNNING.
    """

    __tablename__ = "flow_executions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'approved', 'rejected', 'cancelled')",
            name="ck_flow_executions_valid_status",
        ),
        Index(
            "ix_flow_executions_running_unique",
            "document_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
        Index("ix_flow_executions_document", "document_id", "created_at"),
    )

    # Null when the implicit default flow was used
    template_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("flow_templates.id"), nullable=True,
    )
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    module_type: Mapped[str] = mapped_column(String(30), nullable=False)
    applicant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    current_step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ExecutionStatus.RUNNING.value, nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    approvals: Mapped[list["FlowApprovalModel"]] = relationship(
        "FlowApprovalModel",
        back_populates="execution",
        order_by="FlowApprovalModel.step_order",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<FlowExecution {self.id} document={self.document_id} "
            f"step={self.current_step_order} status={self.status}>"
        )

    def to_dto(self) -> FlowExecutionInfo:
        return FlowExecutionInfo(
            execution_id=self.id,
            template_id=self.template_id,
            document_id=self.document_id,
            module_type=ModuleType(self.module_type),
            applicant_id=self.applicant_id,
            company_id=self.company_id,
            current_step_order=self.current_step_order,
            status=ExecutionStatus(self.status),
            created_at=self.created_at,
            completed_at=self.completed_at,
            approvals=tuple(a.to_dto() for a in self.approvals),
        )


class FlowApprovalModel(Base):
    """
    Approval record for one activated step.  Never deleted.

    Contract:
        decision, decided_by_id, proxy_delegation_id, comment and
        decided_at are written exactly once, together.
    """

    __tablename__ = "flow_approvals"

    __table_args__ = (
        UniqueConstraint("execution_id", "step_order", name="uq_flow_approvals_step"),
        CheckConstraint(
            "decision IS NULL OR decision IN ('approved', 'rejected')",
            name="ck_flow_approvals_valid_decision",
        ),
        Index("ix_flow_approvals_assignee_pending", "assigned_approver_id", "decision"),
        Index("ix_flow_approvals_decided_by", "decided_by_id", "decided_at"),
    )

    execution_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("flow_executions.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    # Audit back-reference only; grants may be deleted later.
    proxy_delegation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    execution: Mapped[FlowExecutionModel] = relationship(
        "FlowExecutionModel", back_populates="approvals",
    )

    def __repr__(self) -> str:
        return (
            f"<FlowApproval execution={self.execution_id} step={self.step_order} "
            f"assignee={self.assigned_approver_id} decision={self.decision}>"
        )

    def to_dto(self) -> FlowApprovalInfo:
        return FlowApprovalInfo(
            approval_id=self.id,
            execution_id=self.execution_id,
            step_order=self.step_order,
            step_name=self.step_name,
            assigned_approver_id=self.assigned_approver_id,
            decision=FlowDecision(self.decision) if self.decision else None,
            decided_by_id=self.decided_by_id,
            proxy_delegation_id=self.proxy_delegation_id,
            comment=self.comment,
            activated_at=self.activated_at,
            decided_at=self.decided_at,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================

_DECISION_FIELDS = (
    "decision",
    "decided_by_id",
    "proxy_delegation_id",
    "comment",
    "decided_at",
)

_TEMPLATE_MUTABLE_FIELDS = frozenset({
    "is_current",
    "retired_at",
    "updated_at",
    "updated_by_id",
})


@event.listens_for(FlowApprovalModel, "before_update")
def prevent_decided_approval_update(mapper, connection, target):
    """Refuse any change to an approval whose decision was already recorded."""
    state = inspect(target)
    prior = state.attrs.decision.history
    previously_decided = (
        bool(prior.deleted) and prior.deleted[0] is not None
    ) or (not prior.has_changes() and target.decision is not None)
    if not previously_decided:
        return
    for field in _DECISION_FIELDS + ("assigned_approver_id", "step_order", "step_name"):
        if state.attrs[field].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="FlowApproval",
                entity_id=str(target.id),
                reason=f"Decided approvals are immutable -- cannot modify {field}",
            )


@event.listens_for(FlowApprovalModel, "before_delete")
def prevent_approval_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="FlowApproval",
        entity_id=str(target.id),
        reason="Approval records are never deleted",
    )


@event.listens_for(FlowTemplateModel, "before_update")
def prevent_template_definition_update(mapper, connection, target):
    """Stored templates only change their current/retired markers."""
    state = inspect(target)
    for attr in state.mapper.column_attrs:
        if attr.key in _TEMPLATE_MUTABLE_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="FlowTemplate",
                entity_id=str(target.id),
                reason=f"Templates are versioned -- cannot modify {attr.key}",
            )


@event.listens_for(FlowTemplateModel, "before_delete")
def prevent_template_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="FlowTemplate",
        entity_id=str(target.id),
        reason="Templates may be referenced by executions -- cannot delete",
    )


@event.listens_for(FlowTemplateStepModel, "before_update")
def prevent_step_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="FlowTemplateStep",
        entity_id=str(target.id),
        reason="Template steps are immutable",
    )


@event.listens_for(FlowTemplateStepModel, "before_delete")
def prevent_step_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="FlowTemplateStep",
        entity_id=str(target.id),
        reason="Template steps are immutable",
    )
