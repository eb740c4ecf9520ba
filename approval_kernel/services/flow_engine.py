"""
FlowEngine -- multi-step approval execution.

Responsibility:
    Start an approval flow for a document, record approver decisions,
    advance the flow step by step, cancel it, and keep the document's
    lifecycle status in step with the flow outcome.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Uses the pure
    state machine (``domain.document``), delegation predicate
    (``domain.delegation``) and approver resolver registry
    (``domain.resolution``); persists through the flow models and a
    ``DocumentStore``.

Invariants enforced:
    - At most one RUNNING execution per document (service check, backed by
      a partial unique index).
    - Only the current step of a RUNNING execution can be decided.
    - A decision is written once.  It is recorded with
      ``UPDATE ... WHERE id = :id AND decision IS NULL``; a caller that
      loses the race gets ``AlreadyDecidedError``.
    - The execution row is locked (``SELECT ... FOR UPDATE``) for decide and
      cancel, so the decision, the step advance, the next approval row, the
      document transition and the notifications commit together.
    - Approvers are resolved when their step activates.  Optional steps that
      resolve nobody are skipped; a required step that resolves nobody fails
      the whole operation.
    - Delegation is one hop, checked with the same ``grant_covers`` rule
      the proxy-pending query uses.

Failure modes:
    - DocumentNotFoundError, ExecutionNotFoundError
    - ExecutionAlreadyRunningError
    - InvalidTransitionError (document not in a state that allows the edge)
    - NoApproverResolvableError
    - StepNotFoundError, AlreadyDecidedError, FlowNotRunningError
    - NotAuthorizedError
    None of these is retried here.  The caller rolls back the transaction.

Audit relevance:
    Each decision logs ``approval_decided`` with the deciding actor, the
    assigned approver and the delegation used.  Refusals log at WARNING.
"""

from collections.abc import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.delegation import grant_covers
from approval_kernel.domain.document import (
    Capability,
    DocumentAction,
    DocumentRecord,
    DocumentStore,
    ModuleType,
    next_status,
)
from approval_kernel.domain.flow import (
    MAX_APPROVAL_STEPS,
    ApproverRule,
    ExecutionStatus,
    FlowDecision,
    FlowExecutionInfo,
    StepDefinition,
    default_flow_steps,
)
from approval_kernel.domain.notification import NotificationKind
from approval_kernel.domain.resolution import (
    ApproverResolverRegistry,
    OrgDirectory,
    ResolutionContext,
)
from approval_kernel.exceptions import (
    AlreadyDecidedError,
    DocumentNotFoundError,
    ExecutionAlreadyRunningError,
    ExecutionNotFoundError,
    FlowNotRunningError,
    NoApproverResolvableError,
    NotAuthorizedError,
    StepNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.delegation import DelegationGrantModel
from approval_kernel.models.flow import FlowApprovalModel, FlowExecutionModel
from approval_kernel.services.base import BaseService
from approval_kernel.services.document_service import SqlDocumentStore
from approval_kernel.services.flow_template_service import FlowTemplateService
from approval_kernel.services.notification_service import NotificationService

logger = get_logger("services.flow_engine")


class FlowEngine(BaseService[FlowExecutionModel]):
    """
    Drive approval flows.

    Contract:
        ``start``, ``decide`` and ``cancel`` either complete fully within
        the caller's transaction or raise a typed error; the caller rolls
        back on error.  Returns ``FlowExecutionInfo`` DTOs.

    Guarantees:
        - Document status only changes through ``next_status``: SUBMIT with
          OWNER on start, APPROVE/REJECT with APPROVER on the final
          decision, CANCEL with OWNER on cancel.
        - Every activated step gets exactly one FlowApproval row and one
          APPROVAL_REQUEST notification.

    Non-goals:
        - Does NOT commit.
        - Does NOT retry.  Decisions are human actions.
        - Does NOT handle module progression after approval
          (see ``DocumentService.advance``).
    """

    def __init__(
        self,
        session: Session,
        org_directory: OrgDirectory,
        clock: Clock | None = None,
        document_store: DocumentStore | None = None,
        default_rules: Mapping[ModuleType, ApproverRule] | None = None,
        cc_recipient_ids: Iterable[UUID] = (),
        max_steps: int = MAX_APPROVAL_STEPS,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._directory = org_directory
        self._documents = document_store or SqlDocumentStore(session, self._clock)
        self._default_rules = dict(default_rules or {})
        self._cc_recipient_ids = tuple(cc_recipient_ids)
        self._templates = FlowTemplateService(session, self._clock, max_steps=max_steps)
        self._notifications = NotificationService(session, self._clock)

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start(self, document_id: UUID, applicant_id: UUID) -> FlowExecutionInfo:
        """
        Submit a document for approval.

        Resolves the current template for the document's (module, company),
        or the implicit single-step default flow, moves the document
        DRAFT -> PENDING and activates the first step that resolves an
        approver.

        Raises:
            DocumentNotFoundError: unknown document.
            ExecutionAlreadyRunningError: a flow is already running.
            InvalidTransitionError: applicant is not the owner, or the
                document is not in DRAFT.
            NoApproverResolvableError: no step could be activated.
        """
        with LogContext.bind(document_id=document_id, actor_id=applicant_id):
            document = self._load_document(document_id)

            running = self._running_execution(document_id)
            if running is not None:
                logger.warning(
                    "flow_start_refused_already_running",
                    extra={"execution_id": str(running.id)},
                )
                raise ExecutionAlreadyRunningError(str(document_id), str(running.id))

            template_id, steps = self._steps_for_new_flow(document)

            capabilities = {Capability.OWNER} if applicant_id == document.owner_id else set()
            pending_status = next_status(
                document.module_type, document.status, DocumentAction.SUBMIT, capabilities,
            )

            context = ResolutionContext(
                applicant_id=applicant_id,
                company_id=document.company_id,
                module_type=document.module_type,
                document_id=document_id,
            )
            first = self._next_activatable(steps, 0, context)
            if first is None:
                last = steps[-1]
                raise NoApproverResolvableError(
                    last.order, last.name, last.approver_rule.rule_type,
                )
            step, approver_id = first

            now = self._clock.now()
            execution = FlowExecutionModel(
                template_id=template_id,
                document_id=document_id,
                module_type=document.module_type.value,
                applicant_id=applicant_id,
                company_id=document.company_id,
                current_step_order=step.order,
                status=ExecutionStatus.RUNNING.value,
                created_at=now,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(execution)
            except IntegrityError:
                # Lost a concurrent start for the same document.
                other = self._running_execution(document_id)
                logger.warning("flow_start_conflict", exc_info=True)
                raise ExecutionAlreadyRunningError(
                    str(document_id), str(other.id) if other else "unknown",
                )

            self._documents.set_status(document_id, pending_status)
            self._activate(execution, step, approver_id, document)
            self.session.flush()

            logger.info(
                "flow_started",
                extra={
                    "execution_id": str(execution.id),
                    "template_id": str(template_id) if template_id else None,
                    "module_type": document.module_type.value,
                    "first_step": step.order,
                    "approver_id": str(approver_id),
                },
            )
            return execution.to_dto()

    # ------------------------------------------------------------------
    # decide
    # ------------------------------------------------------------------

    def decide(
        self,
        execution_id: UUID,
        step_order: int,
        actor_id: UUID,
        decision: FlowDecision,
        comment: str = "",
        proxy_delegation_id: UUID | None = None,
    ) -> FlowExecutionInfo:
        """
        Record an approver's decision on the current step.

        Check order: execution exists, approval row exists, not already
        decided, execution running, step is current, actor authorized.

        Raises:
            ExecutionNotFoundError, StepNotFoundError, AlreadyDecidedError,
            FlowNotRunningError, NotAuthorizedError,
            NoApproverResolvableError (next required step), DocumentNotFoundError,
            InvalidTransitionError.
        """
        decision = FlowDecision(decision)
        with LogContext.bind(execution_id=execution_id, actor_id=actor_id):
            execution = self._get_execution_for_update(execution_id)

            approval = self.session.execute(
                select(FlowApprovalModel)
                .where(
                    FlowApprovalModel.execution_id == execution_id,
                    FlowApprovalModel.step_order == step_order,
                )
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if approval is None:
                logger.warning("decision_refused_no_step", extra={"step_order": step_order})
                raise StepNotFoundError(str(execution_id), step_order, "no approval for this step")

            if approval.decision is not None:
                logger.warning("decision_refused_already_decided", extra={"step_order": step_order})
                raise AlreadyDecidedError(str(execution_id), step_order)

            if execution.status != ExecutionStatus.RUNNING.value:
                logger.warning("decision_refused_not_running", extra={"status": execution.status})
                raise FlowNotRunningError(str(execution_id), execution.status)

            if step_order != execution.current_step_order:
                logger.warning(
                    "decision_refused_not_current",
                    extra={"step_order": step_order, "current_step": execution.current_step_order},
                )
                raise StepNotFoundError(
                    str(execution_id), step_order,
                    f"current step is {execution.current_step_order}",
                )

            grant_id = self._authorize(execution, approval, actor_id, proxy_delegation_id)

            now = self._clock.now()
            result = self.session.execute(
                update(FlowApprovalModel)
                .where(
                    FlowApprovalModel.id == approval.id,
                    FlowApprovalModel.decision.is_(None),
                )
                .values(
                    decision=decision.value,
                    decided_by_id=actor_id,
                    proxy_delegation_id=grant_id,
                    comment=comment or "",
                    decided_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning("decision_lost_race", extra={"step_order": step_order})
                raise AlreadyDecidedError(str(execution_id), step_order)
            self.session.refresh(approval)

            logger.info(
                "approval_decided",
                extra={
                    "step_order": step_order,
                    "decision": decision.value,
                    "assigned_approver_id": str(approval.assigned_approver_id),
                    "decided_by_id": str(actor_id),
                    "proxy_delegation_id": str(grant_id) if grant_id else None,
                },
            )

            document = self._load_document(execution.document_id)
            if decision == FlowDecision.REJECTED:
                self._finish(execution, document, ExecutionStatus.REJECTED)
            else:
                context = ResolutionContext(
                    applicant_id=execution.applicant_id,
                    company_id=execution.company_id,
                    module_type=ModuleType(execution.module_type),
                    document_id=execution.document_id,
                )
                following = self._next_activatable(
                    self._steps_for_execution(execution), step_order, context,
                )
                if following is None:
                    self._finish(execution, document, ExecutionStatus.APPROVED)
                else:
                    next_step, approver_id = following
                    execution.current_step_order = next_step.order
                    self._activate(execution, next_step, approver_id, document)
                    logger.info(
                        "flow_advanced",
                        extra={
                            "from_step": step_order,
                            "to_step": next_step.order,
                            "approver_id": str(approver_id),
                        },
                    )

            self.session.flush()
            return execution.to_dto()

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    def cancel(self, execution_id: UUID, actor_id: UUID) -> FlowExecutionInfo:
        """
        Withdraw a running flow.  Only the applicant may cancel.

        Undecided approval rows stay as they are.

        Raises:
            ExecutionNotFoundError, FlowNotRunningError, NotAuthorizedError,
            InvalidTransitionError.
        """
        with LogContext.bind(execution_id=execution_id, actor_id=actor_id):
            execution = self._get_execution_for_update(execution_id)
            if execution.status != ExecutionStatus.RUNNING.value:
                logger.warning("cancel_refused_not_running", extra={"status": execution.status})
                raise FlowNotRunningError(str(execution_id), execution.status)
            if actor_id != execution.applicant_id:
                logger.warning("cancel_refused_not_applicant")
                raise NotAuthorizedError(
                    str(actor_id), f"execution {execution_id}", "only the applicant may cancel",
                )

            document = self._load_document(execution.document_id)
            capabilities = {Capability.OWNER} if actor_id == document.owner_id else set()
            cancelled = next_status(
                document.module_type, document.status, DocumentAction.CANCEL, capabilities,
            )
            self._documents.set_status(document.document_id, cancelled)

            execution.status = ExecutionStatus.CANCELLED.value
            execution.completed_at = self._clock.now()
            self._notify_current_approver_cancelled(execution, document)
            self.session.flush()

            logger.info("flow_cancelled", extra={"document_id": str(document.document_id)})
            return execution.to_dto()

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: UUID) -> FlowExecutionInfo:
        row = self.session.get(FlowExecutionModel, execution_id)
        if row is None:
            raise ExecutionNotFoundError(str(execution_id))
        return row.to_dto()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _load_document(self, document_id: UUID) -> DocumentRecord:
        document = self._documents.load_document(document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def _running_execution(self, document_id: UUID) -> FlowExecutionModel | None:
        return self.session.execute(
            select(FlowExecutionModel).where(
                FlowExecutionModel.document_id == document_id,
                FlowExecutionModel.status == ExecutionStatus.RUNNING.value,
            )
        ).scalar_one_or_none()

    def _get_execution_for_update(self, execution_id: UUID) -> FlowExecutionModel:
        execution = self.session.execute(
            select(FlowExecutionModel)
            .where(FlowExecutionModel.id == execution_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if execution is None:
            raise ExecutionNotFoundError(str(execution_id))
        return execution

    def _default_steps(self, module_type: ModuleType) -> tuple[StepDefinition, ...]:
        return default_flow_steps(self._default_rules.get(ModuleType(module_type)))

    def _steps_for_new_flow(
        self,
        document: DocumentRecord,
    ) -> tuple[UUID | None, tuple[StepDefinition, ...]]:
        template = self._templates.get_current_template(document.company_id, document.module_type)
        if template is None:
            return None, self._default_steps(document.module_type)
        return template.template_id, template.steps

    def _steps_for_execution(self, execution: FlowExecutionModel) -> tuple[StepDefinition, ...]:
        # The exact version the flow started with, even if since retired.
        if execution.template_id is None:
            return self._default_steps(ModuleType(execution.module_type))
        return self._templates.get_template(execution.template_id).steps

    def _next_activatable(
        self,
        steps: tuple[StepDefinition, ...],
        after_order: int,
        context: ResolutionContext,
    ) -> tuple[StepDefinition, UUID] | None:
        """First step after ``after_order`` that resolves an approver."""
        for step in steps:
            if step.order <= after_order:
                continue
            approver_id = ApproverResolverRegistry.resolve(
                step.approver_rule, context, self._directory,
            )
            if approver_id is not None:
                return step, approver_id
            if step.is_required:
                logger.warning(
                    "approver_unresolvable",
                    extra={"step_order": step.order, "rule_type": step.approver_rule.rule_type},
                )
                raise NoApproverResolvableError(
                    step.order, step.name, step.approver_rule.rule_type,
                )
            logger.info(
                "optional_step_skipped",
                extra={"step_order": step.order, "rule_type": step.approver_rule.rule_type},
            )
        return None

    def _activate(
        self,
        execution: FlowExecutionModel,
        step: StepDefinition,
        approver_id: UUID,
        document: DocumentRecord,
    ) -> FlowApprovalModel:
        approval = FlowApprovalModel(
            step_order=step.order,
            step_name=step.name,
            assigned_approver_id=approver_id,
            activated_at=self._clock.now(),
        )
        execution.approvals.append(approval)
        self.session.flush()
        self._notifications.notify(
            approver_id,
            NotificationKind.APPROVAL_REQUEST,
            f"{document.module_type.value} request awaits your approval "
            f"(step {step.order}: {step.name})",
            execution_id=execution.id,
            document_id=document.document_id,
        )
        return approval

    def _finish(
        self,
        execution: FlowExecutionModel,
        document: DocumentRecord,
        outcome: ExecutionStatus,
    ) -> None:
        if outcome == ExecutionStatus.REJECTED:
            action, kind = DocumentAction.REJECT, NotificationKind.REJECTED
        else:
            action, kind = DocumentAction.APPROVE, NotificationKind.APPROVED
        final_status = next_status(
            document.module_type, document.status, action, {Capability.APPROVER},
        )
        self._documents.set_status(document.document_id, final_status)
        execution.status = outcome.value
        execution.completed_at = self._clock.now()

        self._notifications.notify(
            execution.applicant_id,
            kind,
            f"Your {document.module_type.value} request was {outcome.value}",
            execution_id=execution.id,
            document_id=document.document_id,
        )
        if outcome == ExecutionStatus.APPROVED:
            for recipient_id in self._cc_recipient_ids:
                if recipient_id == execution.applicant_id:
                    continue
                self._notifications.notify(
                    recipient_id,
                    NotificationKind.CC,
                    f"{document.module_type.value} request {document.document_id} was approved",
                    execution_id=execution.id,
                    document_id=document.document_id,
                )

        logger.info(
            "flow_completed",
            extra={"outcome": outcome.value, "document_status": final_status.value},
        )

    def _notify_current_approver_cancelled(
        self,
        execution: FlowExecutionModel,
        document: DocumentRecord,
    ) -> None:
        for approval in execution.approvals:
            if approval.step_order == execution.current_step_order and approval.decision is None:
                self._notifications.notify(
                    approval.assigned_approver_id,
                    NotificationKind.CANCELLED,
                    f"{document.module_type.value} request was withdrawn by the applicant",
                    execution_id=execution.id,
                    document_id=document.document_id,
                )

    def _authorize(
        self,
        execution: FlowExecutionModel,
        approval: FlowApprovalModel,
        actor_id: UUID,
        proxy_delegation_id: UUID | None,
    ) -> UUID | None:
        """Return the delegation id used, or None when the actor is the assignee."""
        if actor_id == approval.assigned_approver_id:
            return None

        subject = f"step {approval.step_order} of execution {execution.id}"
        if proxy_delegation_id is None:
            logger.warning("decision_refused_not_assignee")
            raise NotAuthorizedError(str(actor_id), subject, "not the assigned approver")

        grant_row = self.session.get(DelegationGrantModel, proxy_delegation_id)
        if grant_row is None:
            logger.warning(
                "decision_refused_unknown_grant",
                extra={"proxy_delegation_id": str(proxy_delegation_id)},
            )
            raise NotAuthorizedError(str(actor_id), subject, "delegation grant not found")

        grant = grant_row.to_dto()
        if grant.delegate_id != actor_id:
            logger.warning("decision_refused_not_delegate")
            raise NotAuthorizedError(str(actor_id), subject, "grant names a different delegate")

        on_date = self._clock.today()
        if not grant_covers(
            grant,
            approval.assigned_approver_id,
            ModuleType(execution.module_type),
            execution.company_id,
            on_date,
        ):
            logger.warning(
                "decision_refused_grant_not_covering",
                extra={"proxy_delegation_id": str(grant.grant_id), "on_date": on_date},
            )
            raise NotAuthorizedError(
                str(actor_id), subject, "delegation does not cover this approval",
            )
        return grant.grant_id
