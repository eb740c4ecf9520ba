"""
approval_services.approval_api -- in-process API over the approval kernel.

Responsibility:
    The synchronous call surface used by request modules and screens:
    submit, decide and cancel approval flows, list pending and proxy-pending
    work, manage delegations, drive accounting periods and vouchers, and
    read notifications.

Architecture position:
    Services -- the only layer that owns transaction boundaries.  Every
    public method opens a session, wires the kernel services for it
    (``ApprovalServices``), commits on success and rolls back and re-raises
    on any error.  Nothing is retried.

Invariants enforced:
    - One call, one transaction: a failed call leaves no partial state
      (decision, step advance, document status and notifications commit
      together or not at all).
    - Every call runs under a fresh ``correlation_id`` in ``LogContext``.

Usage:
    from approval_kernel.db import get_session_factory, init_engine_from_url
    from approval_services import ApprovalAPI

    init_engine_from_url(config.database.url)
    api = ApprovalAPI(get_session_factory(), org_directory, config=config)
    execution = api.submit(document_id, applicant_id)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_config.bridges import build_default_rules, install_templates
from approval_config.schema import ApprovalConfiguration
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.delegation import DelegationGrant
from approval_kernel.domain.document import (
    DocumentAction,
    DocumentRecord,
    DocumentStore,
    ModuleType,
)
from approval_kernel.domain.flow import (
    MAX_APPROVAL_STEPS,
    FlowApprovalInfo,
    FlowDecision,
    FlowExecutionInfo,
    FlowTemplateInfo,
    PendingApproval,
    StepDefinition,
)
from approval_kernel.domain.notification import NotificationInfo
from approval_kernel.domain.period import (
    AccountingPeriodInfo,
    VoucherInfo,
    VoucherLine,
    VoucherType,
)
from approval_kernel.domain.resolution import OrgDirectory
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.document_service import DocumentService
from approval_kernel.services.flow_engine import FlowEngine
from approval_kernel.services.flow_template_service import FlowTemplateService
from approval_kernel.services.notification_service import NotificationService
from approval_kernel.services.period_service import PeriodService
from approval_kernel.services.voucher_service import VoucherService

logger = get_logger("services.approval_api")

DocumentStoreFactory = Callable[[Session], DocumentStore]


class ApprovalServices:
    """Kernel services for one session, each created exactly once.

    Contract:
        Shares one Session and one Clock across every service.  Does NOT
        commit or roll back.
    """

    def __init__(
        self,
        session: Session,
        org_directory: OrgDirectory,
        clock: Clock,
        config: ApprovalConfiguration | None = None,
        document_store_factory: DocumentStoreFactory | None = None,
    ) -> None:
        self.session = session
        max_steps = config.engine.max_approval_steps if config else MAX_APPROVAL_STEPS

        self.documents = DocumentService(session, clock)
        document_store = (
            document_store_factory(session) if document_store_factory else self.documents.store
        )
        self.notifications = NotificationService(session, clock)
        self.templates = FlowTemplateService(session, clock, max_steps=max_steps)
        self.delegations = DelegationService(session, clock)
        self.periods = PeriodService(session, clock)
        self.vouchers = VoucherService(session, clock)
        self.approvals = ApprovalSelector(session)
        self.flow_engine = FlowEngine(
            session,
            org_directory,
            clock=clock,
            document_store=document_store,
            default_rules=build_default_rules(config) if config else None,
            cc_recipient_ids=config.engine.cc_employee_ids if config else (),
            max_steps=max_steps,
        )


class ApprovalAPI:
    """
    Transactional facade over the approval kernel.

    Contract:
        Each public method is one transaction.  Returns frozen DTOs, never
        ORM instances.  Errors are the kernel's typed exceptions, raised
        after rollback.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        org_directory: OrgDirectory,
        config: ApprovalConfiguration | None = None,
        clock: Clock | None = None,
        document_store_factory: DocumentStoreFactory | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = org_directory
        self._config = config
        self._clock = clock or SystemClock()
        self._document_store_factory = document_store_factory

    @contextmanager
    def _unit(self, operation: str, actor_id: UUID | None = None) -> Iterator[ApprovalServices]:
        session = self._session_factory()
        with LogContext.bind(correlation_id=uuid4(), actor_id=actor_id):
            try:
                yield ApprovalServices(
                    session,
                    self._directory,
                    self._clock,
                    config=self._config,
                    document_store_factory=self._document_store_factory,
                )
                session.commit()
            except Exception as exc:
                session.rollback()
                logger.warning(
                    "api_call_failed",
                    extra={
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "error_code": getattr(exc, "code", None),
                    },
                )
                raise
            finally:
                session.close()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(
        self,
        module_type: ModuleType,
        company_id: UUID,
        owner_id: UUID,
        title: str = "",
    ) -> DocumentRecord:
        with self._unit("create_document", owner_id) as svc:
            return svc.documents.create_document(module_type, company_id, owner_id, title)

    def get_document(self, document_id: UUID) -> DocumentRecord:
        with self._unit("get_document") as svc:
            return svc.documents.get_document(document_id)

    def advance_document(
        self,
        document_id: UUID,
        action: DocumentAction,
        actor_id: UUID,
    ) -> DocumentRecord:
        """Module progression after approval (printing, processing, issue)."""
        with self._unit("advance_document", actor_id) as svc:
            return svc.documents.advance(document_id, action, actor_id)

    # ------------------------------------------------------------------
    # Approval flows
    # ------------------------------------------------------------------

    def submit(self, document_id: UUID, applicant_id: UUID) -> FlowExecutionInfo:
        with self._unit("submit", applicant_id) as svc:
            return svc.flow_engine.start(document_id, applicant_id)

    def decide(
        self,
        execution_id: UUID,
        step_order: int,
        actor_id: UUID,
        decision: FlowDecision,
        comment: str = "",
        proxy_delegation_id: UUID | None = None,
    ) -> FlowExecutionInfo:
        with self._unit("decide", actor_id) as svc:
            return svc.flow_engine.decide(
                execution_id,
                step_order,
                actor_id,
                decision,
                comment=comment,
                proxy_delegation_id=proxy_delegation_id,
            )

    def cancel(self, execution_id: UUID, actor_id: UUID) -> FlowExecutionInfo:
        with self._unit("cancel", actor_id) as svc:
            return svc.flow_engine.cancel(execution_id, actor_id)

    def get_pending(self, employee_id: UUID) -> list[PendingApproval]:
        with self._unit("get_pending", employee_id) as svc:
            return svc.approvals.get_pending(employee_id)

    def get_proxy_pending(
        self,
        employee_id: UUID,
        on_date: date | None = None,
    ) -> list[PendingApproval]:
        """Items ``employee_id`` may decide as a delegate, on the clock date by default."""
        with self._unit("get_proxy_pending", employee_id) as svc:
            return svc.approvals.get_proxy_pending(employee_id, on_date or self._clock.today())

    def get_history(self, employee_id: UUID) -> list[FlowApprovalInfo]:
        with self._unit("get_history", employee_id) as svc:
            return svc.approvals.get_history(employee_id)

    def get_execution(self, execution_id: UUID) -> FlowExecutionInfo:
        with self._unit("get_execution") as svc:
            return svc.approvals.get_execution(execution_id)

    def list_executions(self, document_id: UUID) -> list[FlowExecutionInfo]:
        with self._unit("list_executions") as svc:
            return svc.approvals.executions_for_document(document_id)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def upsert_template(
        self,
        company_id: UUID,
        module_type: ModuleType,
        name: str,
        steps: Iterable[StepDefinition],
        actor_id: UUID,
        description: str = "",
    ) -> FlowTemplateInfo:
        with self._unit("upsert_template", actor_id) as svc:
            return svc.templates.upsert_template(
                company_id, module_type, name, list(steps), actor_id, description,
            )

    def deactivate_template(
        self,
        company_id: UUID,
        module_type: ModuleType,
        actor_id: UUID,
    ) -> FlowTemplateInfo:
        with self._unit("deactivate_template", actor_id) as svc:
            return svc.templates.deactivate_template(company_id, module_type, actor_id)

    def get_current_template(
        self,
        company_id: UUID,
        module_type: ModuleType,
    ) -> FlowTemplateInfo | None:
        with self._unit("get_current_template") as svc:
            return svc.templates.get_current_template(company_id, module_type)

    def list_templates(
        self,
        company_id: UUID,
        include_retired: bool = False,
    ) -> list[FlowTemplateInfo]:
        with self._unit("list_templates") as svc:
            return svc.templates.list_templates(company_id, include_retired=include_retired)

    def install_configured_templates(self, actor_id: UUID) -> list[FlowTemplateInfo]:
        """Store the templates named in the active configuration."""
        if self._config is None:
            return []
        with self._unit("install_configured_templates", actor_id) as svc:
            return install_templates(svc.session, self._config, actor_id, self._clock)

    # ------------------------------------------------------------------
    # Delegations
    # ------------------------------------------------------------------

    def create_delegation(
        self,
        principal_id: UUID,
        delegate_id: UUID,
        start_date: date,
        end_date: date,
        actor_id: UUID,
        request_types: Iterable[ModuleType] = (),
        company_ids: Iterable[UUID] = (),
        note: str = "",
    ) -> DelegationGrant:
        with self._unit("create_delegation", actor_id) as svc:
            return svc.delegations.create(
                principal_id,
                delegate_id,
                start_date,
                end_date,
                actor_id,
                request_types=request_types,
                company_ids=company_ids,
                note=note,
            )

    def update_delegation(self, delegation_id: UUID, actor_id: UUID, **changes) -> DelegationGrant:
        """Keyword changes: start_date, end_date, request_types, company_ids, is_active, note."""
        with self._unit("update_delegation", actor_id) as svc:
            return svc.delegations.update(delegation_id, actor_id, **changes)

    def delete_delegation(self, delegation_id: UUID, actor_id: UUID) -> None:
        with self._unit("delete_delegation", actor_id) as svc:
            svc.delegations.delete(delegation_id, actor_id)

    def list_delegations(
        self,
        principal_id: UUID | None = None,
        delegate_id: UUID | None = None,
    ) -> list[DelegationGrant]:
        with self._unit("list_delegations") as svc:
            return svc.delegations.list_grants(principal_id, delegate_id)

    # ------------------------------------------------------------------
    # Accounting periods
    # ------------------------------------------------------------------

    def initialize_year(
        self,
        company_id: UUID,
        year: int,
        actor_id: UUID,
    ) -> list[AccountingPeriodInfo]:
        with self._unit("initialize_year", actor_id) as svc:
            return svc.periods.initialize_year(company_id, year, actor_id)

    def close_period(self, period_id: UUID, actor_id: UUID) -> AccountingPeriodInfo:
        with self._unit("close_period", actor_id) as svc:
            return svc.periods.close(period_id, actor_id)

    def reopen_period(self, period_id: UUID, actor_id: UUID) -> AccountingPeriodInfo:
        with self._unit("reopen_period", actor_id) as svc:
            return svc.periods.reopen(period_id, actor_id)

    def lock_period(self, period_id: UUID, actor_id: UUID) -> AccountingPeriodInfo:
        with self._unit("lock_period", actor_id) as svc:
            return svc.periods.lock(period_id, actor_id)

    def get_current_period(self, company_id: UUID) -> AccountingPeriodInfo | None:
        with self._unit("get_current_period") as svc:
            return svc.periods.get_current(company_id)

    def list_periods(self, company_id: UUID, year: int | None = None) -> list[AccountingPeriodInfo]:
        with self._unit("list_periods") as svc:
            return svc.periods.list_periods(company_id, year)

    # ------------------------------------------------------------------
    # Vouchers
    # ------------------------------------------------------------------

    def create_voucher(
        self,
        company_id: UUID,
        voucher_date: date,
        voucher_type: VoucherType,
        lines: Iterable[VoucherLine],
        actor_id: UUID,
        description: str = "",
    ) -> VoucherInfo:
        with self._unit("create_voucher", actor_id) as svc:
            return svc.vouchers.create(
                company_id, voucher_date, voucher_type, list(lines), actor_id, description,
            )

    def update_voucher(self, voucher_id: UUID, actor_id: UUID, **changes) -> VoucherInfo:
        """Keyword changes: voucher_date, voucher_type, description, lines."""
        with self._unit("update_voucher", actor_id) as svc:
            return svc.vouchers.update(voucher_id, actor_id, **changes)

    def delete_voucher(self, voucher_id: UUID, actor_id: UUID) -> None:
        with self._unit("delete_voucher", actor_id) as svc:
            svc.vouchers.delete(voucher_id, actor_id)

    def submit_voucher(self, voucher_id: UUID, actor_id: UUID) -> VoucherInfo:
        with self._unit("submit_voucher", actor_id) as svc:
            return svc.vouchers.submit(voucher_id, actor_id)

    def post_voucher(self, voucher_id: UUID, actor_id: UUID) -> VoucherInfo:
        with self._unit("post_voucher", actor_id) as svc:
            return svc.vouchers.post(voucher_id, actor_id)

    def void_voucher(self, voucher_id: UUID, actor_id: UUID) -> VoucherInfo:
        with self._unit("void_voucher", actor_id) as svc:
            return svc.vouchers.void(voucher_id, actor_id)

    def get_voucher(self, voucher_id: UUID) -> VoucherInfo:
        with self._unit("get_voucher") as svc:
            return svc.vouchers.get(voucher_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def list_notifications(
        self,
        recipient_id: UUID,
        unread_only: bool = False,
    ) -> list[NotificationInfo]:
        with self._unit("list_notifications", recipient_id) as svc:
            return svc.notifications.list_for(recipient_id, unread_only)

    def mark_notification_read(self, notification_id: UUID, recipient_id: UUID) -> bool:
        with self._unit("mark_notification_read", recipient_id) as svc:
            return svc.notifications.mark_read(notification_id, recipient_id)
