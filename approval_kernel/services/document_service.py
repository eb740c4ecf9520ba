"""
Document services -- SQL-backed Document Store and module progression.

Responsibility:
    ``SqlDocumentStore`` implements the ``DocumentStore`` protocol over the
    ``documents`` table.  ``DocumentService`` creates documents and drives
    the module-specific progression after approval (card printing, seal
    processing, stationery issue) through the same transition table the
    flow engine uses.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Every status change goes through ``next_status``; there is no other
      write path to ``documents.status``.
    - The backbone edges (submit, approve, reject, cancel) are driven by
      the flow engine.  ``DocumentService.advance`` acts with the HANDLER
      capability only, so it can never approve or cancel a document.

Failure modes:
    - DocumentNotFoundError for unknown ids.
    - InvalidTransitionError for a missing edge or capability.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.document import (
    Capability,
    DocumentAction,
    DocumentRecord,
    DocumentStatus,
    ModuleType,
    is_terminal,
    next_status,
)
from approval_kernel.exceptions import DocumentNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.document import DocumentModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.document")


class SqlDocumentStore(BaseService[DocumentModel]):
    """``DocumentStore`` over the reference ``documents`` table."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def load_document(self, document_id: UUID) -> DocumentRecord | None:
        row = self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.id == document_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def set_status(self, document_id: UUID, new_status: DocumentStatus) -> None:
        row = self.session.get(DocumentModel, document_id)
        if row is None:
            raise DocumentNotFoundError(str(document_id))
        new_status = DocumentStatus(new_status)
        now = self._clock.now()
        row.status = new_status.value
        if new_status == DocumentStatus.PENDING and row.submitted_at is None:
            row.submitted_at = now
        if is_terminal(ModuleType(row.module_type), new_status):
            row.completed_at = now
        self.session.flush()


class DocumentService(BaseService[DocumentModel]):
    """Create documents and run module progression steps."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._store = SqlDocumentStore(session, self._clock)

    @property
    def store(self) -> SqlDocumentStore:
        return self._store

    def create_document(
        self,
        module_type: ModuleType,
        company_id: UUID,
        owner_id: UUID,
        title: str = "",
    ) -> DocumentRecord:
        """Create a DRAFT document owned by ``owner_id``."""
        row = DocumentModel(
            module_type=ModuleType(module_type).value,
            company_id=company_id,
            owner_id=owner_id,
            title=title,
            status=DocumentStatus.DRAFT.value,
            created_by_id=owner_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "document_created",
            extra={
                "document_id": str(row.id),
                "module_type": row.module_type,
                "company_id": str(company_id),
            },
        )
        return row.to_dto()

    def get_document(self, document_id: UUID) -> DocumentRecord:
        record = self._store.load_document(document_id)
        if record is None:
            raise DocumentNotFoundError(str(document_id))
        return record

    def advance(
        self,
        document_id: UUID,
        action: DocumentAction,
        actor_id: UUID,
    ) -> DocumentRecord:
        """Apply a handler action (e.g. START_PRINTING, ISSUE) to a document."""
        record = self.get_document(document_id)
        new_status = next_status(
            record.module_type,
            record.status,
            DocumentAction(action),
            {Capability.HANDLER},
        )
        self._store.set_status(document_id, new_status)
        logger.info(
            "document_advanced",
            extra={
                "document_id": str(document_id),
                "action": DocumentAction(action).value,
                "from_status": record.status.value,
                "to_status": new_status.value,
                "actor_id": str(actor_id),
            },
        )
        return self.get_document(document_id)
