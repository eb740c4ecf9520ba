"""
NotificationService -- transactional notification outbox.

Responsibility:
    Record who must be told about a flow event (new approval request,
    final approval, rejection, cancellation, CC) in the same transaction
    as the event.  Delivery is an outer-layer concern.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.notification import NotificationInfo, NotificationKind
from approval_kernel.logging_config import get_logger
from approval_kernel.models.notification import NotificationModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.notification")


class NotificationService(BaseService[NotificationModel]):
    """Write and read outbox rows."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def notify(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        message: str,
        execution_id: UUID | None = None,
        document_id: UUID | None = None,
    ) -> NotificationInfo:
        row = NotificationModel(
            recipient_id=recipient_id,
            kind=NotificationKind(kind).value,
            message=message,
            execution_id=execution_id,
            document_id=document_id,
            created_at=self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        logger.debug(
            "notification_queued",
            extra={
                "recipient_id": str(recipient_id),
                "kind": row.kind,
                "execution_id": str(execution_id) if execution_id else None,
            },
        )
        return row.to_dto()

    def list_for(
        self,
        recipient_id: UUID,
        unread_only: bool = False,
    ) -> list[NotificationInfo]:
        """Newest first."""
        stmt = select(NotificationModel).where(NotificationModel.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(NotificationModel.read_at.is_(None))
        stmt = stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id)
        return [n.to_dto() for n in self.session.execute(stmt).scalars().all()]

    def mark_read(self, notification_id: UUID, recipient_id: UUID) -> bool:
        """Mark one notification read.  Returns False if it is not the recipient's."""
        row = self.session.get(NotificationModel, notification_id)
        if row is None or row.recipient_id != recipient_id:
            return False
        if row.read_at is None:
            row.read_at = self._clock.now()
            self.session.flush()
        return True
