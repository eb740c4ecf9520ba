"""
Module: approval_kernel.models.notification
Responsibility: Notification outbox.  Rows are written in the same
    transaction as the flow state change that causes them, so a rolled
    back decision never leaves a notification behind.  Delivery (mail,
    chat, push) is an outer-layer concern that reads this table.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.notification import NotificationInfo, NotificationKind


class NotificationModel(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_recipient", "recipient_id", "created_at"),
        Index("ix_notifications_execution", "execution_id"),
    )

    recipient_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    execution_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification {self.kind} to={self.recipient_id}>"

    def to_dto(self) -> NotificationInfo:
        return NotificationInfo(
            notification_id=self.id,
            recipient_id=self.recipient_id,
            kind=NotificationKind(self.kind),
            message=self.message,
            created_at=self.created_at,
            execution_id=self.execution_id,
            document_id=self.document_id,
            read_at=self.read_at,
        )
