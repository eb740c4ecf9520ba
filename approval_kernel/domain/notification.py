"""Notification outbox value types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class NotificationKind(str, Enum):
    APPROVAL_REQUEST = "approval_request"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    CC = "cc"


@dataclass(frozen=True)
class NotificationInfo:
    notification_id: UUID
    recipient_id: UUID
    kind: NotificationKind
    message: str
    created_at: datetime
    execution_id: UUID | None = None
    document_id: UUID | None = None
    read_at: datetime | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None
