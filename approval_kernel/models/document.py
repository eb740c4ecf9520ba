"""
Module: approval_kernel.models.document
Responsibility: Reference persistence for business documents (leave,
    expense, seal, card, stationery, overtime, business trip requests).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

The request modules own their documents.  This table holds the part the
approval kernel reads and writes (status, owner, company, module type and
status timestamps), so the kernel runs end-to-end without a module-side
store.  Per-type field schemas are not modelled here.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString
from approval_kernel.domain.document import (
    DocumentRecord,
    DocumentStatus,
    ModuleType,
)


class DocumentModel(TrackedBase):
    """
    A business request record.

    Guarantees:
        - status is one of DocumentStatus (check constraint).
        - submitted_at is set when the document first leaves DRAFT.
    """

    __tablename__ = "documents"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'approved', 'rejected', 'cancelled', "
            "'printing', 'processing', 'issued', 'completed')",
            name="ck_documents_valid_status",
        ),
        Index("ix_documents_owner", "owner_id"),
        Index("ix_documents_company_module", "company_id", "module_type"),
    )

    module_type: Mapped[str] = mapped_column(String(30), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DocumentStatus.DRAFT.value, nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.module_type} status={self.status}>"

    def to_dto(self) -> DocumentRecord:
        return DocumentRecord(
            document_id=self.id,
            module_type=ModuleType(self.module_type),
            company_id=self.company_id,
            owner_id=self.owner_id,
            status=DocumentStatus(self.status),
            title=self.title,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
        )
