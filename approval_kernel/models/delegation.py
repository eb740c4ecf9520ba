"""
Module: approval_kernel.models.delegation
Responsibility: ORM persistence for delegation grants (principal ->
    delegate, time-boxed, scoped by request type and company).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

Invariants enforced:
    - principal_id != delegate_id (check constraint, also validated by
      DelegationService with a typed error).
    - start_date <= end_date.

Audit relevance:
    Grants are a lookup overlay.  Approvals decided through a grant keep
    its id in FlowApproval.proxy_delegation_id even after the grant is
    deleted.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString
from approval_kernel.domain.delegation import DelegationGrant
from approval_kernel.domain.document import ModuleType


class DelegationGrantModel(TrackedBase):
    """
    Persistent delegation grant.

    request_types and company_ids are JSON arrays of strings; an empty
    array means "all".
    """

    __tablename__ = "delegation_grants"

    __table_args__ = (
        CheckConstraint("principal_id <> delegate_id", name="ck_delegation_not_self"),
        CheckConstraint("start_date <= end_date", name="ck_delegation_window"),
        Index("ix_delegation_grants_delegate", "delegate_id", "is_active"),
        Index("ix_delegation_grants_principal", "principal_id"),
    )

    principal_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    delegate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    request_types: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    company_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DelegationGrant {self.principal_id} -> {self.delegate_id} "
            f"{self.start_date}..{self.end_date} active={self.is_active}>"
        )

    def to_dto(self) -> DelegationGrant:
        return DelegationGrant(
            grant_id=self.id,
            principal_id=self.principal_id,
            delegate_id=self.delegate_id,
            start_date=self.start_date,
            end_date=self.end_date,
            request_types=frozenset(ModuleType(t) for t in (self.request_types or ())),
            company_ids=frozenset(UUID(c) for c in (self.company_ids or ())),
            is_active=self.is_active,
            note=self.note,
            created_at=self.created_at,
        )
