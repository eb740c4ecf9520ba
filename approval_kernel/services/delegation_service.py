"""
DelegationService -- delegation grant CRUD.

Responsibility:
    Create, edit, delete and list the grants that let a delegate decide
    approval steps assigned to a principal.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - No self-delegation; start_date <= end_date.
    - Only the principal edits or deletes a grant.
    - Deleting a grant leaves decided FlowApproval rows untouched; their
      proxy_delegation_id stays as an audit reference.

Failure modes:
    - InvalidDelegationError, DelegationNotFoundError, NotAuthorizedError.
"""

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.delegation import DelegationGrant
from approval_kernel.domain.document import ModuleType
from approval_kernel.exceptions import (
    DelegationNotFoundError,
    InvalidDelegationError,
    NotAuthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.delegation import DelegationGrantModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.delegation")

_UNSET = object()


def _module_values(request_types: Iterable[ModuleType]) -> list[str]:
    return sorted({ModuleType(t).value for t in request_types})


def _company_values(company_ids: Iterable[UUID]) -> list[str]:
    return sorted({str(c) for c in company_ids})


class DelegationService(BaseService[DelegationGrantModel]):
    """
    Manage delegation grants.

    Contract:
        Returns frozen ``DelegationGrant`` DTOs.  Never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create(
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
        """Create a grant.  ``actor_id`` must be the principal."""
        if actor_id != principal_id:
            raise NotAuthorizedError(
                str(actor_id), f"delegation for {principal_id}",
                "only the principal may delegate",
            )
        self._validate(principal_id, delegate_id, start_date, end_date)

        row = DelegationGrantModel(
            principal_id=principal_id,
            delegate_id=delegate_id,
            start_date=start_date,
            end_date=end_date,
            request_types=_module_values(request_types),
            company_ids=_company_values(company_ids),
            is_active=True,
            note=note,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "delegation_created",
            extra={
                "delegation_id": str(row.id),
                "principal_id": str(principal_id),
                "delegate_id": str(delegate_id),
                "start_date": str(start_date),
                "end_date": str(end_date),
                "request_types": row.request_types,
            },
        )
        return row.to_dto()

    def update(
        self,
        delegation_id: UUID,
        actor_id: UUID,
        *,
        start_date=_UNSET,
        end_date=_UNSET,
        request_types=_UNSET,
        company_ids=_UNSET,
        is_active=_UNSET,
        note=_UNSET,
    ) -> DelegationGrant:
        """Edit dates, scope, active flag or note.  Omitted fields are kept."""
        row = self._get_owned_for_update(delegation_id, actor_id)

        new_start = row.start_date if start_date is _UNSET else start_date
        new_end = row.end_date if end_date is _UNSET else end_date
        self._validate(row.principal_id, row.delegate_id, new_start, new_end)

        row.start_date = new_start
        row.end_date = new_end
        if request_types is not _UNSET:
            row.request_types = _module_values(request_types)
        if company_ids is not _UNSET:
            row.company_ids = _company_values(company_ids)
        if is_active is not _UNSET:
            row.is_active = bool(is_active)
        if note is not _UNSET:
            row.note = note
        row.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "delegation_updated",
            extra={"delegation_id": str(delegation_id), "is_active": row.is_active},
        )
        return row.to_dto()

    def delete(self, delegation_id: UUID, actor_id: UUID) -> None:
        row = self._get_owned_for_update(delegation_id, actor_id)
        self.session.delete(row)
        self.session.flush()
        logger.info("delegation_deleted", extra={"delegation_id": str(delegation_id)})

    def get(self, delegation_id: UUID) -> DelegationGrant:
        row = self.session.get(DelegationGrantModel, delegation_id)
        if row is None:
            raise DelegationNotFoundError(str(delegation_id))
        return row.to_dto()

    def list_grants(
        self,
        principal_id: UUID | None = None,
        delegate_id: UUID | None = None,
    ) -> list[DelegationGrant]:
        """Grants filtered by principal and/or delegate, oldest window first."""
        stmt = select(DelegationGrantModel)
        if principal_id is not None:
            stmt = stmt.where(DelegationGrantModel.principal_id == principal_id)
        if delegate_id is not None:
            stmt = stmt.where(DelegationGrantModel.delegate_id == delegate_id)
        stmt = stmt.order_by(DelegationGrantModel.start_date, DelegationGrantModel.id)
        return [g.to_dto() for g in self.session.execute(stmt).scalars().all()]

    def list_active_for_delegate(
        self,
        delegate_id: UUID,
        on_date: date | None = None,
    ) -> list[DelegationGrant]:
        """Active grants to ``delegate_id`` whose window covers ``on_date``."""
        on_date = on_date or self._clock.today()
        rows = self.session.execute(
            select(DelegationGrantModel)
            .where(
                DelegationGrantModel.delegate_id == delegate_id,
                DelegationGrantModel.is_active.is_(True),
                DelegationGrantModel.start_date <= on_date,
                DelegationGrantModel.end_date >= on_date,
            )
            .order_by(DelegationGrantModel.start_date, DelegationGrantModel.id)
        ).scalars().all()
        return [g.to_dto() for g in rows]

    def _validate(
        self,
        principal_id: UUID,
        delegate_id: UUID,
        start_date: date,
        end_date: date,
    ) -> None:
        if principal_id == delegate_id:
            raise InvalidDelegationError("cannot delegate to yourself")
        if start_date > end_date:
            raise InvalidDelegationError(
                f"start_date ({start_date}) is after end_date ({end_date})"
            )

    def _get_owned_for_update(self, delegation_id: UUID, actor_id: UUID) -> DelegationGrantModel:
        row = self.session.execute(
            select(DelegationGrantModel)
            .where(DelegationGrantModel.id == delegation_id)
            .with_for_update()
        ).scalar_one_or_none()
        if row is None:
            raise DelegationNotFoundError(str(delegation_id))
        if row.principal_id != actor_id:
            logger.warning(
                "delegation_change_refused",
                extra={"delegation_id": str(delegation_id), "actor_id": str(actor_id)},
            )
            raise NotAuthorizedError(
                str(actor_id), f"delegation {delegation_id}",
                "only the principal may change a delegation",
            )
        return row
