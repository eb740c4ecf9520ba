"""
Delegation resolution (``approval_kernel.domain.delegation``).

Responsibility
--------------
Decide whether a delegation grant lets its delegate act for a principal on
a given request, and compute the full set of employees who may decide a
step assigned to that principal.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over ``DelegationGrant`` values.
ZERO I/O.  Grants are loaded by the caller.

Invariants enforced
-------------------
* ``grant_covers`` is the only coverage rule.  ``decide()`` authorization
  and the proxy-pending query both call it, so an item shown as
  approvable is never refused for delegation reasons.
* Resolution is one hop: a delegate's own grants are never followed.
* Resolution is a union over every covering grant; the principal is
  always in the result, so widening a grant can only add members.
* An empty ``request_types`` or ``company_ids`` means "all".
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from approval_kernel.domain.document import ModuleType


@dataclass(frozen=True)
class DelegationGrant:
    """Time-boxed permission for ``delegate_id`` to decide for ``principal_id``.

    The window ``[start_date, end_date]`` is inclusive on both ends.
    """

    grant_id: UUID
    principal_id: UUID
    delegate_id: UUID
    start_date: date
    end_date: date
    request_types: frozenset[ModuleType] = field(default_factory=frozenset)
    company_ids: frozenset[UUID] = field(default_factory=frozenset)
    is_active: bool = True
    note: str = ""
    created_at: datetime | None = None

    def covers_date(self, on_date: date) -> bool:
        return self.start_date <= on_date <= self.end_date

    def covers_module(self, module_type: ModuleType) -> bool:
        return not self.request_types or ModuleType(module_type) in self.request_types

    def covers_company(self, company_id: UUID) -> bool:
        return not self.company_ids or company_id in self.company_ids


def grant_covers(
    grant: DelegationGrant,
    principal_id: UUID,
    module_type: ModuleType,
    company_id: UUID,
    on_date: date,
) -> bool:
    """True when ``grant`` lets its delegate act for ``principal_id`` here."""
    return (
        grant.is_active
        and grant.principal_id == principal_id
        and grant.covers_date(on_date)
        and grant.covers_module(module_type)
        and grant.covers_company(company_id)
    )


def covering_grants(
    grants: Iterable[DelegationGrant],
    principal_id: UUID,
    module_type: ModuleType,
    company_id: UUID,
    on_date: date,
) -> tuple[DelegationGrant, ...]:
    """Every grant in ``grants`` that covers the request, in input order."""
    return tuple(
        g for g in grants
        if grant_covers(g, principal_id, module_type, company_id, on_date)
    )


def resolve_effective_approvers(
    principal_id: UUID,
    module_type: ModuleType,
    company_id: UUID,
    on_date: date,
    grants: Iterable[DelegationGrant],
) -> frozenset[UUID]:
    """``{principal_id}`` plus the delegate of every covering grant."""
    delegates = {
        g.delegate_id
        for g in covering_grants(grants, principal_id, module_type, company_id, on_date)
    }
    return frozenset({principal_id} | delegates)
