"""
Document lifecycle state machine (``approval_kernel.domain.document``).

Responsibility
--------------
The single transition table shared by every request type (leave, expense,
seal, business card, stationery, overtime, business trip), plus the
Document Store protocol through which the kernel reads and writes a
document's status.

Architecture position
---------------------
**Kernel domain layer** -- pure data and pure functions.  ZERO I/O.

Invariants enforced
-------------------
* The approval backbone is identical for every module:
  ``DRAFT -> PENDING -> APPROVED | REJECTED`` and ``DRAFT | PENDING ->
  CANCELLED``.  Module extensions only add edges leaving ``APPROVED``.
* Every edge names the capability the caller must hold (OWNER, APPROVER,
  HANDLER).  A missing edge and a missing capability both raise
  ``InvalidTransitionError``; nothing is silently ignored.
* CANCELLED, REJECTED and module terminal states have no outgoing edges.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID

from approval_kernel.exceptions import InvalidTransitionError


class ModuleType(str, Enum):
    """Request types that run through the approval engine."""

    LEAVE = "leave"
    EXPENSE = "expense"
    SEAL = "seal"
    CARD = "card"
    STATIONERY = "stationery"
    OVERTIME = "overtime"
    BUSINESS_TRIP = "business_trip"


class DocumentStatus(str, Enum):
    """Union of backbone and module-extension statuses."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PRINTING = "printing"
    PROCESSING = "processing"
    ISSUED = "issued"
    COMPLETED = "completed"


class DocumentAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    START_PRINTING = "start_printing"
    START_PROCESSING = "start_processing"
    ISSUE = "issue"
    COMPLETE = "complete"


class Capability(str, Enum):
    """What the caller is to the document.

    OWNER is the submitting employee, APPROVER is the flow engine acting on
    a recorded decision, HANDLER is the back office fulfilling the request.
    """

    OWNER = "owner"
    APPROVER = "approver"
    HANDLER = "handler"


@dataclass(frozen=True)
class Edge:
    """Target status of a transition and the capability it requires."""

    to_status: DocumentStatus
    capability: Capability


TransitionTable = dict[tuple[DocumentStatus, DocumentAction], Edge]


BACKBONE_TRANSITIONS: TransitionTable = {
    (DocumentStatus.DRAFT, DocumentAction.SUBMIT): Edge(DocumentStatus.PENDING, Capability.OWNER),
    (DocumentStatus.DRAFT, DocumentAction.CANCEL): Edge(DocumentStatus.CANCELLED, Capability.OWNER),
    (DocumentStatus.PENDING, DocumentAction.APPROVE): Edge(DocumentStatus.APPROVED, Capability.APPROVER),
    (DocumentStatus.PENDING, DocumentAction.REJECT): Edge(DocumentStatus.REJECTED, Capability.APPROVER),
    (DocumentStatus.PENDING, DocumentAction.CANCEL): Edge(DocumentStatus.CANCELLED, Capability.OWNER),
}

MODULE_EXTENSIONS: dict[ModuleType, TransitionTable] = {
    ModuleType.CARD: {
        (DocumentStatus.APPROVED, DocumentAction.START_PRINTING): Edge(DocumentStatus.PRINTING, Capability.HANDLER),
        (DocumentStatus.PRINTING, DocumentAction.COMPLETE): Edge(DocumentStatus.COMPLETED, Capability.HANDLER),
    },
    ModuleType.SEAL: {
        (DocumentStatus.APPROVED, DocumentAction.START_PROCESSING): Edge(DocumentStatus.PROCESSING, Capability.HANDLER),
        (DocumentStatus.PROCESSING, DocumentAction.COMPLETE): Edge(DocumentStatus.COMPLETED, Capability.HANDLER),
    },
    ModuleType.STATIONERY: {
        (DocumentStatus.APPROVED, DocumentAction.ISSUE): Edge(DocumentStatus.ISSUED, Capability.HANDLER),
    },
}


def transition_table(module_type: ModuleType) -> TransitionTable:
    """Backbone merged with the module's extension edges."""
    table = dict(BACKBONE_TRANSITIONS)
    table.update(MODULE_EXTENSIONS.get(ModuleType(module_type), {}))
    return table


def next_status(
    module_type: ModuleType,
    current: DocumentStatus,
    action: DocumentAction,
    capabilities: Iterable[Capability],
) -> DocumentStatus:
    """Return the status reached by ``action``.

    Raises:
        InvalidTransitionError: no such edge from ``current``, or the caller
            does not hold the capability the edge requires.
    """
    current = DocumentStatus(current)
    action = DocumentAction(action)
    edge = transition_table(module_type).get((current, action))
    if edge is None:
        raise InvalidTransitionError(
            subject=f"{ModuleType(module_type).value} document",
            current_status=current.value,
            action=action.value,
            reason="no such transition",
        )
    if edge.capability not in frozenset(capabilities):
        raise InvalidTransitionError(
            subject=f"{ModuleType(module_type).value} document",
            current_status=current.value,
            action=action.value,
            reason=f"requires {edge.capability.value} capability",
        )
    return edge.to_status


def allowed_actions(
    module_type: ModuleType,
    status: DocumentStatus,
    capabilities: Iterable[Capability],
) -> frozenset[DocumentAction]:
    """Actions the caller could take from ``status``."""
    held = frozenset(capabilities)
    return frozenset(
        action
        for (from_status, action), edge in transition_table(module_type).items()
        if from_status == status and edge.capability in held
    )


def reachable_statuses(module_type: ModuleType) -> frozenset[DocumentStatus]:
    """All statuses reachable from DRAFT (DRAFT included)."""
    table = transition_table(module_type)
    seen = {DocumentStatus.DRAFT}
    frontier = [DocumentStatus.DRAFT]
    while frontier:
        status = frontier.pop()
        for (from_status, _), edge in table.items():
            if from_status == status and edge.to_status not in seen:
                seen.add(edge.to_status)
                frontier.append(edge.to_status)
    return frozenset(seen)


def is_terminal(module_type: ModuleType, status: DocumentStatus) -> bool:
    """True when no edge leaves ``status`` for this module."""
    return not any(
        from_status == status for (from_status, _) in transition_table(module_type)
    )


# =========================================================================
# Document Store collaborator
# =========================================================================


@dataclass(frozen=True)
class DocumentRecord:
    """What the kernel knows about a business document."""

    document_id: UUID
    module_type: ModuleType
    company_id: UUID
    owner_id: UUID
    status: DocumentStatus
    title: str = ""
    submitted_at: datetime | None = None
    completed_at: datetime | None = None


class DocumentStore(Protocol):
    """Durable home of business documents, owned by the request modules."""

    def load_document(self, document_id: UUID) -> DocumentRecord | None:
        """Return the document, or None if it does not exist."""
        ...

    def set_status(self, document_id: UUID, new_status: DocumentStatus) -> None:
        """Persist a new status (and status timestamps)."""
        ...
