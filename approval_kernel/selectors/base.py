"""
Module: approval_kernel.selectors.base
Responsibility: Abstract base for read-only query selectors (pending
    approvals, proxy-pending approvals, decision history).
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain value types.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen domain DTOs, never ORM instances.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, runs queries inside the caller's
        transaction and returns DTOs.
    """

    def __init__(self, session: Session):
        self.session = session
