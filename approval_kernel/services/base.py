"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()``, never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries belong to the caller (ApprovalAPI, a
      ``session_scope()`` block, or a test fixture).  A decision, the
      step advance it causes, the document transition and the
      notifications all land in one transaction or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT host read-only listing queries; those live in
          ``approval_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
