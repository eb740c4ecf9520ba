"""
Module: approval_kernel.db.base
Responsibility: Declarative base classes shared by every ORM model of the
    approval kernel: UUID primary keys, a type annotation map for portable
    column types, and the TrackedBase mixin carrying creation metadata.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel; MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row has a uuid4 primary key stored as a 36-char string, so the
      same schema runs unchanged on PostgreSQL and SQLite.
    - Decimal maps to Numeric(38, 9).  Voucher amounts never touch float.
    - datetime maps to DateTime(timezone=True).

Audit relevance:
    TrackedBase.created_at / created_by_id identify who introduced a
    template, delegation grant, document or voucher.  updated_at and
    updated_by_id are metadata and may change on otherwise frozen rows.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as String(36).

    Contract:
        Python UUID in, Python UUID out; the database only ever sees the
        canonical hyphenated string form.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all approval kernel models.

    Guarantees:
        - id is a uuid4-generated UUID.
        - Decimal -> Numeric(38, 9), datetime -> timezone-aware DateTime,
          date -> Date, int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base recording who created a row and when.

    Contract:
        created_at is filled by the database on INSERT; created_by_id is
        required.  updated_at / updated_by_id follow every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


# Re-export UUID for convenience
UUID = PyUUID
