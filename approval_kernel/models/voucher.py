"""
Module: approval_kernel.models.voucher
Responsibility: ORM persistence for accounting vouchers and their lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

Invariants enforced:
    - UNIQUE(company_id, voucher_no); voucher_no is V{year}{period:02}{seq:06}
      with seq per company.
    - seq comes from the company's VoucherSequenceModel counter row, never
      from the vouchers table itself, so a deleted draft's number is not
      handed out again.
    - Every line has non-negative amounts and at most one non-zero side
      (check constraints).
    - total_debit == total_credit whenever status is pending or posted
      (check constraint, also enforced by VoucherService with a typed error).

Failure modes:
    - IntegrityError on duplicate voucher numbers or constraint violations
      that bypassed the service.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.domain.period import (
    VoucherInfo,
    VoucherLine,
    VoucherStatus,
    VoucherType,
)


class VoucherModel(TrackedBase):
    """Accounting voucher header."""

    __tablename__ = "vouchers"

    __table_args__ = (
        UniqueConstraint("company_id", "voucher_no", name="uq_vouchers_number"),
        UniqueConstraint("company_id", "sequence_no", name="uq_vouchers_sequence"),
        CheckConstraint(
            "status IN ('draft', 'pending', 'posted', 'void')",
            name="ck_vouchers_valid_status",
        ),
        CheckConstraint(
            "voucher_type IN ('receipt', 'payment', 'transfer')",
            name="ck_vouchers_valid_type",
        ),
        CheckConstraint(
            "status NOT IN ('pending', 'posted') OR total_debit = total_credit",
            name="ck_vouchers_balanced",
        ),
        Index("ix_vouchers_period_status", "period_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    voucher_no: Mapped[str] = mapped_column(String(20), nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    voucher_date: Mapped[date] = mapped_column(Date, nullable=False)
    voucher_type: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[str] = mapped_column(String(10), default="draft", nullable=False)
    period_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounting_periods.id"), nullable=False,
    )
    total_debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["VoucherLineModel"]] = relationship(
        "VoucherLineModel",
        back_populates="voucher",
        order_by="VoucherLineModel.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Voucher {self.voucher_no} status={self.status}>"

    def line_values(self) -> tuple[VoucherLine, ...]:
        return tuple(line.to_dto() for line in self.lines)

    def to_dto(self) -> VoucherInfo:
        return VoucherInfo(
            voucher_id=self.id,
            company_id=self.company_id,
            voucher_no=self.voucher_no,
            voucher_date=self.voucher_date,
            voucher_type=VoucherType(self.voucher_type),
            status=VoucherStatus(self.status),
            period_id=self.period_id,
            total_debit=Decimal(self.total_debit),
            total_credit=Decimal(self.total_credit),
            lines=self.line_values(),
            description=self.description,
            created_by_id=self.created_by_id,
            posted_by_id=self.posted_by_id,
            posted_at=self.posted_at,
            voided_at=self.voided_at,
        )


class VoucherLineModel(Base):
    """One debit or credit line."""

    __tablename__ = "voucher_lines"

    __table_args__ = (
        UniqueConstraint("voucher_id", "line_no", name="uq_voucher_lines_no"),
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_voucher_lines_non_negative",
        ),
        CheckConstraint(
            "debit_amount = 0 OR credit_amount = 0",
            name="ck_voucher_lines_one_side",
        ),
    )

    voucher_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vouchers.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(String(50), nullable=False)
    debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    voucher: Mapped[VoucherModel] = relationship("VoucherModel", back_populates="lines")

    def to_dto(self) -> VoucherLine:
        return VoucherLine(
            account_code=self.account_code,
            debit_amount=Decimal(self.debit_amount),
            credit_amount=Decimal(self.credit_amount),
            description=self.description,
            line_no=self.line_no,
        )


class VoucherSequenceModel(Base):
    """
    Per-company voucher number counter.

    Locked with ``SELECT ... FOR UPDATE`` and incremented by
    ``VoucherSequenceService``; current_value is the last number handed out.
    """

    __tablename__ = "voucher_sequences"

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<VoucherSequence company={self.company_id} value={self.current_value}>"
