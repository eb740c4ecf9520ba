"""
Period guard and voucher lifecycle (``approval_kernel.domain.period``).

Responsibility
--------------
Pure rules deciding whether a voucher may be mutated given its own status
and the status of the accounting period that owns it, the accounting
period lifecycle, and voucher line arithmetic.

Architecture position
---------------------
**Kernel domain layer** -- pure functions and value objects.  ZERO I/O.
The voucher and period services load rows under lock, call
``check_mutation`` and apply the change in the same transaction.

Invariants enforced
-------------------
* CREATE, UPDATE, DELETE, SUBMIT and POST require an OPEN period.
* VOID is allowed in any period status, unless the voucher is already VOID.
* Period lifecycle: OPEN -> CLOSED, CLOSED -> OPEN, CLOSED -> LOCKED.
  LOCKED is absorbing; leaving it raises ``PeriodLockedError`` whoever asks.
* A voucher line carries a debit or a credit, never both, never negative.
* PENDING and POSTED vouchers are balanced.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from approval_kernel.exceptions import (
    InvalidTransitionError,
    InvalidVoucherLineError,
    PeriodLockedError,
    PeriodNotOpenError,
)

ZERO = Decimal("0")
MIN_VOUCHER_LINES = 2


class PeriodStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class PeriodAction(str, Enum):
    CLOSE = "close"
    REOPEN = "reopen"
    LOCK = "lock"


PERIOD_TRANSITIONS: dict[tuple[PeriodStatus, PeriodAction], PeriodStatus] = {
    (PeriodStatus.OPEN, PeriodAction.CLOSE): PeriodStatus.CLOSED,
    (PeriodStatus.CLOSED, PeriodAction.REOPEN): PeriodStatus.OPEN,
    (PeriodStatus.CLOSED, PeriodAction.LOCK): PeriodStatus.LOCKED,
}


def next_period_status(
    current: PeriodStatus,
    action: PeriodAction,
    period_label: str = "",
) -> PeriodStatus:
    """Apply a lifecycle action to a period status.

    Raises:
        PeriodLockedError: ``current`` is LOCKED (for any action).
        InvalidTransitionError: no such edge, e.g. closing a CLOSED period.
    """
    current = PeriodStatus(current)
    action = PeriodAction(action)
    if current == PeriodStatus.LOCKED:
        raise PeriodLockedError(period_label, action.value)
    target = PERIOD_TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransitionError(
            subject=f"accounting period {period_label}".strip(),
            current_status=current.value,
            action=action.value,
            reason="no such transition",
        )
    return target


# =========================================================================
# Vouchers
# =========================================================================


class VoucherStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    POSTED = "posted"
    VOID = "void"


class VoucherType(str, Enum):
    RECEIPT = "receipt"
    PAYMENT = "payment"
    TRANSFER = "transfer"


class VoucherOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SUBMIT = "submit"
    POST = "post"
    VOID = "void"


VOUCHER_TRANSITIONS: dict[tuple[VoucherStatus, VoucherOperation], VoucherStatus] = {
    (VoucherStatus.DRAFT, VoucherOperation.SUBMIT): VoucherStatus.PENDING,
    (VoucherStatus.DRAFT, VoucherOperation.POST): VoucherStatus.POSTED,
    (VoucherStatus.PENDING, VoucherOperation.POST): VoucherStatus.POSTED,
    (VoucherStatus.DRAFT, VoucherOperation.VOID): VoucherStatus.VOID,
    (VoucherStatus.PENDING, VoucherOperation.VOID): VoucherStatus.VOID,
    (VoucherStatus.POSTED, VoucherOperation.VOID): VoucherStatus.VOID,
}

# Content edits leave the status where it is.
EDITABLE_VOUCHER_STATUSES: frozenset[VoucherStatus] = frozenset({VoucherStatus.DRAFT})

# Vouchers in these statuses keep a period from closing.
OPEN_VOUCHER_STATUSES: frozenset[VoucherStatus] = frozenset({
    VoucherStatus.DRAFT,
    VoucherStatus.PENDING,
})

BALANCED_VOUCHER_STATUSES: frozenset[VoucherStatus] = frozenset({
    VoucherStatus.PENDING,
    VoucherStatus.POSTED,
})

_OPEN_PERIOD_OPERATIONS: frozenset[VoucherOperation] = frozenset({
    VoucherOperation.CREATE,
    VoucherOperation.UPDATE,
    VoucherOperation.DELETE,
    VoucherOperation.SUBMIT,
    VoucherOperation.POST,
})


def _check_voucher_edge(
    voucher_status: VoucherStatus | None,
    operation: VoucherOperation,
) -> None:
    if operation == VoucherOperation.CREATE:
        return
    if voucher_status is None:
        raise InvalidTransitionError(
            subject="voucher",
            current_status="none",
            action=operation.value,
            reason="voucher does not exist yet",
        )
    if operation in (VoucherOperation.UPDATE, VoucherOperation.DELETE):
        if voucher_status not in EDITABLE_VOUCHER_STATUSES:
            raise InvalidTransitionError(
                subject="voucher",
                current_status=voucher_status.value,
                action=operation.value,
                reason="only draft vouchers can be edited",
            )
        return
    if (voucher_status, operation) not in VOUCHER_TRANSITIONS:
        reason = (
            "voucher is already void"
            if voucher_status == VoucherStatus.VOID
            else "no such transition"
        )
        raise InvalidTransitionError(
            subject="voucher",
            current_status=voucher_status.value,
            action=operation.value,
            reason=reason,
        )


def check_mutation(
    voucher_status: VoucherStatus | None,
    period_status: PeriodStatus,
    operation: VoucherOperation,
    period_label: str = "",
) -> None:
    """Raise unless ``operation`` is legal for this voucher and period.

    ``voucher_status`` is None for CREATE.  The voucher's own edge is
    checked first, then the period.

    Raises:
        InvalidTransitionError: the voucher status does not allow the
            operation (including VOID on an already VOID voucher).
        PeriodNotOpenError: the operation needs an OPEN period.
    """
    operation = VoucherOperation(operation)
    period_status = PeriodStatus(period_status)
    if voucher_status is not None:
        voucher_status = VoucherStatus(voucher_status)
    _check_voucher_edge(voucher_status, operation)
    if operation in _OPEN_PERIOD_OPERATIONS and period_status != PeriodStatus.OPEN:
        raise PeriodNotOpenError(period_label, period_status.value, operation.value)


def can_mutate(
    voucher_status: VoucherStatus | None,
    period_status: PeriodStatus,
    operation: VoucherOperation,
) -> bool:
    """Boolean form of ``check_mutation``."""
    try:
        check_mutation(voucher_status, period_status, operation)
    except (InvalidTransitionError, PeriodNotOpenError):
        return False
    return True


def next_voucher_status(
    voucher_status: VoucherStatus,
    operation: VoucherOperation,
) -> VoucherStatus:
    """Status after SUBMIT/POST/VOID; content edits keep the status."""
    voucher_status = VoucherStatus(voucher_status)
    operation = VoucherOperation(operation)
    _check_voucher_edge(voucher_status, operation)
    return VOUCHER_TRANSITIONS.get((voucher_status, operation), voucher_status)


# =========================================================================
# Lines and balance
# =========================================================================


@dataclass(frozen=True)
class VoucherLine:
    """One debit or credit line of a voucher."""

    account_code: str
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: str = ""
    line_no: int | None = None


def validate_lines(lines: Iterable[VoucherLine]) -> tuple[VoucherLine, ...]:
    """Check line rules and return the lines numbered 1..N.

    Raises:
        InvalidVoucherLineError: fewer than two lines, a blank account, a
            negative amount, or a line with both debit and credit.
    """
    numbered: list[VoucherLine] = []
    for index, line in enumerate(lines, start=1):
        debit = Decimal(line.debit_amount)
        credit = Decimal(line.credit_amount)
        if not line.account_code or not line.account_code.strip():
            raise InvalidVoucherLineError(index, "account code is required")
        if debit < ZERO or credit < ZERO:
            raise InvalidVoucherLineError(index, "amounts cannot be negative")
        if debit > ZERO and credit > ZERO:
            raise InvalidVoucherLineError(index, "a line cannot carry both debit and credit")
        numbered.append(
            VoucherLine(
                account_code=line.account_code,
                debit_amount=debit,
                credit_amount=credit,
                description=line.description,
                line_no=index,
            )
        )
    if len(numbered) < MIN_VOUCHER_LINES:
        raise InvalidVoucherLineError(
            len(numbered), f"a voucher needs at least {MIN_VOUCHER_LINES} lines"
        )
    return tuple(numbered)


def voucher_totals(lines: Iterable[VoucherLine]) -> tuple[Decimal, Decimal]:
    """(total debit, total credit)."""
    debit = ZERO
    credit = ZERO
    for line in lines:
        debit += Decimal(line.debit_amount)
        credit += Decimal(line.credit_amount)
    return debit, credit


def is_balanced(lines: Iterable[VoucherLine]) -> bool:
    debit, credit = voucher_totals(lines)
    return debit == credit


def format_voucher_no(year: int, period: int, sequence: int) -> str:
    """``V{year}{period:02}{sequence:06}``, e.g. V202401000001."""
    return f"V{year}{period:02d}{sequence:06d}"


def period_label(year: int, period: int) -> str:
    return f"{year}-{period:02d}"


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


# =========================================================================
# Snapshots returned to callers
# =========================================================================


@dataclass(frozen=True)
class AccountingPeriodInfo:
    period_id: UUID
    company_id: UUID
    year: int
    period: int
    start_date: date
    end_date: date
    status: PeriodStatus
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None

    @property
    def label(self) -> str:
        return period_label(self.year, self.period)

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class VoucherInfo:
    voucher_id: UUID
    company_id: UUID
    voucher_no: str
    voucher_date: date
    voucher_type: VoucherType
    status: VoucherStatus
    period_id: UUID
    total_debit: Decimal
    total_credit: Decimal
    lines: tuple[VoucherLine, ...]
    description: str = ""
    created_by_id: UUID | None = None
    posted_by_id: UUID | None = None
    posted_at: datetime | None = None
    voided_at: datetime | None = None

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit
