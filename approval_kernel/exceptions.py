"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval decisions are human actions rendered back to a human.  Callers must
be able to tell "someone already decided this" apart from "you may not
decide this" without parsing message text, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        api.decide(execution_id, 1, actor_id, FlowDecision.APPROVED)
    except AlreadyDecidedError as e:
        show("This step was already decided", step=e.step_order)
    except NotAuthorizedError as e:
        show("You cannot decide this step", reason=e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- InvalidTransitionError
    |
    +-- WorkflowError
    |   +-- NoApproverResolvableError
    |   +-- StepNotFoundError
    |   +-- AlreadyDecidedError
    |   +-- NotAuthorizedError
    |   +-- FlowNotRunningError
    |   +-- ExecutionNotFoundError
    |   +-- ExecutionAlreadyRunningError
    |   +-- FlowTemplateNotFoundError
    |   +-- InvalidFlowTemplateError
    |
    +-- DelegationError
    |   +-- DelegationNotFoundError
    |   +-- InvalidDelegationError
    |
    +-- PeriodError
    |   +-- PeriodNotOpenError
    |   +-- PeriodLockedError
    |   +-- PeriodNotFoundError
    |   +-- PeriodsAlreadyInitializedError
    |   +-- PeriodHasOpenVouchersError
    |
    +-- VoucherError
    |   +-- UnbalancedVoucherError
    |   +-- VoucherNotFoundError
    |   +-- InvalidVoucherLineError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------------
Document     | DOCUMENT_NOT_FOUND          | Document store has no such id
             | INVALID_TRANSITION          | Edge missing or capability absent
-------------|-----------------------------|-----------------------------------------
Workflow     | NO_APPROVER_RESOLVABLE      | Template/fallback rule yields nobody
             | STEP_NOT_FOUND              | No such step, or step is not current
             | ALREADY_DECIDED             | Step decision already recorded
             | NOT_AUTHORIZED              | Actor is neither assignee nor delegate
             | FLOW_NOT_RUNNING            | Execution already finished
             | EXECUTION_NOT_FOUND         | Execution id unknown
             | EXECUTION_ALREADY_RUNNING   | Document already has a running flow
             | FLOW_TEMPLATE_NOT_FOUND     | Template id unknown
             | INVALID_FLOW_TEMPLATE       | Template definition rejected
-------------|-----------------------------|-----------------------------------------
Delegation   | DELEGATION_NOT_FOUND        | Grant id unknown
             | INVALID_DELEGATION          | Self-delegation, inverted window
-------------|-----------------------------|-----------------------------------------
Period       | PERIOD_NOT_OPEN             | Mutation needs an OPEN period
             | PERIOD_LOCKED               | LOCKED periods never change
             | PERIOD_NOT_FOUND            | No period for id/date
             | PERIODS_ALREADY_INITIALIZED | Year already has periods
             | PERIOD_HAS_OPEN_VOUCHERS    | Close blocked by DRAFT/PENDING vouchers
-------------|-----------------------------|-----------------------------------------
Voucher      | UNBALANCED_VOUCHER          | Debits != credits
             | VOUCHER_NOT_FOUND           | Voucher id unknown
             | INVALID_VOUCHER_LINE        | Line has both sides, negative amount
-------------|-----------------------------|-----------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | Overwriting a decided approval

===============================================================================
HANDLING PATTERNS
===============================================================================

None of these errors is retried by the kernel.  Retrying is a caller
concern (re-fetch, then re-submit).  The API facade rolls back the
surrounding transaction before re-raising, so a failed call never leaves
partial state behind.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Document-related exceptions


class DocumentError(ApprovalKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document store has no document with this id."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class InvalidTransitionError(DocumentError):
    """The state machine has no such edge, or the caller lacks its capability."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, subject: str, current_status: str, action: str, reason: str):
        self.subject = subject
        self.current_status = current_status
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action} {subject} in status {current_status}: {reason}"
        )


# Workflow-related exceptions


class WorkflowError(ApprovalKernelError):
    """Base exception for flow execution errors."""

    code: str = "WORKFLOW_ERROR"


class NoApproverResolvableError(WorkflowError):
    """The approver rule for a step resolved to nobody."""

    code: str = "NO_APPROVER_RESOLVABLE"

    def __init__(self, step_order: int, step_name: str, rule_type: str):
        self.step_order = step_order
        self.step_name = step_name
        self.rule_type = rule_type
        super().__init__(
            f"No approver resolvable for step {step_order} '{step_name}' "
            f"(rule: {rule_type})"
        )


class StepNotFoundError(WorkflowError):
    """No approval row exists for the step, or it is not the current step."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, execution_id: str, step_order: int, reason: str):
        self.execution_id = execution_id
        self.step_order = step_order
        self.reason = reason
        super().__init__(
            f"Step {step_order} of execution {execution_id} not decidable: {reason}"
        )


class AlreadyDecidedError(WorkflowError):
    """The step already carries a decision (write-once)."""

    code: str = "ALREADY_DECIDED"

    def __init__(self, execution_id: str, step_order: int):
        self.execution_id = execution_id
        self.step_order = step_order
        super().__init__(
            f"Step {step_order} of execution {execution_id} is already decided"
        )


class NotAuthorizedError(WorkflowError):
    """The actor holds neither the assignment nor a covering delegation."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, subject: str, reason: str):
        self.actor_id = actor_id
        self.subject = subject
        self.reason = reason
        super().__init__(f"Actor {actor_id} not authorized for {subject}: {reason}")


class FlowNotRunningError(WorkflowError):
    """The execution has already reached a terminal status."""

    code: str = "FLOW_NOT_RUNNING"

    def __init__(self, execution_id: str, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Execution {execution_id} is not running (status: {status})")


class ExecutionNotFoundError(WorkflowError):
    """Execution id does not exist."""

    code: str = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Flow execution not found: {execution_id}")


class ExecutionAlreadyRunningError(WorkflowError):
    """A document may have only one running execution at a time."""

    code: str = "EXECUTION_ALREADY_RUNNING"

    def __init__(self, document_id: str, execution_id: str):
        self.document_id = document_id
        self.execution_id = execution_id
        super().__init__(
            f"Document {document_id} already has running execution {execution_id}"
        )


class FlowTemplateNotFoundError(WorkflowError):
    """Flow template id does not exist."""

    code: str = "FLOW_TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Flow template not found: {template_id}")


class InvalidFlowTemplateError(WorkflowError):
    """Template definition violates the step rules."""

    code: str = "INVALID_FLOW_TEMPLATE"

    def __init__(self, template_name: str, reason: str):
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Invalid flow template '{template_name}': {reason}")


# Delegation-related exceptions


class DelegationError(ApprovalKernelError):
    """Base exception for delegation grant errors."""

    code: str = "DELEGATION_ERROR"


class DelegationNotFoundError(DelegationError):
    """Delegation grant id does not exist."""

    code: str = "DELEGATION_NOT_FOUND"

    def __init__(self, delegation_id: str):
        self.delegation_id = delegation_id
        super().__init__(f"Delegation grant not found: {delegation_id}")


class InvalidDelegationError(DelegationError):
    """Grant definition rejected."""

    code: str = "INVALID_DELEGATION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid delegation: {reason}")


# Period-related exceptions


class PeriodError(ApprovalKernelError):
    """Base exception for accounting period errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotOpenError(PeriodError):
    """The operation requires the owning period to be OPEN."""

    code: str = "PERIOD_NOT_OPEN"

    def __init__(self, period_label: str, status: str, operation: str):
        self.period_label = period_label
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} in period {period_label}: period is {status}"
        )


class PeriodLockedError(PeriodError):
    """LOCKED periods are absorbing: nothing transitions out of them."""

    code: str = "PERIOD_LOCKED"

    def __init__(self, period_label: str, operation: str):
        self.period_label = period_label
        self.operation = operation
        super().__init__(f"Cannot {operation} locked period {period_label}")


class PeriodNotFoundError(PeriodError):
    """No period for the given id or date."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, lookup: str):
        self.lookup = lookup
        super().__init__(f"No accounting period found for: {lookup}")


class PeriodsAlreadyInitializedError(PeriodError):
    """The fiscal year already has periods for this company."""

    code: str = "PERIODS_ALREADY_INITIALIZED"

    def __init__(self, company_id: str, year: int):
        self.company_id = company_id
        self.year = year
        super().__init__(f"Accounting periods for {year} already exist (company {company_id})")


class PeriodHasOpenVouchersError(PeriodError):
    """Period close blocked by vouchers that are not yet posted."""

    code: str = "PERIOD_HAS_OPEN_VOUCHERS"

    def __init__(self, period_label: str, open_count: int):
        self.period_label = period_label
        self.open_count = open_count
        super().__init__(
            f"Period {period_label} has {open_count} unposted voucher(s) and cannot close"
        )


# Voucher-related exceptions


class VoucherError(ApprovalKernelError):
    """Base exception for voucher errors."""

    code: str = "VOUCHER_ERROR"


class UnbalancedVoucherError(VoucherError):
    """Voucher debits do not equal credits."""

    code: str = "UNBALANCED_VOUCHER"

    def __init__(self, voucher_id: str, debits: str, credits: str):
        self.voucher_id = voucher_id
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Unbalanced voucher {voucher_id}: debits={debits}, credits={credits}"
        )


class VoucherNotFoundError(VoucherError):
    """Voucher id does not exist."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, voucher_id: str):
        self.voucher_id = voucher_id
        super().__init__(f"Voucher not found: {voucher_id}")


class InvalidVoucherLineError(VoucherError):
    """A voucher line violates the one-sided, non-negative amount rule."""

    code: str = "INVALID_VOUCHER_LINE"

    def __init__(self, line_no: int, reason: str):
        self.line_no = line_no
        self.reason = reason
        super().__init__(f"Invalid voucher line {line_no}: {reason}")


# Immutability-related exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
