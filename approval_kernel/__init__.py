"""
Approval Kernel

A guarded state-transition core for business-document approval with:
- A pure, table-driven document lifecycle state machine
- Multi-step flow templates with lazily resolved approvers
- Time-boxed, scoped delegation of approval authority
- Accounting-period guard for voucher mutation
- Write-once approval decisions under concurrent callers
"""

__version__ = "0.1.0"
