"""ORM models for the approval kernel."""

from approval_kernel.models.accounting_period import AccountingPeriodModel
from approval_kernel.models.delegation import DelegationGrantModel
from approval_kernel.models.document import DocumentModel
from approval_kernel.models.flow import (
    FlowApprovalModel,
    FlowExecutionModel,
    FlowTemplateModel,
    FlowTemplateStepModel,
)
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.voucher import (
    VoucherLineModel,
    VoucherModel,
    VoucherSequenceModel,
)

__all__ = [
    "AccountingPeriodModel",
    "DelegationGrantModel",
    "DocumentModel",
    "FlowApprovalModel",
    "FlowExecutionModel",
    "FlowTemplateModel",
    "FlowTemplateStepModel",
    "NotificationModel",
    "VoucherLineModel",
    "VoucherModel",
    "VoucherSequenceModel",
]
