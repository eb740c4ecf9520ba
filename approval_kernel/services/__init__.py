"""Services for the approval kernel (write side)."""

from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.document_service import DocumentService, SqlDocumentStore
from approval_kernel.services.flow_engine import FlowEngine
from approval_kernel.services.flow_template_service import FlowTemplateService
from approval_kernel.services.notification_service import NotificationService
from approval_kernel.services.period_service import PeriodService
from approval_kernel.services.sequence_service import VoucherSequenceService
from approval_kernel.services.voucher_service import VoucherService

__all__ = [
    "DelegationService",
    "DocumentService",
    "FlowEngine",
    "FlowTemplateService",
    "NotificationService",
    "PeriodService",
    "SqlDocumentStore",
    "VoucherSequenceService",
    "VoucherService",
]
