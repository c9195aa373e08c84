"""Services for the threshold kernel (write side and kernel reads)."""

from threshold_kernel.services.approval_workflow import ApprovalWorkflow
from threshold_kernel.services.auditor_service import AuditorService
from threshold_kernel.services.notification_router import NotificationRouter
from threshold_kernel.services.sequence_service import SequenceService
from threshold_kernel.services.threshold_store import ThresholdStore

__all__ = [
    "ApprovalWorkflow",
    "AuditorService",
    "NotificationRouter",
    "SequenceService",
    "ThresholdStore",
]
