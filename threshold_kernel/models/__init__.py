"""ORM models for the threshold kernel."""

from threshold_kernel.models.audit_event import ThresholdChangeEventModel
from threshold_kernel.models.change_request import ThresholdChangeRequestModel
from threshold_kernel.models.notification import ThresholdNotificationModel
from threshold_kernel.models.threshold import (
    ThresholdConfigModel,
    ThresholdHistoryModel,
)

__all__ = [
    "ThresholdChangeEventModel",
    "ThresholdChangeRequestModel",
    "ThresholdConfigModel",
    "ThresholdHistoryModel",
    "ThresholdNotificationModel",
]
