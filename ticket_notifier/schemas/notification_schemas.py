from typing import Dict, List

from pydantic import Field

from ticket_notifier.domain.notification_timing import NotificationType
from ticket_notifier.schemas.camel_base_model import CamelCaseBaseModel


class NotificationCallbackRequest(CamelCaseBaseModel):
    """Payload the task queue posts back when a notification is due."""

    ticket_id: str = Field(..., min_length=1, max_length=36)
    notification_type: NotificationType


class DeliveryResponse(CamelCaseBaseModel):
    ticket_id: str
    notification_type: NotificationType
    outcome: str


class SweepResponse(CamelCaseBaseModel):
    processed: int
    outcomes: Dict[str, int] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class MaintenanceResponse(CamelCaseBaseModel):
    affected: int
