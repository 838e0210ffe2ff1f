import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from ticket_notifier.domain.notification_timing import NotificationType, display_name
from ticket_notifier.utils.datetime_utils import ensure_aware

SEND_WINDOW = timedelta(minutes=5)
EXPIRY_WINDOW = timedelta(hours=2)
RETRY_COOLDOWN = timedelta(minutes=5)


class NotificationStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationEvent(str, Enum):
    DELIVERED = "delivered"
    DELIVERY_EXHAUSTED = "delivery_exhausted"
    CANCELLED = "cancelled"
    REARMED = "rearmed"


class CancellationReason(str, Enum):
    TICKET_UPDATE = "Cancelled due to ticket update"
    SALE_DATE_CHANGE = "Cancelled due to sale date change"
    TICKET_DELETION = "Cancelled due to ticket deletion"
    EXPIRED = "Cancelled due to expiration"
    MANUAL_INTERVENTION = "Cancelled due to manual intervention"
    SYSTEM_MAINTENANCE = "Cancelled due to system maintenance"


TERMINAL_STATUSES: FrozenSet[NotificationStatus] = frozenset(
    {NotificationStatus.SENT, NotificationStatus.CANCELLED}
)
ACTIVE_STATUSES: FrozenSet[NotificationStatus] = frozenset(
    {NotificationStatus.SCHEDULED, NotificationStatus.SENT, NotificationStatus.FAILED}
)

# (current status, event) -> next status. Anything missing is illegal.
TRANSITIONS: Dict[Tuple[NotificationStatus, NotificationEvent], NotificationStatus] = {
    (NotificationStatus.SCHEDULED, NotificationEvent.DELIVERED): NotificationStatus.SENT,
    (
        NotificationStatus.SCHEDULED,
        NotificationEvent.DELIVERY_EXHAUSTED,
    ): NotificationStatus.FAILED,
    (
        NotificationStatus.SCHEDULED,
        NotificationEvent.CANCELLED,
    ): NotificationStatus.CANCELLED,
    (NotificationStatus.FAILED, NotificationEvent.REARMED): NotificationStatus.SCHEDULED,
    (NotificationStatus.FAILED, NotificationEvent.CANCELLED): NotificationStatus.CANCELLED,
}


class InvalidTransitionError(ValueError):
    def __init__(self, status: NotificationStatus, event: NotificationEvent):
        super().__init__(
            f"Illegal notification transition: {status.value} --{event.value}-->"
        )
        self.status = status
        self.event = event


@dataclass(frozen=True)
class Notification:
    """
    One reminder for one ticket and timing type.

    `scheduled_at` is fixed at creation; a new sale start means cancelling this
    row and creating another. For failed and cancelled rows `updated_at`
    records when that happened.
    """

    id: str
    ticket_id: str
    notification_type: NotificationType
    scheduled_at: datetime
    status: NotificationStatus = NotificationStatus.SCHEDULED
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    external_task_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Notification id must not be empty")
        if not self.ticket_id or not self.ticket_id.strip():
            raise ValueError("Notification ticket_id must not be empty")
        object.__setattr__(
            self, "notification_type", NotificationType(self.notification_type)
        )
        object.__setattr__(self, "status", NotificationStatus(self.status))
        ensure_aware(self.scheduled_at, "scheduled_at")
        for name in ("sent_at", "created_at", "updated_at"):
            value = getattr(self, name)
            if value is not None:
                ensure_aware(value, name)

        if self.status == NotificationStatus.SENT:
            if self.sent_at is None:
                raise ValueError("Sent notifications must have sent_at")
            if self.error_message is not None:
                raise ValueError("Sent notifications must not carry an error message")
        if self.status == NotificationStatus.FAILED and not self.error_message:
            raise ValueError("Failed notifications must have an error message")

    @classmethod
    def create(
        cls,
        ticket_id: str,
        notification_type: NotificationType,
        scheduled_at: datetime,
        now: datetime,
        external_task_id: Optional[str] = None,
    ) -> "Notification":
        return cls(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            notification_type=notification_type,
            scheduled_at=scheduled_at,
            status=NotificationStatus.SCHEDULED,
            external_task_id=external_task_id,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def display_name(self) -> str:
        return display_name(self.notification_type)

    def is_in_send_window(self, now: datetime) -> bool:
        return self.scheduled_at - ensure_aware(now, "now") <= SEND_WINDOW

    def can_be_sent(self, now: datetime) -> bool:
        if self.status != NotificationStatus.SCHEDULED:
            return False
        return self.is_in_send_window(now)

    def is_expired(self, now: datetime) -> bool:
        if self.status == NotificationStatus.SENT:
            return False
        return ensure_aware(now, "now") - self.scheduled_at >= EXPIRY_WINDOW

    def can_retry(self, now: datetime) -> bool:
        if self.status != NotificationStatus.FAILED:
            return False
        if self.is_expired(now):
            return False
        if self.updated_at is not None:
            return now - self.updated_at >= RETRY_COOLDOWN
        return True

    def mark_as_sent(self, now: datetime) -> "Notification":
        return transition(self, NotificationEvent.DELIVERED, now)

    def mark_as_failed(self, error_message: str, now: datetime) -> "Notification":
        return transition(
            self, NotificationEvent.DELIVERY_EXHAUSTED, now, error_message=error_message
        )

    def mark_as_cancelled(
        self, reason: CancellationReason, now: datetime
    ) -> "Notification":
        return transition(self, NotificationEvent.CANCELLED, now, reason=reason)

    def rearm(self, now: datetime) -> "Notification":
        return transition(self, NotificationEvent.REARMED, now)


def transition(
    notification: Notification,
    event: NotificationEvent,
    now: datetime,
    error_message: Optional[str] = None,
    reason: Optional[CancellationReason] = None,
) -> Notification:
    """
    Apply one event to a notification and return the resulting copy.

    Raises:
        InvalidTransitionError: If the event is not allowed from the current
            status, or a failed notification is re-armed after it expired.
    """
    ensure_aware(now, "now")
    event = NotificationEvent(event)
    next_status = TRANSITIONS.get((notification.status, event))
    if next_status is None:
        raise InvalidTransitionError(notification.status, event)

    if event == NotificationEvent.DELIVERED:
        return replace(
            notification,
            status=next_status,
            sent_at=now,
            error_message=None,
            updated_at=now,
        )

    if event == NotificationEvent.DELIVERY_EXHAUSTED:
        return replace(
            notification,
            status=next_status,
            error_message=error_message or "Delivery failed",
            updated_at=now,
        )

    if event == NotificationEvent.CANCELLED:
        reason = CancellationReason(reason or CancellationReason.TICKET_UPDATE)
        return replace(
            notification,
            status=next_status,
            error_message=reason.value,
            updated_at=now,
        )

    # REARMED
    if notification.is_expired(now):
        raise InvalidTransitionError(notification.status, event)
    return replace(
        notification,
        status=next_status,
        error_message=None,
        updated_at=now,
    )
