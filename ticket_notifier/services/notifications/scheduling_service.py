from datetime import datetime
from typing import Dict, Iterable, List
from zoneinfo import ZoneInfo

from ticket_notifier.domain.notification import Notification, NotificationStatus
from ticket_notifier.domain.notification_timing import (
    NotificationTiming,
    NotificationType,
    compute_all_timings,
)
from ticket_notifier.domain.ticket import Ticket


class NotificationSchedulingService:
    """
    Decides which reminders a ticket still needs.

    Pure: no I/O, no clock. The caller supplies `now` and the notifications
    already stored for the ticket.
    """

    def __init__(self, zone: ZoneInfo):
        self.zone = zone

    def calculate_notification_times(
        self, ticket: Ticket
    ) -> Dict[NotificationType, NotificationTiming]:
        if ticket.sale_start_date is None:
            return {}
        return compute_all_timings(ticket.sale_start_date, self.zone)

    def compute_required_timings(
        self,
        ticket: Ticket,
        now: datetime,
        existing: Iterable[Notification] = (),
    ) -> List[NotificationTiming]:
        """
        Timings to hand to the scheduler, in `NotificationType` order.

        A type is skipped when its instant is not strictly after `now` or when
        a non-cancelled notification of that type already exists.
        """
        taken = {
            notification.notification_type
            for notification in existing
            if notification.status != NotificationStatus.CANCELLED
        }
        timings = self.calculate_notification_times(ticket)
        return [
            timing
            for notification_type, timing in timings.items()
            if timing.scheduled_at > now and notification_type not in taken
        ]