import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.domain.notification import (
    CancellationReason,
    Notification,
    NotificationStatus,
)
from ticket_notifier.domain.notification_timing import NotificationType, compute_timing
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.providers.alerts import DiscordAlertClient
from ticket_notifier.providers.channels import NotificationChannel
from ticket_notifier.repositories.base import (
    BaseNotificationRepository,
    BaseTicketRepository,
)
from ticket_notifier.services.notifications.messages import (
    ChannelMessage,
    build_ticket_notification,
    build_ticket_summary,
)
from ticket_notifier.utils.datetime_utils import utc_now
from ticket_notifier.utils.errors import (
    ChannelDeliveryError,
    ConfigurationError,
    TicketNotFoundError,
)
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    ALREADY_SENT = "already_sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NOT_DUE = "not_due"
    ABORTED = "aborted"


@dataclass
class SweepResult:
    processed: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def record(self, outcome: DeliveryOutcome) -> None:
        self.processed += 1
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1


class NotificationService:
    """
    Delivers a scheduled notification when its callback fires.

    Delivery is attempted up to `config.max_attempts` times with exponential
    backoff; all channels must succeed for an attempt to count. Before every
    attempt the stored row is re-read, and delivery stops if it is no longer
    scheduled (a concurrent cancellation wins over an in-flight callback).
    """

    def __init__(
        self,
        config: NotifierConfig,
        ticket_repository: BaseTicketRepository,
        notification_repository: BaseNotificationRepository,
        channels: Sequence[NotificationChannel],
        alert_client: Optional[DiscordAlertClient] = None,
        clock: Callable = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.ticket_repository = ticket_repository
        self.notification_repository = notification_repository
        self.channels = list(channels)
        self.alert_client = alert_client
        self.clock = clock
        self.sleep = sleep

    async def process_scheduled_notification(
        self, ticket_id: str, notification_type: NotificationType
    ) -> DeliveryOutcome:
        """
        Entry point for the queue callback `{ticketId, notificationType}`.

        Raises:
            TicketNotFoundError: If the ticket was deleted after scheduling
        """
        notification_type = NotificationType(notification_type)
        ticket = await self.ticket_repository.find_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)

        notification = await self._load_or_create(ticket, notification_type)
        if notification is None:
            logger.info(
                "Only cancelled notifications exist, skipping delivery",
                ticket_id=ticket_id,
                notification_type=notification_type.value,
            )
            return DeliveryOutcome.CANCELLED

        return await self.deliver(ticket, notification)

    async def _load_or_create(
        self, ticket: Ticket, notification_type: NotificationType
    ) -> Optional[Notification]:
        rows = [
            n
            for n in await self.notification_repository.find_by_ticket_id(ticket.id)
            if n.notification_type == notification_type
        ]
        active = [n for n in rows if n.status != NotificationStatus.CANCELLED]
        if active:
            return max(active, key=lambda n: (n.created_at or n.scheduled_at))
        if rows:
            return None

        now = self.clock()
        scheduled_at = now
        if ticket.sale_start_date is not None:
            scheduled_at = compute_timing(
                notification_type, ticket.sale_start_date, self.config.site_timezone
            ).scheduled_at
        notification = Notification.create(
            ticket_id=ticket.id,
            notification_type=notification_type,
            scheduled_at=scheduled_at,
            now=now,
        )
        logger.info(
            "Created missing notification row for callback",
            ticket_id=ticket.id,
            notification_type=notification_type.value,
        )
        return await self.notification_repository.save(notification)

    async def deliver(self, ticket: Ticket, notification: Notification) -> DeliveryOutcome:
        now = self.clock()
        if notification.status == NotificationStatus.SENT:
            return DeliveryOutcome.ALREADY_SENT
        if notification.status == NotificationStatus.CANCELLED:
            return DeliveryOutcome.CANCELLED
        if notification.is_expired(now):
            await self.notification_repository.update(
                notification.mark_as_cancelled(CancellationReason.EXPIRED, now)
            )
            logger.warning(
                "Notification expired before delivery, cancelled",
                notification_id=notification.id,
                scheduled_at=notification.scheduled_at.isoformat(),
            )
            return DeliveryOutcome.EXPIRED
        if not notification.is_in_send_window(now):
            # Stale task left over from before a reschedule
            logger.warning(
                "Callback arrived before the send window, leaving notification scheduled",
                notification_id=notification.id,
                scheduled_at=notification.scheduled_at.isoformat(),
                now=now.isoformat(),
            )
            return DeliveryOutcome.NOT_DUE
        if notification.status == NotificationStatus.FAILED:
            notification = await self.notification_repository.update(
                notification.rearm(now)
            )

        message = build_ticket_notification(
            ticket, notification.notification_type, self.config.site_timezone
        )
        last_error: Optional[Exception] = None

        for attempt in range(1, self.config.max_attempts + 1):
            current = await self.notification_repository.find_by_id(notification.id)
            if current is None or current.status != NotificationStatus.SCHEDULED:
                logger.warning(
                    "Notification changed during delivery, aborting",
                    notification_id=notification.id,
                    status=current.status.value if current else None,
                )
                return DeliveryOutcome.ABORTED
            notification = current

            try:
                await self._send_to_all_channels(message)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Delivery attempt failed",
                    notification_id=notification.id,
                    attempt=attempt,
                    max_attempts=self.config.max_attempts,
                    error=str(e),
                )
                if attempt < self.config.max_attempts:
                    await self.sleep(self.config.backoff_delay(attempt))
                continue

            sent = notification.mark_as_sent(self.clock())
            await self.notification_repository.update(sent)
            logger.info(
                "Notification sent",
                notification_id=notification.id,
                ticket_id=ticket.id,
                notification_type=notification.notification_type.value,
                attempt=attempt,
            )
            return DeliveryOutcome.SENT

        await self._handle_failed_notification(notification, last_error)
        return DeliveryOutcome.FAILED

    async def _send_to_all_channels(self, message: ChannelMessage) -> None:
        if not self.channels:
            raise ConfigurationError("No notification channels are configured")

        results = await asyncio.gather(
            *(channel.send(message) for channel in self.channels),
            return_exceptions=True,
        )
        failures = [
            f"{channel.name}: {result}"
            for channel, result in zip(self.channels, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            raise ChannelDeliveryError(
                "; ".join(failures),
                channel=",".join(
                    channel.name
                    for channel, result in zip(self.channels, results)
                    if isinstance(result, BaseException)
                ),
            )

    async def _handle_failed_notification(
        self, notification: Notification, error: Optional[Exception]
    ) -> None:
        error_message = str(error) if error else "Unknown notification error after retries"
        failed = notification.mark_as_failed(error_message, self.clock())
        await self.notification_repository.update(failed)
        logger.error(
            "Notification failed after maximum retries",
            notification_id=notification.id,
            ticket_id=notification.ticket_id,
            notification_type=notification.display_name,
            max_attempts=self.config.max_attempts,
            error=error_message,
        )

        if self.alert_client is None:
            return
        try:
            await self.alert_client.send_error(
                f"Notification delivery failed: {notification.display_name}",
                f"ticket={notification.ticket_id} notification={notification.id}\n"
                f"{error_message}",
            )
        except Exception as e:
            logger.error("Failed to send error alert", error=str(e))

    async def process_pending_notifications(self) -> SweepResult:
        """
        Backfill for missed callbacks: deliver every scheduled notification
        that is due within the send window. Runs one notification at a time.
        """
        now = self.clock()
        result = SweepResult()
        scheduled = await self.notification_repository.find_by_column(
            "status", NotificationStatus.SCHEDULED
        )
        due = [n for n in scheduled if n.can_be_sent(now) and not n.is_expired(now)]

        for notification in due:
            try:
                ticket = await self.ticket_repository.find_by_id(notification.ticket_id)
                if ticket is None:
                    raise TicketNotFoundError(notification.ticket_id)
                result.record(await self.deliver(ticket, notification))
            except TicketNotFoundError as e:
                await self.notification_repository.update(
                    notification.mark_as_cancelled(
                        CancellationReason.TICKET_DELETION, self.clock()
                    )
                )
                result.record(DeliveryOutcome.CANCELLED)
                result.errors.append(e.message)
            except Exception as e:
                logger.error(
                    "Failed to process pending notification",
                    notification_id=notification.id,
                    error=str(e),
                )
                result.errors.append(f"{notification.id}: {e}")

        logger.info(
            "Pending notification sweep completed",
            found=len(due),
            processed=result.processed,
            outcomes=result.outcomes,
        )
        return result

    async def retry_failed_notifications(self) -> int:
        """Re-arm failed notifications that are retryable. Returns how many."""
        now = self.clock()
        failed = await self.notification_repository.find_by_column(
            "status", NotificationStatus.FAILED
        )
        rearmed = 0
        for notification in failed:
            if not notification.can_retry(now):
                continue
            await self.notification_repository.update(notification.rearm(now))
            rearmed += 1
        if rearmed:
            logger.info("Re-armed failed notifications", count=rearmed)
        return rearmed

    async def cleanup_expired_notifications(self) -> int:
        """Cancel scheduled or failed notifications past the expiry window."""
        now = self.clock()
        expired: List[Notification] = []
        for status in (NotificationStatus.SCHEDULED, NotificationStatus.FAILED):
            rows = await self.notification_repository.find_by_column("status", status)
            expired.extend(n for n in rows if n.is_expired(now))

        for notification in expired:
            await self.notification_repository.update(
                notification.mark_as_cancelled(CancellationReason.EXPIRED, now)
            )
        if expired:
            logger.info("Cancelled expired notifications", count=len(expired))
        return len(expired)

    async def send_ticket_summary(self) -> int:
        """Broadcast an overview of open sales. Returns the number of tickets listed."""
        tickets = await self.ticket_repository.find_by_status_in(
            [SaleStatus.BEFORE_SALE, SaleStatus.ON_SALE]
        )
        now = self.clock()
        upcoming = [t for t in tickets if t.match_date > now]
        await self._send_to_all_channels(
            build_ticket_summary(upcoming, self.config.site_timezone)
        )
        logger.info("Ticket summary sent", ticket_count=len(upcoming))
        return len(upcoming)
