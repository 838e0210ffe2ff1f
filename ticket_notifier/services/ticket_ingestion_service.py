from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.domain.notification import CancellationReason, NotificationStatus
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.repositories.base import (
    BaseNotificationRepository,
    BaseTicketRepository,
)
from ticket_notifier.services.notifications.scheduler_service import (
    NotificationSchedulerService,
)
from ticket_notifier.services.notifications.scheduling_service import (
    NotificationSchedulingService,
)
from ticket_notifier.utils.datetime_utils import utc_now
from ticket_notifier.utils.errors import (
    ConcurrencyConflictError,
    NotificationCancellationError,
)
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


class IngestionAction(str, Enum):
    NONE = "none"
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


class WriteResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class IngestionResult:
    ticket: Ticket
    write: WriteResult
    action: IngestionAction


@dataclass
class IngestionStats:
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    scheduled: int = 0
    rescheduled: int = 0
    cancelled: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, result: IngestionResult) -> None:
        setattr(self, result.write.value, getattr(self, result.write.value) + 1)
        if result.action != IngestionAction.NONE:
            setattr(self, result.action.value, getattr(self, result.action.value) + 1)


class TicketIngestionService:
    """
    Applies freshly scraped tickets to the store and keeps their
    notifications in line with the latest data.
    """

    def __init__(
        self,
        config: NotifierConfig,
        ticket_repository: BaseTicketRepository,
        notification_repository: BaseNotificationRepository,
        scheduling_service: NotificationSchedulingService,
        scheduler_service: NotificationSchedulerService,
        clock: Callable = utc_now,
    ):
        self.config = config
        self.ticket_repository = ticket_repository
        self.notification_repository = notification_repository
        self.scheduling_service = scheduling_service
        self.scheduler_service = scheduler_service
        self.clock = clock

    async def ingest_tickets(self, tickets: Sequence[Ticket]) -> IngestionStats:
        """One failing ticket does not stop the batch; failures are counted."""
        stats = IngestionStats(total=len(tickets))
        for ticket in tickets:
            try:
                stats.record(await self.ingest_ticket(ticket))
            except Exception as e:
                stats.failed += 1
                stats.errors.append(f"{ticket.id} ({ticket.match_name}): {e}")
                logger.error(
                    "Failed to ingest ticket",
                    ticket_id=ticket.id,
                    match_name=ticket.match_name,
                    error=str(e),
                )

        logger.info(
            "Ticket ingestion completed",
            total=stats.total,
            created=stats.created,
            updated=stats.updated,
            unchanged=stats.unchanged,
            scheduled=stats.scheduled,
            rescheduled=stats.rescheduled,
            failed=stats.failed,
        )
        return stats

    async def ingest_ticket(self, ticket: Ticket) -> IngestionResult:
        previous = await self.ticket_repository.find_by_id(ticket.id)

        if previous is not None and previous.has_same_business_data(ticket):
            # Nothing to write; scheduling is retried so a partially failed
            # earlier run gets completed.
            action = await self.on_ticket_ingested(previous, previous)
            return IngestionResult(previous, WriteResult.UNCHANGED, action)

        merged = previous.merge_with(ticket) if previous else ticket
        stored = await self.ticket_repository.upsert(
            merged, expected_version=previous.version if previous else 0
        )
        write = WriteResult.UPDATED if previous else WriteResult.CREATED
        action = await self.on_ticket_ingested(stored, previous)
        return IngestionResult(stored, write, action)

    async def on_ticket_ingested(
        self, ticket: Ticket, previous: Optional[Ticket]
    ) -> IngestionAction:
        """
        Decide between reschedule, cancel, first-time schedule and no-op.

        Raises:
            NotificationSchedulingError: If some timings could not be scheduled
            ConcurrencyConflictError: If the ticket changed while scheduling
        """
        now = self.clock()

        if previous is not None and ticket.needs_reschedule(previous):
            reason = (
                CancellationReason.SALE_DATE_CHANGE
                if ticket.sale_start_date != previous.sale_start_date
                else CancellationReason.TICKET_UPDATE
            )
            cancelled = await self._cancel_active_notifications(ticket.id, reason)

            if ticket.should_reschedule_notification(previous, now):
                await self._schedule(ticket, now)
                logger.info(
                    "Rescheduled notifications",
                    ticket_id=ticket.id,
                    cancelled=cancelled,
                )
                return IngestionAction.RESCHEDULED

            return IngestionAction.CANCELLED if cancelled else IngestionAction.NONE

        if ticket.should_schedule_notification(now):
            await self._schedule(ticket, now)
            return IngestionAction.SCHEDULED

        return IngestionAction.NONE

    async def _schedule(self, ticket: Ticket, now: datetime) -> Ticket:
        current = await self.ticket_repository.find_by_id(ticket.id)
        current_version = current.version if current else 0
        if current_version != ticket.version:
            raise ConcurrencyConflictError(
                f"Ticket {ticket.id} changed while scheduling "
                f"(version {ticket.version} -> {current_version})"
            )

        existing = await self.notification_repository.find_by_ticket_id(ticket.id)
        timings = self.scheduling_service.compute_required_timings(
            ticket, now, existing
        )
        await self.scheduler_service.schedule_notifications(ticket, timings)

        return await self.ticket_repository.upsert(
            ticket.mark_notification_scheduled(now), expected_version=ticket.version
        )

    async def _cancel_active_notifications(
        self, ticket_id: str, reason: CancellationReason
    ) -> int:
        """
        Mark every scheduled or failed notification of the ticket cancelled,
        then revoke the queued callbacks. Rows are cancelled first so that a
        callback already in flight finds nothing to deliver.
        """
        notifications = await self.notification_repository.find_by_ticket_id(ticket_id)
        targets = [
            n
            for n in notifications
            if n.status in (NotificationStatus.SCHEDULED, NotificationStatus.FAILED)
        ]
        if not targets:
            return 0

        now = self.clock()
        for notification in targets:
            await self.notification_repository.update(
                notification.mark_as_cancelled(reason, now)
            )

        task_ids = [
            n.external_task_id
            for n in targets
            if n.status == NotificationStatus.SCHEDULED and n.external_task_id
        ]
        try:
            await self.scheduler_service.cancel_notifications(task_ids)
        except NotificationCancellationError as e:
            # The rows are already cancelled; a stale callback is skipped at delivery.
            logger.error(
                "Failed to revoke queued notification callbacks",
                ticket_id=ticket_id,
                error=e.message,
                failures=[str(err) for err in e.errors],
            )

        logger.info(
            "Cancelled notifications",
            ticket_id=ticket_id,
            count=len(targets),
            reason=reason.value,
        )
        return len(targets)

    async def remove_ticket(self, ticket_id: str) -> bool:
        """Cancel a ticket's notifications, then delete it."""
        ticket = await self.ticket_repository.find_by_id(ticket_id)
        if ticket is None:
            return False
        await self._cancel_active_notifications(
            ticket_id, CancellationReason.TICKET_DELETION
        )
        return await self.ticket_repository.delete(ticket_id)

    async def cleanup_past_tickets(self) -> int:
        """Retention cleanup for matches played more than `retention_days` ago."""
        cutoff = self.clock() - timedelta(days=self.config.retention_days)
        tickets = await self.ticket_repository.find_by_match_date_before(cutoff)
        removed = 0
        for ticket in tickets:
            if await self.remove_ticket(ticket.id):
                removed += 1
        if removed:
            logger.info("Removed past tickets", count=removed, cutoff=cutoff.isoformat())
        return removed
