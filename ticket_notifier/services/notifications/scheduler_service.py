import asyncio
from typing import Callable, List, Sequence

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.domain.notification import Notification
from ticket_notifier.domain.notification_timing import NotificationTiming
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.providers.task_queue import (
    BaseTaskQueue,
    EnqueueTaskRequest,
    build_task_id,
)
from ticket_notifier.repositories.base import BaseNotificationRepository
from ticket_notifier.utils.datetime_utils import utc_now
from ticket_notifier.utils.errors import (
    ConfigurationError,
    NotificationCancellationError,
    NotificationSchedulingError,
)
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


class NotificationSchedulerService:
    """Turns required timings into queued callbacks plus stored notifications."""

    def __init__(
        self,
        config: NotifierConfig,
        task_queue: BaseTaskQueue,
        notification_repository: BaseNotificationRepository,
        clock: Callable = utc_now,
    ):
        self.config = config
        self.task_queue = task_queue
        self.notification_repository = notification_repository
        self.clock = clock

    async def schedule_notifications(
        self, ticket: Ticket, timings: Sequence[NotificationTiming]
    ) -> List[Notification]:
        """
        Enqueue and persist one notification per timing, concurrently.

        Every timing is attempted. Rows are only stored for timings whose
        enqueue succeeded.

        Raises:
            ConfigurationError: If no callback URL is configured
            NotificationSchedulingError: If any timing failed, after all attempts
        """
        if not self.config.callback_url:
            raise ConfigurationError("Notification callback URL is not configured")

        if not timings:
            return []

        results = await asyncio.gather(
            *(self._schedule_one(ticket, timing) for timing in timings),
            return_exceptions=True,
        )

        scheduled = [r for r in results if isinstance(r, Notification)]
        errors = [r for r in results if isinstance(r, BaseException)]
        for timing, result in zip(timings, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to schedule notification",
                    ticket_id=ticket.id,
                    notification_type=timing.notification_type.value,
                    error=str(result),
                )

        if errors:
            raise NotificationSchedulingError(len(errors), len(timings), errors)

        logger.info(
            "Scheduled notifications",
            ticket_id=ticket.id,
            count=len(scheduled),
        )
        return scheduled

    async def _schedule_one(
        self, ticket: Ticket, timing: NotificationTiming
    ) -> Notification:
        task_id = build_task_id(
            ticket.id, timing.notification_type.value, ticket.version
        )
        external_task_id = await self.task_queue.enqueue(
            EnqueueTaskRequest(
                task_id=task_id,
                payload={
                    "ticketId": ticket.id,
                    "notificationType": timing.notification_type.value,
                },
                scheduled_time=timing.scheduled_at,
                target_url=self.config.callback_url,
            )
        )
        notification = Notification.create(
            ticket_id=ticket.id,
            notification_type=timing.notification_type,
            scheduled_at=timing.scheduled_at,
            now=self.clock(),
            external_task_id=external_task_id,
        )
        return await self.notification_repository.save(notification)

    async def cancel_notification(self, external_task_id: str) -> None:
        """Dequeue one task. Failures propagate to the caller."""
        await self.task_queue.dequeue(external_task_id)

    async def cancel_notifications(self, external_task_ids: Sequence[str]) -> None:
        """
        Dequeue several tasks concurrently.

        Raises:
            NotificationCancellationError: If any dequeue failed, after all attempts
        """
        if not external_task_ids:
            return

        results = await asyncio.gather(
            *(self.cancel_notification(task_id) for task_id in external_task_ids),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise NotificationCancellationError(
                f"{len(errors)} out of {len(external_task_ids)} notifications "
                f"failed to cancel",
                errors,
            )
