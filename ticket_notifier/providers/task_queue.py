import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from ticket_notifier.utils.datetime_utils import ensure_aware, utc_now
from ticket_notifier.utils.errors import TaskQueueError
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


@dataclass(frozen=True)
class EnqueueTaskRequest:
    task_id: str
    payload: Dict[str, Any]
    scheduled_time: datetime
    target_url: str


class BaseTaskQueue(ABC):
    """Delayed HTTP callbacks. Implementations must reject past schedule times."""

    @abstractmethod
    async def enqueue(self, request: EnqueueTaskRequest) -> str:
        pass

    @abstractmethod
    async def dequeue(self, external_task_id: str) -> None:
        pass


class CeleryTaskQueue(BaseTaskQueue):
    """
    Task queue backed by Celery ETA tasks.

    `callback_task` is the Celery task that performs the HTTP callback;
    `control` is the app's control interface used to revoke queued tasks.
    """

    def __init__(self, callback_task, control, clock=utc_now):
        self.callback_task = callback_task
        self.control = control
        self.clock = clock

    async def enqueue(self, request: EnqueueTaskRequest) -> str:
        scheduled_time = ensure_aware(request.scheduled_time, "scheduled_time")
        now = self.clock()
        if scheduled_time <= now:
            raise TaskQueueError(
                f"Scheduled time {scheduled_time.isoformat()} for task "
                f"{request.task_id} is not in the future"
            )

        try:
            result = await asyncio.to_thread(
                self.callback_task.apply_async,
                kwargs={
                    "request_id": request.task_id,
                    "target_url": request.target_url,
                    "payload": request.payload,
                },
                eta=scheduled_time,
                task_id=request.task_id,
            )
        except Exception as e:
            raise TaskQueueError(
                f"Failed to enqueue task {request.task_id}: {e}"
            ) from e

        logger.info(
            "Enqueued notification callback",
            task_id=result.id,
            scheduled_time=scheduled_time.isoformat(),
        )
        return result.id

    async def dequeue(self, external_task_id: str) -> None:
        try:
            await asyncio.to_thread(self.control.revoke, external_task_id)
        except Exception as e:
            raise TaskQueueError(
                f"Failed to dequeue task {external_task_id}: {e}"
            ) from e
        logger.info("Revoked notification callback", task_id=external_task_id)


def build_task_id(ticket_id: str, notification_type: str, ticket_version: int) -> str:
    """
    Deterministic task id for one ticket/type at one stored ticket version.

    Revoked ids stay blacklisted in the workers, so a reschedule (which always
    bumps the ticket version) must produce a fresh id even when the target
    instant is unchanged.
    """
    return f"{ticket_id}-{notification_type}-v{ticket_version}"
