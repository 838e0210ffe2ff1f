"""
Tests for NotificationSchedulerService (queueing and cancelling callbacks).

Run with: pytest tests/test_scheduler_service.py -v
"""

from dataclasses import replace

import pytest

from tests.conftest import CALLBACK_URL
from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.domain.notification import NotificationStatus
from ticket_notifier.domain.notification_timing import NotificationType
from ticket_notifier.services.notifications.scheduler_service import (
    NotificationSchedulerService,
)
from ticket_notifier.utils.errors import (
    ConfigurationError,
    NotificationCancellationError,
    NotificationSchedulingError,
    TaskQueueError,
)


@pytest.fixture
def stored_ticket(make_ticket):
    return replace(make_ticket(), version=1)


class TestScheduleNotifications:
    """Test fan-out scheduling"""

    @pytest.mark.asyncio
    async def test_schedules_every_timing(
        self,
        scheduler_service,
        scheduling_service,
        task_queue,
        notification_repository,
        stored_ticket,
        clock,
    ):
        timings = scheduling_service.compute_required_timings(stored_ticket, clock())

        scheduled = await scheduler_service.schedule_notifications(stored_ticket, timings)

        assert len(scheduled) == 3
        assert len(notification_repository.notifications) == 3
        assert len(task_queue.enqueued) == 3

        request = next(
            r for r in task_queue.enqueued if r.payload["notificationType"] == "day_before"
        )
        assert request.task_id == f"{stored_ticket.id}-day_before-v1"
        assert request.payload == {
            "ticketId": stored_ticket.id,
            "notificationType": "day_before",
        }
        assert request.target_url == CALLBACK_URL

        for notification in scheduled:
            assert notification.status == NotificationStatus.SCHEDULED
            assert notification.external_task_id == (
                f"{stored_ticket.id}-{notification.notification_type.value}-v1"
            )

    @pytest.mark.asyncio
    async def test_enqueues_concurrently(
        self, scheduler_service, scheduling_service, task_queue, stored_ticket, clock
    ):
        """Test every enqueue is started before the first one completes"""
        started = []

        def record_start(request):
            started.append(request.task_id)
            assert task_queue.enqueued == []

        task_queue.on_enqueue = record_start
        timings = scheduling_service.compute_required_timings(stored_ticket, clock())

        await scheduler_service.schedule_notifications(stored_ticket, timings)

        assert len(started) == 3

    @pytest.mark.asyncio
    async def test_partial_failure(
        self,
        scheduler_service,
        scheduling_service,
        task_queue,
        notification_repository,
        stored_ticket,
        clock,
    ):
        """Test one failed enqueue still stores the others and reports 1 of 3"""
        task_queue.fail_types = {"hour_before"}
        timings = scheduling_service.compute_required_timings(stored_ticket, clock())

        with pytest.raises(NotificationSchedulingError) as exc_info:
            await scheduler_service.schedule_notifications(stored_ticket, timings)

        error = exc_info.value
        assert error.message == "1 out of 3 notifications failed to schedule"
        assert error.failed_count == 1
        assert error.total_count == 3
        assert isinstance(error.errors[0], TaskQueueError)

        stored_types = {
            n.notification_type for n in notification_repository.notifications.values()
        }
        assert stored_types == {
            NotificationType.DAY_BEFORE,
            NotificationType.MINUTES_BEFORE,
        }

    @pytest.mark.asyncio
    async def test_missing_callback_url(
        self, task_queue, notification_repository, scheduling_service, stored_ticket, clock
    ):
        service = NotificationSchedulerService(
            NotifierConfig(callback_url=None), task_queue, notification_repository, clock=clock
        )
        timings = scheduling_service.compute_required_timings(stored_ticket, clock())

        with pytest.raises(ConfigurationError):
            await service.schedule_notifications(stored_ticket, timings)

        assert task_queue.enqueued == []
        assert notification_repository.notifications == {}

    @pytest.mark.asyncio
    async def test_no_timings(self, scheduler_service, task_queue, stored_ticket):
        assert await scheduler_service.schedule_notifications(stored_ticket, []) == []
        assert task_queue.enqueued == []

    @pytest.mark.asyncio
    async def test_past_instant_rejected_by_queue(
        self, scheduler_service, scheduling_service, stored_ticket, clock
    ):
        timings = scheduling_service.compute_required_timings(stored_ticket, clock())
        clock.set(timings[1].scheduled_at)

        with pytest.raises(NotificationSchedulingError) as exc_info:
            await scheduler_service.schedule_notifications(stored_ticket, timings)

        # day_before and hour_before are no longer in the future
        assert exc_info.value.failed_count == 2


class TestCancelNotifications:
    """Test dequeueing"""

    @pytest.mark.asyncio
    async def test_cancel_notification_propagates(self, scheduler_service, task_queue):
        task_queue.fail_dequeue = {"task-1"}

        with pytest.raises(TaskQueueError):
            await scheduler_service.cancel_notification("task-1")

    @pytest.mark.asyncio
    async def test_cancel_all(self, scheduler_service, task_queue):
        await scheduler_service.cancel_notifications(["task-1", "task-2"])

        assert sorted(task_queue.dequeued) == ["task-1", "task-2"]

    @pytest.mark.asyncio
    async def test_cancel_attempts_every_task(self, scheduler_service, task_queue):
        task_queue.fail_dequeue = {"task-2"}

        with pytest.raises(NotificationCancellationError) as exc_info:
            await scheduler_service.cancel_notifications(["task-1", "task-2", "task-3"])

        assert exc_info.value.message == "1 out of 3 notifications failed to cancel"
        assert len(exc_info.value.errors) == 1
        assert sorted(task_queue.dequeued) == ["task-1", "task-3"]

    @pytest.mark.asyncio
    async def test_cancel_nothing(self, scheduler_service, task_queue):
        await scheduler_service.cancel_notifications([])

        assert task_queue.dequeued == []
