"""
Tests for NotificationService (callback delivery, sweeps and maintenance).

Run with: pytest tests/test_delivery_service.py -v
"""

from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from tests.conftest import FakeChannel
from ticket_notifier.domain.notification import (
    CancellationReason,
    Notification,
    NotificationStatus,
)
from ticket_notifier.domain.notification_timing import NotificationType
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.services.notifications.delivery_service import (
    DeliveryOutcome,
    NotificationService,
)
from ticket_notifier.utils.errors import (
    ChannelDeliveryError,
    TicketNotFoundError,
)

JST = ZoneInfo("Asia/Tokyo")
DAY_BEFORE_AT = datetime(2025, 3, 14, 20, 0, tzinfo=JST)


@pytest_asyncio.fixture
async def stored_ticket(ticket_repository, make_ticket):
    return await ticket_repository.upsert(make_ticket(), expected_version=0)


@pytest_asyncio.fixture
async def day_before(notification_repository, stored_ticket, clock):
    notification = Notification.create(
        stored_ticket.id,
        NotificationType.DAY_BEFORE,
        DAY_BEFORE_AT,
        clock(),
        external_task_id=f"{stored_ticket.id}-day_before-v1",
    )
    await notification_repository.save(notification)
    # The callback fires on time
    clock.set(DAY_BEFORE_AT)
    return notification


def _service(config, ticket_repository, notification_repository, channels, clock, sleep, alert=None):
    return NotificationService(
        config,
        ticket_repository,
        notification_repository,
        channels,
        alert,
        clock=clock,
        sleep=sleep,
    )


class TestProcessScheduledNotification:
    """Test callback handling"""

    @pytest.mark.asyncio
    async def test_delivers_on_first_attempt(
        self, notification_service, notification_repository, channel, recording_sleep, stored_ticket, day_before
    ):
        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.SENT
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.sent_at == DAY_BEFORE_AT
        assert len(channel.sent) == 1
        assert channel.sent[0].alt_text.startswith("[Ticket alert]")
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_two_failures(
        self, notification_service, notification_repository, channel, recording_sleep, stored_ticket, day_before
    ):
        """Test two transient failures then success ends as sent with no error"""
        channel.script = [RuntimeError("boom 1"), RuntimeError("boom 2"), None]

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, "day_before"
        )

        assert outcome == DeliveryOutcome.SENT
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.error_message is None
        assert channel.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fails_after_max_attempts(
        self,
        notification_service,
        notification_repository,
        channel,
        recording_sleep,
        mock_alert_client,
        stored_ticket,
        day_before,
    ):
        """Test three failures mark the notification failed with the last error"""
        channel.script = [RuntimeError("boom 1"), RuntimeError("boom 2"), RuntimeError("boom 3")]

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.FAILED
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.FAILED
        assert stored.error_message == "fake: boom 3"
        assert recording_sleep.delays == [1.0, 2.0]
        mock_alert_client.send_error.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_alert_failure_does_not_propagate(
        self,
        notification_service,
        channel,
        mock_alert_client,
        stored_ticket,
        day_before,
    ):
        channel.always_fail = RuntimeError("down")
        mock_alert_client.send_error.side_effect = ChannelDeliveryError("webhook down", "discord")

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.FAILED

    @pytest.mark.asyncio
    async def test_redelivered_callback_sends_once(
        self, notification_service, channel, stored_ticket, day_before
    ):
        first = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )
        second = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert first == DeliveryOutcome.SENT
        assert second == DeliveryOutcome.ALREADY_SENT
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, notification_service):
        with pytest.raises(TicketNotFoundError) as exc_info:
            await notification_service.process_scheduled_notification(
                "missing", NotificationType.DAY_BEFORE
            )

        assert exc_info.value.error_code == "TICKET_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, notification_service, stored_ticket):
        with pytest.raises(ValueError):
            await notification_service.process_scheduled_notification(
                stored_ticket.id, "week_before"
            )

    @pytest.mark.asyncio
    async def test_creates_missing_row(
        self, notification_service, notification_repository, channel, stored_ticket, clock
    ):
        """Test a callback without a stored row still delivers and records it"""
        clock.set(datetime(2025, 3, 15, 9, 0, tzinfo=JST))

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.HOUR_BEFORE
        )

        assert outcome == DeliveryOutcome.SENT
        rows = notification_repository.for_ticket(stored_ticket.id)
        assert len(rows) == 1
        assert rows[0].notification_type == NotificationType.HOUR_BEFORE
        assert rows[0].scheduled_at == datetime(2025, 3, 15, 9, 0, tzinfo=JST)
        assert rows[0].status == NotificationStatus.SENT
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_only_cancelled_rows(
        self, notification_service, notification_repository, channel, stored_ticket, day_before
    ):
        await notification_repository.update(
            day_before.mark_as_cancelled(CancellationReason.SALE_DATE_CHANGE, DAY_BEFORE_AT)
        )

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.CANCELLED
        assert channel.calls == 0
        assert len(notification_repository.notifications) == 1

    @pytest.mark.asyncio
    async def test_latest_active_row_wins(
        self, notification_service, notification_repository, stored_ticket, day_before, clock
    ):
        cancelled = day_before.mark_as_cancelled(
            CancellationReason.SALE_DATE_CHANGE, DAY_BEFORE_AT
        )
        await notification_repository.update(cancelled)
        replacement = Notification.create(
            stored_ticket.id,
            NotificationType.DAY_BEFORE,
            DAY_BEFORE_AT,
            DAY_BEFORE_AT - timedelta(hours=1),
        )
        await notification_repository.save(replacement)

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.SENT
        assert (await notification_repository.find_by_id(replacement.id)).status == (
            NotificationStatus.SENT
        )
        assert (await notification_repository.find_by_id(day_before.id)).status == (
            NotificationStatus.CANCELLED
        )


class TestDeliver:
    """Test the delivery loop itself"""

    @pytest.mark.asyncio
    async def test_all_channels_must_succeed(
        self,
        notifier_config,
        ticket_repository,
        notification_repository,
        clock,
        recording_sleep,
        stored_ticket,
        day_before,
    ):
        healthy = FakeChannel("line")
        broken = FakeChannel("discord", always_fail=RuntimeError("webhook 500"))
        service = _service(
            notifier_config,
            ticket_repository,
            notification_repository,
            [healthy, broken],
            clock,
            recording_sleep,
        )

        outcome = await service.deliver(stored_ticket, day_before)

        assert outcome == DeliveryOutcome.FAILED
        assert healthy.calls == 3
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.error_message == "discord: webhook 500"

    @pytest.mark.asyncio
    async def test_no_channels_configured(
        self,
        notifier_config,
        ticket_repository,
        notification_repository,
        clock,
        recording_sleep,
        stored_ticket,
        day_before,
    ):
        service = _service(
            notifier_config, ticket_repository, notification_repository, [], clock, recording_sleep
        )

        outcome = await service.deliver(stored_ticket, day_before)

        assert outcome == DeliveryOutcome.FAILED
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.error_message == "No notification channels are configured"

    @pytest.mark.asyncio
    async def test_cancellation_during_delivery_aborts(
        self, notification_service, notification_repository, channel, stored_ticket, day_before
    ):
        """Test a row cancelled between attempts stops further sends"""

        async def cancel_after_first_call(call_number):
            if call_number == 1:
                current = await notification_repository.find_by_id(day_before.id)
                await notification_repository.update(
                    current.mark_as_cancelled(CancellationReason.SALE_DATE_CHANGE, DAY_BEFORE_AT)
                )

        channel.script = [RuntimeError("boom")]
        channel.before_send = cancel_after_first_call

        outcome = await notification_service.deliver(stored_ticket, day_before)

        assert outcome == DeliveryOutcome.ABORTED
        assert channel.calls == 1
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_failed_row_is_rearmed(
        self, notification_service, notification_repository, channel, stored_ticket, day_before
    ):
        failed = day_before.mark_as_failed("earlier failure", DAY_BEFORE_AT)
        await notification_repository.update(failed)

        outcome = await notification_service.deliver(stored_ticket, failed)

        assert outcome == DeliveryOutcome.SENT
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_expired_row_is_cancelled(
        self, notification_service, notification_repository, channel, stored_ticket, day_before, clock
    ):
        """Test a callback two hours late records the expiry on the row"""
        clock.set(DAY_BEFORE_AT + timedelta(hours=2))

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.EXPIRED
        assert channel.calls == 0
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.CANCELLED
        assert stored.error_message == CancellationReason.EXPIRED.value
        assert stored.updated_at == DAY_BEFORE_AT + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_early_callback_leaves_row_scheduled(
        self, notification_service, notification_repository, channel, stored_ticket, day_before, clock
    ):
        """Test a callback long before the scheduled instant sends nothing"""
        clock.set(DAY_BEFORE_AT - timedelta(hours=2))

        outcome = await notification_service.process_scheduled_notification(
            stored_ticket.id, NotificationType.DAY_BEFORE
        )

        assert outcome == DeliveryOutcome.NOT_DUE
        assert channel.calls == 0
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_send_window_edge(
        self, notification_service, channel, stored_ticket, day_before, clock
    ):
        clock.set(DAY_BEFORE_AT - timedelta(minutes=5))

        outcome = await notification_service.deliver(stored_ticket, day_before)

        assert outcome == DeliveryOutcome.SENT
        assert channel.calls == 1


class TestSweeps:
    """Test the periodic sweep and maintenance operations"""

    @pytest.mark.asyncio
    async def test_pending_sweep_delivers_due_only(
        self,
        notification_service,
        notification_repository,
        channel,
        stored_ticket,
        day_before,
        clock,
    ):
        later = Notification.create(
            stored_ticket.id,
            NotificationType.HOUR_BEFORE,
            datetime(2025, 3, 15, 9, 0, tzinfo=JST),
            DAY_BEFORE_AT,
        )
        await notification_repository.save(later)
        clock.set(DAY_BEFORE_AT + timedelta(minutes=30))

        result = await notification_service.process_pending_notifications()

        assert result.processed == 1
        assert result.outcomes == {"sent": 1}
        assert (await notification_repository.find_by_id(day_before.id)).status == (
            NotificationStatus.SENT
        )
        assert (await notification_repository.find_by_id(later.id)).status == (
            NotificationStatus.SCHEDULED
        )

    @pytest.mark.asyncio
    async def test_pending_sweep_skips_expired(
        self, notification_service, channel, day_before, clock
    ):
        clock.set(DAY_BEFORE_AT + timedelta(hours=3))

        result = await notification_service.process_pending_notifications()

        assert result.processed == 0
        assert channel.calls == 0

    @pytest.mark.asyncio
    async def test_pending_sweep_cancels_orphans(
        self, notification_service, notification_repository, ticket_repository, stored_ticket, day_before
    ):
        await ticket_repository.delete(stored_ticket.id)

        result = await notification_service.process_pending_notifications()

        assert result.outcomes == {"cancelled": 1}
        assert len(result.errors) == 1
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.CANCELLED
        assert stored.error_message == CancellationReason.TICKET_DELETION.value

    @pytest.mark.asyncio
    async def test_retry_failed_respects_cooldown(
        self, notification_service, notification_repository, day_before, clock
    ):
        await notification_repository.update(
            day_before.mark_as_failed("boom", DAY_BEFORE_AT)
        )

        clock.set(DAY_BEFORE_AT + timedelta(minutes=2))
        assert await notification_service.retry_failed_notifications() == 0

        clock.set(DAY_BEFORE_AT + timedelta(minutes=6))
        assert await notification_service.retry_failed_notifications() == 1
        assert (await notification_repository.find_by_id(day_before.id)).status == (
            NotificationStatus.SCHEDULED
        )

    @pytest.mark.asyncio
    async def test_cleanup_expired(
        self, notification_service, notification_repository, day_before, clock
    ):
        clock.set(DAY_BEFORE_AT + timedelta(hours=2, minutes=1))

        assert await notification_service.cleanup_expired_notifications() == 1
        stored = await notification_repository.find_by_id(day_before.id)
        assert stored.status == NotificationStatus.CANCELLED
        assert stored.error_message == "Cancelled due to expiration"

    @pytest.mark.asyncio
    async def test_ticket_summary(
        self, notification_service, ticket_repository, channel, stored_ticket, make_ticket
    ):
        ended = make_ticket(match_name="A vs B", sale_status=SaleStatus.ENDED)
        await ticket_repository.upsert(ended)

        count = await notification_service.send_ticket_summary()

        assert count == 1
        assert len(channel.sent) == 1
        assert "鹿島アントラーズ vs 浦和レッズ" in channel.sent[0].text

    @pytest.mark.asyncio
    async def test_ticket_summary_without_tickets(self, notification_service, channel):
        assert await notification_service.send_ticket_summary() == 0
        assert channel.sent[0].text == "No upcoming away ticket sales."

    @pytest.mark.asyncio
    async def test_summary_skips_past_matches(
        self, notification_service, ticket_repository, stored_ticket, clock
    ):
        await ticket_repository.upsert(
            replace(stored_ticket, sale_status=SaleStatus.ON_SALE),
            expected_version=stored_ticket.version,
        )
        clock.set(stored_ticket.match_date + timedelta(hours=1))

        assert await notification_service.send_ticket_summary() == 0
