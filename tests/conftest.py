import os

os.environ.setdefault("ENVIRONMENT", "test")

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Callable, Dict, Iterable, List, Optional, Set
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.db.db import create_tables, drop_tables
from ticket_notifier.db.session import build_session_factory
from ticket_notifier.domain.notification import Notification
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.providers.channels import NotificationChannel
from ticket_notifier.providers.task_queue import BaseTaskQueue, EnqueueTaskRequest
from ticket_notifier.repositories.base import (
    BaseNotificationRepository,
    BaseTicketRepository,
)
from ticket_notifier.services.notifications.delivery_service import NotificationService
from ticket_notifier.services.notifications.messages import ChannelMessage
from ticket_notifier.services.notifications.scheduler_service import (
    NotificationSchedulerService,
)
from ticket_notifier.services.notifications.scheduling_service import (
    NotificationSchedulingService,
)
from ticket_notifier.services.ticket_ingestion_service import TicketIngestionService
from ticket_notifier.utils.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    TaskQueueError,
)

JST = ZoneInfo("Asia/Tokyo")

# A few days before the sale of the reference ticket opens
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=JST)
SALE_START = datetime(2025, 3, 15, 10, 0, tzinfo=JST)
MATCH_DATE = datetime(2025, 3, 16, 19, 0, tzinfo=JST)
CALLBACK_URL = "https://notifier.test/api/v1/notifications/callback"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class InMemoryTicketRepository(BaseTicketRepository):
    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}
        self.write_count = 0

    async def find_by_id(self, ticket_id: str) -> Optional[Ticket]:
        return self.tickets.get(ticket_id)

    async def find_by_status_in(self, statuses: Iterable[SaleStatus]) -> List[Ticket]:
        wanted = set(statuses)
        return sorted(
            (t for t in self.tickets.values() if t.sale_status in wanted),
            key=lambda t: t.match_date,
        )

    async def find_by_match_date_before(self, cutoff: datetime) -> List[Ticket]:
        return [t for t in self.tickets.values() if t.match_date < cutoff]

    async def upsert(
        self, ticket: Ticket, expected_version: Optional[int] = None
    ) -> Ticket:
        stored = self.tickets.get(ticket.id)
        current_version = stored.version if stored else 0
        if expected_version is not None and expected_version != current_version:
            raise ConcurrencyConflictError(
                f"Ticket {ticket.id} is at version {current_version}, "
                f"expected {expected_version}"
            )
        if (
            stored is not None
            and stored.has_same_business_data(ticket)
            and stored.notification_scheduled == ticket.notification_scheduled
            and stored.scraped_at == ticket.scraped_at
        ):
            return stored

        new = replace(
            ticket,
            version=current_version + 1,
            created_at=stored.created_at if stored else ticket.created_at,
        )
        self.tickets[ticket.id] = new
        self.write_count += 1
        return new

    async def delete(self, ticket_id: str) -> bool:
        return self.tickets.pop(ticket_id, None) is not None


class InMemoryNotificationRepository(BaseNotificationRepository):
    def __init__(self):
        self.notifications: Dict[str, Notification] = {}

    async def find_by_id(self, notification_id: str) -> Optional[Notification]:
        return self.notifications.get(notification_id)

    async def find_by_ticket_id(self, ticket_id: str) -> List[Notification]:
        return await self.find_by_column("ticket_id", ticket_id)

    async def find_by_column(self, column: str, value: Any) -> List[Notification]:
        return sorted(
            (n for n in self.notifications.values() if getattr(n, column) == value),
            key=lambda n: n.scheduled_at,
        )

    async def save(self, notification: Notification) -> Notification:
        if notification.id in self.notifications:
            raise ValueError(f"Duplicate notification id {notification.id}")
        self.notifications[notification.id] = notification
        return notification

    async def update(self, notification: Notification) -> Notification:
        if notification.id not in self.notifications:
            raise NotFoundError(f"Notification not found: {notification.id}")
        self.notifications[notification.id] = notification
        return notification

    async def delete(self, notification_id: str) -> bool:
        return self.notifications.pop(notification_id, None) is not None

    def for_ticket(self, ticket_id: str) -> List[Notification]:
        return [n for n in self.notifications.values() if n.ticket_id == ticket_id]


class FakeTaskQueue(BaseTaskQueue):
    """Records enqueues and dequeues; can fail per notification type or task id."""

    def __init__(self, clock: Callable[[], datetime]):
        self.clock = clock
        self.enqueued: List[EnqueueTaskRequest] = []
        self.dequeued: List[str] = []
        self.fail_types: Set[str] = set()
        self.fail_dequeue: Set[str] = set()
        self.on_enqueue: Optional[Callable[[EnqueueTaskRequest], Any]] = None

    async def enqueue(self, request: EnqueueTaskRequest) -> str:
        if request.scheduled_time <= self.clock():
            raise TaskQueueError(f"Task {request.task_id} is not in the future")
        if request.payload["notificationType"] in self.fail_types:
            raise TaskQueueError(f"Queue unavailable for {request.task_id}")
        if self.on_enqueue is not None:
            self.on_enqueue(request)
        # Yield so concurrent enqueues interleave
        await asyncio.sleep(0)
        self.enqueued.append(request)
        return request.task_id

    async def dequeue(self, external_task_id: str) -> None:
        if external_task_id in self.fail_dequeue:
            raise TaskQueueError(f"Failed to dequeue {external_task_id}")
        self.dequeued.append(external_task_id)


class FakeChannel(NotificationChannel):
    """
    Channel whose behaviour is scripted per call: each entry of `script` is
    either None (success) or an exception to raise. Once the script runs out
    every call succeeds, unless `always_fail` is set.
    """

    def __init__(self, name: str = "fake", script=None, always_fail: Optional[Exception] = None):
        self.name = name
        self.script = list(script or [])
        self.always_fail = always_fail
        self.sent: List[ChannelMessage] = []
        self.calls = 0
        self.before_send: Optional[Callable[[int], Any]] = None

    async def send(self, message: ChannelMessage) -> None:
        self.calls += 1
        if self.before_send is not None:
            await self.before_send(self.calls)
        if self.script:
            outcome = self.script.pop(0)
            if outcome is not None:
                raise outcome
        elif self.always_fail is not None:
            raise self.always_fail
        self.sent.append(message)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def notifier_config() -> NotifierConfig:
    return NotifierConfig(callback_url=CALLBACK_URL, site_timezone=JST)


@pytest.fixture
def ticket_repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def notification_repository() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def task_queue(clock) -> FakeTaskQueue:
    return FakeTaskQueue(clock)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def mock_alert_client():
    """Mock alert client; `send_error` is awaitable."""
    from unittest.mock import AsyncMock

    client = Mock()
    client.send_error = AsyncMock()
    return client


@pytest.fixture
def scheduling_service() -> NotificationSchedulingService:
    return NotificationSchedulingService(JST)


@pytest.fixture
def scheduler_service(
    notifier_config, task_queue, notification_repository, clock
) -> NotificationSchedulerService:
    return NotificationSchedulerService(
        notifier_config, task_queue, notification_repository, clock=clock
    )


@pytest.fixture
def notification_service(
    notifier_config,
    ticket_repository,
    notification_repository,
    channel,
    mock_alert_client,
    clock,
    recording_sleep,
) -> NotificationService:
    return NotificationService(
        notifier_config,
        ticket_repository,
        notification_repository,
        [channel],
        mock_alert_client,
        clock=clock,
        sleep=recording_sleep,
    )


@pytest.fixture
def ingestion_service(
    notifier_config,
    ticket_repository,
    notification_repository,
    scheduling_service,
    scheduler_service,
    clock,
) -> TicketIngestionService:
    return TicketIngestionService(
        notifier_config,
        ticket_repository,
        notification_repository,
        scheduling_service,
        scheduler_service,
        clock=clock,
    )


def build_ticket(**overrides) -> Ticket:
    """Reference away ticket; any `Ticket.create` argument can be overridden."""
    values = dict(
        match_name="鹿島アントラーズ vs 浦和レッズ",
        match_date=MATCH_DATE,
        scraped_at=NOW,
        sale_start_date=SALE_START,
        home_team="鹿島アントラーズ",
        away_team="浦和レッズ",
        competition="J1リーグ",
        venue="メルカリスタジアム",
        ticket_types=["ビジター指定席", "ビジター自由席"],
        ticket_url="https://tickets.example.com/away/1",
        zone=JST,
    )
    values.update(overrides)
    return Ticket.create(**values)


@pytest.fixture
def make_ticket() -> Callable[..., Ticket]:
    return build_ticket


# Database fixtures (aiosqlite, one file per test so every session sees the same data)
@pytest_asyncio.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    await create_tables(engine)

    yield engine
    await drop_tables(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    yield build_session_factory(test_engine)


@pytest.fixture
def mock_celery_task():
    """Mock Celery task for testing retry behavior."""
    mock_task = Mock()
    mock_task.request.retries = 0
    mock_task.max_retries = 3
    mock_task.retry = Mock(side_effect=Exception("Retry called"))
    return mock_task
