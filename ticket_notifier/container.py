from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import AsyncGenerator, List, Optional, Sequence

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.config.settings import Settings, settings as default_settings
from ticket_notifier.db.session import AsyncSessionLocal, task_session_factory
from ticket_notifier.providers.alerts import DiscordAlertClient
from ticket_notifier.providers.channels import (
    DiscordWebhookChannel,
    LineBroadcastChannel,
    NotificationChannel,
)
from ticket_notifier.providers.task_queue import BaseTaskQueue, CeleryTaskQueue
from ticket_notifier.repositories.base import (
    BaseNotificationRepository,
    BaseTicketRepository,
)
from ticket_notifier.repositories.notification_repository import NotificationRepository
from ticket_notifier.repositories.ticket_repository import TicketRepository
from ticket_notifier.services.notifications.delivery_service import NotificationService
from ticket_notifier.services.notifications.scheduler_service import (
    NotificationSchedulerService,
)
from ticket_notifier.services.notifications.scheduling_service import (
    NotificationSchedulingService,
)
from ticket_notifier.services.ticket_ingestion_service import TicketIngestionService
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


@dataclass
class Container:
    config: NotifierConfig
    ticket_repository: BaseTicketRepository
    notification_repository: BaseNotificationRepository
    scheduling_service: NotificationSchedulingService
    scheduler_service: NotificationSchedulerService
    notification_service: NotificationService
    ingestion_service: TicketIngestionService


def build_channels(settings: Settings) -> List[NotificationChannel]:
    channels: List[NotificationChannel] = []
    if settings.LINE_CHANNEL_ACCESS_TOKEN:
        channels.append(LineBroadcastChannel(settings.LINE_CHANNEL_ACCESS_TOKEN))
    if settings.DISCORD_TICKET_WEBHOOK_URL:
        channels.append(DiscordWebhookChannel(settings.DISCORD_TICKET_WEBHOOK_URL))
    if not channels:
        logger.warning("No notification channels configured")
    return channels


def build_celery_task_queue() -> CeleryTaskQueue:
    # Import here to avoid circular imports
    from ticket_notifier.celery import celery
    from ticket_notifier.tasks.notification_callback import notification_callback_task

    return CeleryTaskQueue(notification_callback_task, celery.control)


def build_container(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    settings: Settings = default_settings,
    task_queue: Optional[BaseTaskQueue] = None,
    channels: Optional[Sequence[NotificationChannel]] = None,
    alert_client: Optional[DiscordAlertClient] = None,
) -> Container:
    """Wire every component from settings. Collaborators can be overridden."""
    config = NotifierConfig.from_settings(settings)
    ticket_repository = TicketRepository(session_factory)
    notification_repository = NotificationRepository(session_factory)

    scheduling_service = NotificationSchedulingService(config.site_timezone)
    scheduler_service = NotificationSchedulerService(
        config,
        task_queue or build_celery_task_queue(),
        notification_repository,
    )
    notification_service = NotificationService(
        config,
        ticket_repository,
        notification_repository,
        channels if channels is not None else build_channels(settings),
        alert_client or DiscordAlertClient(settings.DISCORD_ALERT_WEBHOOK_URL),
    )
    ingestion_service = TicketIngestionService(
        config,
        ticket_repository,
        notification_repository,
        scheduling_service,
        scheduler_service,
    )
    return Container(
        config=config,
        ticket_repository=ticket_repository,
        notification_repository=notification_repository,
        scheduling_service=scheduling_service,
        scheduler_service=scheduler_service,
        notification_service=notification_service,
        ingestion_service=ingestion_service,
    )


@lru_cache
def get_container() -> Container:
    return build_container()


def get_notifier_config(container: Container = Depends(get_container)) -> NotifierConfig:
    return container.config


def get_notification_service(
    container: Container = Depends(get_container),
) -> NotificationService:
    return container.notification_service


def get_ingestion_service(
    container: Container = Depends(get_container),
) -> TicketIngestionService:
    return container.ingestion_service


@asynccontextmanager
async def task_container() -> AsyncGenerator[Container, None]:
    """Container bound to a private engine for one Celery task run."""
    async with task_session_factory() as session_factory:
        yield build_container(session_factory)
