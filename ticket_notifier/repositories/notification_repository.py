from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticket_notifier.db.models import NotificationRecord
from ticket_notifier.domain.notification import Notification, NotificationStatus
from ticket_notifier.domain.notification_timing import NotificationType
from ticket_notifier.repositories.base import BaseNotificationRepository
from ticket_notifier.utils.datetime_utils import (
    from_naive_utc,
    naive_utc_now,
    optional_from_naive_utc,
    optional_to_naive_utc,
    to_naive_utc,
)
from ticket_notifier.utils.errors import DatabaseError, NotFoundError

# Columns callers may filter on, with the converter applied to the value
SEARCHABLE_COLUMNS = {
    "ticket_id": str,
    "notification_type": NotificationType,
    "status": NotificationStatus,
    "external_task_id": str,
}


def _to_entity(record: NotificationRecord) -> Notification:
    return Notification(
        id=record.id,
        ticket_id=record.ticket_id,
        notification_type=record.notification_type,
        scheduled_at=from_naive_utc(record.scheduled_at),
        status=record.status,
        sent_at=optional_from_naive_utc(record.sent_at),
        error_message=record.error_message,
        external_task_id=record.external_task_id,
        created_at=optional_from_naive_utc(record.created_at),
        updated_at=optional_from_naive_utc(record.updated_at),
    )


def _mutable_values(notification: Notification) -> Dict[str, Any]:
    return {
        "status": notification.status,
        "sent_at": optional_to_naive_utc(notification.sent_at),
        "error_message": notification.error_message,
        "external_task_id": notification.external_task_id,
        "updated_at": optional_to_naive_utc(notification.updated_at)
        or naive_utc_now(),
    }


class NotificationRepository(BaseNotificationRepository):
    """SQLAlchemy notification store. Every call runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_id(self, notification_id: str) -> Optional[Notification]:
        async with self.session_factory() as db:
            record = await db.get(NotificationRecord, notification_id)
            return _to_entity(record) if record else None

    async def find_by_ticket_id(self, ticket_id: str) -> List[Notification]:
        return await self.find_by_column("ticket_id", ticket_id)

    async def find_by_column(self, column: str, value: Any) -> List[Notification]:
        converter = SEARCHABLE_COLUMNS.get(column)
        if converter is None:
            raise ValueError(f"Unsupported notification column: {column}")

        async with self.session_factory() as db:
            result = await db.scalars(
                select(NotificationRecord)
                .where(getattr(NotificationRecord, column) == converter(value))
                .order_by(NotificationRecord.scheduled_at, NotificationRecord.created_at)
            )
            return [_to_entity(record) for record in result.all()]

    async def save(self, notification: Notification) -> Notification:
        now = naive_utc_now()
        record = NotificationRecord(
            id=notification.id,
            ticket_id=notification.ticket_id,
            notification_type=notification.notification_type,
            scheduled_at=to_naive_utc(notification.scheduled_at),
            created_at=optional_to_naive_utc(notification.created_at) or now,
            **_mutable_values(notification),
        )
        try:
            async with self.session_factory.begin() as db:
                db.add(record)
                await db.flush()
                return _to_entity(record)
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to save notification {notification.id}: {e}"
            ) from e

    async def update(self, notification: Notification) -> Notification:
        try:
            async with self.session_factory.begin() as db:
                record = await db.get(NotificationRecord, notification.id)
                if record is None:
                    raise NotFoundError(
                        f"Notification not found: {notification.id}",
                        "NOTIFICATION_NOT_FOUND",
                    )
                for column, value in _mutable_values(notification).items():
                    setattr(record, column, value)
                await db.flush()
                return _to_entity(record)
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to update notification {notification.id}: {e}"
            ) from e

    async def delete(self, notification_id: str) -> bool:
        try:
            async with self.session_factory.begin() as db:
                result = await db.execute(
                    delete(NotificationRecord).where(
                        NotificationRecord.id == notification_id
                    )
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to delete notification {notification_id}: {e}"
            ) from e
