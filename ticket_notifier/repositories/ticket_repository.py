from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticket_notifier.db.models import NotificationRecord, TicketRecord
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.repositories.base import BaseTicketRepository
from ticket_notifier.utils.datetime_utils import (
    from_naive_utc,
    naive_utc_now,
    optional_from_naive_utc,
    optional_to_naive_utc,
    to_naive_utc,
)
from ticket_notifier.utils.errors import ConcurrencyConflictError, DatabaseError
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


def _to_entity(record: TicketRecord) -> Ticket:
    return Ticket(
        id=record.id,
        match_name=record.match_name,
        match_date=from_naive_utc(record.match_date),
        scraped_at=from_naive_utc(record.scraped_at),
        sale_status=record.sale_status,
        sale_start_date=optional_from_naive_utc(record.sale_start_date),
        sale_end_date=optional_from_naive_utc(record.sale_end_date),
        home_team=record.home_team,
        away_team=record.away_team,
        competition=record.competition,
        venue=record.venue,
        ticket_types=tuple(record.ticket_types or ()),
        ticket_url=record.ticket_url,
        notification_scheduled=record.notification_scheduled,
        created_at=optional_from_naive_utc(record.created_at),
        updated_at=optional_from_naive_utc(record.updated_at),
        version=record.version,
    )


def _column_values(ticket: Ticket) -> Dict[str, Any]:
    return {
        "match_name": ticket.match_name,
        "match_date": to_naive_utc(ticket.match_date),
        "home_team": ticket.home_team,
        "away_team": ticket.away_team,
        "competition": ticket.competition,
        "venue": ticket.venue,
        "sale_start_date": optional_to_naive_utc(ticket.sale_start_date),
        "sale_end_date": optional_to_naive_utc(ticket.sale_end_date),
        "ticket_types": list(ticket.ticket_types),
        "ticket_url": ticket.ticket_url,
        "sale_status": ticket.sale_status,
        "notification_scheduled": ticket.notification_scheduled,
        "scraped_at": to_naive_utc(ticket.scraped_at),
    }


def _is_unchanged(record: TicketRecord, values: Dict[str, Any]) -> bool:
    return all(getattr(record, column) == value for column, value in values.items())


class TicketRepository(BaseTicketRepository):
    """SQLAlchemy ticket store. Every call runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_id(self, ticket_id: str) -> Optional[Ticket]:
        async with self.session_factory() as db:
            record = await db.get(TicketRecord, ticket_id)
            return _to_entity(record) if record else None

    async def find_by_status_in(self, statuses: Iterable[SaleStatus]) -> List[Ticket]:
        status_list = [SaleStatus(status) for status in statuses]
        if not status_list:
            return []
        async with self.session_factory() as db:
            result = await db.scalars(
                select(TicketRecord)
                .where(TicketRecord.sale_status.in_(status_list))
                .order_by(TicketRecord.match_date)
            )
            return [_to_entity(record) for record in result.all()]

    async def find_by_match_date_before(self, cutoff: datetime) -> List[Ticket]:
        async with self.session_factory() as db:
            result = await db.scalars(
                select(TicketRecord)
                .where(TicketRecord.match_date < to_naive_utc(cutoff))
                .order_by(TicketRecord.match_date)
            )
            return [_to_entity(record) for record in result.all()]

    async def upsert(
        self, ticket: Ticket, expected_version: Optional[int] = None
    ) -> Ticket:
        values = _column_values(ticket)
        try:
            async with self.session_factory.begin() as db:
                record = await db.get(TicketRecord, ticket.id)
                current_version = record.version if record else 0

                if expected_version is not None and expected_version != current_version:
                    raise ConcurrencyConflictError(
                        f"Ticket {ticket.id} is at version {current_version}, "
                        f"expected {expected_version}"
                    )

                if record is None:
                    now = naive_utc_now()
                    record = TicketRecord(
                        id=ticket.id,
                        version=1,
                        created_at=optional_to_naive_utc(ticket.created_at) or now,
                        updated_at=now,
                        **values,
                    )
                    db.add(record)
                    await db.flush()
                    logger.debug("Inserted ticket", ticket_id=ticket.id)
                    return _to_entity(record)

                if _is_unchanged(record, values):
                    return _to_entity(record)

                result = await db.execute(
                    update(TicketRecord)
                    .where(
                        TicketRecord.id == ticket.id,
                        TicketRecord.version == current_version,
                    )
                    .values(
                        **values,
                        version=current_version + 1,
                        updated_at=naive_utc_now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConcurrencyConflictError(
                        f"Ticket {ticket.id} was modified concurrently"
                    )

                await db.refresh(record)
                logger.debug(
                    "Updated ticket", ticket_id=ticket.id, version=record.version
                )
                return _to_entity(record)

        except IntegrityError as e:
            raise ConcurrencyConflictError(
                f"Ticket {ticket.id} was inserted concurrently"
            ) from e
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to upsert ticket {ticket.id}: {e}") from e

    async def delete(self, ticket_id: str) -> bool:
        try:
            async with self.session_factory.begin() as db:
                await db.execute(
                    delete(NotificationRecord).where(
                        NotificationRecord.ticket_id == ticket_id
                    )
                )
                result = await db.execute(
                    delete(TicketRecord).where(TicketRecord.id == ticket_id)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to delete ticket {ticket_id}: {e}") from e
