from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, List, Optional

from ticket_notifier.domain.notification import Notification
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.domain.ticket import Ticket


class BaseTicketRepository(ABC):
    """Ticket store used by ingestion, scheduling and delivery."""

    @abstractmethod
    async def find_by_id(self, ticket_id: str) -> Optional[Ticket]:
        pass

    @abstractmethod
    async def find_by_status_in(self, statuses: Iterable[SaleStatus]) -> List[Ticket]:
        pass

    @abstractmethod
    async def find_by_match_date_before(self, cutoff: datetime) -> List[Ticket]:
        pass

    @abstractmethod
    async def upsert(
        self, ticket: Ticket, expected_version: Optional[int] = None
    ) -> Ticket:
        """
        Insert or update a ticket and return what is stored.

        Upserting identical data is a no-op. With `expected_version` the write
        only happens if the stored version still matches (0 = must not exist),
        otherwise `ConcurrencyConflictError` is raised.
        """
        pass

    @abstractmethod
    async def delete(self, ticket_id: str) -> bool:
        pass


class BaseNotificationRepository(ABC):
    """Notification store."""

    @abstractmethod
    async def find_by_id(self, notification_id: str) -> Optional[Notification]:
        pass

    @abstractmethod
    async def find_by_ticket_id(self, ticket_id: str) -> List[Notification]:
        pass

    @abstractmethod
    async def find_by_column(self, column: str, value: Any) -> List[Notification]:
        pass

    @abstractmethod
    async def save(self, notification: Notification) -> Notification:
        pass

    @abstractmethod
    async def update(self, notification: Notification) -> Notification:
        pass

    @abstractmethod
    async def delete(self, notification_id: str) -> bool:
        pass
