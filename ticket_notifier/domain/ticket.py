import hashlib
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from ticket_notifier.domain.notification_timing import (
    NotificationType,
    is_due,
)
from ticket_notifier.domain.sale_status import SaleStatus, determine_sale_status
from ticket_notifier.utils.datetime_utils import ensure_aware

# How long after the sale opened a ticket is still worth notifying about
NOTIFICATION_GRACE_PERIOD = timedelta(hours=24)

_WHITESPACE = re.compile(r"\s+")
_VERSUS = re.compile(r"[vｖVＶ][sｓSＳ]\.?")


def normalize_match_name(match_name: str) -> str:
    """
    Canonical form of a match name used for identity.

    Different ticket sites spell the same fixture with half/full-width
    characters, stray spaces and an optional trailing "戦".
    """
    normalized = _WHITESPACE.sub("", match_name.strip())
    normalized = _VERSUS.sub("vs", normalized)
    if normalized.endswith("戦"):
        normalized = normalized[:-1]
    return normalized.lower()


def generate_ticket_id(
    match_name: str, match_date: datetime, zone: ZoneInfo
) -> str:
    """Deterministic id: the same fixture always maps to the same ticket."""
    match_day = ensure_aware(match_date, "match_date").astimezone(zone).date()
    key = f"{normalize_match_name(match_name)}-{match_day.isoformat()}"
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return str(uuid.UUID(bytes=digest[:16], version=5))


@dataclass(frozen=True)
class Ticket:
    """
    One away-match ticket sale window.

    Instances are immutable; every change produces a new copy via
    `dataclasses.replace`. `version` is the optimistic concurrency token of
    the stored row (0 means the ticket has never been stored).
    """

    id: str
    match_name: str
    match_date: datetime
    scraped_at: datetime
    sale_status: SaleStatus = SaleStatus.BEFORE_SALE
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    competition: Optional[str] = None
    venue: Optional[str] = None
    ticket_types: Tuple[str, ...] = field(default_factory=tuple)
    ticket_url: Optional[str] = None
    notification_scheduled: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Ticket id must not be empty")
        if not self.match_name or not self.match_name.strip():
            raise ValueError("Ticket match_name must not be empty")
        ensure_aware(self.match_date, "match_date")
        ensure_aware(self.scraped_at, "scraped_at")
        for name in ("sale_start_date", "sale_end_date", "created_at", "updated_at"):
            value = getattr(self, name)
            if value is not None:
                ensure_aware(value, name)
        if self.version < 0:
            raise ValueError("Ticket version must not be negative")
        object.__setattr__(self, "sale_status", SaleStatus(self.sale_status))
        object.__setattr__(self, "ticket_types", tuple(self.ticket_types or ()))

    @classmethod
    def create(
        cls,
        match_name: str,
        match_date: datetime,
        scraped_at: datetime,
        sale_start_date: Optional[datetime] = None,
        sale_end_date: Optional[datetime] = None,
        sale_status: Optional[SaleStatus] = None,
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
        competition: Optional[str] = None,
        venue: Optional[str] = None,
        ticket_types: Iterable[str] = (),
        ticket_url: Optional[str] = None,
        *,
        zone: ZoneInfo,
    ) -> "Ticket":
        """Build a freshly scraped ticket, deriving its id and (if absent) its sale status."""
        if sale_status is None:
            sale_status = determine_sale_status(
                sale_start_date, sale_end_date, scraped_at
            )
        return cls(
            id=generate_ticket_id(match_name, match_date, zone),
            match_name=match_name.strip(),
            match_date=match_date,
            scraped_at=scraped_at,
            sale_status=sale_status,
            sale_start_date=sale_start_date,
            sale_end_date=sale_end_date,
            home_team=home_team,
            away_team=away_team,
            competition=competition,
            venue=venue,
            ticket_types=tuple(ticket_types),
            ticket_url=ticket_url,
            created_at=scraped_at,
            updated_at=scraped_at,
        )

    @property
    def display_match_name(self) -> str:
        if self.home_team and self.away_team:
            return f"{self.home_team} vs {self.away_team}"
        return self.match_name

    # Eligibility

    def is_valid_for_notification(self, now: datetime) -> bool:
        ensure_aware(now, "now")
        if self.match_date <= now:
            return False
        if self.sale_start_date is None:
            return False
        if now - self.sale_start_date > NOTIFICATION_GRACE_PERIOD:
            return False
        return True

    def requires_notification(self) -> bool:
        return (
            self.sale_status == SaleStatus.BEFORE_SALE
            and not self.notification_scheduled
            and self.sale_start_date is not None
        )

    def should_schedule_notification(self, now: datetime) -> bool:
        return self.is_valid_for_notification(now) and self.requires_notification()

    def needs_reschedule(self, previous: Optional["Ticket"]) -> bool:
        """True when the sale start, the set of ticket types or the URL changed."""
        if previous is None:
            return False
        return (
            self.sale_start_date != previous.sale_start_date
            or set(self.ticket_types) != set(previous.ticket_types)
            or self.ticket_url != previous.ticket_url
        )

    def should_reschedule_notification(
        self, previous: Optional["Ticket"], now: datetime
    ) -> bool:
        return (
            previous is not None
            and self.needs_reschedule(previous)
            and self.should_schedule_notification(now)
        )

    def should_send_notification(
        self,
        notification_type: NotificationType,
        now: datetime,
        zone: ZoneInfo,
    ) -> bool:
        if self.sale_start_date is None:
            return False
        return is_due(notification_type, self.sale_start_date, now, zone)

    # Change tracking

    def _business_data(self) -> tuple:
        return (
            self.match_name,
            self.match_date,
            self.sale_status,
            self.sale_start_date,
            self.sale_end_date,
            self.home_team,
            self.away_team,
            self.competition,
            self.venue,
            self.ticket_types,
            self.ticket_url,
        )

    def has_same_business_data(self, other: Optional["Ticket"]) -> bool:
        """Bookkeeping fields (timestamps, flags, version) are ignored."""
        if other is None:
            return False
        return self._business_data() == other._business_data()

    def merge_with(self, incoming: "Ticket") -> "Ticket":
        """
        Fold a fresh scrape of the same fixture into this stored ticket.

        Identity, creation time and version stay with the stored row. A known
        sale start is kept when the new scrape lost it. The scheduled flag is
        cleared when the change requires a reschedule.
        """
        if self.has_same_business_data(incoming):
            return replace(self, scraped_at=incoming.scraped_at)

        sale_start_date = incoming.sale_start_date
        if sale_start_date is None and self.sale_start_date is not None:
            sale_start_date = self.sale_start_date

        merged = replace(
            incoming,
            id=self.id,
            created_at=self.created_at,
            version=self.version,
            sale_start_date=sale_start_date,
            notification_scheduled=self.notification_scheduled,
        )
        if merged.needs_reschedule(self):
            merged = replace(merged, notification_scheduled=False)
        return merged

    def mark_notification_scheduled(self, now: datetime) -> "Ticket":
        return replace(self, notification_scheduled=True, updated_at=now)
