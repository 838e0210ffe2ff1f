from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator

from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.schemas.camel_base_model import CamelCaseBaseModel


def _localize(value: Optional[datetime], zone: ZoneInfo) -> Optional[datetime]:
    # Scrapers report site-local civil time; attach the site zone when no offset is given
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=zone)


class TicketPayload(CamelCaseBaseModel):
    """One scraped ticket as posted by the extraction layer."""

    match_name: str = Field(..., min_length=1, max_length=255)
    match_date: datetime
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    sale_status: Optional[SaleStatus] = None
    home_team: Optional[str] = Field(default=None, max_length=100)
    away_team: Optional[str] = Field(default=None, max_length=100)
    competition: Optional[str] = Field(default=None, max_length=100)
    venue: Optional[str] = Field(default=None, max_length=255)
    ticket_types: List[str] = Field(default_factory=list)
    ticket_url: Optional[str] = Field(default=None, max_length=1000)
    scraped_at: Optional[datetime] = None

    @field_validator("match_name")
    @classmethod
    def validate_match_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("matchName must not be blank")
        return v.strip()

    @field_validator("ticket_types")
    @classmethod
    def strip_ticket_types(cls, v: List[str]) -> List[str]:
        return [t.strip() for t in v if t and t.strip()]

    def to_ticket(self, now: datetime, zone: ZoneInfo) -> Ticket:
        return Ticket.create(
            match_name=self.match_name,
            match_date=_localize(self.match_date, zone),
            scraped_at=_localize(self.scraped_at, zone) or now,
            sale_start_date=_localize(self.sale_start_date, zone),
            sale_end_date=_localize(self.sale_end_date, zone),
            sale_status=self.sale_status,
            home_team=self.home_team,
            away_team=self.away_team,
            competition=self.competition,
            venue=self.venue,
            ticket_types=self.ticket_types,
            ticket_url=self.ticket_url,
            zone=zone,
        )


class TicketIngestRequest(CamelCaseBaseModel):
    tickets: List[TicketPayload] = Field(default_factory=list)


class IngestionStatsResponse(CamelCaseBaseModel):
    total: int
    created: int
    updated: int
    unchanged: int
    scheduled: int
    rescheduled: int
    cancelled: int
    failed: int
    errors: List[str] = Field(default_factory=list)
