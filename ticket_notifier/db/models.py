from typing import List, Optional
from datetime import datetime
from sqlalchemy import (
    JSON,
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ticket_notifier.domain.notification import NotificationStatus
from ticket_notifier.domain.notification_timing import NotificationType
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Base model with common audit fields (naive UTC)
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )


class TicketRecord(Base, AuditMixin):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    match_name: Mapped[str] = mapped_column(String(255), nullable=False)
    match_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    home_team: Mapped[Optional[str]] = mapped_column(String(100))
    away_team: Mapped[Optional[str]] = mapped_column(String(100))
    competition: Mapped[Optional[str]] = mapped_column(String(100))
    venue: Mapped[Optional[str]] = mapped_column(String(255))
    sale_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sale_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    ticket_types: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    ticket_url: Mapped[Optional[str]] = mapped_column(String(1000))
    sale_status: Mapped[SaleStatus] = mapped_column(
        Enum(SaleStatus, values_callable=_enum_values, native_enum=False),
        nullable=False,
    )
    notification_scheduled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    scraped_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    notifications: Mapped[List["NotificationRecord"]] = relationship(
        back_populates="ticket", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        Index("idx_tickets_sale_status", "sale_status"),
        Index("idx_tickets_match_date", "match_date"),
        Index("idx_tickets_sale_start_date", "sale_start_date"),
    )


class NotificationRecord(Base, AuditMixin):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, values_callable=_enum_values, native_enum=False),
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, values_callable=_enum_values, native_enum=False),
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    external_task_id: Mapped[Optional[str]] = mapped_column(String(500))

    # Relationships
    ticket: Mapped["TicketRecord"] = relationship(back_populates="notifications")

    # Constraints
    __table_args__ = (
        Index("idx_notifications_ticket_type", "ticket_id", "notification_type"),
        Index("idx_notifications_status_scheduled", "status", "scheduled_at"),
        Index("idx_notifications_external_task_id", "external_task_id"),
    )
