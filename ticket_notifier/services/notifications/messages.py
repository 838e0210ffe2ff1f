from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from ticket_notifier.domain.notification_timing import NotificationType
from ticket_notifier.domain.sale_status import SaleStatus
from ticket_notifier.domain.ticket import Ticket
from ticket_notifier.utils.datetime_utils import utc_now

FOOTER_TEXT = "Away Ticket Notifier"
ERROR_COLOR = 0xFF0000
SYSTEM_COLOR = 0x00FF00
WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass(frozen=True)
class NotificationStyle:
    color: str
    discord_color: int
    title: str
    urgency: str


NOTIFICATION_STYLES: Dict[NotificationType, NotificationStyle] = {
    NotificationType.DAY_BEFORE: NotificationStyle(
        color="#00C851", discord_color=0x00C851, title="✅ Sale starts tomorrow", urgency="Tomorrow"
    ),
    NotificationType.HOUR_BEFORE: NotificationStyle(
        color="#E6B800", discord_color=0xE6B800, title="⚠️ Sale starts in 1 hour", urgency="In 1 hour"
    ),
    NotificationType.MINUTES_BEFORE: NotificationStyle(
        color="#DC143C", discord_color=0xDC143C, title="🚨 Sale starts soon", urgency="In 15 minutes"
    ),
}


@dataclass(frozen=True)
class ChannelMessage:
    """A message rendered once and handed to every channel."""

    alt_text: str
    text: str
    flex_contents: Optional[Dict[str, Any]] = None
    embeds: List[Dict[str, Any]] = field(default_factory=list)


def format_site_datetime(value: Optional[datetime], zone: ZoneInfo) -> str:
    if value is None:
        return "TBA"
    local = value.astimezone(zone)
    return f"{local:%Y/%m/%d} ({WEEKDAYS[local.weekday()]}) {local:%H:%M}"


def _text(text: str, **kwargs) -> Dict[str, Any]:
    return {"type": "text", "text": text, "wrap": True, **kwargs}


def build_ticket_notification(
    ticket: Ticket,
    notification_type: NotificationType,
    zone: ZoneInfo,
) -> ChannelMessage:
    style = NOTIFICATION_STYLES[NotificationType(notification_type)]
    match = ticket.display_match_name
    match_date = format_site_datetime(ticket.match_date, zone)
    sale_start = format_site_datetime(ticket.sale_start_date, zone)
    venue = ticket.venue or "TBA"

    bubble: Dict[str, Any] = {
        "type": "bubble",
        "body": {
            "type": "box",
            "layout": "vertical",
            "contents": [
                _text(style.title, weight="bold", size="lg", color=style.color),
                {"type": "separator", "margin": "md"},
                _text(f"⚽️ {match}", size="md", margin="md"),
                _text(f"📅 {match_date}", size="sm", color="#666666", margin="sm"),
                _text(f"📍 {venue}", size="sm", color="#666666", margin="sm"),
                {"type": "separator", "margin": "md"},
                _text(f"🚀 Sale starts: {sale_start}", size="md", weight="bold", color=style.color, margin="md"),
                _text(f"⏰ {style.urgency}", size="md", weight="bold", color=style.color, margin="sm"),
            ],
        },
    }
    if ticket.ticket_url:
        bubble["footer"] = {
            "type": "box",
            "layout": "vertical",
            "contents": [
                {
                    "type": "button",
                    "action": {"type": "uri", "label": "Buy tickets", "uri": ticket.ticket_url},
                    "style": "primary",
                    "color": style.color,
                }
            ],
        }

    lines = [style.title, match, f"Match: {match_date}", f"Venue: {venue}", f"Sale starts: {sale_start}"]
    if ticket.ticket_url:
        lines.append(ticket.ticket_url)

    embed: Dict[str, Any] = {
        "title": style.title,
        "description": match,
        "color": style.discord_color,
        "fields": [
            {"name": "Match", "value": match_date, "inline": True},
            {"name": "Venue", "value": venue, "inline": True},
            {"name": "Sale starts", "value": sale_start, "inline": False},
        ],
        "timestamp": utc_now().isoformat(),
        "footer": {"text": FOOTER_TEXT},
    }
    if ticket.ticket_url:
        embed["url"] = ticket.ticket_url

    return ChannelMessage(
        alt_text=f"[Ticket alert] {match}",
        text="\n".join(lines),
        flex_contents=bubble,
        embeds=[embed],
    )


def build_ticket_summary(
    tickets: Sequence[Ticket], zone: ZoneInfo
) -> ChannelMessage:
    """Overview of every ticket whose sale has not ended."""
    if not tickets:
        text = "No upcoming away ticket sales."
        return ChannelMessage(alt_text="[Ticket summary]", text=text)

    on_sale = [t for t in tickets if t.sale_status == SaleStatus.ON_SALE]
    before_sale = [t for t in tickets if t.sale_status == SaleStatus.BEFORE_SALE]

    lines = ["🎫 Away ticket summary"]
    if on_sale:
        lines.append("")
        lines.append("On sale now:")
        for ticket in on_sale:
            lines.append(f"・{ticket.display_match_name} ({format_site_datetime(ticket.match_date, zone)})")
    if before_sale:
        lines.append("")
        lines.append("Upcoming sales:")
        for ticket in before_sale:
            lines.append(
                f"・{ticket.display_match_name}: sale starts {format_site_datetime(ticket.sale_start_date, zone)}"
            )

    text = "\n".join(lines)
    return ChannelMessage(
        alt_text=f"[Ticket summary] {len(tickets)} tickets",
        text=text,
        embeds=[
            {
                "title": "🎫 Away ticket summary",
                "description": text,
                "color": SYSTEM_COLOR,
                "timestamp": utc_now().isoformat(),
                "footer": {"text": FOOTER_TEXT},
            }
        ],
    )


def build_error_alert(error: str, details: Optional[str] = None) -> Dict[str, Any]:
    """Discord webhook payload for an operator alert."""
    embed: Dict[str, Any] = {
        "title": "🚨 System error",
        "description": error[:4000],
        "color": ERROR_COLOR,
        "timestamp": utc_now().isoformat(),
        "footer": {"text": f"{FOOTER_TEXT} Error Alert"},
    }
    if details:
        embed["fields"] = [{"name": "Details", "value": details[:1000], "inline": False}]
    return {"embeds": [embed]}
