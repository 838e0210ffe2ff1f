from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, Dict
from zoneinfo import ZoneInfo

from ticket_notifier.utils.datetime_utils import ensure_aware

DAY_BEFORE_WALL_CLOCK = time(20, 0)


class NotificationType(str, Enum):
    DAY_BEFORE = "day_before"
    HOUR_BEFORE = "hour_before"
    MINUTES_BEFORE = "minutes_before"


@dataclass(frozen=True)
class NotificationTiming:
    notification_type: NotificationType
    scheduled_at: datetime
    tolerance: timedelta

    def is_due(self, now: datetime) -> bool:
        return abs(ensure_aware(now, "now") - self.scheduled_at) <= self.tolerance


@dataclass(frozen=True)
class TimingRule:
    display_name: str
    description: str
    tolerance: timedelta
    calculate: Callable[[datetime, ZoneInfo], datetime]


def _day_before_at_20(sale_start_date: datetime, zone: ZoneInfo) -> datetime:
    # Wall-clock target: resolve 20:00 on the previous local date through the
    # zone so an offset change between the two days is honoured.
    local_date = sale_start_date.astimezone(zone).date() - timedelta(days=1)
    return datetime.combine(local_date, DAY_BEFORE_WALL_CLOCK, tzinfo=zone)


def _hour_before(sale_start_date: datetime, zone: ZoneInfo) -> datetime:
    return sale_start_date - timedelta(hours=1)


def _minutes_before(sale_start_date: datetime, zone: ZoneInfo) -> datetime:
    return sale_start_date - timedelta(minutes=15)


TIMING_RULES: Dict[NotificationType, TimingRule] = {
    NotificationType.DAY_BEFORE: TimingRule(
        display_name="Sale starts tomorrow",
        description="20:00 local time on the day before the sale opens (±5 minutes)",
        tolerance=timedelta(minutes=5),
        calculate=_day_before_at_20,
    ),
    NotificationType.HOUR_BEFORE: TimingRule(
        display_name="Sale starts in 1 hour",
        description="60 minutes before the sale opens (±5 minutes)",
        tolerance=timedelta(minutes=5),
        calculate=_hour_before,
    ),
    NotificationType.MINUTES_BEFORE: TimingRule(
        display_name="Sale starts in 15 minutes",
        description="15 minutes before the sale opens (±2 minutes)",
        tolerance=timedelta(minutes=2),
        calculate=_minutes_before,
    ),
}


def compute_timing(
    notification_type: NotificationType,
    sale_start_date: datetime,
    zone: ZoneInfo,
) -> NotificationTiming:
    """
    Map a sale start instant to the target instant for one notification type.

    Raises:
        ValueError: If `sale_start_date` is naive or the type is unknown
    """
    ensure_aware(sale_start_date, "sale_start_date")
    rule = TIMING_RULES[NotificationType(notification_type)]
    return NotificationTiming(
        notification_type=NotificationType(notification_type),
        scheduled_at=rule.calculate(sale_start_date, zone),
        tolerance=rule.tolerance,
    )


def compute_all_timings(
    sale_start_date: datetime, zone: ZoneInfo
) -> Dict[NotificationType, NotificationTiming]:
    return {
        notification_type: compute_timing(notification_type, sale_start_date, zone)
        for notification_type in NotificationType
    }


def is_due(
    notification_type: NotificationType,
    sale_start_date: datetime,
    now: datetime,
    zone: ZoneInfo,
) -> bool:
    """True when `now` lies within the tolerance window around the target instant."""
    return compute_timing(notification_type, sale_start_date, zone).is_due(now)


def display_name(notification_type: NotificationType) -> str:
    return TIMING_RULES[NotificationType(notification_type)].display_name
