from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from .settings import Settings


@dataclass(frozen=True)
class NotifierConfig:
    """
    Explicit configuration handed to the scheduling and delivery components.

    Built once from `Settings` by the wiring layer; the components themselves
    never look at the process environment.
    """

    callback_url: Optional[str] = None
    callback_auth_token: Optional[str] = None
    site_timezone: ZoneInfo = ZoneInfo("Asia/Tokyo")
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    retention_days: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotifierConfig":
        return cls(
            callback_url=settings.NOTIFICATION_CALLBACK_URL or None,
            callback_auth_token=settings.CALLBACK_AUTH_TOKEN or None,
            site_timezone=ZoneInfo(settings.SITE_TIMEZONE),
            max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
            backoff_base_seconds=settings.NOTIFICATION_BACKOFF_BASE_SECONDS,
            retention_days=settings.TICKET_RETENTION_DAYS,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return self.backoff_base_seconds * (2 ** (attempt - 1))
