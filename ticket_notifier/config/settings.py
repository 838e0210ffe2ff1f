from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Away Ticket Notifier"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/tickets.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Notification scheduling
    NOTIFICATION_CALLBACK_URL: Optional[str] = None
    CALLBACK_AUTH_TOKEN: Optional[str] = None
    SITE_TIMEZONE: str = "Asia/Tokyo"
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_BACKOFF_BASE_SECONDS: float = 1.0
    TICKET_RETENTION_DAYS: int = 30

    # Line Messaging API
    LINE_CHANNEL_ACCESS_TOKEN: Optional[str] = None

    # Discord webhooks
    DISCORD_TICKET_WEBHOOK_URL: Optional[str] = None
    DISCORD_ALERT_WEBHOOK_URL: Optional[str] = None

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("NOTIFICATION_MAX_ATTEMPTS")
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("NOTIFICATION_MAX_ATTEMPTS must be at least 1")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
