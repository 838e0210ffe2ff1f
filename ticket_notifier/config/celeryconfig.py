from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["ticket_notifier.tasks"]

# Timezone Configuration
timezone = settings.SITE_TIMEZONE
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 8 * 60  # 8 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 30  # 30 seconds
task_max_retries = 5

# Exponential Backoff Settings
task_retry_backoff = True
task_retry_backoff_max = 600  # Max 600 seconds
task_retry_jitter = False

# Notification callbacks sit in the queue for up to several days until their ETA.
broker_transport_options = {"visibility_timeout": 7 * 24 * 60 * 60}

# All scheduled tasks use the site timezone
beat_schedule = {
    # Backfill for callbacks the queue failed to deliver - every 5 minutes
    "pending-notification-sweeper": {
        "task": "ticket_notifier.tasks.cron.pending_notification_sweeper.pending_notification_sweeper_task",
        "schedule": crontab(minute="*/5"),
        "args": ("pending_notification_sweeper_cron",),
    },
    # Re-arm failed notifications that are still inside their window - every 15 minutes
    "failed-notification-retrier": {
        "task": "ticket_notifier.tasks.cron.failed_notification_retrier.failed_notification_retrier_task",
        "schedule": crontab(minute="*/15"),
        "args": ("failed_notification_retrier_cron",),
    },
    # Expired notification cleanup - hourly
    "expired-notification-cleanup": {
        "task": "ticket_notifier.tasks.cron.expired_notification_cleanup.expired_notification_cleanup_task",
        "schedule": crontab(minute=30),
        "args": ("expired_notification_cleanup_cron",),
    },
    # Retention cleanup for matches long past - daily at 03:00
    "past-ticket-cleanup": {
        "task": "ticket_notifier.tasks.cron.past_ticket_cleanup.past_ticket_cleanup_task",
        "schedule": crontab(hour=3, minute=0),
        "args": ("past_ticket_cleanup_cron",),
    },
    # Daily ticket summary broadcast - 12:00
    "daily-ticket-summary": {
        "task": "ticket_notifier.tasks.cron.ticket_summary_sender.ticket_summary_sender_task",
        "schedule": crontab(hour=12, minute=0),
        "args": ("ticket_summary_sender_cron",),
    },
}

# Default Queue
task_default_queue = "ticket_notifier"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
