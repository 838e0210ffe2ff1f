from .notification_callback import notification_callback_task
from .cron import *

__all__ = [
    "notification_callback_task",
    # Scheduled/Cron Tasks
    "pending_notification_sweeper_task",
    "failed_notification_retrier_task",
    "expired_notification_cleanup_task",
    "past_ticket_cleanup_task",
    "ticket_summary_sender_task",
]
