from .expired_notification_cleanup import expired_notification_cleanup_task
from .failed_notification_retrier import failed_notification_retrier_task
from .past_ticket_cleanup import past_ticket_cleanup_task
from .pending_notification_sweeper import pending_notification_sweeper_task
from .ticket_summary_sender import ticket_summary_sender_task

__all__ = [
    "pending_notification_sweeper_task",
    "failed_notification_retrier_task",
    "expired_notification_cleanup_task",
    "past_ticket_cleanup_task",
    "ticket_summary_sender_task",
]
