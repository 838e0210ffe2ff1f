from celery import Celery

# Create Celery app
celery = Celery("ticket_notifier")

# Load configuration from ticket_notifier.config.celeryconfig module
celery.config_from_object("ticket_notifier.config.celeryconfig")
