from celery import Celery

# Create Celery app
celery = Celery("occasion_notifier")

# Load configuration from occasion_notifier.config.celeryconfig module
celery.config_from_object("occasion_notifier.config.celeryconfig")
