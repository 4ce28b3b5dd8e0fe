from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["occasion_notifier.tasks"]

# Schedules below are expressed in UTC; local times are Asia/Kolkata (UTC+05:30)
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Runs are idempotent through the notification ledger and are never retried by Celery
task_acks_late = True
task_reject_on_worker_lost = True

beat_schedule = {
    # 6:00 AM IST - festivals happening today
    "festivals-today-6am": {
        "task": "occasion_notifier.tasks.cron.festival_notifier.festivals_today_task",
        "schedule": crontab(hour=0, minute=30),
        "args": ("festivals_today_6am_cron",),
    },
    # 7:00 AM IST - birthdays
    "birthdays-today-7am": {
        "task": "occasion_notifier.tasks.cron.birthday_notifier.birthdays_today_task",
        "schedule": crontab(hour=1, minute=30),
        "args": ("birthdays_today_7am_cron",),
    },
    # 7:30 AM IST - wedding anniversaries
    "anniversaries-today-730am": {
        "task": "occasion_notifier.tasks.cron.anniversary_notifier.anniversaries_today_task",
        "schedule": crontab(hour=2, minute=0),
        "args": ("anniversaries_today_730am_cron",),
    },
    # 5:00 PM IST - advance notice for tomorrow's festivals
    "festivals-tomorrow-5pm": {
        "task": "occasion_notifier.tasks.cron.festival_notifier.festivals_tomorrow_task",
        "schedule": crontab(hour=11, minute=30),
        "args": ("festivals_tomorrow_5pm_cron",),
    },
}

# Default Queue
task_default_queue = "occasion_notifier"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
