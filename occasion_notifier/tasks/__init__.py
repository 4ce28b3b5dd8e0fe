from .background import *
from .cron import *

__all__ = [
    "run_occasion_task",
    # Scheduled/Cron Tasks
    "festivals_today_task",
    "birthdays_today_task",
    "anniversaries_today_task",
    "festivals_tomorrow_task",
]
