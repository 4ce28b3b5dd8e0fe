from .anniversary_notifier import anniversaries_today_task
from .birthday_notifier import birthdays_today_task
from .festival_notifier import festivals_today_task, festivals_tomorrow_task

__all__ = [
    "anniversaries_today_task",
    "birthdays_today_task",
    "festivals_today_task",
    "festivals_tomorrow_task",
]
