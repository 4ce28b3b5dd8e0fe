import asyncio

from occasion_notifier.celery import celery
from occasion_notifier.services.notifications.orchestrator import (
    FESTIVALS_TODAY,
    FESTIVALS_TOMORROW,
)
from occasion_notifier.tasks.cron.occasion_runner import run_occasion


@celery.task(bind=True, max_retries=0)
def festivals_today_task(self, request_id: str):
    """
    Same-day festival notice, 6:00 AM IST.

    One topic message per calendar event dated today.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(run_occasion(FESTIVALS_TODAY, request_id))


@celery.task(bind=True, max_retries=0)
def festivals_tomorrow_task(self, request_id: str):
    """
    Advance festival notice, 5:00 PM IST, for events dated tomorrow.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(run_occasion(FESTIVALS_TOMORROW, request_id))
