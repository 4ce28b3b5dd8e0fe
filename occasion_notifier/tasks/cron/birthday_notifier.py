import asyncio

from occasion_notifier.celery import celery
from occasion_notifier.services.notifications.orchestrator import BIRTHDAYS_TODAY
from occasion_notifier.tasks.cron.occasion_runner import run_occasion


@celery.task(bind=True, max_retries=0)
def birthdays_today_task(self, request_id: str):
    """
    Daily birthday wishes, 7:00 AM IST.

    Sends one summary to the festivals topic listing everyone whose birthday
    is today (members, spouses and children) and a personal wish to each
    person with a registered device. Re-running on the same day only sends
    what the ledger has not recorded yet.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(run_occasion(BIRTHDAYS_TODAY, request_id))
