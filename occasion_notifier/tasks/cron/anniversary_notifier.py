import asyncio

from occasion_notifier.celery import celery
from occasion_notifier.services.notifications.orchestrator import ANNIVERSARIES_TODAY
from occasion_notifier.tasks.cron.occasion_runner import run_occasion


@celery.task(bind=True, max_retries=0)
def anniversaries_today_task(self, request_id: str):
    """
    Daily wedding anniversary wishes, 7:30 AM IST.

    Couples who are both members are shown once in the topic summary as
    "Husband & Wife"; each partner still receives a personal wish.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(run_occasion(ANNIVERSARIES_TODAY, request_id))
