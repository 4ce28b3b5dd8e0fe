import asyncio
from datetime import date
from typing import Optional

from occasion_notifier.celery import celery
from occasion_notifier.db.models import OccasionKind
from occasion_notifier.services.notifications.orchestrator import find_slot
from occasion_notifier.tasks.cron.occasion_runner import run_occasion
from occasion_notifier.utils.datetime_utils import local_today
from occasion_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def run_occasion_task(self, request_id: str, kind: str, slot: str, today: Optional[str] = None):
    """
    On-demand run of a scheduled slot, enqueued from the API.

    ``today`` (YYYY-MM-DD) replays a past local day; already recorded
    notifications are skipped exactly as in a scheduled run.
    """
    logger = get_logger().bind(request_id=request_id)

    occasion = find_slot(OccasionKind(kind), slot)
    if occasion is None:
        logger.error("Unknown occasion slot", kind=kind, slot=slot)
        return {"success": False, "error": f"Unknown slot {kind}/{slot}", "request_id": request_id}

    run_day = date.fromisoformat(today) if today else local_today()
    return asyncio.run(run_occasion(occasion, request_id, run_day))
