from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from occasion_notifier.db.models import OccasionKind
from occasion_notifier.db.session import get_sync_session
from occasion_notifier.schemas.notification_schemas import (
    DedupKey,
    NotificationLogItem,
)
from occasion_notifier.services.notifications.ledger import NotificationLedger
from occasion_notifier.services.notifications.orchestrator import find_slot
from occasion_notifier.tasks.background.manual_run import run_occasion_task
from occasion_notifier.utils.errors import NotFoundError
from occasion_notifier.utils.logging import get_logger
from occasion_notifier.utils.responses import ResponseBuilder

notification_runs_router = APIRouter()
logger = get_logger()


@notification_runs_router.get("")
def list_notification_runs(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
    kind: Optional[OccasionKind] = Query(default=None, description="Occasion kind"),
    slot: Optional[str] = Query(default=None, description="Schedule slot, e.g. today_7am"),
    event_date: Optional[date] = Query(
        default=None, alias="eventDate", description="Target date (YYYY-MM-DD)"
    ),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100, alias="perPage"),
):
    """
    List run summaries, newest target date first.
    """
    ledger = NotificationLedger(db)
    records, total = ledger.list_summaries(
        kind=kind.value if kind else None,
        slot=slot,
        event_date=event_date.isoformat() if event_date else None,
        limit=per_page,
        offset=(page - 1) * per_page,
    )

    return ResponseBuilder.paginated(
        request=request,
        data=[NotificationLogItem.from_record(r) for r in records],
        page=page,
        per_page=per_page,
        total=total,
        message=f"Retrieved {len(records)} notification runs",
    )


@notification_runs_router.get("/{kind}/{slot}/{event_date}")
def get_notification_run(
    request: Request,
    kind: OccasionKind,
    slot: str,
    event_date: date,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Get the summary of one run, including its per-recipient detail log.

    Args:
        kind: birthday, anniversary or festival
        slot: schedule slot of the run
        event_date: the run's target date (YYYY-MM-DD)
    """
    key = DedupKey.run_summary(kind.value, slot, event_date.isoformat())
    record = NotificationLedger(db).get(key)
    if record is None:
        raise NotFoundError(
            f"No run recorded for {kind.value}/{slot}/{event_date.isoformat()}"
        )

    return ResponseBuilder.success(
        request=request,
        data=NotificationLogItem.from_record(record),
        message="Notification run retrieved",
    )


@notification_runs_router.post("/{kind}/{slot}")
def trigger_notification_run(
    request: Request,
    kind: OccasionKind,
    slot: str,
    today: Optional[date] = Query(
        default=None, description="Local day to run for; defaults to today"
    ),
):
    """
    Enqueue a run of a scheduled slot now.

    Notifications already recorded for the slot's target date are skipped,
    so triggering a slot that already ran only fills in what is missing.
    """
    if find_slot(kind, slot) is None:
        raise NotFoundError(f"Unknown schedule slot {kind.value}/{slot}")

    request_id = request.state.request_id
    task = run_occasion_task.delay(  # type: ignore
        request_id=request_id,
        kind=kind.value,
        slot=slot,
        today=today.isoformat() if today else None,
    )
    logger.info("Notification run enqueued", kind=kind.value, slot=slot, task_id=task.id)

    return ResponseBuilder.success(
        request=request,
        data={"taskId": task.id, "kind": kind.value, "slot": slot},
        message="Notification run enqueued",
        status_code=status.HTTP_202_ACCEPTED,
    )
