import traceback
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from occasion_notifier.db.models import OccasionKind
from occasion_notifier.db.session import NotificationStore
from occasion_notifier.schemas.notification_schemas import (
    DedupKey,
    DispatchResult,
    RunStats,
)
from occasion_notifier.services.directory_service import DirectoryService
from occasion_notifier.services.notifications.dispatcher import NotificationDispatcher
from occasion_notifier.services.notifications.ledger import NotificationLedger
from occasion_notifier.services.notifications.resolver import RecipientResolver
from occasion_notifier.services.push.firebase_gateway import PushGateway
from occasion_notifier.utils.best_effort import best_effort
from occasion_notifier.utils.datetime_utils import add_days, format_ymd, local_zone, utc_now
from occasion_notifier.utils.logging import RunLogger

STORE_UNREACHABLE = "Store unreachable"
GATEWAY_NOT_READY = "Push gateway not ready"


@dataclass(frozen=True)
class OccasionSlot:
    kind: OccasionKind
    slot: str
    day_offset: int = 0


FESTIVALS_TODAY = OccasionSlot(OccasionKind.FESTIVAL, "today_6am")
BIRTHDAYS_TODAY = OccasionSlot(OccasionKind.BIRTHDAY, "today_7am")
ANNIVERSARIES_TODAY = OccasionSlot(OccasionKind.ANNIVERSARY, "today_730am")
FESTIVALS_TOMORROW = OccasionSlot(OccasionKind.FESTIVAL, "tomorrow_5pm", day_offset=1)

OCCASION_SLOTS: Dict[str, OccasionSlot] = {
    f"{s.kind.value}:{s.slot}": s
    for s in (FESTIVALS_TODAY, BIRTHDAYS_TODAY, ANNIVERSARIES_TODAY, FESTIVALS_TOMORROW)
}


def find_slot(kind: OccasionKind, slot: str) -> Optional[OccasionSlot]:
    return OCCASION_SLOTS.get(f"{kind.value}:{slot}")


class RunOrchestrator:
    """
    One scheduled run: connectivity check, resolve, broadcast, personal
    sends, summary.

    ``run()`` never raises. Whatever happens, exactly one ``completed``
    summary record is upserted for (kind, slot, target date) unless the
    store itself refuses the write, which is logged.
    """

    def __init__(
        self,
        store: NotificationStore,
        gateway: PushGateway,
        log: RunLogger,
        zone: Optional[ZoneInfo] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.log = log
        self.zone = zone or local_zone()

    async def run(self, kind: OccasionKind, slot: str, today: date) -> RunStats:
        known = find_slot(kind, slot)
        offset = known.day_offset if known else (1 if slot.startswith("tomorrow") else 0)
        target = add_days(today, offset)

        stats = RunStats(
            date=format_ymd(target),
            kind=kind,
            slot=slot,
            started_at=utc_now(),
        )
        details: List[Dict[str, Any]] = []

        self.log.log("INFO", "Notification run started", kind=kind.value, slot=slot, date=stats.date)

        try:
            if not self.store.ping():
                stats.store_ok = False
                stats.error = STORE_UNREACHABLE
                self.log.log("ERROR", "Skipping run because the store is not reachable", kind=kind.value, slot=slot)
                return self._finish(stats, details)

            if not self.gateway.ready:
                stats.error = GATEWAY_NOT_READY
                self.log.log("ERROR", "Skipping run because the push gateway is not ready", kind=kind.value, slot=slot)
                return self._finish(stats, details)

            with self.store.session() as db:
                ledger = NotificationLedger(db)
                directory = DirectoryService(db)
                resolver = RecipientResolver(directory, self.zone)
                dispatcher = NotificationDispatcher(ledger, directory, self.gateway, self.log)

                result = DispatchResult()
                if kind == OccasionKind.FESTIVAL:
                    events = resolver.resolve_events(target)
                    stats.todays_count = len(events)
                    stats.total_candidates = resolver.total_candidates
                    await dispatcher.dispatch_festivals(result, events, slot, target)
                else:
                    recipients = resolver.resolve(target, kind)
                    stats.todays_count = len(recipients)
                    stats.total_candidates = resolver.total_candidates
                    result = await dispatcher.dispatch(recipients, kind, slot, target)

                stats.broadcast = result.broadcast
                stats.personal = result.personal
                details = [d.to_record() for d in result.details]
                return self._finish(stats, details, ledger)

        except Exception as e:
            stats.error = str(e) or e.__class__.__name__
            self.log.log(
                "ERROR",
                "Notification run failed",
                kind=kind.value,
                slot=slot,
                error=stats.error,
                traceback=traceback.format_exc(),
            )
            return self._finish(stats, details)

    def _finish(
        self,
        stats: RunStats,
        details: List[Dict[str, Any]],
        ledger: Optional[NotificationLedger] = None,
    ) -> RunStats:
        stats.ended_at = utc_now()
        key = DedupKey.run_summary(stats.kind.value, stats.slot, stats.date)

        with best_effort("upsert run summary", self.log, kind=key.kind, slot=key.slot, date=key.event_date):
            if ledger is not None:
                ledger.upsert_summary(key, stats.to_record(), details)
            else:
                with self.store.session() as db:
                    NotificationLedger(db).upsert_summary(key, stats.to_record(), details)

        self.log.log(
            "INFO",
            "Notification run finished",
            kind=key.kind,
            slot=key.slot,
            date=key.event_date,
            store_ok=stats.store_ok,
            todays_count=stats.todays_count,
            broadcast=stats.broadcast.model_dump(),
            personal=stats.personal.model_dump(),
        )
        return stats
