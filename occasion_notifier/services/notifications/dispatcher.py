from datetime import date, datetime
from typing import Dict, List, Optional

from occasion_notifier.config.settings import settings
from occasion_notifier.db.models import LedgerStatus, OccasionKind
from occasion_notifier.schemas.notification_schemas import (
    BroadcastCounters,
    DedupKey,
    DeliveryDetail,
    DispatchResult,
    FestivalEvent,
    Outcome,
    PersonalCounters,
    Recipient,
)
from occasion_notifier.services.directory_service import DirectoryService
from occasion_notifier.services.notifications.formatting import (
    broadcast_body,
    festival_body,
)
from occasion_notifier.services.notifications.ledger import NotificationLedger
from occasion_notifier.services.notifications.resolver import club_couples
from occasion_notifier.services.push.firebase_gateway import PushGateway
from occasion_notifier.utils.best_effort import best_effort
from occasion_notifier.utils.datetime_utils import format_ymd, from_naive_utc
from occasion_notifier.utils.errors import (
    DuplicateKeyError,
    PushDeliveryError,
    error_message,
)
from occasion_notifier.utils.logging import RunLogger

BROADCAST_LANE = "broadcast"
PERSONAL_LANE = "personal"

PERSONAL_TITLE = "Hare Krishna 🙏"

_COUNTER_FIELDS = {
    Outcome.SENT: "sent",
    Outcome.FAILED: "failed",
    Outcome.SKIPPED_ALREADY_SENT: "skipped_already_sent",
    Outcome.SKIPPED_NO_MOBILE: "skipped_no_mobile",
    Outcome.SKIPPED_NO_TOKEN: "skipped_no_token",
    Outcome.SKIPPED_EMPTY: "skipped_empty",
    Outcome.LEDGER_ERROR: "ledger_errors",
}


def broadcast_title(kind: OccasionKind) -> str:
    label = {
        OccasionKind.BIRTHDAY: "Birthdays",
        OccasionKind.ANNIVERSARY: "Wedding Anniversaries",
    }[kind]
    return f"🎉 Today: {label} ({settings.ORGANIZATION_NAME})"


def personal_body(kind: OccasionKind, display_name: str) -> str:
    if kind == OccasionKind.BIRTHDAY:
        return f"Happy Birthday {display_name}! 🎂"
    return f"Happy Wedding Anniversary {display_name}! 🎂"


def festival_title(slot: str) -> str:
    if slot.startswith("tomorrow"):
        return "🔔 Tomorrow: Vaishnava Festival"
    return "🌸 Today: Vaishnava Festival"


def _iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = from_naive_utc(value)
    return value.isoformat().replace("+00:00", "Z")


class NotificationDispatcher:
    """
    Fans a resolved list out to the push gateway exactly once per dedup key.

    Every item ends in a structured outcome; gateway and ledger errors are
    counted and logged, never raised. Nothing is retried within a run.
    """

    def __init__(
        self,
        ledger: NotificationLedger,
        directory: DirectoryService,
        gateway: PushGateway,
        log: RunLogger,
        topic: Optional[str] = None,
        name_limit: Optional[int] = None,
    ):
        self.ledger = ledger
        self.directory = directory
        self.gateway = gateway
        self.log = log
        self.topic = topic or settings.BROADCAST_TOPIC
        self.name_limit = name_limit or settings.BROADCAST_NAME_LIMIT

    async def dispatch(
        self,
        recipients: List[Recipient],
        kind: OccasionKind,
        slot: str,
        event_date: date,
    ) -> DispatchResult:
        """Broadcast lane followed by the personal lane for birthdays and anniversaries."""
        result = DispatchResult()
        await self.dispatch_broadcast(result, recipients, kind, slot, event_date)
        await self.dispatch_personal(result, recipients, kind, slot, event_date)
        return result

    # ---- bookkeeping ------------------------------------------------------

    def _note(
        self,
        result: DispatchResult,
        counters,
        detail: DeliveryDetail,
    ) -> None:
        field = _COUNTER_FIELDS[detail.outcome]
        setattr(counters, field, getattr(counters, field) + 1)
        result.details.append(detail)

    def _already_recorded(self, key: DedupKey) -> Optional[bool]:
        """Ledger lookup; None when the lookup itself failed."""
        try:
            return self.ledger.exists(key)
        except Exception as e:
            self.log.log(
                "ERROR",
                "Ledger lookup failed",
                kind=key.kind,
                slot=key.slot,
                event_id=key.event_id,
                error=str(e),
            )
            return None

    def _record(
        self,
        key: DedupKey,
        status: LedgerStatus,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Write a leaf outcome. False when another run recorded the key first;
        other write failures are logged and count as written.
        """
        with best_effort(
            "record ledger outcome",
            self.log,
            kind=key.kind,
            slot=key.slot,
            event_id=key.event_id,
            status=status.value,
        ):
            try:
                self.ledger.record_leaf(key, status, message_id=message_id, error=error)
            except DuplicateKeyError:
                # message_id is set when this message was delivered anyway
                self.log.log(
                    "WARNING",
                    "Ledger record already present",
                    kind=key.kind,
                    slot=key.slot,
                    event_id=key.event_id,
                    status=status.value,
                    message_id=message_id,
                )
                return False
        return True

    async def _broadcast_one(
        self,
        result: DispatchResult,
        key: DedupKey,
        title: str,
        body: str,
        data: Dict[str, object],
        name: Optional[str] = None,
    ) -> None:
        counters: BroadcastCounters = result.broadcast
        recorded = self._already_recorded(key)
        if recorded is None:
            self._note(
                result,
                counters,
                DeliveryDetail(lane=BROADCAST_LANE, outcome=Outcome.LEDGER_ERROR, event_id=key.event_id, name=name),
            )
            return
        if recorded:
            self._note(
                result,
                counters,
                DeliveryDetail(lane=BROADCAST_LANE, outcome=Outcome.SKIPPED_ALREADY_SENT, event_id=key.event_id, name=name),
            )
            return

        result.gateway_calls += 1
        try:
            message_id = await self.gateway.send_to_topic(self.topic, title, body, data)
        except Exception as e:
            code = e.code if isinstance(e, PushDeliveryError) else "unknown"
            self._record(key, LedgerStatus.FAILED, error=error_message(e))
            self.log.log(
                "WARNING",
                "Topic notification failed",
                kind=key.kind,
                slot=key.slot,
                event_id=key.event_id,
                error_code=code,
                error=error_message(e),
            )
            self._note(
                result,
                counters,
                DeliveryDetail(
                    lane=BROADCAST_LANE,
                    outcome=Outcome.FAILED,
                    event_id=key.event_id,
                    name=name,
                    error=error_message(e),
                    error_code=code,
                ),
            )
            return

        recorded = self._record(key, LedgerStatus.SENT, message_id=message_id)
        self.log.log(
            "INFO",
            "Topic notification sent",
            kind=key.kind,
            slot=key.slot,
            event_id=key.event_id,
            message_id=message_id,
        )
        self._note(
            result,
            counters,
            DeliveryDetail(
                lane=BROADCAST_LANE,
                outcome=Outcome.SENT if recorded else Outcome.SKIPPED_ALREADY_SENT,
                event_id=key.event_id,
                name=name,
                message_id=message_id,
            ),
        )

    # ---- lanes ------------------------------------------------------------

    async def dispatch_broadcast(
        self,
        result: DispatchResult,
        recipients: List[Recipient],
        kind: OccasionKind,
        slot: str,
        event_date: date,
    ) -> None:
        """One topic-wide summary listing today's names."""
        ymd = format_ymd(event_date)
        if not recipients:
            self._note(
                result,
                result.broadcast,
                DeliveryDetail(lane=BROADCAST_LANE, outcome=Outcome.SKIPPED_EMPTY),
            )
            return

        if kind == OccasionKind.ANNIVERSARY:
            names = club_couples(recipients)
        else:
            names = [r.display_name for r in recipients]

        key = DedupKey.broadcast(kind.value, self.topic, slot, ymd)
        await self._broadcast_one(
            result,
            key,
            title=broadcast_title(kind),
            body=broadcast_body(names, len(recipients), self.name_limit),
            data={
                "type": kind.value,
                "slot": slot,
                "date": ymd,
                "count": len(recipients),
            },
        )

    async def dispatch_festivals(
        self,
        result: DispatchResult,
        events: List[FestivalEvent],
        slot: str,
        event_date: date,
    ) -> None:
        """One topic message per calendar event, keyed by the event name."""
        ymd = format_ymd(event_date)
        if not events:
            self._note(
                result,
                result.broadcast,
                DeliveryDetail(lane=BROADCAST_LANE, outcome=Outcome.SKIPPED_EMPTY),
            )
            return

        for event in events:
            key = DedupKey.broadcast(OccasionKind.FESTIVAL.value, self.topic, slot, ymd, event.event)
            await self._broadcast_one(
                result,
                key,
                title=festival_title(slot),
                body=festival_body(event.event, event.description),
                data={
                    "type": OccasionKind.FESTIVAL.value,
                    "slot": slot,
                    "date": _iso_utc(event.date),
                    "event": event.event,
                },
                name=event.event,
            )

    async def dispatch_personal(
        self,
        result: DispatchResult,
        recipients: List[Recipient],
        kind: OccasionKind,
        slot: str,
        event_date: date,
    ) -> None:
        """Personal wishes to every recipient with a mobile number and a device token."""
        counters: PersonalCounters = result.personal
        ymd = format_ymd(event_date)

        try:
            tokens = self.directory.tokens_for_mobiles(
                r.contact_key for r in recipients if r.contact_key
            )
        except Exception as e:
            self.log.log("ERROR", "Device token lookup failed", kind=kind.value, slot=slot, error=str(e))
            self._note(
                result,
                counters,
                DeliveryDetail(lane=PERSONAL_LANE, outcome=Outcome.LEDGER_ERROR, error=str(e)),
            )
            return

        for r in recipients:
            if not r.contact_key:
                self._note(
                    result,
                    counters,
                    DeliveryDetail(lane=PERSONAL_LANE, outcome=Outcome.SKIPPED_NO_MOBILE, name=r.display_name),
                )
                continue

            token = tokens.get(r.contact_key)
            if not token:
                self._note(
                    result,
                    counters,
                    DeliveryDetail(
                        lane=PERSONAL_LANE,
                        outcome=Outcome.SKIPPED_NO_TOKEN,
                        event_id=r.contact_key,
                        name=r.display_name,
                    ),
                )
                continue

            key = DedupKey.personal(kind.value, slot, ymd, r.contact_key)
            recorded = self._already_recorded(key)
            if recorded is None or recorded:
                self._note(
                    result,
                    counters,
                    DeliveryDetail(
                        lane=PERSONAL_LANE,
                        outcome=Outcome.LEDGER_ERROR if recorded is None else Outcome.SKIPPED_ALREADY_SENT,
                        event_id=r.contact_key,
                        name=r.display_name,
                    ),
                )
                continue

            result.gateway_calls += 1
            try:
                message_id = await self.gateway.send_to_token(
                    token,
                    PERSONAL_TITLE,
                    personal_body(kind, r.display_name),
                    {"type": kind.value, "date": ymd},
                )
            except Exception as e:
                self._personal_failure(result, counters, key, r, e)
                continue

            recorded = self._record(key, LedgerStatus.SENT, message_id=message_id)
            self._note(
                result,
                counters,
                DeliveryDetail(
                    lane=PERSONAL_LANE,
                    outcome=Outcome.SENT if recorded else Outcome.SKIPPED_ALREADY_SENT,
                    event_id=r.contact_key,
                    name=r.display_name,
                    message_id=message_id,
                ),
            )

    def _personal_failure(
        self,
        result: DispatchResult,
        counters: PersonalCounters,
        key: DedupKey,
        recipient: Recipient,
        error: Exception,
    ) -> None:
        code = error.code if isinstance(error, PushDeliveryError) else "unknown"
        message = error_message(error)
        self._record(key, LedgerStatus.FAILED, error=message)
        self.log.log(
            "WARNING",
            "Personal notification failed",
            kind=key.kind,
            slot=key.slot,
            event_id=key.event_id,
            error_code=code,
            error=message,
        )

        if isinstance(error, PushDeliveryError) and error.is_permanent_token_failure:
            with best_effort("clear device token", self.log, contact_key=recipient.contact_key) as cleared:
                self.directory.clear_device_token(recipient.contact_key)
            if cleared.ok:
                counters.tokens_cleared += 1

        self._note(
            result,
            counters,
            DeliveryDetail(
                lane=PERSONAL_LANE,
                outcome=Outcome.FAILED,
                event_id=recipient.contact_key,
                name=recipient.display_name,
                error=message,
                error_code=code,
            ),
        )
