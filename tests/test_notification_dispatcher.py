import pytest
from datetime import date
from unittest.mock import Mock

from sqlalchemy import select
from sqlalchemy.orm import Session

from occasion_notifier.db.models import LedgerStatus, Login, OccasionKind, Relation
from occasion_notifier.schemas.notification_schemas import (
    DedupKey,
    DispatchResult,
    FestivalEvent,
    Outcome,
    Recipient,
)
from occasion_notifier.services.directory_service import DirectoryService
from occasion_notifier.services.notifications.dispatcher import NotificationDispatcher
from occasion_notifier.services.notifications.ledger import NotificationLedger
from occasion_notifier.utils.errors import DuplicateKeyError, PushDeliveryError

from tests.factories import TODAY, FakePushGateway, RecordingLogger, add_login, ist_midnight

SLOT = "today_7am"


def _dispatcher(db: Session, gateway: FakePushGateway, log: RecordingLogger) -> NotificationDispatcher:
    return NotificationDispatcher(
        NotificationLedger(db), DirectoryService(db), gateway, log, topic="festivals"
    )


def _person(name: str, mobile=None, relation=Relation.PRIMARY, gender=None, spouse_mobile=None) -> Recipient:
    return Recipient(
        display_name=name,
        contact_key=mobile,
        occasion_date=TODAY,
        relation=relation,
        source_member_key=mobile or "member-1",
        gender=gender,
        spouse_contact_key=spouse_mobile,
    )


def _outcomes(result: DispatchResult, lane: str):
    return [d.outcome for d in result.details if d.lane == lane]


class TestBirthdayDispatch:
    """Broadcast and personal lanes for a birthday run."""

    @pytest.mark.asyncio
    async def test_broadcast_and_personal_sent(self, db_session, gateway, run_logger):
        add_login(db_session, "9000000001", token="token-a")
        people = [_person("Madhava Das Prabhu", "9000000001"), _person("Gopal", relation=Relation.CHILD)]

        result = await _dispatcher(db_session, gateway, run_logger).dispatch(
            people, OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        gateway.topic_send.assert_awaited_once_with(
            "festivals",
            "🎉 Today: Birthdays (ISKCON Vesu)",
            "(2) Madhava Das Prabhu, Gopal",
            {"type": "birthday", "slot": SLOT, "date": "2025-03-15", "count": 2},
        )
        gateway.token_send.assert_awaited_once_with(
            "token-a",
            "Hare Krishna 🙏",
            "Happy Birthday Madhava Das Prabhu! 🎂",
            {"type": "birthday", "date": "2025-03-15"},
        )
        assert result.broadcast.sent == 1
        assert result.personal.sent == 1
        assert result.personal.skipped_no_mobile == 1
        assert result.gateway_calls == 2

        ledger = NotificationLedger(db_session)
        personal = ledger.get(DedupKey.personal("birthday", SLOT, "2025-03-15", "9000000001"))
        assert personal.status == LedgerStatus.SENT
        assert personal.message_id == "projects/demo/messages/token-1"

    @pytest.mark.asyncio
    async def test_second_dispatch_sends_nothing(self, db_session, gateway, run_logger):
        add_login(db_session, "9000000001")
        add_login(db_session, "9000000002")
        people = [_person("A", "9000000001"), _person("B", "9000000002")]
        dispatcher = _dispatcher(db_session, gateway, run_logger)

        await dispatcher.dispatch(people, OccasionKind.BIRTHDAY, SLOT, TODAY)
        calls_after_first = gateway.call_count
        again = await dispatcher.dispatch(people, OccasionKind.BIRTHDAY, SLOT, TODAY)

        assert gateway.call_count == calls_after_first == 3
        assert again.gateway_calls == 0
        assert set(d.outcome for d in again.details) == {Outcome.SKIPPED_ALREADY_SENT}
        assert again.broadcast.skipped_already_sent == 1
        assert again.personal.skipped_already_sent == 2

    @pytest.mark.asyncio
    async def test_no_token_skipped_without_gateway_call(self, db_session, gateway, run_logger):
        add_login(db_session, "9000000003", token="")
        result = DispatchResult()

        await _dispatcher(db_session, gateway, run_logger).dispatch_personal(
            result, [_person("No Device", "9000000003")], OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        assert _outcomes(result, "personal") == [Outcome.SKIPPED_NO_TOKEN]
        assert result.gateway_calls == 0
        gateway.token_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_token_cleared_and_skipped_next_day(self, db_session, gateway, run_logger):
        add_login(db_session, "9000000004", token="stale-token")
        gateway.token_send.side_effect = PushDeliveryError("invalid-token", "The registration token is not valid")
        people = [_person("Stale", "9000000004")]
        dispatcher = _dispatcher(db_session, gateway, run_logger)

        result = await dispatcher.dispatch(people, OccasionKind.BIRTHDAY, SLOT, TODAY)

        assert result.personal.failed == 1
        assert result.personal.tokens_cleared == 1
        failed = [d for d in result.details if d.outcome == Outcome.FAILED][0]
        assert failed.error_code == "invalid-token"
        login = db_session.execute(select(Login).where(Login.mobile == "9000000004")).scalar_one()
        assert login.fcm_token == ""
        leaf = NotificationLedger(db_session).get(
            DedupKey.personal("birthday", SLOT, "2025-03-15", "9000000004")
        )
        assert leaf.status == LedgerStatus.FAILED

        gateway.token_send.reset_mock()
        next_day = await dispatcher.dispatch(people, OccasionKind.BIRTHDAY, SLOT, date(2025, 3, 16))

        assert _outcomes(next_day, "personal") == [Outcome.SKIPPED_NO_TOKEN]
        gateway.token_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_token(self, db_session, gateway, run_logger):
        add_login(db_session, "9000000005", token="good-token")
        gateway.token_send.side_effect = PushDeliveryError("internal", "backend unavailable")

        result = await _dispatcher(db_session, gateway, run_logger).dispatch(
            [_person("Unlucky", "9000000005")], OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        assert result.personal.failed == 1
        assert result.personal.tokens_cleared == 0
        login = db_session.execute(select(Login).where(Login.mobile == "9000000005")).scalar_one()
        assert login.fcm_token == "good-token"

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_stop_personal_lane(self, db_session, gateway, run_logger):
        add_login(db_session, "9000000006")
        gateway.topic_send.side_effect = PushDeliveryError("unavailable", "FCM down")
        people = [_person("Resilient", "9000000006")]
        dispatcher = _dispatcher(db_session, gateway, run_logger)

        result = await dispatcher.dispatch(people, OccasionKind.BIRTHDAY, SLOT, TODAY)

        assert result.broadcast.failed == 1
        assert result.personal.sent == 1
        assert "Topic notification failed" in run_logger.messages("WARNING")

        # Failed is terminal for the day: no retry on a re-run
        gateway.topic_send.reset_mock()
        again = await dispatcher.dispatch(people, OccasionKind.BIRTHDAY, SLOT, TODAY)
        assert again.broadcast.skipped_already_sent == 1
        gateway.topic_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_list(self, db_session, gateway, run_logger):
        result = await _dispatcher(db_session, gateway, run_logger).dispatch(
            [], OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        assert result.broadcast.skipped_empty == 1
        assert result.gateway_calls == 0

    @pytest.mark.asyncio
    async def test_ledger_lookup_failure_is_counted(self, gateway, run_logger):
        ledger = Mock(spec=NotificationLedger)
        ledger.exists.side_effect = RuntimeError("connection reset")
        directory = Mock(spec=DirectoryService)
        directory.tokens_for_mobiles.return_value = {"9000000007": "token"}
        dispatcher = NotificationDispatcher(ledger, directory, gateway, run_logger, topic="festivals")

        result = await dispatcher.dispatch(
            [_person("Unknown", "9000000007")], OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        assert result.broadcast.ledger_errors == 1
        assert result.personal.ledger_errors == 1
        assert gateway.call_count == 0

    @pytest.mark.asyncio
    async def test_ledger_write_failure_does_not_fail_send(self, gateway, run_logger):
        ledger = Mock(spec=NotificationLedger)
        ledger.exists.return_value = False
        ledger.record_leaf.side_effect = RuntimeError("disk full")
        directory = Mock(spec=DirectoryService)
        directory.tokens_for_mobiles.return_value = {}
        dispatcher = NotificationDispatcher(ledger, directory, gateway, run_logger, topic="festivals")

        result = await dispatcher.dispatch(
            [_person("Someone", "9000000008")], OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        assert result.broadcast.sent == 1
        assert "Best-effort action failed: record ledger outcome" in run_logger.messages("WARNING")

    @pytest.mark.asyncio
    async def test_concurrent_record_counts_as_already_sent(self, gateway, run_logger):
        ledger = Mock(spec=NotificationLedger)
        ledger.exists.return_value = False
        ledger.record_leaf.side_effect = DuplicateKeyError("recorded by another run")
        directory = Mock(spec=DirectoryService)
        directory.tokens_for_mobiles.return_value = {}
        dispatcher = NotificationDispatcher(ledger, directory, gateway, run_logger, topic="festivals")

        result = await dispatcher.dispatch(
            [_person("Raced", "9000000009")], OccasionKind.BIRTHDAY, SLOT, TODAY
        )

        assert result.broadcast.skipped_already_sent == 1
        assert result.broadcast.sent == 0
        warning = [f for lvl, m, f in run_logger.records if m == "Ledger record already present"][0]
        assert warning["message_id"] == "projects/demo/messages/topic-1"
        assert warning["status"] == "sent"
        detail = result.details[0]
        assert detail.outcome == Outcome.SKIPPED_ALREADY_SENT
        assert detail.message_id == "projects/demo/messages/topic-1"


class TestAnniversaryDispatch:
    """Couples share one broadcast entry but get separate wishes."""

    @pytest.mark.asyncio
    async def test_couple_clubbed_in_broadcast(self, db_session, gateway, run_logger):
        add_login(db_session, "111", token="token-h")
        add_login(db_session, "222", token="token-w")
        people = [
            _person("Radha Mataji", "222", gender="female", spouse_mobile="111"),
            _person("Mohan Prabhu", "111", gender="male", spouse_mobile="222"),
        ]

        result = await _dispatcher(db_session, gateway, run_logger).dispatch(
            people, OccasionKind.ANNIVERSARY, "today_730am", TODAY
        )

        title, body = gateway.topic_send.await_args.args[1:3]
        assert title == "🎉 Today: Wedding Anniversaries (ISKCON Vesu)"
        assert body == "(2) Mohan Prabhu & Radha Mataji"
        assert result.personal.sent == 2
        bodies = sorted(call.args[2] for call in gateway.token_send.await_args_list)
        assert bodies == [
            "Happy Wedding Anniversary Mohan Prabhu! 🎂",
            "Happy Wedding Anniversary Radha Mataji! 🎂",
        ]


class TestFestivalDispatch:
    """One topic message per calendar event."""

    def _event(self, name: str, description=None) -> FestivalEvent:
        return FestivalEvent(
            event=name,
            description=description,
            date=ist_midnight(2025, 3, 15),
            event_date=TODAY,
        )

    @pytest.mark.asyncio
    async def test_each_event_sent_once(self, db_session, gateway, run_logger):
        dispatcher = _dispatcher(db_session, gateway, run_logger)
        events = [self._event("Gaura Purnima", "Appearance day"), self._event("Ekadashi")]

        result = DispatchResult()
        await dispatcher.dispatch_festivals(result, events, "today_6am", TODAY)

        assert result.broadcast.sent == 2
        first = gateway.topic_send.await_args_list[0].args
        assert first[1] == "🌸 Today: Vaishnava Festival"
        assert first[2] == "Gaura Purnima — Appearance day"
        assert first[3]["date"] == "2025-03-14T18:30:00Z"
        assert first[3]["event"] == "Gaura Purnima"

        again = DispatchResult()
        await dispatcher.dispatch_festivals(again, events, "today_6am", TODAY)
        assert again.broadcast.skipped_already_sent == 2

    @pytest.mark.asyncio
    async def test_tomorrow_title(self, db_session, gateway, run_logger):
        result = DispatchResult()
        await _dispatcher(db_session, gateway, run_logger).dispatch_festivals(
            result, [self._event("Ekadashi")], "tomorrow_5pm", TODAY
        )

        assert gateway.topic_send.await_args.args[1] == "🔔 Tomorrow: Vaishnava Festival"
        assert gateway.topic_send.await_args.args[2] == "Ekadashi"

    @pytest.mark.asyncio
    async def test_no_events(self, db_session, gateway, run_logger):
        result = DispatchResult()
        await _dispatcher(db_session, gateway, run_logger).dispatch_festivals(
            result, [], "today_6am", TODAY
        )

        assert result.broadcast.skipped_empty == 1
        gateway.topic_send.assert_not_awaited()
