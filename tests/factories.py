"""Shared test data builders and fakes."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from occasion_notifier.db.models import (
    CalendarEvent,
    DependentRelation,
    Login,
    Member,
    MemberDependent,
)
from occasion_notifier.services.push.firebase_gateway import PushGateway
from occasion_notifier.utils.datetime_utils import to_naive_utc

IST = ZoneInfo("Asia/Kolkata")

# 15 March, the local day most fixtures celebrate
TODAY = date(2025, 3, 15)


def ist_midnight(year: int, month: int, day: int) -> datetime:
    """Naive UTC instant of local midnight, the way member dates are stored."""
    return to_naive_utc(datetime(year, month, day, tzinfo=IST))


class RecordingLogger:
    """Collects ``log(level, message, **fields)`` calls for assertions."""

    def __init__(self):
        self.records: List[Tuple[str, str, Dict[str, Any]]] = []

    def log(self, level: str, message: str, **fields: Any) -> None:
        self.records.append((level, message, fields))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [m for lvl, m, _ in self.records if level is None or lvl == level]


class FakePushGateway(PushGateway):
    """Push gateway whose sends are AsyncMocks returning fixed message ids."""

    def __init__(self, ready: bool = True):
        self._ready = ready
        self.topic_send = AsyncMock(return_value="projects/demo/messages/topic-1")
        self.token_send = AsyncMock(return_value="projects/demo/messages/token-1")

    @property
    def ready(self) -> bool:
        return self._ready

    async def send_to_topic(self, topic, title, body, data=None):
        return await self.topic_send(topic, title, body, data)

    async def send_to_token(self, token, title, body, data=None):
        return await self.token_send(token, title, body, data)

    @property
    def call_count(self) -> int:
        return self.topic_send.await_count + self.token_send.await_count


def add_member(
    db: Session,
    name: str,
    mobile: Optional[str] = None,
    gender: Optional[str] = None,
    initiation_name: Optional[str] = None,
    date_of_birth: Optional[datetime] = None,
    date_of_marriage: Optional[datetime] = None,
    dependents: Optional[List[MemberDependent]] = None,
) -> Member:
    member = Member(
        name=name,
        initiation_name=initiation_name,
        mobile_no=mobile,
        gender=gender,
        date_of_birth=date_of_birth,
        date_of_marriage=date_of_marriage,
        dependents=dependents or [],
    )
    db.add(member)
    db.commit()
    return member


def spouse(name: str, mobile: Optional[str] = None, gender: Optional[str] = None, date_of_birth=None) -> MemberDependent:
    return MemberDependent(
        relation=DependentRelation.SPOUSE,
        position=0,
        name=name,
        mobile_no=mobile,
        gender=gender,
        date_of_birth=date_of_birth,
    )


def child(name: str, position: int, mobile: Optional[str] = None, date_of_birth=None) -> MemberDependent:
    return MemberDependent(
        relation=DependentRelation.CHILD,
        position=position,
        name=name,
        mobile_no=mobile,
        date_of_birth=date_of_birth,
    )


def add_login(db: Session, mobile: str, token: Optional[str] = "fcm-token") -> Login:
    login = Login(mobile=mobile, fcm_token=token, device_type="android")
    db.add(login)
    db.commit()
    return login


def add_event(db: Session, day: date, event: str, description: Optional[str] = None) -> CalendarEvent:
    calendar_event = CalendarEvent(
        year=day.year,
        month=day.month,
        date=ist_midnight(day.year, day.month, day.day),
        event=event,
        description=description,
    )
    db.add(calendar_event)
    db.commit()
    return calendar_event
