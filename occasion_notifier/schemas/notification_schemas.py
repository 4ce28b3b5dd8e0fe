from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel as PlainBaseModel, ConfigDict, Field

from occasion_notifier.db.models import OccasionKind, Relation
from occasion_notifier.schemas.camel_base_model import CamelCaseBaseModel as BaseModel

SUMMARY_EVENT_ID = "summary"
RUN_TOPIC = "run"
TOKEN_TOPIC = "token"


class Outcome(str, Enum):
    """Per-item results recorded in counters and the run detail log."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED_ALREADY_SENT = "skipped_already_sent"
    SKIPPED_NO_MOBILE = "skipped_no_mobile"
    SKIPPED_NO_TOKEN = "skipped_no_token"
    SKIPPED_EMPTY = "skipped_empty"
    LEDGER_ERROR = "ledger_error"


class DedupKey(PlainBaseModel):
    """
    Natural key of a ledger record.

    Frozen, so two keys with the same five parts compare equal and hash
    identically; mirrors the unique constraint on ``notification_logs``.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    topic: str
    slot: str
    event_date: str
    event_id: str

    def as_filter(self) -> Dict[str, str]:
        return {
            "kind": self.kind,
            "topic": self.topic,
            "slot": self.slot,
            "event_date": self.event_date,
            "event_id": self.event_id,
        }

    @classmethod
    def broadcast(cls, kind: str, topic: str, slot: str, event_date: str, event_id: str = SUMMARY_EVENT_ID) -> "DedupKey":
        return cls(kind=kind, topic=topic, slot=slot, event_date=event_date, event_id=event_id)

    @classmethod
    def personal(cls, kind: str, slot: str, event_date: str, contact_key: str) -> "DedupKey":
        return cls(
            kind=f"{kind}_personal",
            topic=TOKEN_TOPIC,
            slot=slot,
            event_date=event_date,
            event_id=contact_key,
        )

    @classmethod
    def run_summary(cls, kind: str, slot: str, event_date: str) -> "DedupKey":
        return cls(kind=kind, topic=RUN_TOPIC, slot=slot, event_date=event_date, event_id=SUMMARY_EVENT_ID)


class Recipient(BaseModel):
    display_name: str = Field(..., description="Name shown in notifications")
    contact_key: Optional[str] = Field(None, description="Mobile number, if known")
    occasion_date: date = Field(..., description="Local date of the occasion")
    relation: Relation = Field(..., description="primary, spouse or child")
    source_member_key: str = Field(..., description="Primary member this entry derives from")
    gender: Optional[str] = Field(None, description="Gender, when recorded")
    spouse_contact_key: Optional[str] = Field(
        None, description="Recorded spouse mobile number (anniversaries)"
    )


class FestivalEvent(BaseModel):
    event: str
    description: Optional[str] = None
    date: datetime
    event_date: date


class BroadcastCounters(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped_already_sent: int = 0
    skipped_empty: int = 0
    ledger_errors: int = 0


class PersonalCounters(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped_no_mobile: int = 0
    skipped_no_token: int = 0
    skipped_already_sent: int = 0
    ledger_errors: int = 0
    tokens_cleared: int = 0


class DeliveryDetail(BaseModel):
    lane: str
    outcome: Outcome
    event_id: Optional[str] = None
    name: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class DispatchResult(PlainBaseModel):
    """Counters and ordered detail log produced by the dispatcher for one run."""

    broadcast: BroadcastCounters = Field(default_factory=BroadcastCounters)
    personal: PersonalCounters = Field(default_factory=PersonalCounters)
    details: List[DeliveryDetail] = Field(default_factory=list)
    gateway_calls: int = 0


class RunStats(BaseModel):
    date: str = Field(..., description="Target date YYYY-MM-DD")
    kind: OccasionKind
    slot: str
    store_ok: bool = Field(True, alias="mongoOk")
    total_candidates: int = 0
    todays_count: int = 0
    broadcast: BroadcastCounters = Field(default_factory=BroadcastCounters)
    personal: PersonalCounters = Field(default_factory=PersonalCounters)
    started_at: datetime
    ended_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NotificationLogItem(BaseModel):
    """Read model of a ledger record."""

    kind: str
    topic: str
    slot: str
    event_date: str
    event_id: str
    status: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    details: Optional[List[Dict[str, Any]]] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record) -> "NotificationLogItem":
        return cls(
            kind=record.kind,
            topic=record.topic,
            slot=record.slot,
            event_date=record.event_date,
            event_id=record.event_id,
            status=record.status.value,
            message_id=record.message_id,
            error=record.error,
            stats=record.stats,
            details=record.details,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
