from typing import Any, Dict, List, Optional
from datetime import datetime
import uuid
import enum

from sqlalchemy import (
    String,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    JSON,
    UniqueConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from occasion_notifier.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# Enums
class OccasionKind(enum.Enum):
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"
    FESTIVAL = "festival"


class Relation(enum.Enum):
    PRIMARY = "primary"
    SPOUSE = "spouse"
    CHILD = "child"


class DependentRelation(enum.Enum):
    SPOUSE = "spouse"
    CHILD = "child"


class LedgerStatus(enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    COMPLETED = "completed"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields (naive UTC)"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )


# Member records
class Member(Base, AuditMixin):
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    initiation_name: Mapped[Optional[str]] = mapped_column(String(200))
    mobile_no: Mapped[Optional[str]] = mapped_column(String(20))
    gender: Mapped[Optional[str]] = mapped_column(String(10))
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(DateTime)
    date_of_marriage: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    dependents: Mapped[List["MemberDependent"]] = relationship(
        back_populates="member",
        cascade="all, delete-orphan",
        order_by="MemberDependent.position",
    )

    __table_args__ = (
        Index("idx_members_mobile_no", "mobile_no"),
        Index("idx_members_date_of_birth", "date_of_birth"),
        Index("idx_members_date_of_marriage", "date_of_marriage"),
    )

    @property
    def spouse(self) -> Optional["MemberDependent"]:
        for dependent in self.dependents:
            if dependent.relation == DependentRelation.SPOUSE:
                return dependent
        return None

    @property
    def children(self) -> List["MemberDependent"]:
        return [d for d in self.dependents if d.relation == DependentRelation.CHILD]


class MemberDependent(Base, AuditMixin):
    """Spouse and children details embedded in a member's record."""

    __tablename__ = "member_dependents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    member_id: Mapped[str] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    relation: Mapped[DependentRelation] = mapped_column(
        Enum(DependentRelation), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    initiation_name: Mapped[Optional[str]] = mapped_column(String(200))
    mobile_no: Mapped[Optional[str]] = mapped_column(String(20))
    gender: Mapped[Optional[str]] = mapped_column(String(10))
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(DateTime)

    member: Mapped["Member"] = relationship(back_populates="dependents")

    __table_args__ = (Index("idx_member_dependents_member_id", "member_id"),)


# Device registrations
class Login(Base, AuditMixin):
    __tablename__ = "logins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    mobile: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    fcm_token: Mapped[Optional[str]] = mapped_column(String(500))
    device_type: Mapped[Optional[str]] = mapped_column(String(50))
    device_model: Mapped[Optional[str]] = mapped_column(String(100))
    device_version: Mapped[Optional[str]] = mapped_column(String(50))
    app_version: Mapped[Optional[str]] = mapped_column(String(50))


# Festival calendar
class CalendarEvent(Base, AuditMixin):
    __tablename__ = "calendar_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    event: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("idx_calendar_events_year_month", "year", "month"),)


# Dedup ledger
class NotificationLog(Base, AuditMixin):
    """
    One row per notification outcome.

    Leaf rows (sent/failed) are written once; the run summary row
    (completed) is overwritten by every run of the same slot and day.
    """

    __tablename__ = "notification_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    topic: Mapped[str] = mapped_column(String(50), nullable=False)
    slot: Mapped[str] = mapped_column(String(50), nullable=False)
    event_date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    event_id: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[LedgerStatus] = mapped_column(
        Enum(LedgerStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    message_id: Mapped[Optional[str]] = mapped_column(String(300))
    error: Mapped[Optional[str]] = mapped_column(Text)
    stats: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    details: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON)

    __table_args__ = (
        UniqueConstraint(
            "kind", "topic", "slot", "event_date", "event_id",
            name="uq_notification_logs_key",
        ),
        Index("idx_notification_logs_status", "status"),
        Index("idx_notification_logs_event_date", "event_date"),
    )
