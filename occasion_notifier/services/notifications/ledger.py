from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from occasion_notifier.db.models import LedgerStatus, NotificationLog
from occasion_notifier.schemas.notification_schemas import DedupKey, RUN_TOPIC
from occasion_notifier.utils.datetime_utils import naive_utc_now
from occasion_notifier.utils.errors import DuplicateKeyError
from occasion_notifier.utils.logging import get_logger

logger = get_logger()


def _key_clause(key: DedupKey):
    return and_(
        NotificationLog.kind == key.kind,
        NotificationLog.topic == key.topic,
        NotificationLog.slot == key.slot,
        NotificationLog.event_date == key.event_date,
        NotificationLog.event_id == key.event_id,
    )


class NotificationLedger:
    """
    Durable record of every notification outcome, keyed by ``DedupKey``.

    Each write commits immediately so a process killed mid-run leaves every
    completed send recorded for the next scheduled run.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, key: DedupKey) -> Optional[NotificationLog]:
        try:
            result = self.db.execute(select(NotificationLog).where(_key_clause(key)))
            return result.scalar_one_or_none()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def exists(self, key: DedupKey) -> bool:
        try:
            result = self.db.execute(
                select(NotificationLog.id).where(_key_clause(key)).limit(1)
            )
            return result.first() is not None
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def record_leaf(
        self,
        key: DedupKey,
        status: LedgerStatus,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> NotificationLog:
        """
        Create the single, immutable record for a broadcast or personal send.

        Raises:
            DuplicateKeyError: a record with the same key already exists.
        """
        if status == LedgerStatus.COMPLETED:
            raise ValueError("Run summaries are written with upsert_summary()")

        record = NotificationLog(
            **key.as_filter(),
            status=status,
            message_id=message_id,
            error=error,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateKeyError(
                f"Ledger record already exists for {key.kind}/{key.slot}/{key.event_date}/{key.event_id}"
            ) from e
        except Exception:
            self.db.rollback()
            raise
        return record

    def upsert_summary(
        self,
        key: DedupKey,
        stats: Dict[str, Any],
        details: List[Dict[str, Any]],
    ) -> NotificationLog:
        """Create or overwrite the run-summary record for ``key`` (last write wins)."""
        try:
            record = self.get(key)
            if record is None:
                record = NotificationLog(**key.as_filter(), status=LedgerStatus.COMPLETED)
                self.db.add(record)
            record.status = LedgerStatus.COMPLETED
            record.stats = stats
            record.details = details
            record.message_id = None
            record.error = stats.get("error")
            record.updated_at = naive_utc_now()
            self.db.commit()
            return record
        except IntegrityError:
            # Another process inserted the same summary between our read and write
            self.db.rollback()
            record = self.get(key)
            if record is None:
                raise
            record.stats = stats
            record.details = details
            record.error = stats.get("error")
            record.updated_at = naive_utc_now()
            self.db.commit()
            return record
        except Exception:
            self.db.rollback()
            raise

    def list_records(
        self,
        kind: Optional[str] = None,
        slot: Optional[str] = None,
        event_date: Optional[str] = None,
        summaries_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[NotificationLog], int]:
        """Page through ledger records, newest event date first."""
        conditions = []
        if kind:
            conditions.append(NotificationLog.kind == kind)
        if slot:
            conditions.append(NotificationLog.slot == slot)
        if event_date:
            conditions.append(NotificationLog.event_date == event_date)
        if summaries_only:
            conditions.append(NotificationLog.topic == RUN_TOPIC)

        where = and_(*conditions) if conditions else None

        count_query = select(func.count(NotificationLog.id))
        query = select(NotificationLog)
        if where is not None:
            count_query = count_query.where(where)
            query = query.where(where)

        total = self.db.execute(count_query).scalar_one()
        rows = self.db.execute(
            query.order_by(
                NotificationLog.event_date.desc(), NotificationLog.created_at.desc()
            )
            .limit(limit)
            .offset(offset)
        )
        return list(rows.scalars().all()), total

    def list_summaries(
        self,
        kind: Optional[str] = None,
        slot: Optional[str] = None,
        event_date: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[NotificationLog], int]:
        return self.list_records(
            kind=kind,
            slot=slot,
            event_date=event_date,
            summaries_only=True,
            limit=limit,
            offset=offset,
        )
