from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from occasion_notifier.db.models import CalendarEvent, Login, Member, MemberDependent
from occasion_notifier.utils.logging import get_logger

logger = get_logger()


def clean(value: Optional[str]) -> str:
    return str(value or "").strip()


class DirectoryService:
    """Read access to members, device registrations and the festival calendar."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def members_with_birth_dates(self) -> List[Member]:
        """
        Members with a birth date of their own or on any dependent.

        Dependents are loaded eagerly; filtering by month and day happens in
        the resolver because it needs the local zone.
        """
        result = self.db.execute(
            select(Member)
            .options(selectinload(Member.dependents))
            .where(
                or_(
                    Member.date_of_birth.is_not(None),
                    Member.dependents.any(MemberDependent.date_of_birth.is_not(None)),
                )
            )
        )
        return list(result.scalars().all())

    def members_with_marriage_dates(self) -> List[Member]:
        result = self.db.execute(
            select(Member)
            .options(selectinload(Member.dependents))
            .where(Member.date_of_marriage.is_not(None))
        )
        return list(result.scalars().all())

    def registered_mobiles(self, mobiles: Iterable[str]) -> Set[str]:
        """Subset of ``mobiles`` held by a device registration or a member record."""
        wanted = {clean(m) for m in mobiles if clean(m)}
        if not wanted:
            return set()
        found = list(
            self.db.execute(select(Login.mobile).where(Login.mobile.in_(wanted)))
            .scalars()
            .all()
        )
        found += self.db.execute(
            select(Member.mobile_no).where(Member.mobile_no.in_(wanted))
        ).scalars().all()
        return {clean(m) for m in found if clean(m)}

    def tokens_for_mobiles(self, mobiles: Iterable[str]) -> Dict[str, str]:
        """Map mobile -> current push token, omitting registrations with no token."""
        wanted = {clean(m) for m in mobiles if clean(m)}
        if not wanted:
            return {}
        result = self.db.execute(
            select(Login.mobile, Login.fcm_token).where(Login.mobile.in_(wanted))
        )
        return {
            clean(mobile): token
            for mobile, token in result.all()
            if clean(token)
        }

    def clear_device_token(self, mobile: str) -> int:
        """Blank the push token of a registration the gateway reported as invalid."""
        try:
            result = self.db.execute(
                update(Login).where(Login.mobile == clean(mobile)).values(fcm_token="")
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Cleared device token", mobile=mobile, rows=result.rowcount)
        return result.rowcount

    def find_events_by_year_month(self, year: int, month: int) -> List[CalendarEvent]:
        result = self.db.execute(
            select(CalendarEvent)
            .where(CalendarEvent.year == year, CalendarEvent.month == month)
            .order_by(CalendarEvent.date, CalendarEvent.id)
        )
        return list(result.scalars().all())
