from datetime import date
from typing import Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from occasion_notifier.db.models import Member, MemberDependent, OccasionKind, Relation
from occasion_notifier.schemas.notification_schemas import FestivalEvent, Recipient
from occasion_notifier.services.directory_service import DirectoryService, clean
from occasion_notifier.services.notifications.formatting import (
    gender_of,
    normalize_name,
    pick_display_name,
    with_suffix,
)
from occasion_notifier.utils.datetime_utils import local_zone, month_day_key, to_local_date


def _identity_key(contact_key: str, display_name: str, occasion_date: date) -> Tuple[str, str, date]:
    if contact_key:
        return ("m", contact_key, occasion_date)
    return ("n", normalize_name(display_name), occasion_date)


def _order_pair(first: Recipient, second: Recipient) -> Tuple[Recipient, Recipient]:
    """
    Husband's name first when genders tell them apart; otherwise the smaller
    contact key first, so the result never depends on scan order.
    """
    g1, g2 = gender_of(first.gender), gender_of(second.gender)
    if g1 != g2:
        if g1 == "male" or g2 == "female":
            return first, second
        if g2 == "male" or g1 == "female":
            return second, first
    if (first.contact_key or "") <= (second.contact_key or ""):
        return first, second
    return second, first


def club_couples(recipients: List[Recipient]) -> List[str]:
    """
    Broadcast display entries for anniversaries.

    When a member's recorded spouse mobile belongs to another member in the
    same list, both become one "<first> & <second>" entry placed where the
    first of the two was scanned. Pairs are keyed by the sorted pair of
    contact keys so each couple is merged exactly once.
    """
    by_contact: Dict[str, Recipient] = {
        r.contact_key: r for r in recipients if r.contact_key
    }

    pair_of: Dict[str, Tuple[str, str]] = {}
    for r in recipients:
        spouse_key = r.spouse_contact_key
        if not r.contact_key or not spouse_key or spouse_key == r.contact_key:
            continue
        if spouse_key not in by_contact:
            continue
        if r.contact_key in pair_of or spouse_key in pair_of:
            continue
        pair_key = tuple(sorted((r.contact_key, spouse_key)))
        pair_of[r.contact_key] = pair_key
        pair_of[spouse_key] = pair_key

    entries: List[str] = []
    emitted: Set[Tuple[str, str]] = set()
    for r in recipients:
        pair_key = pair_of.get(r.contact_key or "")
        if pair_key is None:
            entries.append(r.display_name)
            continue
        if pair_key in emitted:
            continue
        emitted.add(pair_key)
        first, second = _order_pair(by_contact[pair_key[0]], by_contact[pair_key[1]])
        entries.append(f"{first.display_name} & {second.display_name}")
    return entries


class RecipientResolver:
    """
    Works out who (or which calendar events) today's run is about.

    Matching is by month and day in the local zone, so birthdays and
    anniversaries recur every year; festivals match the exact date.
    ``total_candidates`` holds the number of records scanned by the last call.
    """

    def __init__(self, directory: DirectoryService, zone: Optional[ZoneInfo] = None):
        self.directory = directory
        self.zone = zone or local_zone()
        self.total_candidates = 0

    def resolve(self, today: date, kind: OccasionKind) -> List[Recipient]:
        if kind == OccasionKind.BIRTHDAY:
            return self._resolve_birthdays(today)
        if kind == OccasionKind.ANNIVERSARY:
            return self._resolve_anniversaries(today)
        raise ValueError(f"Occasion {kind.value} has no member recipients; use resolve_events()")

    def resolve_events(self, target: date) -> List[FestivalEvent]:
        """Calendar events falling exactly on ``target`` (local date)."""
        rows = self.directory.find_events_by_year_month(target.year, target.month)
        self.total_candidates = len(rows)

        events: List[FestivalEvent] = []
        for row in rows:
            event_date = to_local_date(row.date, self.zone)
            if event_date != target or not clean(row.event):
                continue
            events.append(
                FestivalEvent(
                    event=clean(row.event),
                    description=clean(row.description) or None,
                    date=row.date,
                    event_date=event_date,
                )
            )
        return events

    def _matches(self, value, today_key: str) -> bool:
        return bool(value) and month_day_key(value, self.zone) == today_key

    def _resolve_birthdays(self, today: date) -> List[Recipient]:
        members = self.directory.members_with_birth_dates()
        self.total_candidates = len(members)
        today_key = today.strftime("%m-%d")

        member_mobiles = {clean(m.mobile_no) for m in members if clean(m.mobile_no)}

        # Dependents who have their own login are people in their own right
        dependent_mobiles = {
            clean(d.mobile_no)
            for m in members
            for d in m.dependents
            if clean(d.mobile_no) and self._matches(d.date_of_birth, today_key)
        }
        registered = member_mobiles | self.directory.registered_mobiles(dependent_mobiles)

        # (normalized name, local birth date) of every primary, for mobile-less dependents
        primary_identities: Set[Tuple[str, date]] = set()
        for m in members:
            dob = to_local_date(m.date_of_birth, self.zone)
            if dob is None:
                continue
            for n in (m.name, m.initiation_name):
                if normalize_name(n):
                    primary_identities.add((normalize_name(n), dob))

        people: List[Recipient] = []
        added: Set[Tuple[str, str, date]] = set()

        for m in members:
            if not self._matches(m.date_of_birth, today_key):
                continue
            mobile = clean(m.mobile_no)
            plain_name = pick_display_name(m.initiation_name, m.name)
            key = _identity_key(mobile, plain_name, today)
            if key in added:
                continue
            added.add(key)
            people.append(
                Recipient(
                    display_name=with_suffix(plain_name, m.gender),
                    contact_key=mobile or None,
                    occasion_date=today,
                    relation=Relation.PRIMARY,
                    source_member_key=mobile or m.id,
                    gender=gender_of(m.gender),
                )
            )

        for m in members:
            household: List[Tuple[MemberDependent, Relation]] = []
            if m.spouse is not None:
                household.append((m.spouse, Relation.SPOUSE))
            household.extend((c, Relation.CHILD) for c in m.children)

            for dependent, relation in household:
                if not self._matches(dependent.date_of_birth, today_key):
                    continue
                if self._is_independent(dependent, registered, primary_identities):
                    continue
                mobile = clean(dependent.mobile_no)
                display_name = pick_display_name(dependent.initiation_name, dependent.name)
                key = _identity_key(mobile, display_name, today)
                if key in added:
                    continue
                added.add(key)
                people.append(
                    Recipient(
                        display_name=display_name,
                        contact_key=mobile or None,
                        occasion_date=today,
                        relation=relation,
                        source_member_key=clean(m.mobile_no) or m.id,
                        gender=gender_of(dependent.gender),
                    )
                )

        return people

    def _is_independent(
        self,
        dependent: MemberDependent,
        registered: Set[str],
        primary_identities: Set[Tuple[str, date]],
    ) -> bool:
        """True when the dependent also exists as a member or login of their own."""
        mobile = clean(dependent.mobile_no)
        if mobile:
            return mobile in registered

        dob = to_local_date(dependent.date_of_birth, self.zone)
        if dob is None:
            return False
        return any(
            (normalize_name(n), dob) in primary_identities
            for n in (dependent.name, dependent.initiation_name)
            if normalize_name(n)
        )

    def _resolve_anniversaries(self, today: date) -> List[Recipient]:
        members = self.directory.members_with_marriage_dates()
        self.total_candidates = len(members)
        today_key = today.strftime("%m-%d")

        people: List[Recipient] = []
        added: Set[Tuple[str, str, date]] = set()
        for m in members:
            if not self._matches(m.date_of_marriage, today_key):
                continue
            mobile = clean(m.mobile_no)
            plain_name = pick_display_name(m.initiation_name, m.name)
            key = _identity_key(mobile, plain_name, today)
            if key in added:
                continue
            added.add(key)
            spouse_mobile = clean(m.spouse.mobile_no) if m.spouse is not None else ""
            people.append(
                Recipient(
                    display_name=with_suffix(plain_name, m.gender),
                    contact_key=mobile or None,
                    occasion_date=today,
                    relation=Relation.PRIMARY,
                    source_member_key=mobile or m.id,
                    gender=gender_of(m.gender),
                    spouse_contact_key=spouse_mobile or None,
                )
            )
        return people
