"""Substitute negotiation for sessions left uncovered by approved leave.

Every offer moves through a small state machine driven by discrete events.
``pending`` is the only live state: an addressed candidate may accept or
decline, an administrator may assign anyone, and leave withdrawal cancels
the whole chain. A decline retires the current offer and raises a fresh one
for the next-ranked candidate; when nobody is left the offer stays pending
with no substitute so an administrator can step in.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from classsched.core.config import get_settings
from classsched.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from classsched.models.batch import Batch
from classsched.models.classroom import Classroom
from classsched.models.faculty import Faculty
from classsched.models.faculty_subject import FacultySubject
from classsched.models.leave_request import LeaveRequest, LeaveStatus
from classsched.models.subject import Subject
from classsched.models.substitution_offer import SubstitutionOffer, SubstitutionOfferStatus
from classsched.models.timetable import Timetable, TimetableStatus
from classsched.models.timetable_entry import TimetableEntry, Weekday
from classsched.models.user import User, UserRole
from classsched.services.audit import ActivityAction, log_activity
from classsched.services.conflict_detector import SessionWindow, find_conflicts, weekday_name
from classsched.services.notifications import NotificationTemplate, Notifier
from classsched.services.preference_ranker import EligibilityInput, PreferenceRanker

logger = logging.getLogger(__name__)


class OfferEvent(str, Enum):
    accept = "accept"
    assign = "assign"
    decline = "decline"
    decline_exhausted = "decline_exhausted"
    cancel = "cancel"


OFFER_TRANSITIONS: dict[tuple[SubstitutionOfferStatus, OfferEvent], SubstitutionOfferStatus] = {
    (SubstitutionOfferStatus.pending, OfferEvent.accept): SubstitutionOfferStatus.accepted,
    (SubstitutionOfferStatus.pending, OfferEvent.assign): SubstitutionOfferStatus.assigned,
    (SubstitutionOfferStatus.pending, OfferEvent.decline): SubstitutionOfferStatus.declined,
    (SubstitutionOfferStatus.pending, OfferEvent.decline_exhausted): SubstitutionOfferStatus.pending,
}
for _status in SubstitutionOfferStatus:
    OFFER_TRANSITIONS[(_status, OfferEvent.cancel)] = SubstitutionOfferStatus.cancelled

# Offers in these states occupy their (entry, date) pair.
LIVE_OFFER_STATUSES = frozenset(
    {SubstitutionOfferStatus.pending, SubstitutionOfferStatus.accepted, SubstitutionOfferStatus.assigned}
)
# Offers in these states bind the substitute to the session.
BINDING_OFFER_STATUSES = frozenset({SubstitutionOfferStatus.accepted, SubstitutionOfferStatus.assigned})
ASSIGNING_ROLES = frozenset({UserRole.admin, UserRole.hod})


def next_offer_status(status: SubstitutionOfferStatus, event: OfferEvent) -> SubstitutionOfferStatus:
    try:
        return OFFER_TRANSITIONS[(status, event)]
    except KeyError:
        raise StateError(
            f"Cannot {event.value} an offer that is {status.value}",
            details={"status": status.value, "event": event.value},
        ) from None


@dataclass
class SubstitutionDispatchSummary:
    offers_created: int = 0
    entries_affected: int = 0
    candidates_notified: int = 0
    unaddressed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iter_dates(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _window_for_entry(entry: TimetableEntry, *, faculty_id: str, ref: str | None = None) -> SessionWindow:
    return SessionWindow(
        day=entry.day.value,
        start=entry.start_time,
        end=entry.end_time,
        faculty_id=faculty_id,
        ref=ref or entry.id,
    )


def _describe_conflict(window: SessionWindow, kind: str) -> dict:
    return {
        "kind": kind,
        "ref": window.ref,
        "day": window.day,
        "start_time": window.start.strftime("%H:%M"),
        "end_time": window.end.strftime("%H:%M"),
        "faculty_id": window.faculty_id,
    }


class SubstitutionCascadeResolver:
    """Creates and advances substitution offers inside the caller's transaction.

    The resolver flushes but never commits. Notifications are queued while it
    works and only handed to the notifier by ``dispatch_notifications`` once
    the caller has committed, so a rolled back transition never emails anyone.
    """

    def __init__(
        self,
        db: Session,
        notifier: Notifier,
        *,
        same_department_only: bool | None = None,
        skip_busy_candidates: bool | None = None,
    ) -> None:
        self.db = db
        self.notifier = notifier
        settings = get_settings()
        if same_department_only is None:
            same_department_only = settings.substitute_same_department_only
        if skip_busy_candidates is None:
            skip_busy_candidates = settings.substitute_skip_busy_candidates
        self.same_department_only = same_department_only
        self.skip_busy_candidates = skip_busy_candidates
        self._outbox: list[tuple[str, NotificationTemplate, dict]] = []

    def _queue(self, contact: str | None, kind: NotificationTemplate, data: dict) -> None:
        if contact:
            self._outbox.append((contact, kind, dict(data)))

    def dispatch_notifications(self) -> int:
        pending, self._outbox = self._outbox, []
        for contact, kind, data in pending:
            try:
                self.notifier.notify(contact, kind, data)
            except Exception:
                logger.warning("Notification dispatch failed | to=%s | kind=%s", contact, kind.value, exc_info=True)
        return len(pending)

    def discard_notifications(self) -> None:
        self._outbox.clear()

    def _approver_contacts(self) -> list[str]:
        rows = self.db.execute(
            select(User.email).where(User.role.in_(list(ASSIGNING_ROLES)), User.is_active.is_(True)).order_by(User.email)
        ).scalars()
        return [item for item in rows if item]

    def _lock_offer(self, offer_id: str) -> SubstitutionOffer:
        offer = self.db.execute(
            select(SubstitutionOffer).where(SubstitutionOffer.id == offer_id).with_for_update()
        ).scalar_one_or_none()
        if offer is None:
            raise NotFoundError("SubstitutionOffer", offer_id)
        return offer

    def _get_entry(self, entry_id: str) -> TimetableEntry:
        entry = self.db.get(TimetableEntry, entry_id)
        if entry is None:
            raise NotFoundError("TimetableEntry", entry_id)
        return entry

    def _get_active_faculty(self, faculty_id: str) -> Faculty:
        faculty = self.db.get(Faculty, faculty_id)
        if faculty is None or not faculty.is_active:
            raise NotFoundError("Faculty", faculty_id)
        return faculty

    def _committed_entries_query(self, on_date: date):
        return (
            select(TimetableEntry)
            .join(Timetable, Timetable.id == TimetableEntry.timetable_id)
            .where(
                Timetable.is_active.is_(True),
                Timetable.status == TimetableStatus.published,
                Timetable.start_date <= on_date,
                Timetable.end_date >= on_date,
            )
        )

    def _entry_context(self, entry: TimetableEntry, on_date: date) -> dict:
        subject = self.db.get(Subject, entry.subject_id)
        batch = self.db.get(Batch, entry.batch_id)
        classroom = self.db.get(Classroom, entry.classroom_id)
        return {
            "entry_id": entry.id,
            "subject_code": subject.code if subject is not None else entry.subject_id,
            "batch_name": batch.name if batch is not None else entry.batch_id,
            "classroom_name": classroom.name if classroom is not None else entry.classroom_id,
            "date": on_date.isoformat(),
            "day": entry.day.value,
            "start_time": entry.start_time.strftime("%H:%M"),
            "end_time": entry.end_time.strftime("%H:%M"),
        }

    def _ranker_for_subject(self, subject_id: str, original: Faculty | None) -> PreferenceRanker:
        query = (
            select(FacultySubject, Faculty)
            .join(Faculty, Faculty.id == FacultySubject.faculty_id)
            .where(
                FacultySubject.subject_id == subject_id,
                FacultySubject.is_active.is_(True),
                Faculty.is_active.is_(True),
            )
            .order_by(Faculty.name, Faculty.id)
        )
        if self.same_department_only and original is not None:
            query = query.where(Faculty.department == original.department)
        rows = self.db.execute(query).all()
        return PreferenceRanker(
            EligibilityInput(
                faculty_id=link.faculty_id,
                subject_id=link.subject_id,
                preference=link.preference,
                is_active=link.is_active,
            )
            for link, _faculty in rows
        )

    def _on_leave(self, faculty_id: str, on_date: date) -> bool:
        leave_id = self.db.execute(
            select(LeaveRequest.id).where(
                LeaveRequest.faculty_id == faculty_id,
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date <= on_date,
                LeaveRequest.end_date >= on_date,
            )
        ).first()
        return leave_id is not None

    def find_substitute_conflicts(
        self,
        faculty_id: str,
        entry: TimetableEntry,
        on_date: date,
        *,
        exclude_offer_id: str | None = None,
    ) -> list[dict]:
        """Return every commitment of ``faculty_id`` that collides with covering ``entry`` on ``on_date``."""
        day = weekday_name(on_date)
        existing: list[tuple[SessionWindow, str]] = []

        committed = self.db.execute(
            self._committed_entries_query(on_date).where(
                TimetableEntry.faculty_id == faculty_id,
                TimetableEntry.day == Weekday(day),
            )
        ).scalars()
        for item in committed:
            existing.append((_window_for_entry(item, faculty_id=faculty_id), "timetable_entry"))

        binding_offers = self.db.execute(
            select(SubstitutionOffer).where(
                SubstitutionOffer.substitute_faculty_id == faculty_id,
                SubstitutionOffer.date == on_date,
                SubstitutionOffer.status.in_(list(BINDING_OFFER_STATUSES)),
            )
        ).scalars()
        for offer in binding_offers:
            if offer.id == exclude_offer_id:
                continue
            covered = self.db.get(TimetableEntry, offer.timetable_entry_id)
            if covered is None:
                continue
            existing.append((_window_for_entry(covered, faculty_id=faculty_id, ref=offer.id), "substitution_offer"))

        candidate = SessionWindow(day=day, start=entry.start_time, end=entry.end_time, faculty_id=faculty_id)
        kinds = {window.ref: kind for window, kind in existing}
        conflicts = [
            _describe_conflict(window, kinds[window.ref])
            for window in find_conflicts([window for window, _kind in existing], candidate)
        ]
        if self._on_leave(faculty_id, on_date):
            conflicts.append({"kind": "leave", "ref": None, "day": day, "faculty_id": faculty_id})
        return conflicts

    def ranked_candidates(
        self,
        entry: TimetableEntry,
        on_date: date,
        *,
        original: Faculty | None,
        exclude: Iterable[str] = (),
    ) -> list[str]:
        """Eligible substitutes for ``entry`` in preference order.

        Availability is checked when a candidate accepts or is assigned. With
        ``skip_busy_candidates`` set, faculty already committed on ``on_date``
        are dropped up front as well.
        """
        excluded = set(exclude)
        excluded.add(entry.faculty_id)
        ranked = [
            item.faculty_id
            for item in self._ranker_for_subject(entry.subject_id, original).rank(entry.subject_id, exclude=excluded)
        ]
        if not self.skip_busy_candidates:
            return ranked
        return [faculty_id for faculty_id in ranked if not self.find_substitute_conflicts(faculty_id, entry, on_date)]

    def _faculty_contacts(self, faculty_ids: Iterable[str]) -> dict[str, Faculty]:
        ids = list(dict.fromkeys(faculty_ids))
        if not ids:
            return {}
        rows = self.db.execute(select(Faculty).where(Faculty.id.in_(ids))).scalars()
        return {item.id: item for item in rows}

    def on_leave_approved(self, leave: LeaveRequest, *, actor: User | None = None) -> SubstitutionDispatchSummary:
        if leave.status != LeaveStatus.approved:
            raise StateError(f"Leave request is {leave.status.value}, not approved")

        summary = SubstitutionDispatchSummary()
        original = self.db.get(Faculty, leave.faculty_id)
        approver_contacts: list[str] | None = None
        affected_entries: set[str] = set()
        notified: set[str] = set()

        for on_date in _iter_dates(leave.start_date, leave.end_date):
            day = weekday_name(on_date)
            entries = list(
                self.db.execute(
                    self._committed_entries_query(on_date)
                    .where(TimetableEntry.faculty_id == leave.faculty_id, TimetableEntry.day == Weekday(day))
                    .order_by(TimetableEntry.start_time, TimetableEntry.id)
                ).scalars()
            )
            for entry in entries:
                live = self.db.execute(
                    select(SubstitutionOffer.id).where(
                        SubstitutionOffer.timetable_entry_id == entry.id,
                        SubstitutionOffer.date == on_date,
                        SubstitutionOffer.status.in_(list(LIVE_OFFER_STATUSES)),
                    )
                ).first()
                if live is not None:
                    continue

                affected_entries.add(entry.id)
                candidates = self.ranked_candidates(entry, on_date, original=original)
                substitute_id = candidates[0] if candidates else None
                offer = SubstitutionOffer(
                    timetable_entry_id=entry.id,
                    leave_request_id=leave.id,
                    original_faculty_id=entry.faculty_id,
                    substitute_faculty_id=substitute_id,
                    date=on_date,
                    status=SubstitutionOfferStatus.pending,
                    declined_faculty_ids=[],
                    notified_at=_utc_now() if candidates else None,
                )
                self.db.add(offer)
                summary.offers_created += 1

                context = self._entry_context(entry, on_date)
                contacts = self._faculty_contacts(candidates)
                for faculty_id in candidates:
                    faculty = contacts.get(faculty_id)
                    if faculty is None:
                        continue
                    self._queue(
                        faculty.email,
                        NotificationTemplate.substitution_request,
                        {**context, "addressed": faculty_id == substitute_id},
                    )
                    notified.add(faculty_id)

                if substitute_id is None:
                    summary.unaddressed += 1
                    if approver_contacts is None:
                        approver_contacts = self._approver_contacts()
                    for contact in approver_contacts:
                        self._queue(contact, NotificationTemplate.substitution_unresolved, context)

        summary.entries_affected = len(affected_entries)
        summary.candidates_notified = len(notified)
        self.db.flush()

        log_activity(
            self.db,
            user=actor,
            action=ActivityAction.substitution_dispatch,
            entity_id=leave.id,
            details=summary.as_dict(),
        )
        logger.info(
            "SUBSTITUTION DISPATCH | leave_id=%s | faculty_id=%s | offers=%s | entries=%s | unaddressed=%s",
            leave.id,
            leave.faculty_id,
            summary.offers_created,
            summary.entries_affected,
            summary.unaddressed,
        )
        return summary

    def _require_substitute(self, offer: SubstitutionOffer, entry: TimetableEntry, faculty_id: str) -> Faculty:
        if faculty_id == offer.original_faculty_id:
            raise ValidationError(
                "Substitute must differ from the original faculty",
                details={"faculty_id": faculty_id},
            )
        faculty = self._get_active_faculty(faculty_id)
        conflicts = self.find_substitute_conflicts(faculty_id, entry, offer.date, exclude_offer_id=offer.id)
        if conflicts:
            raise ConflictError(
                f"Faculty {faculty.name} is not free on {offer.date.isoformat()} "
                f"{entry.start_time:%H:%M}-{entry.end_time:%H:%M}",
                conflicts=conflicts,
            )
        return faculty

    def accept(self, offer_id: str, faculty_id: str, *, actor: User | None = None) -> SubstitutionOffer:
        offer = self._lock_offer(offer_id)
        status = next_offer_status(offer.status, OfferEvent.accept)
        if offer.substitute_faculty_id is not None and offer.substitute_faculty_id != faculty_id:
            raise PermissionDeniedError("This substitution offer is addressed to another faculty member")

        entry = self._get_entry(offer.timetable_entry_id)
        substitute = self._require_substitute(offer, entry, faculty_id)

        offer.status = status
        offer.substitute_faculty_id = faculty_id
        offer.responded_at = _utc_now()
        self.db.flush()

        context = {**self._entry_context(entry, offer.date), "substitute_name": substitute.name}
        original = self.db.get(Faculty, offer.original_faculty_id)
        self._queue(original.email if original else None, NotificationTemplate.substitution_accepted, context)
        log_activity(
            self.db,
            user=actor,
            action=ActivityAction.substitution_accept,
            entity_id=offer.id,
            details={"faculty_id": faculty_id, "date": offer.date.isoformat()},
        )
        logger.info("SUBSTITUTION ACCEPTED | offer_id=%s | faculty_id=%s", offer.id, faculty_id)
        return offer

    def decline(
        self,
        offer_id: str,
        faculty_id: str,
        *,
        note: str | None = None,
        actor: User | None = None,
    ) -> SubstitutionOffer:
        """Record a decline and advance the chain; returns the offer that is now live."""
        offer = self._lock_offer(offer_id)
        next_offer_status(offer.status, OfferEvent.decline)
        if offer.substitute_faculty_id is None or offer.substitute_faculty_id != faculty_id:
            raise PermissionDeniedError("Only the addressed faculty member can decline this offer")

        entry = self._get_entry(offer.timetable_entry_id)
        original = self.db.get(Faculty, offer.original_faculty_id)
        declined = list(dict.fromkeys([*(offer.declined_faculty_ids or []), faculty_id]))
        candidates = self.ranked_candidates(entry, offer.date, original=original, exclude=declined)
        now = _utc_now()
        context = self._entry_context(entry, offer.date)
        decliner = self.db.get(Faculty, faculty_id)
        context["substitute_name"] = decliner.name if decliner is not None else faculty_id

        if candidates:
            offer.status = next_offer_status(offer.status, OfferEvent.decline)
            offer.responded_at = now
            offer.response_note = note
            replacement = SubstitutionOffer(
                timetable_entry_id=offer.timetable_entry_id,
                leave_request_id=offer.leave_request_id,
                original_faculty_id=offer.original_faculty_id,
                substitute_faculty_id=candidates[0],
                date=offer.date,
                status=SubstitutionOfferStatus.pending,
                declined_faculty_ids=declined,
                previous_offer_id=offer.id,
                notified_at=now,
            )
            self.db.add(replacement)
            self.db.flush()
            nominee = self.db.get(Faculty, candidates[0])
            self._queue(
                nominee.email if nominee else None,
                NotificationTemplate.substitution_request,
                {**context, "addressed": True},
            )
            current = replacement
        else:
            offer.status = next_offer_status(offer.status, OfferEvent.decline_exhausted)
            offer.substitute_faculty_id = None
            offer.declined_faculty_ids = declined
            offer.responded_at = now
            offer.response_note = note
            self.db.flush()
            for contact in self._approver_contacts():
                self._queue(contact, NotificationTemplate.substitution_unresolved, context)
            current = offer

        outcome = (
            NotificationTemplate.substitution_declined if candidates else NotificationTemplate.substitution_exhausted
        )
        self._queue(original.email if original else None, outcome, context)
        log_activity(
            self.db,
            user=actor,
            action=ActivityAction.substitution_decline,
            entity_id=offer.id,
            details={
                "faculty_id": faculty_id,
                "next_offer_id": current.id if current is not offer else None,
                "next_faculty_id": current.substitute_faculty_id,
            },
        )
        logger.info(
            "SUBSTITUTION DECLINED | offer_id=%s | faculty_id=%s | next_faculty_id=%s",
            offer.id,
            faculty_id,
            current.substitute_faculty_id,
        )
        return current

    def assign(
        self,
        offer_id: str,
        faculty_id: str,
        *,
        acting_role: UserRole,
        actor: User | None = None,
    ) -> SubstitutionOffer:
        if acting_role not in ASSIGNING_ROLES:
            raise PermissionDeniedError("Only an admin or head of department can assign substitutes")
        offer = self._lock_offer(offer_id)
        status = next_offer_status(offer.status, OfferEvent.assign)
        entry = self._get_entry(offer.timetable_entry_id)
        substitute = self._require_substitute(offer, entry, faculty_id)

        offer.status = status
        offer.substitute_faculty_id = faculty_id
        offer.assigned_by_id = actor.id if actor is not None else None
        offer.responded_at = _utc_now()
        self.db.flush()

        context = {**self._entry_context(entry, offer.date), "substitute_name": substitute.name}
        self._queue(substitute.email, NotificationTemplate.substitution_assigned, context)
        original = self.db.get(Faculty, offer.original_faculty_id)
        self._queue(original.email if original else None, NotificationTemplate.substitution_accepted, context)
        log_activity(
            self.db,
            user=actor,
            action=ActivityAction.substitution_assign,
            entity_id=offer.id,
            details={"faculty_id": faculty_id, "acting_role": acting_role.value},
        )
        logger.info("SUBSTITUTION ASSIGNED | offer_id=%s | faculty_id=%s | role=%s", offer.id, faculty_id, acting_role.value)
        return offer

    def cancel_for_leave(self, leave: LeaveRequest, reason: str) -> int:
        offers = list(
            self.db.execute(
                select(SubstitutionOffer)
                .where(
                    SubstitutionOffer.leave_request_id == leave.id,
                    SubstitutionOffer.status.in_(list(LIVE_OFFER_STATUSES)),
                )
                .with_for_update()
            ).scalars()
        )
        now = _utc_now()
        for offer in offers:
            offer.status = next_offer_status(offer.status, OfferEvent.cancel)
            offer.responded_at = now
            offer.response_note = reason
        self.db.flush()
        if offers:
            logger.info("SUBSTITUTION CANCELLED | leave_id=%s | offers=%s", leave.id, len(offers))
        return len(offers)
