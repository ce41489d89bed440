from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import time

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from classsched.core.config import Settings, get_settings
from classsched.core.exceptions import (
    AppError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from classsched.db.transactions import run_in_transaction, timetable_write_lock
from classsched.models.batch import Batch
from classsched.models.classroom import Classroom
from classsched.models.faculty import Faculty
from classsched.models.faculty_subject import FacultySubject
from classsched.models.subject import Subject
from classsched.models.timetable import (
    EDITABLE_TIMETABLE_STATUSES,
    GENERATABLE_TIMETABLE_STATUSES,
    Timetable,
    TimetableStatus,
)
from classsched.models.timetable_entry import SessionType, TimetableEntry, Weekday
from classsched.models.user import User
from classsched.schemas.timetable import (
    TimetableCreate,
    TimetableEntryCreate,
    TimetableEntryUpdate,
    TimetableUpdate,
)
from classsched.services.audit import ActivityAction, log_activity
from classsched.services.conflict_detector import (
    WEEKDAY_NAMES,
    SessionWindow,
    conflicts_with,
    find_conflicts,
    intervals_overlap,
)
from classsched.services.preference_ranker import EligibilityInput
from classsched.services.slot_tracker import SlotAssignmentTracker
from classsched.services.timetable_generator import (
    BatchInput,
    ClassroomInput,
    SubjectInput,
    TimeSlot,
    build_time_slot_catalog,
    generate,
)

logger = logging.getLogger(__name__)

# Lifecycle action -> (required current status, resulting status).
LIFECYCLE_TRANSITIONS: dict[str, tuple[TimetableStatus, TimetableStatus]] = {
    "submit": (TimetableStatus.draft, TimetableStatus.pending_approval),
    "reopen": (TimetableStatus.pending_approval, TimetableStatus.draft),
    "approve": (TimetableStatus.pending_approval, TimetableStatus.approved),
    "publish": (TimetableStatus.approved, TimetableStatus.published),
}


@dataclass
class GenerationSummary:
    timetable_id: str
    status: TimetableStatus
    entries_created: int
    unassigned_count: int
    unassigned: list[dict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    wall_ms: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _entry_window(entry: TimetableEntry) -> SessionWindow:
    return SessionWindow(
        day=entry.day.value,
        start=entry.start_time,
        end=entry.end_time,
        faculty_id=entry.faculty_id,
        batch_id=entry.batch_id,
        classroom_id=entry.classroom_id,
        ref=entry.id,
    )


def _describe_entry_conflict(entry: TimetableEntry, candidate: SessionWindow) -> dict:
    shared = []
    if entry.faculty_id == candidate.faculty_id:
        shared.append("faculty")
    if entry.batch_id == candidate.batch_id:
        shared.append("batch")
    if entry.classroom_id == candidate.classroom_id:
        shared.append("classroom")
    return {
        "entry_id": entry.id,
        "timetable_id": entry.timetable_id,
        "day": entry.day.value,
        "start_time": entry.start_time.strftime("%H:%M"),
        "end_time": entry.end_time.strftime("%H:%M"),
        "faculty_id": entry.faculty_id,
        "batch_id": entry.batch_id,
        "classroom_id": entry.classroom_id,
        "shared_resources": shared,
    }


def resolve_schedule_days(settings: Settings) -> list[str]:
    days: list[str] = []
    for value in settings.schedule_days:
        day = value.strip().capitalize()
        if day not in WEEKDAY_NAMES:
            raise ConfigurationError(f"Invalid schedule day '{value}'")
        if day not in days:
            days.append(day)
    if not days:
        raise ConfigurationError("No schedule days configured")
    return days


def get_timetable(db: Session, timetable_id: str, *, for_update: bool = False) -> Timetable:
    query = select(Timetable).where(Timetable.id == timetable_id, Timetable.is_active.is_(True))
    if for_update:
        query = query.with_for_update()
    timetable = db.execute(query).scalar_one_or_none()
    if timetable is None:
        raise NotFoundError("Timetable", timetable_id)
    return timetable


def list_timetables(
    db: Session,
    *,
    department: str | None = None,
    semester: int | None = None,
    status: TimetableStatus | None = None,
) -> list[Timetable]:
    query = select(Timetable).where(Timetable.is_active.is_(True))
    if department:
        query = query.where(Timetable.department == department)
    if semester is not None:
        query = query.where(Timetable.semester == semester)
    if status is not None:
        query = query.where(Timetable.status == status)
    return list(db.execute(query.order_by(Timetable.created_at.desc(), Timetable.name)).scalars())


def list_entries(db: Session, timetable_id: str) -> list[TimetableEntry]:
    rows = db.execute(select(TimetableEntry).where(TimetableEntry.timetable_id == timetable_id)).scalars()
    day_order = {day: index for index, day in enumerate(WEEKDAY_NAMES)}
    return sorted(rows, key=lambda item: (day_order[item.day.value], item.start_time, item.batch_id, item.id))


def create_timetable(db: Session, payload: TimetableCreate, *, actor: User) -> Timetable:
    def _run() -> Timetable:
        timetable = Timetable(**payload.model_dump(), status=TimetableStatus.draft, created_by_id=actor.id)
        db.add(timetable)
        db.flush()
        log_activity(
            db,
            user=actor,
            action=ActivityAction.timetable_create,
            entity_id=timetable.id,
            details={"department": timetable.department, "semester": timetable.semester},
        )
        return timetable

    timetable = run_in_transaction(db, _run)
    db.refresh(timetable)
    return timetable


def update_timetable(db: Session, timetable_id: str, payload: TimetableUpdate, *, actor: User) -> Timetable:
    def _run() -> Timetable:
        timetable = get_timetable(db, timetable_id, for_update=True)
        if timetable.status not in GENERATABLE_TIMETABLE_STATUSES:
            raise StateError(f"Timetable is {timetable.status.value} and can no longer be modified")
        changes = payload.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if value is not None:
                setattr(timetable, key, value)
        if timetable.end_date < timetable.start_date:
            raise ValidationError("end_date must not be before start_date")
        log_activity(
            db,
            user=actor,
            action=ActivityAction.timetable_update,
            entity_id=timetable.id,
            details={"fields": sorted(changes)},
        )
        return timetable

    with timetable_write_lock(timetable_id):
        timetable = run_in_transaction(db, _run)
    db.refresh(timetable)
    return timetable


def deactivate_timetable(db: Session, timetable_id: str, *, actor: User) -> None:
    def _run() -> None:
        timetable = get_timetable(db, timetable_id, for_update=True)
        if timetable.status == TimetableStatus.published:
            raise StateError("A published timetable cannot be deleted")
        timetable.is_active = False
        log_activity(db, user=actor, action=ActivityAction.timetable_delete, entity_id=timetable.id)

    with timetable_write_lock(timetable_id):
        run_in_transaction(db, _run)


def _overlapping_committed_entries(db: Session, timetable: Timetable) -> list[TimetableEntry]:
    """Entries of other published timetables whose teaching period overlaps ``timetable``."""
    query = (
        select(TimetableEntry)
        .join(Timetable, Timetable.id == TimetableEntry.timetable_id)
        .where(
            Timetable.id != timetable.id,
            Timetable.is_active.is_(True),
            Timetable.status == TimetableStatus.published,
            Timetable.start_date <= timetable.end_date,
            Timetable.end_date >= timetable.start_date,
        )
    )
    return list(db.execute(query).scalars())


def _seed_tracker(
    tracker: SlotAssignmentTracker,
    entries: list[TimetableEntry],
    time_slots: list[TimeSlot],
) -> None:
    for entry in entries:
        for slot in time_slots:
            if not intervals_overlap(slot.start, slot.end, entry.start_time, entry.end_time):
                continue
            tracker.occupy_session(
                day=entry.day.value,
                slot_key=slot.key,
                faculty_id=entry.faculty_id,
                batch_id=entry.batch_id,
                classroom_id=entry.classroom_id,
            )


def _load_generation_inputs(db: Session, timetable: Timetable):
    batches = list(
        db.execute(
            select(Batch)
            .where(
                Batch.department == timetable.department,
                Batch.semester == timetable.semester,
                Batch.is_active.is_(True),
            )
            .order_by(Batch.name, Batch.id)
        ).scalars()
    )
    subjects = list(
        db.execute(
            select(Subject)
            .where(
                Subject.department == timetable.department,
                Subject.semester == timetable.semester,
                Subject.is_active.is_(True),
            )
            .order_by(Subject.code, Subject.id)
        ).scalars()
    )
    classrooms = list(
        db.execute(
            select(Classroom).where(Classroom.is_active.is_(True)).order_by(Classroom.capacity, Classroom.name)
        ).scalars()
    )

    missing = [
        label
        for label, rows in (("batches", batches), ("subjects", subjects), ("classrooms", classrooms))
        if not rows
    ]
    if missing:
        raise ValidationError(
            "Missing generation inputs for this department and semester",
            details={"missing": missing, "department": timetable.department, "semester": timetable.semester},
        )

    subject_ids = [item.id for item in subjects]
    eligibility_rows = db.execute(
        select(FacultySubject)
        .join(Faculty, Faculty.id == FacultySubject.faculty_id)
        .where(
            FacultySubject.subject_id.in_(subject_ids),
            FacultySubject.is_active.is_(True),
            Faculty.is_active.is_(True),
            Faculty.department == timetable.department,
        )
        .order_by(Faculty.name, Faculty.id)
    ).scalars()

    return (
        [BatchInput(id=item.id, name=item.name, strength=item.strength) for item in batches],
        [
            SubjectInput(
                id=item.id,
                code=item.code,
                lecture_hours=item.lecture_hours_per_week,
                tutorial_hours=item.tutorial_hours_per_week,
                practical_hours=item.practical_hours_per_week,
            )
            for item in subjects
        ],
        [
            EligibilityInput(
                faculty_id=item.faculty_id,
                subject_id=item.subject_id,
                preference=item.preference,
                is_active=item.is_active,
            )
            for item in eligibility_rows
        ],
        [
            ClassroomInput(id=item.id, name=item.name, capacity=item.capacity, is_lab=item.is_lab)
            for item in classrooms
        ],
    )


def generate_timetable(
    db: Session,
    timetable_id: str,
    *,
    actor: User,
    settings: Settings | None = None,
) -> GenerationSummary:
    """Replace every entry of a draft or pending timetable with a freshly generated set.

    The discard and the bulk insert share one transaction, so a failure leaves
    the previous entry set untouched.
    """
    settings = settings or get_settings()
    time_slots = build_time_slot_catalog(settings.schedule_time_slots)
    days = resolve_schedule_days(settings)

    def _run() -> GenerationSummary:
        timetable = get_timetable(db, timetable_id, for_update=True)
        if timetable.status not in GENERATABLE_TIMETABLE_STATUSES:
            raise StateError(f"Timetable is {timetable.status.value}; regeneration is only allowed before approval")

        batches, subjects, eligibility, classrooms = _load_generation_inputs(db, timetable)
        tracker = SlotAssignmentTracker()
        _seed_tracker(tracker, _overlapping_committed_entries(db, timetable), time_slots)

        started = time.perf_counter()
        logger.info(
            "TIMETABLE GENERATION START | timetable_id=%s | user_id=%s | batches=%s | subjects=%s | classrooms=%s",
            timetable.id,
            actor.id,
            len(batches),
            len(subjects),
            len(classrooms),
        )
        result = generate(
            timetable_id=timetable.id,
            batches=batches,
            subjects=subjects,
            eligibility=eligibility,
            classrooms=classrooms,
            time_slots=time_slots,
            days=days,
            tracker=tracker,
        )

        db.execute(delete(TimetableEntry).where(TimetableEntry.timetable_id == timetable.id))
        db.add_all(
            [
                TimetableEntry(
                    timetable_id=timetable.id,
                    day=Weekday(item.day),
                    start_time=item.start_time,
                    end_time=item.end_time,
                    subject_id=item.subject_id,
                    faculty_id=item.faculty_id,
                    batch_id=item.batch_id,
                    classroom_id=item.classroom_id,
                    session_type=item.session_type,
                )
                for item in result.assignments
            ]
        )

        timetable.last_generated_at = _utc_now()
        timetable.last_unassigned_count = result.unassigned_count
        if timetable.status == TimetableStatus.draft:
            timetable.status = TimetableStatus.pending_approval
        db.flush()

        wall_ms = int((time.perf_counter() - started) * 1000)
        warnings = []
        if result.unassigned_count:
            warnings.append(f"{result.unassigned_count} requirement unit(s) could not be scheduled")
        unassigned = [
            {
                "subject_id": item.subject_id,
                "batch_id": item.batch_id,
                "session_type": item.session_type,
                "reason": item.reason,
            }
            for item in result.unassigned
        ]
        log_activity(
            db,
            user=actor,
            action=ActivityAction.timetable_generate,
            entity_id=timetable.id,
            details={
                "entries_created": len(result.assignments),
                "unassigned_count": result.unassigned_count,
                "wall_ms": wall_ms,
            },
        )
        logger.info(
            "TIMETABLE GENERATION COMPLETE | timetable_id=%s | entries=%s | unassigned=%s | wall_ms=%s",
            timetable.id,
            len(result.assignments),
            result.unassigned_count,
            wall_ms,
        )
        return GenerationSummary(
            timetable_id=timetable.id,
            status=timetable.status,
            entries_created=len(result.assignments),
            unassigned_count=result.unassigned_count,
            unassigned=unassigned,
            warnings=warnings,
            wall_ms=wall_ms,
        )

    with timetable_write_lock(timetable_id):
        try:
            return run_in_transaction(db, _run)
        except AppError:
            raise
        except Exception:
            logger.exception("TIMETABLE GENERATION FAILED | timetable_id=%s", timetable_id)
            raise


def _internal_conflicts(entries: list[TimetableEntry]) -> list[dict]:
    collisions: list[dict] = []
    for index, entry in enumerate(entries):
        window = _entry_window(entry)
        for other in entries[index + 1 :]:
            if conflicts_with(_entry_window(other), window):
                collisions.append(_describe_entry_conflict(other, window))
    return collisions


def transition_timetable(db: Session, timetable_id: str, action: str, *, actor: User) -> Timetable:
    if action not in LIFECYCLE_TRANSITIONS:
        raise ValidationError(f"Unknown timetable action '{action}'")
    required, target = LIFECYCLE_TRANSITIONS[action]

    def _run() -> Timetable:
        timetable = get_timetable(db, timetable_id, for_update=True)
        if timetable.status != required:
            raise StateError(
                f"Cannot {action} a timetable that is {timetable.status.value}",
                details={"status": timetable.status.value, "required": required.value},
            )
        entries = list_entries(db, timetable.id)
        if action == "submit" and not entries:
            raise ValidationError("Timetable has no entries to submit")
        if action == "publish":
            collisions = _internal_conflicts(entries)
            if collisions:
                raise ConflictError("Timetable contains conflicting entries", conflicts=collisions)

        previous = timetable.status
        timetable.status = target
        now = _utc_now()
        if target == TimetableStatus.approved:
            timetable.approved_by_id = actor.id
            timetable.approved_at = now
        elif target == TimetableStatus.published:
            timetable.published_at = now
        log_activity(
            db,
            user=actor,
            action=ActivityAction.for_timetable_transition(action),
            entity_id=timetable.id,
            details={"from": previous.value, "to": target.value},
        )
        logger.info(
            "TIMETABLE STATUS | timetable_id=%s | user_id=%s | from=%s | to=%s",
            timetable.id,
            actor.id,
            previous.value,
            target.value,
        )
        return timetable

    with timetable_write_lock(timetable_id):
        timetable = run_in_transaction(db, _run)
    db.refresh(timetable)
    return timetable


def _validate_entry_references(db: Session, entry: TimetableEntry) -> None:
    if entry.end_time <= entry.start_time:
        raise ValidationError("end_time must be after start_time")
    subject = db.get(Subject, entry.subject_id)
    if subject is None:
        raise NotFoundError("Subject", entry.subject_id)
    if db.get(Faculty, entry.faculty_id) is None:
        raise NotFoundError("Faculty", entry.faculty_id)
    batch = db.get(Batch, entry.batch_id)
    if batch is None:
        raise NotFoundError("Batch", entry.batch_id)
    classroom = db.get(Classroom, entry.classroom_id)
    if classroom is None:
        raise NotFoundError("Classroom", entry.classroom_id)

    if entry.session_type == SessionType.practical and not classroom.is_lab:
        raise ValidationError(
            "Practical sessions must be held in a lab",
            details={"classroom_id": classroom.id},
        )
    if classroom.capacity < batch.strength:
        raise ValidationError(
            f"Classroom {classroom.name} seats {classroom.capacity}, batch {batch.name} has {batch.strength}",
            details={"classroom_id": classroom.id, "batch_id": batch.id},
        )
    if entry.is_substitution:
        if not entry.original_faculty_id:
            raise ValidationError("original_faculty_id is required for a substitution entry")
        if entry.original_faculty_id == entry.faculty_id:
            raise ValidationError("Substitute must differ from the original faculty")


def _check_entry_conflicts(db: Session, timetable: Timetable, entry: TimetableEntry) -> None:
    candidate = _entry_window(entry)
    same_timetable = db.execute(
        select(TimetableEntry).where(
            TimetableEntry.timetable_id == timetable.id,
            TimetableEntry.day == entry.day,
            TimetableEntry.id != entry.id,
        )
    ).scalars()
    existing = {item.id: item for item in same_timetable}
    for item in _overlapping_committed_entries(db, timetable):
        existing.setdefault(item.id, item)

    colliding = find_conflicts([_entry_window(item) for item in existing.values()], candidate)
    if colliding:
        conflicts = [_describe_entry_conflict(existing[window.ref], candidate) for window in colliding]
        raise ConflictError(
            f"Entry collides with {len(conflicts)} existing session(s)",
            conflicts=conflicts,
        )


def _require_editable(timetable: Timetable) -> None:
    if timetable.status not in EDITABLE_TIMETABLE_STATUSES:
        raise StateError(f"Entries of a {timetable.status.value} timetable cannot be changed")


def add_entry(db: Session, timetable_id: str, payload: TimetableEntryCreate, *, actor: User) -> TimetableEntry:
    def _run() -> TimetableEntry:
        timetable = get_timetable(db, timetable_id, for_update=True)
        _require_editable(timetable)
        entry = TimetableEntry(timetable_id=timetable.id, **payload.model_dump())
        _validate_entry_references(db, entry)
        _check_entry_conflicts(db, timetable, entry)
        db.add(entry)
        db.flush()
        log_activity(
            db,
            user=actor,
            action=ActivityAction.entry_create,
            entity_id=entry.id,
            details={"timetable_id": timetable.id, "day": entry.day.value},
        )
        return entry

    with timetable_write_lock(timetable_id):
        entry = run_in_transaction(db, _run)
    db.refresh(entry)
    return entry


def _get_entry(db: Session, timetable_id: str, entry_id: str) -> TimetableEntry:
    entry = db.get(TimetableEntry, entry_id)
    if entry is None or entry.timetable_id != timetable_id:
        raise NotFoundError("TimetableEntry", entry_id)
    return entry


def update_entry(
    db: Session,
    timetable_id: str,
    entry_id: str,
    payload: TimetableEntryUpdate,
    *,
    actor: User,
) -> TimetableEntry:
    def _run() -> TimetableEntry:
        timetable = get_timetable(db, timetable_id, for_update=True)
        _require_editable(timetable)
        entry = _get_entry(db, timetable.id, entry_id)
        changes = payload.model_dump(exclude_unset=True)
        # Validate on the detached candidate so a rejected edit leaves the row untouched.
        candidate = TimetableEntry(
            id=entry.id,
            timetable_id=entry.timetable_id,
            day=changes.get("day") or entry.day,
            start_time=changes.get("start_time") or entry.start_time,
            end_time=changes.get("end_time") or entry.end_time,
            subject_id=changes.get("subject_id") or entry.subject_id,
            faculty_id=changes.get("faculty_id") or entry.faculty_id,
            batch_id=changes.get("batch_id") or entry.batch_id,
            classroom_id=changes.get("classroom_id") or entry.classroom_id,
            session_type=changes.get("session_type") or entry.session_type,
            is_substitution=changes.get("is_substitution", entry.is_substitution),
            original_faculty_id=changes.get("original_faculty_id", entry.original_faculty_id),
        )
        _validate_entry_references(db, candidate)
        _check_entry_conflicts(db, timetable, candidate)

        for key in changes:
            setattr(entry, key, getattr(candidate, key))
        db.flush()
        log_activity(
            db,
            user=actor,
            action=ActivityAction.entry_update,
            entity_id=entry.id,
            details={"timetable_id": timetable.id, "fields": sorted(changes)},
        )
        return entry

    with timetable_write_lock(timetable_id):
        entry = run_in_transaction(db, _run)
    db.refresh(entry)
    return entry


def delete_entry(db: Session, timetable_id: str, entry_id: str, *, actor: User) -> None:
    def _run() -> None:
        timetable = get_timetable(db, timetable_id, for_update=True)
        _require_editable(timetable)
        entry = _get_entry(db, timetable.id, entry_id)
        db.delete(entry)
        log_activity(
            db,
            user=actor,
            action=ActivityAction.entry_delete,
            entity_id=entry_id,
            details={"timetable_id": timetable.id},
        )

    with timetable_write_lock(timetable_id):
        run_in_transaction(db, _run)

