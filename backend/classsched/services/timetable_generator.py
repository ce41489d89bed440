"""Greedy weekly timetable allocator.

Each requirement unit (one session of one kind of one subject for one batch)
is placed at the first (day, slot, faculty, classroom) combination that keeps
every resource free, searching days, then slots, then ranked faculty, then
classrooms in their fixed catalog order. There is no backtracking: a unit
that cannot be placed is reported and skipped, so the run is bounded and
identical inputs always produce identical output.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import time
import logging
import re

from classsched.core.exceptions import ConfigurationError
from classsched.models.timetable_entry import SessionType
from classsched.services.conflict_detector import SessionWindow, has_conflict
from classsched.services.preference_ranker import EligibilityInput, PreferenceRanker
from classsched.services.slot_tracker import ResourceKind, SlotAssignmentTracker

logger = logging.getLogger(__name__)

SLOT_PATTERN = re.compile(r"^\s*([01]\d|2[0-3]):([0-5]\d)\s*-\s*([01]\d|2[0-3]):([0-5]\d)\s*$")
SESSION_KIND_ORDER = (SessionType.lecture, SessionType.tutorial, SessionType.practical)


@dataclass(frozen=True)
class TimeSlot:
    start: time
    end: time

    @property
    def key(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class BatchInput:
    id: str
    name: str
    strength: int


@dataclass(frozen=True)
class SubjectInput:
    id: str
    code: str
    lecture_hours: int = 0
    tutorial_hours: int = 0
    practical_hours: int = 0


@dataclass(frozen=True)
class ClassroomInput:
    id: str
    name: str
    capacity: int
    is_lab: bool = False


@dataclass(frozen=True)
class SessionRequirement:
    subject_id: str
    batch_id: str
    session_type: SessionType
    count: int


@dataclass(frozen=True)
class PlannedAssignment:
    timetable_id: str
    day: str
    start_time: time
    end_time: time
    subject_id: str
    faculty_id: str
    batch_id: str
    classroom_id: str
    session_type: SessionType

    def as_window(self) -> SessionWindow:
        return SessionWindow(
            day=self.day,
            start=self.start_time,
            end=self.end_time,
            faculty_id=self.faculty_id,
            batch_id=self.batch_id,
            classroom_id=self.classroom_id,
        )


@dataclass(frozen=True)
class UnplacedUnit:
    subject_id: str
    batch_id: str
    session_type: SessionType
    reason: str


@dataclass
class GenerationResult:
    timetable_id: str
    assignments: list[PlannedAssignment] = field(default_factory=list)
    unassigned: list[UnplacedUnit] = field(default_factory=list)
    tracker: SlotAssignmentTracker = field(default_factory=SlotAssignmentTracker)

    @property
    def unassigned_count(self) -> int:
        return len(self.unassigned)


def parse_time_slot(value: str) -> TimeSlot:
    match = SLOT_PATTERN.match(value)
    if match is None:
        raise ConfigurationError(f"Invalid time slot '{value}'; expected HH:MM-HH:MM")
    start_h, start_m, end_h, end_m = (int(part) for part in match.groups())
    slot = TimeSlot(start=time(start_h, start_m), end=time(end_h, end_m))
    if slot.end <= slot.start:
        raise ConfigurationError(f"Time slot '{value}' must end after it starts")
    return slot


def build_time_slot_catalog(values: Iterable[str]) -> list[TimeSlot]:
    slots = [parse_time_slot(item) for item in values]
    if not slots:
        raise ConfigurationError("Time slot catalog is empty")
    ordered = sorted(slots, key=lambda item: item.start)
    for previous, current in zip(ordered, ordered[1:]):
        # Occupancy is tracked per slot key, so catalog slots must not overlap.
        if current.start < previous.end:
            raise ConfigurationError(f"Time slots {previous.key} and {current.key} overlap")
    return slots


def _hours_for(subject: SubjectInput, session_type: SessionType) -> int:
    if session_type == SessionType.lecture:
        return max(0, subject.lecture_hours)
    if session_type == SessionType.tutorial:
        return max(0, subject.tutorial_hours)
    return max(0, subject.practical_hours)


def build_requirements(
    batches: Sequence[BatchInput],
    subjects: Sequence[SubjectInput],
) -> list[SessionRequirement]:
    requirements: list[SessionRequirement] = []
    for batch in batches:
        for subject in subjects:
            for session_type in SESSION_KIND_ORDER:
                count = _hours_for(subject, session_type)
                if count:
                    requirements.append(SessionRequirement(subject.id, batch.id, session_type, count))
    return requirements


def _pick_classroom(
    classrooms: Sequence[ClassroomInput],
    *,
    session_type: SessionType,
    strength: int,
    day: str,
    slot: TimeSlot,
    tracker: SlotAssignmentTracker,
) -> ClassroomInput | None:
    def usable(room: ClassroomInput) -> bool:
        return room.capacity >= strength and tracker.is_free(ResourceKind.classroom, room.id, day, slot.key)

    if session_type == SessionType.practical:
        return next((room for room in classrooms if room.is_lab and usable(room)), None)

    # A lab only hosts a lecture or tutorial when no regular room in the catalog is big enough.
    if any(not room.is_lab and room.capacity >= strength for room in classrooms):
        return next((room for room in classrooms if not room.is_lab and usable(room)), None)
    return next((room for room in classrooms if room.is_lab and usable(room)), None)


class _CrossChecker:
    """Re-derives every tracker answer from the conflict detector and fails loudly on disagreement."""

    def __init__(self) -> None:
        self.windows: list[SessionWindow] = []
        self.checks = 0

    def verify(
        self,
        tracker: SlotAssignmentTracker,
        kind: ResourceKind,
        resource_id: str,
        day: str,
        slot: TimeSlot,
    ) -> None:
        candidate = SessionWindow(
            day=day,
            start=slot.start,
            end=slot.end,
            faculty_id=resource_id if kind == ResourceKind.faculty else None,
            batch_id=resource_id if kind == ResourceKind.batch else None,
            classroom_id=resource_id if kind == ResourceKind.classroom else None,
        )
        self.checks += 1
        tracker_free = tracker.is_free(kind, resource_id, day, slot.key)
        detector_free = not has_conflict(self.windows, candidate)
        if tracker_free != detector_free:
            raise RuntimeError(
                f"Slot tracker and conflict detector disagree for {kind.value}={resource_id} "
                f"on {day} {slot.key}: tracker_free={tracker_free} detector_free={detector_free}"
            )


def generate(
    *,
    timetable_id: str,
    batches: Sequence[BatchInput],
    subjects: Sequence[SubjectInput],
    eligibility: Sequence[EligibilityInput],
    classrooms: Sequence[ClassroomInput],
    time_slots: Sequence[TimeSlot],
    days: Sequence[str],
    tracker: SlotAssignmentTracker | None = None,
    cross_check: bool = False,
) -> GenerationResult:
    """Place every requirement unit greedily.

    ``tracker`` may carry occupancy from outside the run (for example sessions
    already committed elsewhere); a fresh tracker is used otherwise. With
    ``cross_check`` the conflict detector re-validates each tracker lookup.
    """
    tracker = tracker if tracker is not None else SlotAssignmentTracker()
    ranker = PreferenceRanker(eligibility)
    batch_by_id = {item.id: item for item in batches}
    result = GenerationResult(timetable_id=timetable_id, tracker=tracker)
    checker = _CrossChecker() if cross_check else None

    for requirement in build_requirements(batches, subjects):
        batch = batch_by_id[requirement.batch_id]
        candidates = ranker.rank(requirement.subject_id)
        for _ in range(requirement.count):
            placed = _place_unit(
                result=result,
                requirement=requirement,
                batch=batch,
                candidates=[item.faculty_id for item in candidates],
                classrooms=classrooms,
                time_slots=time_slots,
                days=days,
                tracker=tracker,
                checker=checker,
            )
            if placed is not None:
                continue
            reason = "no eligible faculty" if not candidates else "no free faculty, batch and classroom combination"
            result.unassigned.append(
                UnplacedUnit(
                    subject_id=requirement.subject_id,
                    batch_id=requirement.batch_id,
                    session_type=requirement.session_type,
                    reason=reason,
                )
            )
            logger.debug(
                "Unplaced unit | timetable_id=%s | subject_id=%s | batch_id=%s | kind=%s | reason=%s",
                timetable_id,
                requirement.subject_id,
                requirement.batch_id,
                requirement.session_type.value,
                reason,
            )

    return result


def _place_unit(
    *,
    result: GenerationResult,
    requirement: SessionRequirement,
    batch: BatchInput,
    candidates: list[str],
    classrooms: Sequence[ClassroomInput],
    time_slots: Sequence[TimeSlot],
    days: Sequence[str],
    tracker: SlotAssignmentTracker,
    checker: _CrossChecker | None,
) -> PlannedAssignment | None:
    for day in days:
        for slot in time_slots:
            for faculty_id in candidates:
                if checker is not None:
                    checker.verify(tracker, ResourceKind.faculty, faculty_id, day, slot)
                    checker.verify(tracker, ResourceKind.batch, batch.id, day, slot)
                    for room in classrooms:
                        checker.verify(tracker, ResourceKind.classroom, room.id, day, slot)
                if not tracker.is_free(ResourceKind.faculty, faculty_id, day, slot.key):
                    continue
                if not tracker.is_free(ResourceKind.batch, batch.id, day, slot.key):
                    continue
                room = _pick_classroom(
                    classrooms,
                    session_type=requirement.session_type,
                    strength=batch.strength,
                    day=day,
                    slot=slot,
                    tracker=tracker,
                )
                if room is None:
                    continue

                assignment = PlannedAssignment(
                    timetable_id=result.timetable_id,
                    day=day,
                    start_time=slot.start,
                    end_time=slot.end,
                    subject_id=requirement.subject_id,
                    faculty_id=faculty_id,
                    batch_id=batch.id,
                    classroom_id=room.id,
                    session_type=requirement.session_type,
                )
                result.assignments.append(assignment)
                tracker.occupy_session(
                    day=day,
                    slot_key=slot.key,
                    faculty_id=faculty_id,
                    batch_id=batch.id,
                    classroom_id=room.id,
                )
                if checker is not None:
                    checker.windows.append(assignment.as_window())
                return assignment
    return None
