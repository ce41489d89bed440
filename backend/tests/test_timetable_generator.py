import itertools

import pytest

from classsched.core.exceptions import ConfigurationError
from classsched.models.timetable_entry import SessionType
from classsched.services.conflict_detector import SessionWindow, has_conflict
from classsched.services.preference_ranker import EligibilityInput
from classsched.services.slot_tracker import ResourceKind, SlotAssignmentTracker
from classsched.services.timetable_generator import (
    BatchInput,
    ClassroomInput,
    SubjectInput,
    build_requirements,
    build_time_slot_catalog,
    generate,
)

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
SLOTS = build_time_slot_catalog(
    ["09:00-10:00", "10:00-11:00", "11:00-12:00", "12:00-13:00", "14:00-15:00", "15:00-16:00", "16:00-17:00"]
)


def run(**overrides):
    params = dict(timetable_id="tt-1", time_slots=SLOTS, days=DAYS)
    params.update(overrides)
    return generate(**params)


def test_ds101_scenario_uses_top_faculty_and_regular_room():
    result = run(
        batches=[BatchInput("cs-2a", "CS-2A", 60)],
        subjects=[SubjectInput("ds101", "DS101", lecture_hours=3)],
        eligibility=[EligibilityInput("f-rank4", "ds101", 4), EligibilityInput("f-rank9", "ds101", 9)],
        classrooms=[ClassroomInput("room", "Room 101", 70), ClassroomInput("lab", "Lab 1", 40, is_lab=True)],
    )

    assert result.unassigned_count == 0
    assert len(result.assignments) == 3
    assert {item.faculty_id for item in result.assignments} == {"f-rank9"}
    assert {item.classroom_id for item in result.assignments} == {"room"}
    pairs = {(item.day, item.start_time) for item in result.assignments}
    assert len(pairs) == 3
    for left, right in itertools.combinations(result.assignments, 2):
        assert not has_conflict([left.as_window()], right.as_window())


def test_generation_is_deterministic():
    params = dict(
        batches=[BatchInput("b1", "B1", 40), BatchInput("b2", "B2", 55)],
        subjects=[
            SubjectInput("s1", "S1", lecture_hours=3, tutorial_hours=1),
            SubjectInput("s2", "S2", lecture_hours=2, practical_hours=2),
        ],
        eligibility=[
            EligibilityInput("f1", "s1", 7),
            EligibilityInput("f2", "s1", 7),
            EligibilityInput("f3", "s2", 8),
        ],
        classrooms=[
            ClassroomInput("r1", "R1", 60),
            ClassroomInput("lab", "Lab", 60, is_lab=True),
        ],
    )
    first = run(**params)
    second = run(**params)
    assert first.assignments == second.assignments
    assert first.unassigned == second.unassigned


def test_requirements_follow_batch_subject_kind_order():
    requirements = build_requirements(
        [BatchInput("b1", "B1", 30), BatchInput("b2", "B2", 30)],
        [SubjectInput("s1", "S1", lecture_hours=2, practical_hours=1), SubjectInput("s2", "S2", tutorial_hours=1)],
    )
    assert [(item.batch_id, item.subject_id, item.session_type, item.count) for item in requirements] == [
        ("b1", "s1", SessionType.lecture, 2),
        ("b1", "s1", SessionType.practical, 1),
        ("b1", "s2", SessionType.tutorial, 1),
        ("b2", "s1", SessionType.lecture, 2),
        ("b2", "s1", SessionType.practical, 1),
        ("b2", "s2", SessionType.tutorial, 1),
    ]


def test_practical_sessions_only_use_labs():
    result = run(
        batches=[BatchInput("b1", "B1", 30)],
        subjects=[SubjectInput("s1", "S1", practical_hours=2)],
        eligibility=[EligibilityInput("f1", "s1", 5)],
        classrooms=[ClassroomInput("room", "Room", 100), ClassroomInput("lab", "Lab", 35, is_lab=True)],
    )
    assert [item.classroom_id for item in result.assignments] == ["lab", "lab"]


def test_practical_without_lab_is_reported_not_fatal():
    result = run(
        batches=[BatchInput("b1", "B1", 30)],
        subjects=[SubjectInput("s1", "S1", lecture_hours=1, practical_hours=2)],
        eligibility=[EligibilityInput("f1", "s1", 5)],
        classrooms=[ClassroomInput("room", "Room", 100)],
    )
    assert len(result.assignments) == 1
    assert result.unassigned_count == 2
    assert all(item.session_type == SessionType.practical for item in result.unassigned)


def test_lecture_falls_back_to_lab_only_when_no_regular_room_fits():
    result = run(
        batches=[BatchInput("b1", "B1", 50)],
        subjects=[SubjectInput("s1", "S1", lecture_hours=1)],
        eligibility=[EligibilityInput("f1", "s1", 5)],
        classrooms=[ClassroomInput("small", "Small", 30), ClassroomInput("lab", "Lab", 60, is_lab=True)],
    )
    assert [item.classroom_id for item in result.assignments] == ["lab"]


def test_lecture_waits_for_regular_room_instead_of_taking_a_lab():
    result = run(
        batches=[BatchInput("a", "A", 30), BatchInput("b", "B", 30)],
        subjects=[
            SubjectInput("s1", "S1", lecture_hours=1),
            SubjectInput("s2", "S2", practical_hours=1),
        ],
        eligibility=[
            EligibilityInput("f1", "s1", 9),
            EligibilityInput("f2", "s1", 5),
            EligibilityInput("f3", "s2", 7),
        ],
        classrooms=[ClassroomInput("room", "R", 40), ClassroomInput("lab", "L", 40, is_lab=True)],
        days=["Monday"],
        time_slots=SLOTS[:2],
    )

    assert result.unassigned_count == 0
    placed = {(item.batch_id, item.subject_id): item for item in result.assignments}
    assert placed[("b", "s1")].classroom_id == "room"
    assert placed[("b", "s1")].start_time == SLOTS[1].start
    assert placed[("b", "s2")].classroom_id == "lab"
    for item in result.assignments:
        assert (item.classroom_id == "lab") == (item.session_type == SessionType.practical)


def test_capacity_is_never_exceeded():
    result = run(
        batches=[BatchInput("big", "Big", 80)],
        subjects=[SubjectInput("s1", "S1", lecture_hours=1)],
        eligibility=[EligibilityInput("f1", "s1", 5)],
        classrooms=[ClassroomInput("r1", "R1", 70), ClassroomInput("lab", "Lab", 40, is_lab=True)],
    )
    assert result.assignments == []
    assert result.unassigned[0].reason == "no free faculty, batch and classroom combination"


def test_subject_without_eligible_faculty_is_unassigned():
    result = run(
        batches=[BatchInput("b1", "B1", 30)],
        subjects=[SubjectInput("s1", "S1", lecture_hours=2)],
        eligibility=[EligibilityInput("f1", "other", 9)],
        classrooms=[ClassroomInput("r1", "R1", 40)],
    )
    assert result.unassigned_count == 2
    assert {item.reason for item in result.unassigned} == {"no eligible faculty"}


def test_lower_ranked_faculty_takes_over_when_top_is_busy():
    tracker = SlotAssignmentTracker()
    for slot in SLOTS:
        tracker.mark_occupied(ResourceKind.faculty, "f-top", "Monday", slot.key)

    result = run(
        batches=[BatchInput("b1", "B1", 30)],
        subjects=[SubjectInput("s1", "S1", lecture_hours=1)],
        eligibility=[EligibilityInput("f-top", "s1", 9), EligibilityInput("f-next", "s1", 3)],
        classrooms=[ClassroomInput("r1", "R1", 40)],
        tracker=tracker,
    )
    assignment = result.assignments[0]
    assert (assignment.day, assignment.faculty_id) == ("Monday", "f-next")


def test_busy_batch_moves_session_to_next_slot():
    tracker = SlotAssignmentTracker()
    tracker.mark_occupied(ResourceKind.batch, "b1", "Monday", SLOTS[0].key)

    result = run(
        batches=[BatchInput("b1", "B1", 30)],
        subjects=[SubjectInput("s1", "S1", lecture_hours=1)],
        eligibility=[EligibilityInput("f1", "s1", 5)],
        classrooms=[ClassroomInput("r1", "R1", 40)],
        tracker=tracker,
    )
    assert result.assignments[0].start_time == SLOTS[1].start


def _crowded_inputs():
    batches = [BatchInput("b30", "B30", 30), BatchInput("b45", "B45", 45), BatchInput("b60", "B60", 60)]
    subjects = [
        SubjectInput("algo", "ALGO", lecture_hours=4, tutorial_hours=1),
        SubjectInput("db", "DB", lecture_hours=3, practical_hours=2),
        SubjectInput("net", "NET", lecture_hours=3, practical_hours=2),
        SubjectInput("math", "MATH", lecture_hours=4, tutorial_hours=2),
        SubjectInput("os", "OS", lecture_hours=3, practical_hours=1),
    ]
    eligibility = [
        EligibilityInput("f1", "algo", 9),
        EligibilityInput("f2", "algo", 6),
        EligibilityInput("f2", "db", 8),
        EligibilityInput("f3", "db", 8),
        EligibilityInput("f3", "net", 7),
        EligibilityInput("f4", "math", 10),
        EligibilityInput("f1", "math", 4),
        EligibilityInput("f4", "os", 5),
        EligibilityInput("f2", "os", 5),
    ]
    classrooms = [
        ClassroomInput("r50", "R50", 50),
        ClassroomInput("r70", "R70", 70),
        ClassroomInput("lab40", "Lab40", 40, is_lab=True),
    ]
    return dict(batches=batches, subjects=subjects, eligibility=eligibility, classrooms=classrooms)


def test_tracker_agrees_with_conflict_detector_during_generation():
    # cross_check re-derives every tracker lookup from the detector and raises on disagreement.
    result = run(cross_check=True, **_crowded_inputs())
    assert result.assignments


def test_final_tracker_state_matches_detector_for_every_triple():
    inputs = _crowded_inputs()
    result = run(**inputs)
    windows = [item.as_window() for item in result.assignments]
    resources = {
        ResourceKind.faculty: {item.faculty_id for item in inputs["eligibility"]},
        ResourceKind.batch: {item.id for item in inputs["batches"]},
        ResourceKind.classroom: {item.id for item in inputs["classrooms"]},
    }
    field_for = {
        ResourceKind.faculty: "faculty_id",
        ResourceKind.batch: "batch_id",
        ResourceKind.classroom: "classroom_id",
    }
    for kind, ids in resources.items():
        for resource_id, day, slot in itertools.product(sorted(ids), DAYS, SLOTS):
            candidate = SessionWindow(day=day, start=slot.start, end=slot.end, **{field_for[kind]: resource_id})
            assert result.tracker.is_free(kind, resource_id, day, slot.key) == (not has_conflict(windows, candidate))


def test_generated_timetable_has_no_pairwise_conflicts_and_respects_rooms():
    inputs = _crowded_inputs()
    result = run(**inputs)
    rooms = {item.id: item for item in inputs["classrooms"]}
    strength = {item.id: item.strength for item in inputs["batches"]}

    for left, right in itertools.combinations(result.assignments, 2):
        assert not has_conflict([left.as_window()], right.as_window())
    for item in result.assignments:
        room = rooms[item.classroom_id]
        assert room.capacity >= strength[item.batch_id]
        if item.session_type == SessionType.practical:
            assert room.is_lab

    # The 60-strong batch cannot fit the only lab, so its practicals stay unplaced.
    unplaced_practicals = [
        item for item in result.unassigned if item.batch_id == "b60" and item.session_type == SessionType.practical
    ]
    assert len(unplaced_practicals) == 5


@pytest.mark.parametrize(
    "values",
    [
        ["9-10"],
        ["10:00-09:00"],
        ["09:00-10:00", "09:30-10:30"],
        [],
    ],
)
def test_invalid_slot_catalog_is_rejected(values):
    with pytest.raises(ConfigurationError):
        build_time_slot_catalog(values)


def test_slot_catalog_preserves_configured_order():
    slots = build_time_slot_catalog(["14:00-15:00", "09:00-10:00"])
    assert [item.key for item in slots] == ["14:00-15:00", "09:00-10:00"]
