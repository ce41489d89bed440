"""Interval-overlap conflict detection shared by generation, manual edits and substitution.

A candidate session conflicts with an existing one when both fall on the same
day, they share at least one resource (faculty, batch or classroom) and their
time ranges overlap. Ranges are half-open, so ``10:00-11:00`` and
``11:00-12:00`` do not collide.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, time

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class SessionWindow:
    day: str
    start: time
    end: time
    faculty_id: str | None = None
    batch_id: str | None = None
    classroom_id: str | None = None
    ref: str | None = None


def weekday_name(value: date) -> str:
    return WEEKDAY_NAMES[value.weekday()]


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return start_a < end_b and end_a > start_b


def _same_resource(left: str | None, right: str | None) -> bool:
    return left is not None and left == right


def shares_resource(existing: SessionWindow, candidate: SessionWindow) -> bool:
    return (
        _same_resource(existing.faculty_id, candidate.faculty_id)
        or _same_resource(existing.batch_id, candidate.batch_id)
        or _same_resource(existing.classroom_id, candidate.classroom_id)
    )


def conflicts_with(existing: SessionWindow, candidate: SessionWindow) -> bool:
    if existing.day != candidate.day:
        return False
    if not shares_resource(existing, candidate):
        return False
    return intervals_overlap(candidate.start, candidate.end, existing.start, existing.end)


def find_conflicts(existing: Iterable[SessionWindow], candidate: SessionWindow) -> list[SessionWindow]:
    return [item for item in existing if conflicts_with(item, candidate)]


def has_conflict(existing: Iterable[SessionWindow], candidate: SessionWindow) -> bool:
    return any(conflicts_with(item, candidate) for item in existing)
