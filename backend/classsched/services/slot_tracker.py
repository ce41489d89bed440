from __future__ import annotations

from enum import Enum


class ResourceKind(str, Enum):
    faculty = "faculty"
    batch = "batch"
    classroom = "classroom"


class SlotAssignmentTracker:
    """Per-run occupancy index keyed by (resource kind, resource id, day, slot).

    One tracker belongs to one generation run; it is never shared between runs
    and never persisted.
    """

    def __init__(self) -> None:
        self._occupied: set[tuple[ResourceKind, str, str, str]] = set()

    def is_free(self, kind: ResourceKind, resource_id: str, day: str, slot_key: str) -> bool:
        return (kind, resource_id, day, slot_key) not in self._occupied

    def mark_occupied(self, kind: ResourceKind, resource_id: str, day: str, slot_key: str) -> None:
        self._occupied.add((kind, resource_id, day, slot_key))

    def occupy_session(
        self,
        *,
        day: str,
        slot_key: str,
        faculty_id: str,
        batch_id: str,
        classroom_id: str,
    ) -> None:
        self.mark_occupied(ResourceKind.faculty, faculty_id, day, slot_key)
        self.mark_occupied(ResourceKind.batch, batch_id, day, slot_key)
        self.mark_occupied(ResourceKind.classroom, classroom_id, day, slot_key)

    def occupied_count(self, kind: ResourceKind | None = None) -> int:
        if kind is None:
            return len(self._occupied)
        return sum(1 for item in self._occupied if item[0] == kind)
