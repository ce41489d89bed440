from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class EligibilityInput:
    faculty_id: str
    subject_id: str
    preference: int
    is_active: bool = True


@dataclass(frozen=True)
class RankedCandidate:
    faculty_id: str
    preference: int


class PreferenceRanker:
    """Orders eligible faculty for a subject by descending preference.

    Ties keep the order in which eligibility rows were supplied, so identical
    inputs always rank identically.
    """

    def __init__(self, eligibility: Iterable[EligibilityInput]) -> None:
        self._by_subject: dict[str, list[RankedCandidate]] = defaultdict(list)
        seen: set[tuple[str, str]] = set()
        for row in eligibility:
            if not row.is_active:
                continue
            key = (row.subject_id, row.faculty_id)
            if key in seen:
                continue
            seen.add(key)
            self._by_subject[row.subject_id].append(RankedCandidate(row.faculty_id, row.preference))
        for subject_id, candidates in self._by_subject.items():
            # list.sort is stable: equal preferences retain input order.
            candidates.sort(key=lambda item: item.preference, reverse=True)

    def rank(self, subject_id: str, *, exclude: Iterable[str] = ()) -> list[RankedCandidate]:
        excluded = set(exclude)
        return [item for item in self._by_subject.get(subject_id, []) if item.faculty_id not in excluded]
