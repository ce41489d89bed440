from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
import logging
from threading import Lock
from typing import TypeVar

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _KeyedLockRegistry:
    """Hands out one lock per key so writers on the same record serialize.

    Entries are reference counted and dropped once no thread holds or waits
    on them, so the registry only grows with concurrent writers.
    """

    def __init__(self) -> None:
        self._locks: dict[str, tuple[Lock, int]] = {}
        self._guard = Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = Lock()
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                _lock, users = self._locks.get(key, (lock, 0))
                if users <= 1:
                    self._locks.pop(key, None)
                else:
                    self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()


_timetable_locks = _KeyedLockRegistry()


@contextmanager
def timetable_write_lock(timetable_id: str) -> Iterator[None]:
    with _timetable_locks.hold(timetable_id):
        yield


def run_in_transaction(db: Session, fn: Callable[[], T]) -> T:
    """Run ``fn`` and commit; roll back and re-raise on any failure."""
    try:
        result = fn()
        db.commit()
    except Exception:
        db.rollback()
        logger.debug("Transaction rolled back", exc_info=True)
        raise
    return result


def clear_write_locks() -> None:
    _timetable_locks.clear()
