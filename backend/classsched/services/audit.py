from __future__ import annotations

from enum import Enum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from classsched.models.activity_log import ActivityLog
from classsched.models.user import User

logger = logging.getLogger(__name__)


class ActivityAction(str, Enum):
    timetable_create = "timetable.create"
    timetable_update = "timetable.update"
    timetable_delete = "timetable.delete"
    timetable_generate = "timetable.generate"
    timetable_submit = "timetable.submit"
    timetable_reopen = "timetable.reopen"
    timetable_approve = "timetable.approve"
    timetable_publish = "timetable.publish"
    entry_create = "timetable.entry.create"
    entry_update = "timetable.entry.update"
    entry_delete = "timetable.entry.delete"
    leave_create = "leave.create"
    leave_approve = "leave.approve"
    leave_reject = "leave.reject"
    leave_cancel = "leave.cancel"
    substitution_dispatch = "leave.substitution.dispatch"
    substitution_accept = "substitution.accept"
    substitution_decline = "substitution.decline"
    substitution_assign = "substitution.assign"

    @classmethod
    def for_timetable_transition(cls, transition: str) -> ActivityAction:
        return cls(f"timetable.{transition}")

    @property
    def entity_type(self) -> str:
        if self.value.startswith("timetable.entry."):
            return "timetable_entry"
        if self.value.startswith("timetable."):
            return "timetable"
        if self.value.startswith("leave."):
            return "leave_request"
        return "substitution_offer"


def log_activity(
    db: Session,
    action: ActivityAction,
    *,
    user: User | None,
    entity_id: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """Stage an audit row in the caller's transaction; it commits or rolls back with the change it records."""
    record = ActivityLog(
        user_id=user.id if user is not None else None,
        action=action.value,
        entity_type=action.entity_type,
        entity_id=entity_id,
        details=details or {},
    )
    db.add(record)
    logger.debug("Activity staged | action=%s | entity_id=%s", action.value, entity_id)
    return record


def activity_for(db: Session, entity_id: str) -> list[ActivityLog]:
    return list(
        db.execute(
            select(ActivityLog)
            .where(ActivityLog.entity_id == entity_id)
            .order_by(ActivityLog.created_at, ActivityLog.id)
        ).scalars()
    )
