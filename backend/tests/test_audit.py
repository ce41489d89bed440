from datetime import date, timedelta

import pytest

from classsched.models import UserRole
from classsched.services.audit import ActivityAction, activity_for, log_activity


def test_actions_map_to_the_record_they_touch():
    assert ActivityAction.timetable_publish.entity_type == "timetable"
    assert ActivityAction.entry_update.entity_type == "timetable_entry"
    assert ActivityAction.substitution_dispatch.entity_type == "leave_request"
    assert ActivityAction.leave_cancel.entity_type == "leave_request"
    assert ActivityAction.substitution_decline.entity_type == "substitution_offer"


def test_timetable_transitions_resolve_to_actions():
    assert ActivityAction.for_timetable_transition("approve") is ActivityAction.timetable_approve
    with pytest.raises(ValueError):
        ActivityAction.for_timetable_transition("archive")


def test_log_activity_stages_row_in_caller_transaction(db_session, seed):
    admin = seed.user("Ada Admin", UserRole.admin)

    log_activity(
        db_session,
        ActivityAction.leave_approve,
        user=admin,
        entity_id="leave-1",
        details={"offers_created": 2},
    )
    db_session.rollback()
    assert activity_for(db_session, "leave-1") == []

    log_activity(db_session, ActivityAction.leave_approve, user=admin, entity_id="leave-1")
    db_session.commit()
    rows = activity_for(db_session, "leave-1")
    assert [(row.action, row.entity_type, row.user_id) for row in rows] == [
        ("leave.approve", "leave_request", admin.id)
    ]


def test_timetable_api_calls_are_audited(client, headers_for, seed, db_session):
    admin = seed.user("Ada Admin", UserRole.admin)
    headers = headers_for(admin)
    today = date.today()
    created = client.post(
        "/api/timetables",
        json={
            "name": "CSE Sem 3",
            "department": "CSE",
            "semester": 3,
            "academic_year": "2025-26",
            "start_date": today.isoformat(),
            "end_date": (today + timedelta(days=120)).isoformat(),
        },
        headers=headers,
    )
    timetable_id = created.json()["id"]
    client.put(f"/api/timetables/{timetable_id}", json={"name": "CSE Sem 3 (rev)"}, headers=headers)

    actions = {row.action for row in activity_for(db_session, timetable_id)}
    assert actions == {"timetable.create", "timetable.update"}
