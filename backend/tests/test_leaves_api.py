from datetime import date, timedelta

import pytest

from classsched.models import TimetableStatus, UserRole
from classsched.services.notifications import NotificationTemplate


@pytest.fixture()
def staff(seed):
    subject = seed.subject("DS101")
    batch = seed.batch("CS-2A")
    room = seed.classroom("Room 101")
    original = seed.faculty("Fiona F")
    first = seed.faculty("Gita G")
    second = seed.faculty("Hari H")
    seed.eligibility(original, subject, 10)
    seed.eligibility(first, subject, 9)
    seed.eligibility(second, subject, 6)
    timetable = seed.timetable(status=TimetableStatus.published)
    entry = seed.entry(timetable, subject=subject, faculty=original, batch=batch, classroom=room)
    return {
        "admin": seed.user("Ada Admin", UserRole.admin),
        "original": original,
        "first": first,
        "second": second,
        "entry": entry,
    }


def _request_leave(client, headers, start, end=None, **extra):
    payload = {
        "start_date": start.isoformat(),
        "end_date": (end or start).isoformat(),
        "reason": "Conference travel",
        **extra,
    }
    return client.post("/api/leaves", json=payload, headers=headers)


def test_leave_approval_dispatches_and_substitute_accepts(client, headers_for, seed, notifier, staff, next_monday):
    faculty_headers = headers_for(seed.user_for(staff["original"]))
    admin_headers = headers_for(staff["admin"])

    created = _request_leave(client, faculty_headers, next_monday)
    assert created.status_code == 201, created.text
    leave = created.json()
    assert leave["status"] == "pending"
    assert leave["faculty_id"] == staff["original"].id

    approved = client.put(f"/api/leaves/{leave['id']}/approve", headers=admin_headers)
    assert approved.status_code == 200, approved.text
    body = approved.json()
    assert body["leave"]["status"] == "approved"
    assert body["offers_created"] == 1
    assert body["entries_affected"] == 1
    assert body["candidates_notified"] == 2
    assert body["unaddressed"] == 0
    assert NotificationTemplate.leave_approved in notifier.kinds_for(staff["original"].email)
    assert notifier.kinds_for(staff["first"].email) == [NotificationTemplate.substitution_request]

    substitute_headers = headers_for(seed.user_for(staff["first"]))
    offers = client.get("/api/substitutions", headers=substitute_headers).json()
    assert len(offers) == 1
    assert offers[0]["substitute_faculty_id"] == staff["first"].id
    assert offers[0]["date"] == next_monday.isoformat()

    accepted = client.post(
        f"/api/substitutions/{offers[0]['id']}/respond",
        json={"decision": "accept"},
        headers=substitute_headers,
    )
    assert accepted.status_code == 200, accepted.text
    assert accepted.json()["status"] == "accepted"
    assert NotificationTemplate.substitution_accepted in notifier.kinds_for(staff["original"].email)

    again = client.put(f"/api/leaves/{leave['id']}/approve", headers=admin_headers)
    assert again.status_code == 409


def test_decline_moves_offer_to_next_candidate(client, headers_for, seed, notifier, staff, next_monday):
    leave_id = _request_leave(client, headers_for(seed.user_for(staff["original"])), next_monday).json()["id"]
    client.put(f"/api/leaves/{leave_id}/approve", headers=headers_for(staff["admin"]))
    first_headers = headers_for(seed.user_for(staff["first"]))
    offer_id = client.get("/api/substitutions", headers=first_headers).json()[0]["id"]

    declined = client.post(
        f"/api/substitutions/{offer_id}/respond",
        json={"decision": "decline", "response_note": "Invigilation duty"},
        headers=first_headers,
    )

    assert declined.status_code == 200, declined.text
    replacement = declined.json()
    assert replacement["id"] != offer_id
    assert replacement["status"] == "pending"
    assert replacement["substitute_faculty_id"] == staff["second"].id
    assert replacement["declined_faculty_ids"] == [staff["first"].id]
    assert client.get("/api/substitutions", params={"status": "pending"}, headers=first_headers).json() == []
    assert client.get(f"/api/substitutions/{offer_id}", headers=headers_for(staff["admin"])).json()["status"] == (
        "declined"
    )


def test_admin_assigns_substitute(client, headers_for, seed, notifier, staff, next_monday):
    leave_id = _request_leave(client, headers_for(seed.user_for(staff["original"])), next_monday).json()["id"]
    admin_headers = headers_for(staff["admin"])
    client.put(f"/api/leaves/{leave_id}/approve", headers=admin_headers)
    offer_id = client.get("/api/substitutions", params={"leave_id": leave_id}, headers=admin_headers).json()[0]["id"]

    faculty_attempt = client.put(
        f"/api/substitutions/{offer_id}/assign",
        json={"faculty_id": staff["second"].id},
        headers=headers_for(seed.user_for(staff["first"])),
    )
    assert faculty_attempt.status_code == 403

    original_attempt = client.put(
        f"/api/substitutions/{offer_id}/assign",
        json={"faculty_id": staff["original"].id},
        headers=admin_headers,
    )
    assert original_attempt.status_code == 422

    assigned = client.put(
        f"/api/substitutions/{offer_id}/assign",
        json={"faculty_id": staff["second"].id},
        headers=admin_headers,
    )
    assert assigned.status_code == 200, assigned.text
    assert assigned.json()["status"] == "assigned"
    assert assigned.json()["assigned_by_id"] == staff["admin"].id
    assert NotificationTemplate.substitution_assigned in notifier.kinds_for(staff["second"].email)


def test_offer_is_hidden_from_other_faculty(client, headers_for, seed, staff, next_monday):
    leave_id = _request_leave(client, headers_for(seed.user_for(staff["original"])), next_monday).json()["id"]
    admin_headers = headers_for(staff["admin"])
    client.put(f"/api/leaves/{leave_id}/approve", headers=admin_headers)
    offer_id = client.get("/api/substitutions", headers=admin_headers).json()[0]["id"]
    second_headers = headers_for(seed.user_for(staff["second"]))

    assert client.get(f"/api/substitutions/{offer_id}", headers=second_headers).status_code == 404
    response = client.post(
        f"/api/substitutions/{offer_id}/respond",
        json={"decision": "accept"},
        headers=second_headers,
    )
    assert response.status_code == 403


def test_reject_requires_reason_and_notifies(client, headers_for, seed, notifier, staff, next_monday):
    leave_id = _request_leave(client, headers_for(seed.user_for(staff["original"])), next_monday).json()["id"]
    admin_headers = headers_for(staff["admin"])

    missing = client.put(f"/api/leaves/{leave_id}/reject", json={"reason": ""}, headers=admin_headers)
    assert missing.status_code == 422

    rejected = client.put(f"/api/leaves/{leave_id}/reject", json={"reason": "Exam week"}, headers=admin_headers)
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejection_reason"] == "Exam week"
    assert NotificationTemplate.leave_rejected in notifier.kinds_for(staff["original"].email)

    assert client.put(f"/api/leaves/{leave_id}/approve", headers=admin_headers).status_code == 409


def test_cancelling_approved_leave_cancels_offers(client, headers_for, seed, staff, next_monday):
    faculty_headers = headers_for(seed.user_for(staff["original"]))
    admin_headers = headers_for(staff["admin"])
    leave_id = _request_leave(client, faculty_headers, next_monday).json()["id"]
    client.put(f"/api/leaves/{leave_id}/approve", headers=admin_headers)

    outsider = client.put(f"/api/leaves/{leave_id}/cancel", headers=headers_for(seed.user_for(staff["first"])))
    assert outsider.status_code == 403

    cancelled = client.put(f"/api/leaves/{leave_id}/cancel", headers=faculty_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    offers = client.get("/api/substitutions", params={"leave_id": leave_id}, headers=admin_headers).json()
    assert [item["status"] for item in offers] == ["cancelled"]


def test_overlapping_leave_is_rejected(client, headers_for, seed, staff, next_monday):
    headers = headers_for(seed.user_for(staff["original"]))
    first = _request_leave(client, headers, next_monday, next_monday + timedelta(days=2))
    assert first.status_code == 201

    overlapping = _request_leave(client, headers, next_monday + timedelta(days=1), next_monday + timedelta(days=4))
    assert overlapping.status_code == 409
    assert overlapping.json()["details"]["conflicts"][0]["leave_id"] == first.json()["id"]

    later = _request_leave(client, headers, next_monday + timedelta(days=3))
    assert later.status_code == 201


def test_leave_in_the_past_is_rejected(client, headers_for, seed, staff):
    past = date.today() - timedelta(days=2)
    response = _request_leave(client, headers_for(seed.user_for(staff["original"])), past)
    assert response.status_code == 422
    assert response.json()["message"] == "Leave cannot start in the past"


def test_reversed_leave_range_is_rejected(client, headers_for, seed, staff, next_monday):
    response = _request_leave(
        client,
        headers_for(seed.user_for(staff["original"])),
        next_monday,
        next_monday - timedelta(days=1),
    )
    assert response.status_code == 422


def test_faculty_without_profile_cannot_request_leave(client, headers_for, seed, next_monday):
    unlinked = seed.user("Una U", UserRole.faculty)
    response = _request_leave(client, headers_for(unlinked), next_monday)
    assert response.status_code == 403


def test_admin_files_leave_for_faculty(client, headers_for, seed, staff, next_monday):
    response = _request_leave(
        client,
        headers_for(staff["admin"]),
        next_monday,
        faculty_id=staff["second"].id,
    )
    assert response.status_code == 201
    assert response.json()["faculty_id"] == staff["second"].id
    assert response.json()["requested_by_id"] == staff["admin"].id

    own = client.get("/api/leaves", headers=headers_for(seed.user_for(staff["second"]))).json()
    assert [item["id"] for item in own] == [response.json()["id"]]
    assert client.get("/api/leaves", headers=headers_for(seed.user_for(staff["first"]))).json() == []


def test_leave_detail_is_visible_to_owner_and_reviewers_only(client, headers_for, seed, staff, next_monday):
    owner_headers = headers_for(seed.user_for(staff["original"]))
    leave_id = _request_leave(client, owner_headers, next_monday).json()["id"]

    own = client.get(f"/api/leaves/{leave_id}", headers=owner_headers)
    assert own.status_code == 200
    assert own.json()["faculty_id"] == staff["original"].id
    assert own.json()["status"] == "pending"

    reviewer = client.get(f"/api/leaves/{leave_id}", headers=headers_for(staff["admin"]))
    assert reviewer.status_code == 200

    other = client.get(f"/api/leaves/{leave_id}", headers=headers_for(seed.user_for(staff["first"])))
    assert other.status_code == 404
    assert client.get("/api/leaves/missing", headers=owner_headers).status_code == 404
