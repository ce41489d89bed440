from datetime import date, timedelta

from classsched.core.security import create_access_token
from classsched.models import UserRole


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_role_check_reports_required_roles(client, headers_for, seed):
    faculty_user = seed.user("Fay F", UserRole.faculty)

    today = date.today()
    payload = {
        "name": "CSE Sem 3",
        "department": "CSE",
        "semester": 3,
        "academic_year": "2025-26",
        "start_date": today.isoformat(),
        "end_date": (today + timedelta(days=120)).isoformat(),
    }

    response = client.post("/api/timetables", json=payload, headers=headers_for(faculty_user))

    assert response.status_code == 403
    body = response.json()
    assert body["message"] == "Insufficient permissions"
    assert body["details"]["role"] == "faculty"
    assert "admin" in body["details"]["required_roles"]


def test_token_for_an_outdated_role_is_rejected(client, seed):
    promoted = seed.user("Pat P", UserRole.hod)
    stale = create_access_token(user_id=promoted.id, role=UserRole.faculty.value)

    response = client.get("/api/timetables", headers=_bearer(stale))

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_inactive_account_is_refused(client, headers_for, seed, db_session):
    retired = seed.user("Rex R", UserRole.admin)
    retired.is_active = False
    db_session.commit()

    response = client.get("/api/timetables", headers=headers_for(retired))

    assert response.status_code == 403
    assert response.json()["message"] == "User account is inactive"


def test_garbage_and_unknown_subject_tokens_are_unauthorized(client):
    assert client.get("/api/timetables", headers=_bearer("not-a-jwt")).status_code == 401
    ghost = create_access_token(user_id="missing-user", role=UserRole.admin.value)
    assert client.get("/api/timetables", headers=_bearer(ghost)).status_code == 401
