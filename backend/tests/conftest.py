import os

# Point the module-level engine at sqlite before anything reads the settings.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import date, time, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from classsched.api.deps import get_db, get_request_notifier
from classsched.core.security import create_access_token
from classsched.db.base import Base
from classsched.db.transactions import clear_write_locks
from classsched.main import app
from classsched.models import (
    Batch,
    Classroom,
    Faculty,
    FacultySubject,
    LeaveRequest,
    LeaveStatus,
    SessionType,
    Subject,
    Timetable,
    TimetableEntry,
    TimetableStatus,
    User,
    UserRole,
    Weekday,
)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, recipient_contact, template_kind, template_data):
        self.sent.append((recipient_contact, template_kind, dict(template_data)))

    def kinds_for(self, contact):
        return [kind for to, kind, _ in self.sent if to == contact]


def _hhmm(value):
    if isinstance(value, time):
        return value
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def upcoming_monday(weeks_ahead=1):
    today = date.today()
    return today + timedelta(days=(0 - today.weekday()) % 7 + 7 * weeks_ahead)


class Seed:
    """Inserts committed rows straight through the ORM for test setup."""

    def __init__(self, db):
        self.db = db

    def _save(self, record):
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def user(self, name, role, *, department="CSE", email=None):
        return self._save(
            User(
                name=name,
                email=email or f"{name.lower().replace(' ', '.')}@example.com",
                role=role,
                department=department,
            )
        )

    def faculty(self, name, *, department="CSE", with_user=True):
        user = self.user(name, UserRole.faculty, department=department) if with_user else None
        return self._save(
            Faculty(
                user_id=user.id if user is not None else None,
                name=name,
                email=f"{name.lower().replace(' ', '.')}@faculty.example.com",
                department=department,
            )
        )

    def user_for(self, faculty):
        return self.db.get(User, faculty.user_id)

    def subject(self, code, *, department="CSE", semester=3, lecture=3, tutorial=0, practical=0):
        return self._save(
            Subject(
                code=code,
                name=f"Subject {code}",
                department=department,
                semester=semester,
                lecture_hours_per_week=lecture,
                tutorial_hours_per_week=tutorial,
                practical_hours_per_week=practical,
                requires_lab=practical > 0,
            )
        )

    def batch(self, name, *, strength=60, department="CSE", semester=3):
        return self._save(Batch(name=name, department=department, year=2, semester=semester, strength=strength))

    def classroom(self, name, *, capacity=70, is_lab=False):
        return self._save(Classroom(name=name, building="Main", capacity=capacity, is_lab=is_lab))

    def eligibility(self, faculty, subject, preference=5, *, is_active=True):
        return self._save(
            FacultySubject(
                faculty_id=faculty.id,
                subject_id=subject.id,
                preference=preference,
                is_active=is_active,
            )
        )

    def timetable(self, *, name="CSE Sem 3", department="CSE", semester=3, status=TimetableStatus.draft):
        today = date.today()
        return self._save(
            Timetable(
                name=name,
                department=department,
                semester=semester,
                academic_year="2025-26",
                start_date=today - timedelta(days=7),
                end_date=today + timedelta(days=120),
                status=status,
            )
        )

    def entry(
        self,
        timetable,
        *,
        subject,
        faculty,
        batch,
        classroom,
        day="Monday",
        start="10:00",
        end="11:00",
        session_type=SessionType.lecture,
    ):
        return self._save(
            TimetableEntry(
                timetable_id=timetable.id,
                day=Weekday(day),
                start_time=_hhmm(start),
                end_time=_hhmm(end),
                subject_id=subject.id,
                faculty_id=faculty.id,
                batch_id=batch.id,
                classroom_id=classroom.id,
                session_type=session_type,
            )
        )

    def leave(self, faculty, start, end=None, *, status=LeaveStatus.pending, reason="Conference travel"):
        return self._save(
            LeaveRequest(
                faculty_id=faculty.id,
                start_date=start,
                end_date=end or start,
                reason=reason,
                status=status,
            )
        )


def auth_headers(user):
    token = create_access_token(user_id=user.id, role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def session_factory():
    clear_write_locks()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    clear_write_locks()


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def seed(db_session):
    return Seed(db_session)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def client(session_factory, notifier):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_request_notifier] = lambda: notifier

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def headers_for():
    return auth_headers


@pytest.fixture()
def next_monday():
    return upcoming_monday()
