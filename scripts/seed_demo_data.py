"""Seed a small CSE department and print bearer tokens for the demo accounts.

Run:
  PYTHONPATH=backend python scripts/seed_demo_data.py
"""

from __future__ import annotations

from datetime import date, timedelta
import os
from typing import Iterable

from sqlalchemy import select

from classsched.core.security import create_access_token
from classsched.db.session import SessionLocal
from classsched.models.batch import Batch
from classsched.models.classroom import Classroom
from classsched.models.faculty import Faculty
from classsched.models.faculty_subject import FacultySubject
from classsched.models.subject import Subject
from classsched.models.timetable import Timetable, TimetableStatus
from classsched.models.user import User, UserRole

DEPARTMENT = "CSE"
SEMESTER = 3
EMAIL_DOMAIN = os.getenv("DEMO_EMAIL_DOMAIN", "classsched.example.com")

DEMO_STAFF = [
    ("Demo Admin", UserRole.admin),
    ("Demo Head", UserRole.hod),
]
DEMO_FACULTY = [
    # name, {subject code: preference}
    ("Anita Rao", {"DS101": 9, "ALG201": 6}),
    ("Bharat Iyer", {"DS101": 4, "DBS210": 8}),
    ("Chitra Menon", {"ALG201": 9, "NET220": 7}),
    ("Dev Nair", {"DBS210": 6, "NET220": 8, "MTH230": 5}),
    ("Esha Pillai", {"MTH230": 10, "DS101": 5}),
]
DEMO_SUBJECTS = [
    # code, name, lecture, tutorial, practical
    ("DS101", "Data Structures", 3, 1, 2),
    ("ALG201", "Design of Algorithms", 3, 1, 0),
    ("DBS210", "Database Systems", 3, 0, 2),
    ("NET220", "Computer Networks", 3, 0, 2),
    ("MTH230", "Discrete Mathematics", 3, 1, 0),
]
DEMO_BATCHES = [("CS-2A", 60), ("CS-2B", 55), ("CS-2C", 38)]
DEMO_CLASSROOMS = [
    # name, capacity, is_lab
    ("Room 101", 70, False),
    ("Room 102", 60, False),
    ("Room 201", 40, False),
    ("Lab 1", 65, True),
    ("Lab 2", 40, True),
]


def _email_for(name: str) -> str:
    return f"{name.lower().replace(' ', '.')}@{EMAIL_DOMAIN}"


def _upsert_user(session, *, name: str, role: UserRole) -> User:
    email = _email_for(name)
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        user = User(name=name, email=email, role=role, department=DEPARTMENT)
        session.add(user)
    else:
        user.role = role
        user.is_active = True
    session.flush()
    return user


def _upsert_faculty(session, *, name: str) -> Faculty:
    user = _upsert_user(session, name=name, role=UserRole.faculty)
    faculty = session.execute(select(Faculty).where(Faculty.email == user.email)).scalar_one_or_none()
    if faculty is None:
        faculty = Faculty(user_id=user.id, name=name, email=user.email, department=DEPARTMENT)
        session.add(faculty)
    else:
        faculty.user_id = user.id
        faculty.is_active = True
    session.flush()
    return faculty


def _upsert_subjects(session) -> dict[str, Subject]:
    subjects: dict[str, Subject] = {}
    for code, name, lecture, tutorial, practical in DEMO_SUBJECTS:
        subject = session.execute(select(Subject).where(Subject.code == code)).scalar_one_or_none()
        if subject is None:
            subject = Subject(code=code, name=name, department=DEPARTMENT, semester=SEMESTER)
            session.add(subject)
        subject.lecture_hours_per_week = lecture
        subject.tutorial_hours_per_week = tutorial
        subject.practical_hours_per_week = practical
        subject.requires_lab = practical > 0
        subjects[code] = subject
    session.flush()
    return subjects


def _upsert_rooms_and_batches(session) -> None:
    for name, strength in DEMO_BATCHES:
        batch = session.execute(select(Batch).where(Batch.name == name)).scalar_one_or_none()
        if batch is None:
            session.add(Batch(name=name, department=DEPARTMENT, year=2, semester=SEMESTER, strength=strength))
    for name, capacity, is_lab in DEMO_CLASSROOMS:
        room = session.execute(select(Classroom).where(Classroom.name == name)).scalar_one_or_none()
        if room is None:
            session.add(Classroom(name=name, building="Main Block", capacity=capacity, is_lab=is_lab))
    session.flush()


def _link_eligibility(session, faculty: Faculty, preferences: dict[str, int], subjects: dict[str, Subject]) -> None:
    for code, preference in preferences.items():
        subject = subjects[code]
        link = session.execute(
            select(FacultySubject).where(
                FacultySubject.faculty_id == faculty.id,
                FacultySubject.subject_id == subject.id,
            )
        ).scalar_one_or_none()
        if link is None:
            session.add(FacultySubject(faculty_id=faculty.id, subject_id=subject.id, preference=preference))
        else:
            link.preference = preference
            link.is_active = True


def _ensure_draft_timetable(session, admin: User) -> Timetable:
    name = f"{DEPARTMENT} Semester {SEMESTER}"
    timetable = session.execute(
        select(Timetable).where(Timetable.name == name, Timetable.is_active.is_(True))
    ).scalar_one_or_none()
    if timetable is None:
        today = date.today()
        timetable = Timetable(
            name=name,
            department=DEPARTMENT,
            semester=SEMESTER,
            academic_year=f"{today.year}-{str(today.year + 1)[-2:]}",
            start_date=today,
            end_date=today + timedelta(weeks=16),
            status=TimetableStatus.draft,
            created_by_id=admin.id,
        )
        session.add(timetable)
        session.flush()
    return timetable


def _print_tokens(items: Iterable[User]) -> None:
    print("\nDemo accounts ready (use as 'Authorization: Bearer <token>'):")
    for user in items:
        token = create_access_token(user_id=user.id, role=user.role.value)
        print(f"  - {user.name} | {user.email} | role={user.role.value}\n    {token}")


def main() -> None:
    with SessionLocal() as session:
        staff = [_upsert_user(session, name=name, role=role) for name, role in DEMO_STAFF]
        subjects = _upsert_subjects(session)
        _upsert_rooms_and_batches(session)
        faculty_users = []
        for name, preferences in DEMO_FACULTY:
            faculty = _upsert_faculty(session, name=name)
            _link_eligibility(session, faculty, preferences, subjects)
            faculty_users.append(session.get(User, faculty.user_id))
        timetable = _ensure_draft_timetable(session, staff[0])
        session.commit()

        print(f"Seeded department {DEPARTMENT} semester {SEMESTER}; draft timetable id={timetable.id}")
        print(f"Generate it with: POST /api/timetables/{timetable.id}/generate")
        _print_tokens([*staff, *faculty_users])


if __name__ == "__main__":
    main()
