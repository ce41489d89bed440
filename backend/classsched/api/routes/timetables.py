from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from classsched.api.deps import get_current_user, get_db, require_roles
from classsched.models.timetable import TimetableStatus
from classsched.models.user import User, UserRole
from classsched.schemas.timetable import (
    GenerationResultOut,
    TimetableCreate,
    TimetableDetailOut,
    TimetableEntryCreate,
    TimetableEntryOut,
    TimetableEntryUpdate,
    TimetableOut,
    TimetableUpdate,
)
from classsched.services import timetable_service

router = APIRouter()

MANAGER_ROLES = (UserRole.admin, UserRole.hod)


def _detail(db: Session, timetable_id: str) -> TimetableDetailOut:
    timetable = timetable_service.get_timetable(db, timetable_id)
    entries = timetable_service.list_entries(db, timetable.id)
    return TimetableDetailOut.model_validate(
        {
            **TimetableOut.model_validate(timetable).model_dump(),
            "entries": [TimetableEntryOut.model_validate(item) for item in entries],
        }
    )


@router.get("/timetables", response_model=list[TimetableOut])
def list_timetables(
    department: str | None = Query(default=None),
    semester: int | None = Query(default=None, ge=1, le=12),
    timetable_status: TimetableStatus | None = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[TimetableOut]:
    return timetable_service.list_timetables(db, department=department, semester=semester, status=timetable_status)


@router.post("/timetables", response_model=TimetableOut, status_code=status.HTTP_201_CREATED)
def create_timetable(
    payload: TimetableCreate,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> TimetableOut:
    return timetable_service.create_timetable(db, payload, actor=current_user)


@router.get("/timetables/{timetable_id}", response_model=TimetableDetailOut)
def get_timetable(
    timetable_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TimetableDetailOut:
    return _detail(db, timetable_id)


@router.put("/timetables/{timetable_id}", response_model=TimetableOut)
def update_timetable(
    timetable_id: str,
    payload: TimetableUpdate,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> TimetableOut:
    return timetable_service.update_timetable(db, timetable_id, payload, actor=current_user)


@router.delete("/timetables/{timetable_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_timetable(
    timetable_id: str,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> None:
    timetable_service.deactivate_timetable(db, timetable_id, actor=current_user)


@router.post("/timetables/{timetable_id}/generate", response_model=GenerationResultOut)
def generate_timetable(
    timetable_id: str,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> GenerationResultOut:
    summary = timetable_service.generate_timetable(db, timetable_id, actor=current_user)
    return GenerationResultOut(
        timetable_id=summary.timetable_id,
        status=summary.status,
        entries_created=summary.entries_created,
        unassigned_count=summary.unassigned_count,
        unassigned=summary.unassigned,
        warnings=summary.warnings,
        wall_ms=summary.wall_ms,
    )


def _transition(action: str):
    def endpoint(
        timetable_id: str,
        current_user: User = Depends(require_roles(*MANAGER_ROLES)),
        db: Session = Depends(get_db),
    ) -> TimetableOut:
        return timetable_service.transition_timetable(db, timetable_id, action, actor=current_user)

    endpoint.__name__ = f"{action}_timetable"
    return endpoint


for _action in ("submit", "reopen", "approve", "publish"):
    router.add_api_route(
        f"/timetables/{{timetable_id}}/{_action}",
        _transition(_action),
        methods=["POST"],
        response_model=TimetableOut,
    )


@router.post(
    "/timetables/{timetable_id}/entries",
    response_model=TimetableEntryOut,
    status_code=status.HTTP_201_CREATED,
)
def add_entry(
    timetable_id: str,
    payload: TimetableEntryCreate,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> TimetableEntryOut:
    return timetable_service.add_entry(db, timetable_id, payload, actor=current_user)


@router.put("/timetables/{timetable_id}/entries/{entry_id}", response_model=TimetableEntryOut)
def update_entry(
    timetable_id: str,
    entry_id: str,
    payload: TimetableEntryUpdate,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> TimetableEntryOut:
    return timetable_service.update_entry(db, timetable_id, entry_id, payload, actor=current_user)


@router.delete("/timetables/{timetable_id}/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry(
    timetable_id: str,
    entry_id: str,
    current_user: User = Depends(require_roles(*MANAGER_ROLES)),
    db: Session = Depends(get_db),
) -> None:
    timetable_service.delete_entry(db, timetable_id, entry_id, actor=current_user)
