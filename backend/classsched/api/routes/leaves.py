from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from classsched.api.deps import get_current_user, get_db, get_request_notifier, require_roles
from classsched.models.leave_request import LeaveStatus
from classsched.models.user import User, UserRole
from classsched.schemas.leave import LeaveApprovalOut, LeaveRejectRequest, LeaveRequestCreate, LeaveRequestOut
from classsched.services import leave_service
from classsched.services.notifications import Notifier

router = APIRouter()


@router.get("/leaves", response_model=list[LeaveRequestOut])
def list_leave_requests(
    leave_status: LeaveStatus | None = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[LeaveRequestOut]:
    return leave_service.list_leaves(db, actor=current_user, status=leave_status)


@router.get("/leaves/{leave_id}", response_model=LeaveRequestOut)
def get_leave_request(
    leave_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LeaveRequestOut:
    return leave_service.get_leave(db, leave_id, actor=current_user)


@router.post("/leaves", response_model=LeaveRequestOut, status_code=status.HTTP_201_CREATED)
def create_leave_request(
    payload: LeaveRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LeaveRequestOut:
    return leave_service.create_leave(db, payload, actor=current_user)


@router.put("/leaves/{leave_id}/approve", response_model=LeaveApprovalOut)
def approve_leave_request(
    leave_id: str,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.hod)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_request_notifier),
) -> LeaveApprovalOut:
    leave, summary = leave_service.approve_leave(db, leave_id, actor=current_user, notifier=notifier)
    return LeaveApprovalOut(leave=LeaveRequestOut.model_validate(leave), **summary.as_dict())


@router.put("/leaves/{leave_id}/reject", response_model=LeaveRequestOut)
def reject_leave_request(
    leave_id: str,
    payload: LeaveRejectRequest,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.hod)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_request_notifier),
) -> LeaveRequestOut:
    return leave_service.reject_leave(db, leave_id, payload.reason, actor=current_user, notifier=notifier)


@router.put("/leaves/{leave_id}/cancel", response_model=LeaveRequestOut)
def cancel_leave_request(
    leave_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_request_notifier),
) -> LeaveRequestOut:
    return leave_service.cancel_leave(db, leave_id, actor=current_user, notifier=notifier)
