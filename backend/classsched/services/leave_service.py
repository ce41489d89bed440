from __future__ import annotations

from datetime import date, datetime, timezone
import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from classsched.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from classsched.db.transactions import run_in_transaction
from classsched.models.faculty import Faculty
from classsched.models.leave_request import LeaveRequest, LeaveStatus
from classsched.models.substitution_offer import SubstitutionOffer, SubstitutionOfferStatus
from classsched.models.user import User, UserRole
from classsched.schemas.leave import LeaveRequestCreate
from classsched.services.audit import ActivityAction, log_activity
from classsched.services.notifications import NotificationTemplate, Notifier
from classsched.services.substitution import SubstitutionCascadeResolver, SubstitutionDispatchSummary

logger = logging.getLogger(__name__)

REVIEWER_ROLES = frozenset({UserRole.admin, UserRole.hod})
# Leave in these states still blocks a new overlapping request.
OPEN_LEAVE_STATUSES = frozenset({LeaveStatus.pending, LeaveStatus.approved})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def faculty_for_user(db: Session, user: User) -> Faculty | None:
    return db.execute(select(Faculty).where(Faculty.user_id == user.id)).scalar_one_or_none()


def _require_linked_faculty(db: Session, user: User) -> Faculty:
    faculty = faculty_for_user(db, user)
    if faculty is None:
        raise PermissionDeniedError("No faculty profile is linked to this account")
    return faculty


def _lock_leave(db: Session, leave_id: str) -> LeaveRequest:
    leave = db.execute(
        select(LeaveRequest).where(LeaveRequest.id == leave_id).with_for_update()
    ).scalar_one_or_none()
    if leave is None:
        raise NotFoundError("LeaveRequest", leave_id)
    return leave


def _notify_safely(notifier: Notifier, contact: str | None, kind: NotificationTemplate, data: dict) -> None:
    if not contact:
        return
    try:
        notifier.notify(contact, kind, data)
    except Exception:
        logger.warning("Notification dispatch failed | to=%s | kind=%s", contact, kind.value, exc_info=True)


def list_leaves(db: Session, *, actor: User, status: LeaveStatus | None = None) -> list[LeaveRequest]:
    query = select(LeaveRequest)
    if actor.role not in REVIEWER_ROLES:
        faculty = faculty_for_user(db, actor)
        if faculty is None:
            return []
        query = query.where(LeaveRequest.faculty_id == faculty.id)
    if status is not None:
        query = query.where(LeaveRequest.status == status)
    query = query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
    return list(db.execute(query).scalars())


def get_leave(db: Session, leave_id: str, *, actor: User) -> LeaveRequest:
    """Fetch one leave request; faculty only see their own, anything else reads as missing."""
    leave = db.get(LeaveRequest, leave_id)
    if leave is None:
        raise NotFoundError("LeaveRequest", leave_id)
    if actor.role not in REVIEWER_ROLES:
        faculty = faculty_for_user(db, actor)
        if faculty is None or leave.faculty_id != faculty.id:
            raise NotFoundError("LeaveRequest", leave_id)
    return leave


def create_leave(db: Session, payload: LeaveRequestCreate, *, actor: User) -> LeaveRequest:
    if actor.role in REVIEWER_ROLES and payload.faculty_id:
        faculty = db.get(Faculty, payload.faculty_id)
        if faculty is None:
            raise NotFoundError("Faculty", payload.faculty_id)
    else:
        faculty = _require_linked_faculty(db, actor)
        if payload.faculty_id and payload.faculty_id != faculty.id:
            raise PermissionDeniedError("Faculty can only request leave for themselves")

    if payload.start_date < _today():
        raise ValidationError("Leave cannot start in the past", details={"start_date": payload.start_date.isoformat()})

    def _run() -> LeaveRequest:
        overlapping = list(
            db.execute(
                select(LeaveRequest).where(
                    LeaveRequest.faculty_id == faculty.id,
                    LeaveRequest.status.in_(list(OPEN_LEAVE_STATUSES)),
                    LeaveRequest.start_date <= payload.end_date,
                    LeaveRequest.end_date >= payload.start_date,
                )
            ).scalars()
        )
        if overlapping:
            raise ConflictError(
                "Leave overlaps an existing request",
                conflicts=[
                    {
                        "leave_id": item.id,
                        "start_date": item.start_date.isoformat(),
                        "end_date": item.end_date.isoformat(),
                        "status": item.status.value,
                    }
                    for item in overlapping
                ],
            )
        leave = LeaveRequest(
            faculty_id=faculty.id,
            requested_by_id=actor.id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            reason=payload.reason.strip(),
            status=LeaveStatus.pending,
        )
        db.add(leave)
        db.flush()
        log_activity(
            db,
            user=actor,
            action=ActivityAction.leave_create,
            entity_id=leave.id,
            details={"start_date": leave.start_date.isoformat(), "end_date": leave.end_date.isoformat()},
        )
        return leave

    leave = run_in_transaction(db, _run)
    db.refresh(leave)
    return leave


def approve_leave(
    db: Session,
    leave_id: str,
    *,
    actor: User,
    notifier: Notifier,
) -> tuple[LeaveRequest, SubstitutionDispatchSummary]:
    resolver = SubstitutionCascadeResolver(db, notifier)

    def _run() -> tuple[LeaveRequest, SubstitutionDispatchSummary]:
        leave = _lock_leave(db, leave_id)
        if leave.status != LeaveStatus.pending:
            raise StateError(f"Leave request is already {leave.status.value}")
        leave.status = LeaveStatus.approved
        leave.reviewed_by_id = actor.id
        leave.reviewed_at = _utc_now()
        db.flush()
        summary = resolver.on_leave_approved(leave, actor=actor)
        log_activity(
            db,
            user=actor,
            action=ActivityAction.leave_approve,
            entity_id=leave.id,
            details=summary.as_dict(),
        )
        return leave, summary

    try:
        leave, summary = run_in_transaction(db, _run)
    except Exception:
        resolver.discard_notifications()
        raise

    resolver.dispatch_notifications()
    faculty = db.get(Faculty, leave.faculty_id)
    _notify_safely(
        notifier,
        faculty.email if faculty else None,
        NotificationTemplate.leave_approved,
        {
            "start_date": leave.start_date.isoformat(),
            "end_date": leave.end_date.isoformat(),
            "offers_created": summary.offers_created,
        },
    )
    db.refresh(leave)
    return leave, summary


def _withdraw_leave(
    db: Session,
    leave_id: str,
    *,
    actor: User,
    notifier: Notifier,
    target: LeaveStatus,
    reason: str,
) -> LeaveRequest:
    resolver = SubstitutionCascadeResolver(db, notifier)

    def _run() -> tuple[LeaveRequest, int]:
        leave = _lock_leave(db, leave_id)
        if leave.status not in OPEN_LEAVE_STATUSES:
            raise StateError(f"Leave request is already {leave.status.value}")
        if target == LeaveStatus.cancelled and actor.role not in REVIEWER_ROLES:
            faculty = faculty_for_user(db, actor)
            if faculty is None or faculty.id != leave.faculty_id:
                raise PermissionDeniedError("Only the requesting faculty or a reviewer can cancel this leave")

        previous = leave.status
        leave.status = target
        if target == LeaveStatus.rejected:
            leave.rejection_reason = reason
            leave.reviewed_by_id = actor.id
            leave.reviewed_at = _utc_now()
        cancelled = resolver.cancel_for_leave(leave, reason)
        log_activity(
            db,
            user=actor,
            action=ActivityAction.leave_reject if target == LeaveStatus.rejected else ActivityAction.leave_cancel,
            entity_id=leave.id,
            details={"from": previous.value, "offers_cancelled": cancelled},
        )
        return leave, cancelled

    leave, cancelled = run_in_transaction(db, _run)
    logger.info(
        "LEAVE WITHDRAWN | leave_id=%s | status=%s | offers_cancelled=%s",
        leave.id,
        target.value,
        cancelled,
    )
    if target == LeaveStatus.rejected:
        faculty = db.get(Faculty, leave.faculty_id)
        _notify_safely(
            notifier,
            faculty.email if faculty else None,
            NotificationTemplate.leave_rejected,
            {
                "start_date": leave.start_date.isoformat(),
                "end_date": leave.end_date.isoformat(),
                "rejection_reason": reason,
            },
        )
    db.refresh(leave)
    return leave


def reject_leave(db: Session, leave_id: str, reason: str, *, actor: User, notifier: Notifier) -> LeaveRequest:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")
    return _withdraw_leave(db, leave_id, actor=actor, notifier=notifier, target=LeaveStatus.rejected, reason=reason)


def cancel_leave(db: Session, leave_id: str, *, actor: User, notifier: Notifier) -> LeaveRequest:
    return _withdraw_leave(
        db,
        leave_id,
        actor=actor,
        notifier=notifier,
        target=LeaveStatus.cancelled,
        reason="Leave request cancelled",
    )


def list_offers(
    db: Session,
    *,
    actor: User,
    status: SubstitutionOfferStatus | None = None,
    leave_id: str | None = None,
) -> list[SubstitutionOffer]:
    query = select(SubstitutionOffer)
    if actor.role not in REVIEWER_ROLES:
        faculty = faculty_for_user(db, actor)
        if faculty is None:
            return []
        query = query.where(
            or_(
                SubstitutionOffer.substitute_faculty_id == faculty.id,
                SubstitutionOffer.substitute_faculty_id.is_(None),
            )
        )
    if leave_id:
        query = query.where(SubstitutionOffer.leave_request_id == leave_id)
    if status is not None:
        query = query.where(SubstitutionOffer.status == status)
    query = query.order_by(SubstitutionOffer.date, SubstitutionOffer.created_at)
    return list(db.execute(query).scalars())


def get_offer(db: Session, offer_id: str) -> SubstitutionOffer:
    offer = db.get(SubstitutionOffer, offer_id)
    if offer is None:
        raise NotFoundError("SubstitutionOffer", offer_id)
    return offer


def respond_to_offer(
    db: Session,
    offer_id: str,
    *,
    decision: str,
    actor: User,
    notifier: Notifier,
    note: str | None = None,
) -> SubstitutionOffer:
    faculty = _require_linked_faculty(db, actor)
    resolver = SubstitutionCascadeResolver(db, notifier)

    def _run() -> SubstitutionOffer:
        if decision == "accept":
            return resolver.accept(offer_id, faculty.id, actor=actor)
        if decision == "decline":
            return resolver.decline(offer_id, faculty.id, note=note, actor=actor)
        raise ValidationError(f"Unknown decision '{decision}'")

    try:
        offer = run_in_transaction(db, _run)
    except Exception:
        resolver.discard_notifications()
        raise
    resolver.dispatch_notifications()
    db.refresh(offer)
    return offer


def assign_substitute(
    db: Session,
    offer_id: str,
    faculty_id: str,
    *,
    actor: User,
    notifier: Notifier,
) -> SubstitutionOffer:
    resolver = SubstitutionCascadeResolver(db, notifier)
    try:
        offer = run_in_transaction(
            db,
            lambda: resolver.assign(offer_id, faculty_id, acting_role=actor.role, actor=actor),
        )
    except Exception:
        resolver.discard_notifications()
        raise
    resolver.dispatch_notifications()
    db.refresh(offer)
    return offer
