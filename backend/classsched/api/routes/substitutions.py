from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from classsched.api.deps import get_current_user, get_db, get_request_notifier, require_roles
from classsched.core.exceptions import NotFoundError
from classsched.models.substitution_offer import SubstitutionOfferStatus
from classsched.models.user import User, UserRole
from classsched.schemas.substitution import SubstitutionAssign, SubstitutionOfferOut, SubstitutionRespond
from classsched.services import leave_service
from classsched.services.notifications import Notifier

router = APIRouter()


@router.get("/substitutions", response_model=list[SubstitutionOfferOut])
def list_substitution_offers(
    offer_status: SubstitutionOfferStatus | None = Query(default=None, alias="status"),
    leave_id: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[SubstitutionOfferOut]:
    return leave_service.list_offers(db, actor=current_user, status=offer_status, leave_id=leave_id)


@router.get("/substitutions/{offer_id}", response_model=SubstitutionOfferOut)
def get_substitution_offer(
    offer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SubstitutionOfferOut:
    offer = leave_service.get_offer(db, offer_id)
    if current_user.role not in leave_service.REVIEWER_ROLES:
        faculty = leave_service.faculty_for_user(db, current_user)
        visible = faculty is not None and offer.substitute_faculty_id in {None, faculty.id}
        if not visible:
            raise NotFoundError("SubstitutionOffer", offer_id)
    return offer


@router.post("/substitutions/{offer_id}/respond", response_model=SubstitutionOfferOut)
def respond_to_substitution_offer(
    offer_id: str,
    payload: SubstitutionRespond,
    current_user: User = Depends(require_roles(UserRole.faculty)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_request_notifier),
) -> SubstitutionOfferOut:
    return leave_service.respond_to_offer(
        db,
        offer_id,
        decision=payload.decision,
        actor=current_user,
        notifier=notifier,
        note=payload.response_note,
    )


@router.put("/substitutions/{offer_id}/assign", response_model=SubstitutionOfferOut)
def assign_substitute(
    offer_id: str,
    payload: SubstitutionAssign,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.hod)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_request_notifier),
) -> SubstitutionOfferOut:
    return leave_service.assign_substitute(db, offer_id, payload.faculty_id, actor=current_user, notifier=notifier)
