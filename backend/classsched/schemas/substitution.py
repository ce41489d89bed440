from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from classsched.models.substitution_offer import SubstitutionOfferStatus


class SubstitutionRespond(BaseModel):
    decision: Literal["accept", "decline"]
    response_note: str | None = Field(default=None, max_length=1000)


class SubstitutionAssign(BaseModel):
    faculty_id: str = Field(min_length=1, max_length=36)


class SubstitutionOfferOut(BaseModel):
    id: str
    timetable_entry_id: str
    leave_request_id: str | None = None
    original_faculty_id: str
    substitute_faculty_id: str | None = None
    date: date
    status: SubstitutionOfferStatus
    declined_faculty_ids: list[str] = Field(default_factory=list)
    previous_offer_id: str | None = None
    assigned_by_id: str | None = None
    notified_at: datetime | None = None
    responded_at: datetime | None = None
    response_note: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
