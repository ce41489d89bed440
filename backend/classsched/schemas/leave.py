from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from classsched.models.leave_request import LeaveStatus


class LeaveRequestCreate(BaseModel):
    start_date: date
    end_date: date
    reason: str = Field(min_length=3, max_length=1000)
    faculty_id: str | None = Field(default=None, max_length=36)

    @model_validator(mode="after")
    def validate_range(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class LeaveRejectRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=1000)


class LeaveRequestOut(BaseModel):
    id: str
    faculty_id: str
    requested_by_id: str | None = None
    start_date: date
    end_date: date
    reason: str
    status: LeaveStatus
    rejection_reason: str | None = None
    reviewed_by_id: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LeaveApprovalOut(BaseModel):
    leave: LeaveRequestOut
    offers_created: int
    entries_affected: int
    candidates_notified: int
    unaddressed: int
