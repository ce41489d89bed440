from datetime import date, datetime, time

from pydantic import BaseModel, Field, model_validator

from classsched.models.timetable import TimetableStatus
from classsched.models.timetable_entry import SessionType, Weekday


class TimetableBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    department: str = Field(min_length=1, max_length=200)
    semester: int = Field(ge=1, le=12)
    academic_year: str = Field(min_length=4, max_length=20)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_dates(self) -> "TimetableBase":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TimetableCreate(TimetableBase):
    pass


class TimetableUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    department: str | None = Field(default=None, min_length=1, max_length=200)
    semester: int | None = Field(default=None, ge=1, le=12)
    academic_year: str | None = Field(default=None, min_length=4, max_length=20)
    start_date: date | None = None
    end_date: date | None = None


class TimetableOut(TimetableBase):
    id: str
    status: TimetableStatus
    is_active: bool
    created_by_id: str | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    published_at: datetime | None = None
    last_generated_at: datetime | None = None
    last_unassigned_count: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TimetableEntryBase(BaseModel):
    day: Weekday
    start_time: time
    end_time: time
    subject_id: str = Field(min_length=1, max_length=36)
    faculty_id: str = Field(min_length=1, max_length=36)
    batch_id: str = Field(min_length=1, max_length=36)
    classroom_id: str = Field(min_length=1, max_length=36)
    session_type: SessionType = SessionType.lecture
    is_substitution: bool = False
    original_faculty_id: str | None = Field(default=None, max_length=36)


class TimetableEntryCreate(TimetableEntryBase):
    pass


class TimetableEntryUpdate(BaseModel):
    day: Weekday | None = None
    start_time: time | None = None
    end_time: time | None = None
    subject_id: str | None = Field(default=None, min_length=1, max_length=36)
    faculty_id: str | None = Field(default=None, min_length=1, max_length=36)
    batch_id: str | None = Field(default=None, min_length=1, max_length=36)
    classroom_id: str | None = Field(default=None, min_length=1, max_length=36)
    session_type: SessionType | None = None
    is_substitution: bool | None = None
    original_faculty_id: str | None = Field(default=None, max_length=36)


class TimetableEntryOut(TimetableEntryBase):
    id: str
    timetable_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TimetableDetailOut(TimetableOut):
    entries: list[TimetableEntryOut] = Field(default_factory=list)


class UnplacedUnitOut(BaseModel):
    subject_id: str
    batch_id: str
    session_type: SessionType
    reason: str


class GenerationResultOut(BaseModel):
    timetable_id: str
    status: TimetableStatus
    entries_created: int
    unassigned_count: int
    unassigned: list[UnplacedUnitOut] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    wall_ms: int = 0
