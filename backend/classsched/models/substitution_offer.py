import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from classsched.db.base import Base


class SubstitutionOfferStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    assigned = "assigned"
    cancelled = "cancelled"


class SubstitutionOffer(Base):
    __tablename__ = "substitution_offers"
    __table_args__ = (
        Index("ix_substitution_offers_entry_date", "timetable_entry_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    timetable_entry_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    leave_request_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    original_faculty_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    substitute_faculty_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[SubstitutionOfferStatus] = mapped_column(
        SAEnum(SubstitutionOfferStatus, name="substitution_offer_status"),
        nullable=False,
        default=SubstitutionOfferStatus.pending,
        index=True,
    )
    declined_faculty_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    previous_offer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    assigned_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
