import re
from datetime import date as Date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import BookingKind, BookingStatus

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class BookingBase(BaseModel):
    """
    Base schema for the space, date and length of a booking.

    Shared fields used across booking create and read operations.
    """
    space_id: str = Field(..., min_length=1, max_length=64)
    kind: BookingKind = BookingKind.EVENT
    date: Date
    start_time: Optional[str] = None
    duration: float = Field(..., gt=0)
    owner_label: str = ""
    amount: float = Field(default=0.0, ge=0)


class BookingCreate(BookingBase):
    """
    Schema for submitting a new booking.

    Event bookings must carry an ``HH:MM`` start time; coworking bookings
    must not, since they occupy whole days.
    """

    @field_validator("start_time")
    @classmethod
    def start_time_format(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not TIME_PATTERN.match(value):
            raise ValueError("start_time must be HH:MM (24-hour)")
        return value

    @model_validator(mode="after")
    def start_time_matches_kind(self):
        if self.kind == BookingKind.EVENT and self.start_time is None:
            raise ValueError("start_time is required for event bookings")
        if self.kind == BookingKind.COWORKING and self.start_time is not None:
            raise ValueError("coworking bookings do not take a start_time")
        return self


class BookingStatusUpdate(BaseModel):
    """
    Schema for moving a booking to another lifecycle status.
    """
    status: BookingStatus


class BookingRead(BookingBase):
    """
    Schema returned when reading booking information.

    Extends BookingBase with the identifier, status and creation timestamp.
    """
    id: str
    status: BookingStatus
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TimeSlot(BaseModel):
    """A concrete alternative interval anchored to a calendar date."""
    start: datetime
    end: datetime


class AvailabilitySlot(BaseModel):
    """
    One candidate start in a day's slot listing.

    ``reason`` names the blocking booking when ``available`` is False.
    """
    start: str
    end: str
    available: bool
    reason: Optional[str] = None


class ConflictResult(BaseModel):
    """
    Verdict of a conflict or capacity check.

    ``occupancy`` and ``capacity`` are only filled in by coworking checks.
    """
    has_conflict: bool
    conflicts: List[BookingRead] = Field(default_factory=list)
    suggestions: List[TimeSlot] = Field(default_factory=list)
    message: str
    occupancy: Optional[int] = None
    capacity: Optional[int] = None


class DailyAvailability(BaseModel):
    date: Date
    total_hours: float
    booked_hours: float
    available_hours: float
    utilization_rate: float
    bookings: List[BookingRead] = Field(default_factory=list)


class WeeklyAvailabilityDay(DailyAvailability):
    day_name: str


class ConflictCheckRequest(BaseModel):
    """
    Body of an event-space conflict check.

    Only the types are checked here; the engine owns the semantic checks.
    """
    space_id: str
    date: Date
    start_time: str
    duration_hours: float
    exclude_booking_id: Optional[str] = None


class CoworkingCheckRequest(BaseModel):
    """Body of a coworking capacity check."""
    plan_type: str
    start_date: Date
    duration_days: float
