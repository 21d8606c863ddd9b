import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, Date, DateTime, Enum, Float, String

from .database import Base


class BookingKind(str, PyEnum):
    """
    Kind of space a booking holds.

    Values
    ------
    coworking
        Date-range seat on a coworking plan; duration counts days.
    event
        Hourly reservation of an event venue; duration counts hours.
    """
    COWORKING = "coworking"
    EVENT = "event"


class BookingStatus(str, PyEnum):
    """
    Enumeration of possible booking statuses.

    Values
    ------
    pending
        Booking has been submitted and awaits payment verification.
    confirmed
        Payment was verified; the booking holds the space.
    completed
        The booked period is over.
    cancelled
        Booking has been cancelled and should not block the space.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def can_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def new_booking_id() -> str:
    return f"BK-{uuid.uuid4().hex[:12].upper()}"


class Booking(Base):
    """
    SQLAlchemy model representing a workspace booking.

    Attributes
    ----------
    id : str
        Opaque primary key.
    space_id : str
        Event space identifier, or plan type for coworking bookings.
    kind : BookingKind
        coworking or event.
    date : date
        First (or only) day the booking occupies.
    start_time : str
        ``HH:MM`` start for event bookings; NULL for coworking.
    duration : float
        Hours for event bookings, days for coworking bookings.
    status : BookingStatus
        Current lifecycle status.
    owner_label : str
        Display name of the booking holder.
    amount : float
        Price charged for the booking.
    created_at : datetime
        Timestamp when the booking was created.
    """
    __tablename__ = "bookings"

    id = Column(String(32), primary_key=True, default=new_booking_id)
    space_id = Column(String(64), index=True, nullable=False)
    kind = Column(Enum(BookingKind), nullable=False, default=BookingKind.EVENT)
    date = Column(Date, index=True, nullable=False)
    start_time = Column(String(5), nullable=True)
    duration = Column(Float, nullable=False)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    owner_label = Column(String(120), nullable=False, default="")
    amount = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)
