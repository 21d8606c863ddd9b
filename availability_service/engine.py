"""
Availability and conflict detection for workspace bookings.

The engine works on a snapshot of bookings read from an injected
repository and never writes anything back. All intervals are half-open,
``[start, start + duration)``, so back-to-back bookings do not conflict.
"""
import asyncio
import logging
import math
import re
from datetime import date, datetime, time, timedelta
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from . import schemas
from .config import Settings, settings as default_settings
from .exceptions import InvalidRequestError, RepositoryError
from .models import BookingKind, BookingStatus
from .repository import BookingRepository

logger = logging.getLogger(__name__)

DateLike = Union[date, str]

TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

WEEK_LENGTH = 7


def time_to_minutes(value: str) -> int:
    """
    Convert an ``HH:MM`` 24-hour string to minutes since midnight.

    Raises
    ------
    InvalidRequestError
        If the string is not a valid time of day.
    """
    match = TIME_RE.match(value) if isinstance(value, str) else None
    if match is None:
        raise InvalidRequestError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidRequestError(f"Invalid time {value!r}, expected HH:MM")
    return hours * 60 + minutes


def minutes_to_time(minutes: float) -> str:
    total = int(round(minutes))
    return f"{total // 60:02d}:{total % 60:02d}"


def parse_date(value: DateLike) -> date:
    """Accept a date (or datetime) or an ISO-8601 calendar date string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise InvalidRequestError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def overlaps(start1, end1, start2, end2) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return start1 < end2 and start2 < end1


def _require_positive(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidRequestError(f"{name} must be a number")
    if not math.isfinite(value) or value <= 0:
        raise InvalidRequestError(f"{name} must be greater than zero")
    return float(value)


def _require_identifier(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f"{name} must be a non-empty string")
    return value


class AvailabilityEngine:
    """
    Conflict, capacity and availability calculations over a booking repository.

    The engine keeps no state between calls: every operation reads a fresh
    snapshot from the repository and computes its answer from it.
    Repository failures propagate as RepositoryError.
    """

    def __init__(self, repository: BookingRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or default_settings

    # ---------- helpers ----------

    async def _load_day(self, space_id: str, day: date) -> List[schemas.BookingRead]:
        bookings = await self.repository.list_bookings(space_id, day)
        return [
            b
            for b in bookings
            if b.status != BookingStatus.CANCELLED and b.space_id == space_id and b.date == day
        ]

    def _interval(self, booking: schemas.BookingRead) -> Tuple[float, float]:
        start_time = booking.start_time
        if start_time is None:
            logger.warning(
                "Booking %s has no start time, assuming %s",
                booking.id,
                self.settings.default_start_time,
            )
            start_time = self.settings.default_start_time
        try:
            start = time_to_minutes(start_time)
        except InvalidRequestError as exc:
            raise RepositoryError(f"Booking {booking.id} has a malformed start time") from exc
        return start, start + booking.duration * 60

    def _business_hours_message(self) -> str:
        return (
            f"Booking must be within business hours "
            f"({self.settings.business_start_hour}:00 - {self.settings.business_end_hour}:00)"
        )

    def _enumerate_slots(
        self, bookings: Sequence[schemas.BookingRead], duration_minutes: float
    ) -> List[schemas.AvailabilitySlot]:
        business_start = self.settings.business_start_minutes
        business_end = self.settings.business_end_minutes
        occupied = [(b, *self._interval(b)) for b in bookings]

        slots = []
        start = business_start
        while start < business_end:
            end = start + duration_minutes
            if end > business_end:
                break

            reason = None
            for booking, b_start, b_end in occupied:
                if overlaps(start, end, b_start, b_end):
                    reason = (
                        f"Conflicts with {booking.owner_label}'s booking "
                        f"({minutes_to_time(b_start)}-{minutes_to_time(b_end)})"
                    )
                    break

            slots.append(
                schemas.AvailabilitySlot(
                    start=minutes_to_time(start),
                    end=minutes_to_time(end),
                    available=reason is None,
                    reason=reason,
                )
            )
            start += self.settings.slot_step_minutes

        return slots

    def _summarize(self, day: date, bookings: Sequence[schemas.BookingRead]) -> Dict[str, Any]:
        total_hours = self.settings.business_end_hour - self.settings.business_start_hour
        booked_hours = sum(b.duration for b in bookings)
        # Not clamped: a negative value means overlapping bookings slipped in upstream.
        available_hours = total_hours - booked_hours
        return {
            "date": day,
            "total_hours": total_hours,
            "booked_hours": booked_hours,
            "available_hours": available_hours,
            "utilization_rate": booked_hours / total_hours * 100,
            "bookings": list(bookings),
        }

    # ---------- event spaces ----------

    async def check_conflicts(
        self,
        space_id: str,
        date: DateLike,
        start_time: str,
        duration_hours: float,
        exclude_booking_id: Optional[str] = None,
    ) -> schemas.ConflictResult:
        """
        Check a requested event-space reservation against existing bookings.

        Parameters
        ----------
        space_id : str
            Event space to check.
        date : date or str
            Calendar date of the request.
        start_time : str
            ``HH:MM`` start of the request.
        duration_hours : float
            Length of the request in hours.
        exclude_booking_id : Optional[str]
            Booking to ignore, used when re-checking an edit of that booking.

        Returns
        -------
        ConflictResult
            ``has_conflict`` is True when the request leaves business hours
            or overlaps a non-cancelled booking. On overlap, up to
            ``max_suggestions`` free slots of the same length are offered.

        Raises
        ------
        InvalidRequestError
            On malformed input, before the repository is queried.
        RepositoryError
            If the bookings could not be loaded.
        """
        space_id = _require_identifier(space_id, "space_id")
        day = parse_date(date)
        request_start = time_to_minutes(start_time)
        duration = _require_positive(duration_hours, "duration_hours")
        request_end = request_start + duration * 60

        if (
            request_start < self.settings.business_start_minutes
            or request_end > self.settings.business_end_minutes
        ):
            logger.debug("Request %s %s %s+%sh outside business hours", space_id, day, start_time, duration)
            return schemas.ConflictResult(
                has_conflict=True,
                message=self._business_hours_message(),
            )

        bookings = [b for b in await self._load_day(space_id, day) if b.id != exclude_booking_id]

        conflicts = []
        for booking in bookings:
            b_start, b_end = self._interval(booking)
            if overlaps(request_start, request_end, b_start, b_end):
                conflicts.append(booking)

        suggestions = []
        if conflicts:
            midnight = datetime.combine(day, time())
            for slot in self._enumerate_slots(bookings, duration * 60):
                if len(suggestions) >= self.settings.max_suggestions:
                    break
                if slot.available:
                    slot_start = time_to_minutes(slot.start)
                    suggestions.append(
                        schemas.TimeSlot(
                            start=midnight + timedelta(minutes=slot_start),
                            end=midnight + timedelta(minutes=slot_start + duration * 60),
                        )
                    )
            message = f"Found {len(conflicts)} scheduling conflict(s)"
        else:
            message = "No conflicts found"

        logger.info("Conflict check %s %s %s+%sh: %s", space_id, day, start_time, duration, message)
        return schemas.ConflictResult(
            has_conflict=bool(conflicts),
            conflicts=conflicts,
            suggestions=suggestions,
            message=message,
        )

    async def get_available_slots(
        self, space_id: str, date: DateLike, duration_hours: float
    ) -> List[schemas.AvailabilitySlot]:
        """
        List every candidate start of ``duration_hours`` within business hours.

        Candidates are spaced ``slot_step_minutes`` apart and ordered by start
        time. Blocked candidates carry a reason naming the first overlapping
        booking.
        """
        space_id = _require_identifier(space_id, "space_id")
        day = parse_date(date)
        duration = _require_positive(duration_hours, "duration_hours")

        bookings = await self._load_day(space_id, day)
        return self._enumerate_slots(bookings, duration * 60)

    async def get_daily_availability(
        self, space_id: str, date: DateLike
    ) -> schemas.DailyAvailability:
        """Booked and free hours of one space on one day."""
        space_id = _require_identifier(space_id, "space_id")
        day = parse_date(date)

        bookings = await self._load_day(space_id, day)
        return schemas.DailyAvailability(**self._summarize(day, bookings))

    async def get_weekly_availability(
        self, space_id: str, start_date: DateLike
    ) -> List[schemas.WeeklyAvailabilityDay]:
        """Seven consecutive daily summaries starting at ``start_date``."""
        space_id = _require_identifier(space_id, "space_id")
        first_day = parse_date(start_date)
        days = [first_day + timedelta(days=offset) for offset in range(WEEK_LENGTH)]

        per_day = await asyncio.gather(*(self._load_day(space_id, day) for day in days))

        return [
            schemas.WeeklyAvailabilityDay(
                day_name=WEEKDAY_NAMES[day.weekday()],
                **self._summarize(day, bookings),
            )
            for day, bookings in zip(days, per_day)
        ]

    # ---------- coworking ----------

    async def check_coworking_availability(
        self, plan_type: str, start_date: DateLike, duration_days: float
    ) -> schemas.ConflictResult:
        """
        Check whether a coworking plan has a free seat for a date range.

        Occupancy counts the non-cancelled coworking bookings of the plan
        whose ``[date, date + duration)`` overlaps the requested range. The
        plan is full when occupancy reaches its capacity. No alternative
        dates are suggested.
        """
        plan_type = _require_identifier(plan_type, "plan_type")
        first_day = parse_date(start_date)
        days = _require_positive(duration_days, "duration_days")

        request_start = datetime.combine(first_day, time())
        try:
            request_end = request_start + timedelta(days=days)
            until = request_end.date()
            if request_end.time() != time():
                until += timedelta(days=1)
        except OverflowError:
            raise InvalidRequestError("duration_days is too large") from None

        capacity = self.settings.coworking_capacities.get(plan_type)
        if capacity is None:
            capacity = self.settings.default_coworking_capacity
            logger.warning(
                "Unknown coworking plan %r, using default capacity %d", plan_type, capacity
            )

        bookings = await self.repository.list_coworking_bookings(plan_type, until)
        occupancy = 0
        for booking in bookings:
            if (
                booking.status == BookingStatus.CANCELLED
                or booking.kind != BookingKind.COWORKING
                or booking.space_id != plan_type
            ):
                continue
            b_start = datetime.combine(booking.date, time())
            try:
                b_end = b_start + timedelta(days=booking.duration)
            except OverflowError:
                # runs past the calendar; treat as open-ended
                b_end = datetime.max
            if overlaps(request_start, request_end, b_start, b_end):
                occupancy += 1

        has_conflict = occupancy >= capacity
        if has_conflict:
            message = (
                f"Coworking space at capacity ({occupancy}/{capacity}). "
                "Please choose different dates."
            )
        else:
            message = f"Available ({occupancy}/{capacity} spots taken)"

        logger.info("Coworking check %s %s+%sd: %s", plan_type, first_day, days, message)
        return schemas.ConflictResult(
            has_conflict=has_conflict,
            message=message,
            occupancy=occupancy,
            capacity=capacity,
        )
