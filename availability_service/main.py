import logging
from datetime import date as Date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import require_roles
from .config import settings
from .database import Base, SessionLocal, engine, get_db
from .engine import AvailabilityEngine
from .exceptions import (
    BookingNotFound,
    InvalidRequestError,
    InvalidStatusTransition,
    RepositoryError,
)
from .rate_limiter import booking_rate_limiter
from .repository import BookingRepository, HTTPBookingRepository, SQLBookingRepository

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Availability Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "availability"


def error_response(request: Request, status_code: int, detail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "detail": detail,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return error_response(request, exc.status_code, exc.detail)


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return error_response(request, status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(RepositoryError)
async def repository_error_handler(request: Request, exc: RepositoryError):
    # Unknown availability is an error, never "available".
    logger.error("Availability undetermined for %s: %s", request.url.path, exc)
    return error_response(
        request, status.HTTP_503_SERVICE_UNAVAILABLE, "Could not determine availability"
    )


@app.exception_handler(BookingNotFound)
async def booking_not_found_handler(request: Request, exc: BookingNotFound):
    return error_response(request, status.HTTP_404_NOT_FOUND, "Booking not found")


@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransition):
    return error_response(request, status.HTTP_409_CONFLICT, str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, 500, "Internal server error")


@app.get("/")
def root():
    """
    Health-check endpoint for the Availability service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running"}


viewer_roles = require_roles(
    "admin",
    "staff",
    "member",
    "service_account",  # inter-service availability checks
)

booking_roles = require_roles("admin", "member")

staff_roles = require_roles("admin", "staff")

staff_or_service = require_roles("admin", "staff", "service_account")


def get_repository() -> BookingRepository:
    """
    Build the repository the engine reads bookings from.

    ``BOOKINGS_BACKEND=http`` reads from the remote bookings service,
    anything else from the local bookings table.
    """
    if settings.bookings_backend == "http":
        return HTTPBookingRepository(
            settings.bookings_service_url,
            timeout=settings.bookings_timeout_seconds,
        )
    return SQLBookingRepository(SessionLocal)


def get_engine(repository: BookingRepository = Depends(get_repository)) -> AvailabilityEngine:
    return AvailabilityEngine(repository, settings)


# ---------- Availability checks ----------


@router_v1.post("/availability/conflicts", response_model=schemas.ConflictResult)
async def check_conflicts(
    check: schemas.ConflictCheckRequest,
    availability: AvailabilityEngine = Depends(get_engine),
    _: Dict = Depends(viewer_roles),
):
    """
    Check an event-space request for overlaps and business-hours violations.

    Returns
    -------
    ConflictResult
        Verdict, conflicting bookings and up to three alternative slots.

    Raises
    ------
    HTTPException
        400 on malformed input, 503 when bookings could not be loaded.
    """
    return await availability.check_conflicts(
        check.space_id,
        check.date,
        check.start_time,
        check.duration_hours,
        exclude_booking_id=check.exclude_booking_id,
    )


@router_v1.post("/availability/coworking", response_model=schemas.ConflictResult)
async def check_coworking(
    check: schemas.CoworkingCheckRequest,
    availability: AvailabilityEngine = Depends(get_engine),
    _: Dict = Depends(viewer_roles),
):
    """
    Check the remaining capacity of a coworking plan for a date range.
    """
    return await availability.check_coworking_availability(
        check.plan_type, check.start_date, check.duration_days
    )


@router_v1.get(
    "/availability/{space_id}/slots", response_model=List[schemas.AvailabilitySlot]
)
async def available_slots(
    space_id: str,
    date: Date,
    duration_hours: float = Query(default=1.0),
    availability: AvailabilityEngine = Depends(get_engine),
    _: Dict = Depends(viewer_roles),
):
    """
    List every candidate start for a space on a date, available or not.
    """
    return await availability.get_available_slots(space_id, date, duration_hours)


@router_v1.get(
    "/availability/{space_id}/daily", response_model=schemas.DailyAvailability
)
async def daily_availability(
    space_id: str,
    date: Date,
    availability: AvailabilityEngine = Depends(get_engine),
    _: Dict = Depends(viewer_roles),
):
    return await availability.get_daily_availability(space_id, date)


@router_v1.get(
    "/availability/{space_id}/weekly",
    response_model=List[schemas.WeeklyAvailabilityDay],
)
async def weekly_availability(
    space_id: str,
    start_date: Date,
    availability: AvailabilityEngine = Depends(get_engine),
    _: Dict = Depends(viewer_roles),
):
    return await availability.get_weekly_availability(space_id, start_date)


# ---------- Booking submission (members) ----------


def _persist(db: Session, booking: models.Booking) -> models.Booking:
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@router_v1.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
async def submit_booking(
    booking_in: schemas.BookingCreate,
    db: Session = Depends(get_db),
    availability: AvailabilityEngine = Depends(get_engine),
    claims: Dict = Depends(booking_roles),
):
    """
    Submit a new booking after checking availability.

    Behavior
    --------
    - Event bookings are checked with the conflict check, coworking
      bookings with the capacity check.
    - Any conflict rejects the submission with HTTP 409 and the verdict
      message.
    - A failed check (503) also blocks the submission.
    - Accepted bookings are stored as ``pending`` until payment is verified.

    Returns
    -------
    BookingRead
        The stored booking.
    """
    if booking_in.kind == models.BookingKind.EVENT:
        verdict = await availability.check_conflicts(
            booking_in.space_id,
            booking_in.date,
            booking_in.start_time,
            booking_in.duration,
        )
    else:
        verdict = await availability.check_coworking_availability(
            booking_in.space_id,
            booking_in.date,
            booking_in.duration,
        )

    if verdict.has_conflict:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=verdict.message)

    booking = models.Booking(
        space_id=booking_in.space_id,
        kind=booking_in.kind,
        date=booking_in.date,
        start_time=booking_in.start_time,
        duration=booking_in.duration,
        owner_label=booking_in.owner_label or claims["username"],
        amount=booking_in.amount,
        status=models.BookingStatus.PENDING,
    )
    booking = await run_in_threadpool(_persist, db, booking)
    logger.info("Booking %s submitted for %s on %s", booking.id, booking.space_id, booking.date)
    return booking


# ---------- Bookings read contract (staff / other services) ----------


@router_v1.get("/bookings", response_model=List[schemas.BookingRead])
def list_bookings(
    space_id: Optional[str] = None,
    date: Optional[Date] = None,
    kind: Optional[models.BookingKind] = None,
    before: Optional[Date] = None,
    db: Session = Depends(get_db),
    _: Dict = Depends(staff_or_service),
):
    """
    List bookings with optional filters, cancelled ones included.

    This is the contract HTTPBookingRepository reads from, so one instance
    can serve bookings to another.

    Parameters
    ----------
    space_id : Optional[str]
        Restrict to one space or coworking plan.
    date : Optional[date]
        Restrict to bookings on this day.
    kind : Optional[BookingKind]
        Restrict to coworking or event bookings.
    before : Optional[date]
        Restrict to bookings starting strictly before this day.
    """
    q = db.query(models.Booking)

    if space_id is not None:
        q = q.filter(models.Booking.space_id == space_id)
    if date is not None:
        q = q.filter(models.Booking.date == date)
    if kind is not None:
        q = q.filter(models.Booking.kind == kind)
    if before is not None:
        q = q.filter(models.Booking.date < before)

    return q.order_by(models.Booking.date, models.Booking.start_time).all()


# ---------- Status transitions (payment verification / cancellation) ----------


@router_v1.patch(
    "/bookings/{booking_id}/status",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def update_booking_status(
    booking_id: str,
    update: schemas.BookingStatusUpdate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(staff_roles),
):
    """
    Move a booking along its lifecycle.

    Allowed moves: pending -> confirmed (payment verified),
    confirmed -> completed, and pending/confirmed -> cancelled.

    Raises
    ------
    HTTPException
        404 if the booking does not exist, 409 if the move is not allowed.
    """
    booking = db.query(models.Booking).filter(models.Booking.id == booking_id).first()
    if not booking:
        raise BookingNotFound(booking_id)

    if not models.can_transition(booking.status, update.status):
        raise InvalidStatusTransition(booking.status.value, update.status.value)

    previous = booking.status
    booking.status = update.status
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(
        "Booking %s moved %s -> %s by %s",
        booking.id,
        previous.value,
        booking.status.value,
        claims["username"],
    )
    return booking


app.include_router(router_v1)
