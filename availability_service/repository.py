import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Iterable, List, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import make_service_account_token
from .circuit_breaker import CircuitBreaker, bookings_circuit_breaker
from .exceptions import RepositoryError

logger = logging.getLogger(__name__)


class BookingRepository(ABC):
    """
    Read-only source of bookings consumed by the availability engine.

    Implementations return cancelled bookings too; filtering them out is
    the engine's job. Any failure to load must raise RepositoryError
    rather than return an empty list.
    """

    @abstractmethod
    async def list_bookings(self, space_id: str, day: date) -> List[schemas.BookingRead]:
        """All bookings of ``space_id`` on ``day``, any status."""

    @abstractmethod
    async def list_coworking_bookings(
        self, plan_type: str, until: date
    ) -> List[schemas.BookingRead]:
        """All coworking bookings of ``plan_type`` starting before ``until``."""


class SQLBookingRepository(BookingRepository):
    """
    Repository backed by the local bookings table.

    Each lookup opens its own session and runs in the threadpool so the
    event loop is never blocked on the database driver.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def list_bookings(self, space_id: str, day: date) -> List[schemas.BookingRead]:
        return await run_in_threadpool(self._query, space_id=space_id, day=day)

    async def list_coworking_bookings(
        self, plan_type: str, until: date
    ) -> List[schemas.BookingRead]:
        return await run_in_threadpool(self._query, space_id=plan_type, until=until)

    def _query(
        self,
        space_id: str,
        day: Optional[date] = None,
        until: Optional[date] = None,
    ) -> List[schemas.BookingRead]:
        db = self.session_factory()
        try:
            q = db.query(models.Booking).filter(models.Booking.space_id == space_id)
            if day is not None:
                q = q.filter(models.Booking.date == day)
            if until is not None:
                q = (
                    q.filter(models.Booking.kind == models.BookingKind.COWORKING)
                    .filter(models.Booking.date < until)
                )
            rows = q.order_by(models.Booking.date, models.Booking.start_time).all()
            return [schemas.BookingRead.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("Bookings lookup failed for %s: %s", space_id, exc)
            raise RepositoryError("Bookings database is unavailable") from exc
        finally:
            db.close()


class HTTPBookingRepository(BookingRepository):
    """
    Repository that asks the remote bookings service over HTTP.

    Calls go through a circuit breaker; an open circuit, a transport error
    or a non-200 answer all raise RepositoryError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        breaker: CircuitBreaker = bookings_circuit_breaker,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.breaker = breaker
        self.transport = transport

    async def list_bookings(self, space_id: str, day: date) -> List[schemas.BookingRead]:
        return await self._fetch({"space_id": space_id, "date": day.isoformat()})

    async def list_coworking_bookings(
        self, plan_type: str, until: date
    ) -> List[schemas.BookingRead]:
        return await self._fetch(
            {"space_id": plan_type, "kind": "coworking", "before": until.isoformat()}
        )

    async def _fetch(self, params: dict) -> List[schemas.BookingRead]:
        if not self.breaker.allow_request():
            raise RepositoryError("Bookings service temporarily unavailable (circuit open)")

        headers = {"Authorization": f"Bearer {make_service_account_token()}"}

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.get("/api/v1/bookings", params=params, headers=headers)
        except httpx.RequestError as exc:
            self.breaker.record_failure()
            logger.error("Failed to contact bookings service: %s", exc)
            raise RepositoryError("Failed to contact bookings service") from exc

        if resp.status_code != 200:
            self.breaker.record_failure()
            logger.error("Bookings service answered %s for %s", resp.status_code, params)
            raise RepositoryError("Bookings service returned an error")

        try:
            bookings = [schemas.BookingRead.model_validate(item) for item in resp.json()]
        except (ValueError, ValidationError) as exc:
            self.breaker.record_failure()
            raise RepositoryError("Bookings service returned malformed data") from exc

        self.breaker.record_success()
        return bookings


class InMemoryBookingRepository(BookingRepository):
    """
    Repository over a fixed list of bookings, for fixtures and profiling.
    """

    def __init__(self, bookings: Iterable[schemas.BookingRead] = ()):
        self.bookings = list(bookings)

    async def list_bookings(self, space_id: str, day: date) -> List[schemas.BookingRead]:
        return [b for b in self.bookings if b.space_id == space_id and b.date == day]

    async def list_coworking_bookings(
        self, plan_type: str, until: date
    ) -> List[schemas.BookingRead]:
        return [
            b
            for b in self.bookings
            if b.kind == models.BookingKind.COWORKING
            and b.space_id == plan_type
            and b.date < until
        ]
