import asyncio
import cProfile
from datetime import date, timedelta

from availability_service import schemas
from availability_service.config import Settings
from availability_service.engine import AvailabilityEngine
from availability_service.repository import InMemoryBookingRepository

SPACES = ["conference-hall", "meeting-room", "training-room"]
FIRST_DAY = date(2024, 2, 1)


def seed_bookings():
    """
    Build a month of two-hour bookings across every space.
    """
    bookings = []
    for offset in range(30):
        day = FIRST_DAY + timedelta(days=offset)
        for space_id in SPACES:
            for hour in (8, 11, 14, 17):
                bookings.append(
                    schemas.BookingRead(
                        id=f"{space_id}-{day.isoformat()}-{hour}",
                        space_id=space_id,
                        kind="event",
                        date=day,
                        start_time=f"{hour:02d}:00",
                        duration=2,
                        status="confirmed",
                        owner_label=f"Member {hour}",
                    )
                )
    return bookings


async def scenario_availability(engine: AvailabilityEngine):
    """
    Run conflict checks and summaries over the seeded month.
    """
    for offset in range(30):
        day = FIRST_DAY + timedelta(days=offset)
        for space_id in SPACES:
            result = await engine.check_conflicts(space_id, day, "09:00", 2)
            if not result.has_conflict:
                raise RuntimeError(f"Expected a conflict for {space_id} on {day}")
            await engine.get_available_slots(space_id, day, 1)
        await engine.get_weekly_availability(SPACES[0], day)


def main():
    engine = AvailabilityEngine(InMemoryBookingRepository(seed_bookings()), Settings())
    asyncio.run(scenario_availability(engine))


if __name__ == "__main__":
    # run cProfile and sort by cumulative time
    cProfile.run("main()", sort="cumtime")
