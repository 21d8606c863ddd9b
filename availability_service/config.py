import os
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_COWORKING_CAPACITIES = {
    "day-pass": 50,
    "flex-pass": 30,
    "dedicated": 10,
}

TIME_OF_DAY_RE = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


def parse_capacities(raw: Optional[str]) -> Dict[str, int]:
    """
    Parse a ``plan=limit,plan=limit`` string into a capacity table.

    An empty or missing value yields the built-in defaults.
    """
    if not raw:
        return dict(DEFAULT_COWORKING_CAPACITIES)

    capacities: Dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        plan, sep, limit = item.partition("=")
        if not sep or not plan.strip():
            raise ValueError(f"Invalid coworking capacity entry: {item!r}")
        capacity = int(limit)
        if capacity <= 0:
            raise ValueError(f"Coworking capacity must be positive: {item!r}")
        capacities[plan.strip()] = capacity
    return capacities


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration for the Availability service.

    Attributes
    ----------
    database_url : str
        SQLAlchemy URL of the bookings table.
    bookings_backend : str
        Which repository feeds the engine: ``"sql"`` or ``"http"``.
    bookings_service_url : str
        Base URL of the remote bookings service (``http`` backend only).
    bookings_timeout_seconds : float
        Timeout applied to each remote bookings lookup.
    business_start_hour, business_end_hour : int
        Bookable window ``[start, end)`` for event spaces.
    slot_step_minutes : int
        Granularity of the slot enumeration.
    max_suggestions : int
        Number of alternative slots offered on a conflict.
    default_start_time : str
        Start used for stored event bookings that lack one.
    coworking_capacities : Dict[str, int]
        Concurrent seat limit per coworking plan.
    default_coworking_capacity : int
        Limit applied to plans missing from ``coworking_capacities``.
    log_level : str
        Root logging level.
    """
    database_url: str = "sqlite:///./workspace_bookings.db"
    bookings_backend: str = "sql"
    bookings_service_url: str = "http://bookings_service:8002"
    bookings_timeout_seconds: float = 5.0
    business_start_hour: int = 8
    business_end_hour: int = 20
    slot_step_minutes: int = 60
    max_suggestions: int = 3
    default_start_time: str = "09:00"
    coworking_capacities: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_COWORKING_CAPACITIES)
    )
    default_coworking_capacity: int = 50
    log_level: str = "INFO"

    def __post_init__(self):
        if not 0 <= self.business_start_hour < self.business_end_hour <= 24:
            raise ValueError("Business hours must satisfy 0 <= start < end <= 24")
        if self.slot_step_minutes <= 0:
            raise ValueError("slot_step_minutes must be positive")
        if self.max_suggestions < 0:
            raise ValueError("max_suggestions cannot be negative")
        if self.bookings_backend not in ("sql", "http"):
            raise ValueError(f"Unknown bookings backend: {self.bookings_backend}")
        if not TIME_OF_DAY_RE.match(self.default_start_time):
            raise ValueError(f"default_start_time must be HH:MM, got {self.default_start_time!r}")
        if self.default_coworking_capacity <= 0:
            raise ValueError("default_coworking_capacity must be positive")
        for plan, capacity in self.coworking_capacities.items():
            if capacity <= 0:
                raise ValueError(f"Coworking capacity for {plan!r} must be positive")

    @property
    def business_start_minutes(self) -> int:
        return self.business_start_hour * 60

    @property
    def business_end_minutes(self) -> int:
        return self.business_end_hour * 60


def load_settings() -> Settings:
    """
    Build Settings from environment variables, falling back to defaults.
    """
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        bookings_backend=os.getenv("BOOKINGS_BACKEND", Settings.bookings_backend),
        bookings_service_url=os.getenv(
            "BOOKINGS_SERVICE_URL",
            Settings.bookings_service_url,  # Docker internal URL
        ),
        bookings_timeout_seconds=float(
            os.getenv("BOOKINGS_TIMEOUT_SECONDS", Settings.bookings_timeout_seconds)
        ),
        business_start_hour=int(os.getenv("BUSINESS_START_HOUR", Settings.business_start_hour)),
        business_end_hour=int(os.getenv("BUSINESS_END_HOUR", Settings.business_end_hour)),
        slot_step_minutes=int(os.getenv("SLOT_STEP_MINUTES", Settings.slot_step_minutes)),
        max_suggestions=int(os.getenv("MAX_SUGGESTIONS", Settings.max_suggestions)),
        default_start_time=os.getenv("DEFAULT_START_TIME", Settings.default_start_time),
        coworking_capacities=parse_capacities(os.getenv("COWORKING_CAPACITIES")),
        default_coworking_capacity=int(
            os.getenv("DEFAULT_COWORKING_CAPACITY", Settings.default_coworking_capacity)
        ),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level),
    )


settings = load_settings()
