"""Booking rules enforcement.

All booking validation logic lives here, separate from the route handlers.
Each rule returns a clear error message or None if the rule passes.
The main validate_booking() function runs all rules and collects violations.

Times are wall-clock "HH:MM" on the booking date. An end time of 00:00 is
midnight at the end of that date (closing time), so it sorts after every
start time: as an end boundary it counts as minute 1440, never minute 0.
"""

from collections.abc import Iterable
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.models.booking import Booking, BookingStatus
from canchaya.models.court import Court, CourtStatus

MIN_DURATION_MINUTES = 60
MIDNIGHT = "00:00"
END_OF_DAY_MINUTES = 24 * 60

TimeLike = str | time


class BookingViolation(Exception):
    """Raised when a booking rule is violated."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Time helpers (pure)
# ---------------------------------------------------------------------------


def normalize_time(value: TimeLike) -> str:
    """Return "HH:MM", dropping any seconds component.

    "10:30:00" -> "10:30", time(9, 0) -> "09:00". Raises ValueError on garbage.
    """
    if isinstance(value, time):
        return value.strftime("%H:%M")

    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time: {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid time: {value!r}")
    return f"{hours:02d}:{minutes:02d}"


def parse_time(value: TimeLike) -> time:
    hours, minutes = map(int, normalize_time(value).split(":"))
    return time(hours, minutes)


def is_midnight(value: TimeLike) -> bool:
    return normalize_time(value) == MIDNIGHT


def to_minutes(value: TimeLike, is_end: bool = False) -> int:
    """Minutes since midnight. 00:00 used as an end boundary is 1440."""
    hours, minutes = map(int, normalize_time(value).split(":"))
    total = hours * 60 + minutes
    if is_end and total == 0:
        return END_OF_DAY_MINUTES
    return total


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open [start, end) overlap test."""
    return max(start_a, start_b) < min(end_a, end_b)


def find_conflicts(
    start: TimeLike,
    end: TimeLike,
    existing: Iterable[tuple[TimeLike, TimeLike]],
) -> list[tuple[str, str]]:
    """Return the existing (start, end) intervals that overlap [start, end), as "HH:MM" pairs."""
    new_start = to_minutes(start)
    new_end = to_minutes(end, is_end=True)

    conflicts: list[tuple[str, str]] = []
    for existing_start, existing_end in existing:
        if intervals_overlap(
            new_start,
            new_end,
            to_minutes(existing_start),
            to_minutes(existing_end, is_end=True),
        ):
            conflicts.append((normalize_time(existing_start), normalize_time(existing_end)))
    return conflicts


def parse_operating_hours(window: str | None) -> tuple[int, int] | None:
    """Parse "08:00-23:00" into (open, close) minutes. None when missing or malformed."""
    if not window or "-" not in window:
        return None
    opens, closes = window.split("-", 1)
    try:
        return to_minutes(opens), to_minutes(closes, is_end=True)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def validate_time_range(start: TimeLike, end: TimeLike) -> BookingViolation | None:
    """End must be after start and at least an hour later. A 00:00 end always passes."""
    if is_midnight(end):
        return None

    start_minutes = to_minutes(start)
    end_minutes = to_minutes(end)

    if end_minutes <= start_minutes:
        return BookingViolation("invalid_range", "End time must be after start time.")

    if end_minutes - start_minutes < MIN_DURATION_MINUTES:
        return BookingViolation("too_short", "A booking must last at least 1 hour.")

    return None


def check_court_status(court: Court) -> BookingViolation | None:
    """Only courts marked available take new bookings."""
    if court.status != CourtStatus.AVAILABLE:
        return BookingViolation(
            "court_unavailable",
            f"{court.name} is not available for bookings (status: {court.status.value}).",
        )
    return None


def check_operating_hours(court: Court, start: TimeLike) -> BookingViolation | None:
    """The start must fall inside the court's window of bookable start hours."""
    window = parse_operating_hours(court.operating_hours)
    if window is None:
        return None

    opens, closes = window
    start_minutes = to_minutes(start)
    if start_minutes < opens or start_minutes > closes:
        return BookingViolation(
            "outside_hours",
            f"{court.name} takes bookings starting between {court.operating_hours.replace('-', ' and ')}.",
        )
    return None


async def check_availability(
    db: AsyncSession,
    court_id: int,
    booking_date: date,
    start: TimeLike,
    end: TimeLike,
    exclude_booking_id: int | None = None,
) -> BookingViolation | None:
    """No two non-cancelled bookings may overlap on the same court and date."""
    query = select(Booking.start_time, Booking.end_time).where(
        Booking.court_id == court_id,
        Booking.booking_date == booking_date,
        Booking.status != BookingStatus.CANCELLED,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    result = await db.execute(query)
    conflicts = find_conflicts(start, end, [(row.start_time, row.end_time) for row in result.all()])

    if conflicts:
        taken = ", ".join(f"{s}-{e}" for s, e in conflicts)
        return BookingViolation(
            "court_conflict",
            f"Court already booked at {taken}. "
            f"The slot {normalize_time(start)}-{normalize_time(end)} overlaps an existing booking.",
        )

    return None


async def validate_booking(
    db: AsyncSession,
    court: Court,
    booking_date: date,
    start: TimeLike,
    end: TimeLike,
    exclude_booking_id: int | None = None,
    check_status: bool = True,
) -> list[BookingViolation]:
    """Run all booking rules and return a list of violations (empty = valid)."""
    # 1. Time range. Nothing else makes sense on a broken range.
    v = validate_time_range(start, end)
    if v:
        return [v]

    violations: list[BookingViolation] = []

    # 2. Court must be open for bookings
    if check_status:
        v = check_court_status(court)
        if v:
            violations.append(v)

    # 3. Operating hours
    v = check_operating_hours(court, start)
    if v:
        violations.append(v)

    # 4. Court conflict (double booking)
    v = await check_availability(db, court.id, booking_date, start, end, exclude_booking_id)
    if v:
        violations.append(v)

    return violations
