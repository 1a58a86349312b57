"""Pricing service for booking cost calculation.

Cost is the court's hourly rate times the booking duration, rounded to
the cent. Amounts are integer cents throughout.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.models.court import Court
from canchaya.services.booking_rules import TimeLike, is_midnight, normalize_time, to_minutes

logger = logging.getLogger(__name__)


def duration_minutes(start: TimeLike, end: TimeLike) -> int:
    """Length of [start, end) in minutes, with a 00:00 end counted as midnight."""
    return to_minutes(end, is_end=True) - to_minutes(start)


def calculate_cost(hourly_rate_cents: int, start: TimeLike, end: TimeLike) -> int:
    """Cost in cents: duration_hours x rate, rounded half up to the cent.

    A booking ending at 00:00 is billed by whole hours from the start hour:
    22:00-00:00 is 24 - 22 = 2 hours. Minutes of the start are ignored there.
    """
    if is_midnight(end):
        start_hour = int(normalize_time(start).split(":")[0])
        return (24 - start_hour) * hourly_rate_cents

    minutes = to_minutes(end) - to_minutes(start)
    # round(minutes * rate / 60) without floats
    return (2 * minutes * hourly_rate_cents + 60) // 120


async def compute_cost(db: AsyncSession, court_id: int, start: TimeLike, end: TimeLike) -> int:
    """Look up the court's rate and price the slot.

    Returns 0 when the court cannot be found or the lookup fails, so a
    missing rate never blocks a booking.
    """
    try:
        rate = await db.scalar(select(Court.hourly_rate_cents).where(Court.id == court_id))
    except SQLAlchemyError:
        logger.warning("Rate lookup failed for court %s, pricing booking at 0", court_id, exc_info=True)
        return 0

    if rate is None:
        logger.warning("Court %s not found, pricing booking at 0", court_id)
        return 0

    return calculate_cost(rate, start, end)
