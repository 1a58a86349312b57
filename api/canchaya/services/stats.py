"""Dashboard figures.

Aggregation happens in Python over narrow column selects, which keeps the
queries portable between PostgreSQL and the SQLite test database. "Today"
is the facility's local date (settings.timezone), not UTC.
"""

import calendar
from collections import Counter
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from canchaya.core.config import settings
from canchaya.models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from canchaya.models.court import Court, CourtStatus
from canchaya.services.booking_rules import parse_operating_hours, to_minutes

WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def local_now() -> datetime:
    return datetime.now(ZoneInfo(settings.timezone))


def month_bounds(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def shift_month(day: date, months: int) -> date:
    """First day of the month `months` away from day's month (negative = back)."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


async def dashboard_summary(db: AsyncSession, today: date | None = None) -> dict:
    today = today or local_now().date()
    month_start, month_end = month_bounds(today)

    today_rows = (
        await db.execute(
            select(Booking.status, Booking.cost_cents).where(Booking.booking_date == today)
        )
    ).all()
    month_rows = (
        await db.execute(
            select(Booking.customer_id, Booking.cost_cents).where(
                Booking.booking_date >= month_start,
                Booking.booking_date <= month_end,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
    ).all()
    court_statuses = (await db.execute(select(Court.status))).scalars().all()

    return {
        "confirmed_today": sum(1 for r in today_rows if r.status == BookingStatus.CONFIRMED),
        "pending_today": sum(1 for r in today_rows if r.status == BookingStatus.PENDING),
        "revenue_today_cents": sum(r.cost_cents for r in today_rows if r.status != BookingStatus.CANCELLED),
        "revenue_month_cents": sum(r.cost_cents for r in month_rows),
        "bookings_month": len(month_rows),
        "total_courts": len(court_statuses),
        "available_courts": sum(1 for s in court_statuses if s == CourtStatus.AVAILABLE),
        "active_customers": len({r.customer_id for r in month_rows}),
    }


async def hourly_usage(db: AsyncSession) -> list[dict]:
    """Non-cancelled bookings counted by start hour, earliest hour first."""
    starts = (
        await db.execute(select(Booking.start_time).where(Booking.status != BookingStatus.CANCELLED))
    ).scalars().all()
    counts = Counter(f"{t.hour:02d}:00" for t in starts)
    return [{"hour": hour, "count": counts[hour]} for hour in sorted(counts)]


async def weekday_usage(db: AsyncSession, today: date | None = None) -> list[dict]:
    """Bookings in the current month per weekday, Sunday first."""
    today = today or local_now().date()
    first, last = month_bounds(today)
    dates = (
        await db.execute(
            select(Booking.booking_date).where(
                Booking.booking_date >= first,
                Booking.booking_date <= last,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
    ).scalars().all()
    # date.weekday() is Monday=0; shift so Sunday=0
    counts = Counter((d.weekday() + 1) % 7 for d in dates)
    return [{"day": name, "count": counts[i]} for i, name in enumerate(WEEKDAYS)]


async def court_usage(db: AsyncSession, today: date | None = None) -> list[dict]:
    """Bookings this week (Monday to Sunday) for every court, busiest first."""
    today = today or local_now().date()
    monday = today - timedelta(days=today.weekday())
    sunday = monday + timedelta(days=6)

    courts = (await db.execute(select(Court.id, Court.name).order_by(Court.name))).all()
    court_ids = (
        await db.execute(
            select(Booking.court_id).where(
                Booking.booking_date >= monday,
                Booking.booking_date <= sunday,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
    ).scalars().all()
    counts = Counter(court_ids)

    usage = [{"court_id": c.id, "name": c.name, "count": counts[c.id]} for c in courts]
    # Stable sort keeps alphabetical order among ties
    return sorted(usage, key=lambda u: u["count"], reverse=True)


async def monthly_revenue(db: AsyncSession, today: date | None = None, months: int = 6) -> list[dict]:
    """Revenue of the last `months` months including the current one, oldest first."""
    today = today or local_now().date()
    first = shift_month(today, -(months - 1))
    _, last = month_bounds(today)

    rows = (
        await db.execute(
            select(Booking.booking_date, Booking.cost_cents).where(
                Booking.booking_date >= first,
                Booking.booking_date <= last,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
    ).all()
    totals = Counter()
    for row in rows:
        totals[(row.booking_date.year, row.booking_date.month)] += row.cost_cents

    result = []
    for offset in range(months):
        month = shift_month(first, offset)
        result.append(
            {"month": month.strftime("%Y-%m"), "revenue_cents": totals[(month.year, month.month)]}
        )
    return result


def _court_day_grid(court: Court, intervals: list[tuple], current_hour: int) -> dict:
    """Hourly slot grid for one court: occupied ranges, free hours, past hours."""
    window = parse_operating_hours(court.operating_hours) or parse_operating_hours(
        settings.default_operating_hours
    )
    open_hour, close_hour = window[0] // 60, min(window[1] // 60, 23)
    in_maintenance = court.status != CourtStatus.AVAILABLE

    taken_hours: set[int] = set()
    occupied: list[str] = []
    for start, end in intervals:
        start_hour = start.hour
        end_hour = to_minutes(end, is_end=True) // 60
        taken_hours.update(range(start_hour, end_hour))
        label = f"{start.strftime('%H:%M')}-{end.strftime('%H:%M')}"
        if label not in occupied:
            occupied.append(label)

    available: list[str] = []
    past: list[str] = []
    for hour in range(open_hour, close_hour + 1):
        label = f"{hour:02d}:00"
        if in_maintenance:
            continue
        if hour <= current_hour:
            past.append(label)
        elif hour not in taken_hours:
            available.append(label)

    return {
        "court_id": court.id,
        "name": court.name,
        "court_type": court.court_type,
        "hourly_rate_cents": court.hourly_rate_cents,
        "operating_hours": court.operating_hours,
        "occupied": occupied,
        "available": available,
        "past": past,
        "in_maintenance": in_maintenance,
        "total_slots": close_hour - open_hour + 1,
    }


async def today_slots(db: AsyncSession, now: datetime | None = None) -> list[dict]:
    """Slot grid for every court today, active bookings only."""
    now = now or local_now()
    courts = (await db.execute(select(Court).order_by(Court.id))).scalars().all()
    rows = (
        await db.execute(
            select(Booking.court_id, Booking.start_time, Booking.end_time)
            .where(Booking.booking_date == now.date(), Booking.status.in_(ACTIVE_STATUSES))
            .order_by(Booking.start_time)
        )
    ).all()

    by_court: dict[int, list[tuple]] = {c.id: [] for c in courts}
    for row in rows:
        by_court.setdefault(row.court_id, []).append((row.start_time, row.end_time))

    return [_court_day_grid(court, by_court[court.id], now.hour) for court in courts]


async def recent_bookings(db: AsyncSession, limit: int = 10, on_date: date | None = None) -> list[Booking]:
    query = select(Booking).options(selectinload(Booking.court), selectinload(Booking.customer))
    if on_date is not None:
        query = query.where(Booking.booking_date == on_date)
    query = query.order_by(Booking.booking_date.desc(), Booking.start_time.desc()).limit(limit)
    return list((await db.execute(query)).scalars().all())
