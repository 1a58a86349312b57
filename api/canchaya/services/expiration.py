"""Pending booking expiry.

A booking is created as pending and holds its slot for a short grace period
(settings.pending_ttl_minutes, 5 by default). If nobody confirms it in time,
the sweep cancels it and the slot is free again.

The sweep runs on the Celery beat schedule, once at application startup, and
on demand through the API. Overlapping sweeps are harmless: the batch update
only touches rows that are still pending.

Every cancellation is published as a bookings UPDATE. In the API process
the publisher is the app's ChangeFeed; in the Celery worker it is a
RedisChangePublisher whose messages the API relays into its feed.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.core.config import settings
from canchaya.models.base import utcnow
from canchaya.models.booking import Booking, BookingStatus, SweepRun
from canchaya.services.change_feed import ChangePublisher, ChangeType, snapshot

logger = logging.getLogger(__name__)

EXPIRED_REASON = "expired"


@dataclass
class SweepResult:
    success: bool
    cancelled: int
    cancelled_ids: list[int] = field(default_factory=list)
    message: str | None = None
    error: str | None = None


@dataclass
class TimeRemaining:
    minutes_remaining: int
    seconds_remaining: int  # total, not the seconds part of minutes_remaining
    expired: bool
    pct_elapsed: float


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def remaining_for(held_since: datetime, now: datetime, ttl_minutes: int) -> TimeRemaining:
    """Countdown for a pending hold that started at held_since."""
    ttl = timedelta(minutes=ttl_minutes)
    elapsed = _as_utc(now) - _as_utc(held_since)
    remaining = max(timedelta(0), ttl - elapsed)
    remaining_seconds = int(remaining.total_seconds())

    return TimeRemaining(
        minutes_remaining=remaining_seconds // 60,
        seconds_remaining=remaining_seconds,
        expired=remaining == timedelta(0),
        pct_elapsed=min(100.0, elapsed / ttl * 100),
    )


async def find_expired_pending(
    db: AsyncSession,
    threshold_minutes: int | None = None,
    now: datetime | None = None,
) -> list[Booking]:
    """Pending bookings whose hold started strictly before now - threshold.

    The hold starts at creation, or when a booking was last moved back to
    pending. Database errors propagate: an empty list always means
    "nothing expired".
    """
    ttl = settings.pending_ttl_minutes if threshold_minutes is None else threshold_minutes
    cutoff = (now or utcnow()) - timedelta(minutes=ttl)

    result = await db.execute(
        select(Booking)
        .where(Booking.status == BookingStatus.PENDING, Booking.pending_since < cutoff)
        .order_by(Booking.id)
    )
    return list(result.scalars().all())


async def sweep(
    db: AsyncSession,
    trigger: str = "manual",
    now: datetime | None = None,
    feed: ChangePublisher | None = None,
) -> SweepResult:
    """Cancel every expired pending booking in one batch and record the run.

    Only rows the guarded UPDATE actually changed are reported and
    published, so two overlapping sweeps never both claim a booking.
    Never raises on database trouble: the failure comes back as
    success=False so a periodic caller keeps ticking.
    """
    now = now or utcnow()

    try:
        expired = await find_expired_pending(db, now=now)
        ids: list[int] = []
        records: list[dict] = []

        if expired:
            result = await db.execute(
                update(Booking)
                .where(Booking.id.in_([b.id for b in expired]), Booking.status == BookingStatus.PENDING)
                .values(
                    status=BookingStatus.CANCELLED,
                    cancelled_at=now,
                    cancellation_reason=EXPIRED_REASON,
                )
                .returning(Booking.id)
            )
            ids = sorted(result.scalars().all())
            # Session objects are synchronised by the update; capture them before commit
            claimed = set(ids)
            records = [snapshot(b) for b in expired if b.id in claimed]

        db.add(
            SweepRun(
                trigger=trigger,
                cancelled_count=len(ids),
                cancelled_ids=",".join(str(i) for i in ids),
                created_at=now,
            )
        )
        await db.commit()
    except (SQLAlchemyError, OSError) as exc:
        await db.rollback()
        logger.exception("Expiry sweep (%s) failed", trigger)
        return SweepResult(success=False, cancelled=0, error=str(exc))

    if not ids:
        return SweepResult(success=True, cancelled=0, message="No expired pending bookings")

    logger.info("Expiry sweep (%s) cancelled %d pending bookings: %s", trigger, len(ids), ids)

    if feed is not None:
        for record in records:
            feed.publish_record(
                "bookings", ChangeType.UPDATE, record, old_record={"status": BookingStatus.PENDING.value}
            )

    return SweepResult(
        success=True,
        cancelled=len(ids),
        cancelled_ids=ids,
        message=(
            f"Cancelled {len(ids)} pending bookings older than "
            f"{settings.pending_ttl_minutes} minutes"
        ),
    )


async def time_remaining(
    db: AsyncSession,
    booking_id: int,
    now: datetime | None = None,
) -> TimeRemaining | None:
    """Countdown for a pending booking; None when the booking is missing or not pending."""
    result = await db.execute(
        select(Booking.pending_since).where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
    )
    pending_since = result.scalar_one_or_none()
    if pending_since is None:
        return None
    return remaining_for(pending_since, now or utcnow(), settings.pending_ttl_minutes)


async def last_run(db: AsyncSession) -> SweepRun | None:
    result = await db.execute(select(SweepRun).order_by(SweepRun.created_at.desc(), SweepRun.id.desc()).limit(1))
    return result.scalar_one_or_none()
