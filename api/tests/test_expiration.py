"""Pending booking expiry: countdown, selection, sweep."""

import json
from datetime import UTC, date, datetime, time, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from canchaya.core.database import async_session_factory
from canchaya.models import Booking, BookingStatus, SweepRun
from canchaya.services.change_feed import ChangeFeed, RedisChangePublisher
from canchaya.services.expiration import (
    EXPIRED_REASON,
    find_expired_pending,
    last_run,
    remaining_for,
    sweep,
    time_remaining,
)

T = datetime(2026, 3, 14, 15, 0, tzinfo=UTC)
PLAY_DATE = date(2026, 3, 20)


# ---------------------------------------------------------------------------
# Unit tests: countdown (pure)
# ---------------------------------------------------------------------------


class TestRemainingFor:
    def test_fresh_booking(self):
        r = remaining_for(T, T, 5)
        assert r.minutes_remaining == 5
        assert r.seconds_remaining == 300
        assert r.expired is False
        assert r.pct_elapsed == 0

    def test_two_minutes_in(self):
        r = remaining_for(T, T + timedelta(minutes=2, seconds=30), 5)
        assert r.minutes_remaining == 2
        assert r.seconds_remaining == 150
        assert r.expired is False
        assert r.pct_elapsed == pytest.approx(50.0)

    def test_past_deadline(self):
        r = remaining_for(T, T + timedelta(minutes=6), 5)
        assert r.minutes_remaining == 0
        assert r.seconds_remaining == 0
        assert r.expired is True
        assert r.pct_elapsed == 100.0

    def test_naive_timestamps_are_utc(self):
        r = remaining_for(T.replace(tzinfo=None), T + timedelta(minutes=1), 5)
        assert r.seconds_remaining == 240


# ---------------------------------------------------------------------------
# Integration tests: selection and sweep
# ---------------------------------------------------------------------------


@pytest.fixture
async def pending_at_t(seed_data, make_booking):
    return await make_booking(
        seed_data["futbol"],
        seed_data["ana"],
        PLAY_DATE,
        time(10, 0),
        time(11, 0),
        status=BookingStatus.PENDING,
        created_at=T,
    )


@pytest.mark.asyncio
async def test_expired_after_six_minutes(pending_at_t):
    now = T + timedelta(minutes=6)
    async with async_session_factory() as db:
        expired = await find_expired_pending(db, now=now)
        remaining = await time_remaining(db, pending_at_t.id, now=now)

    assert [b.id for b in expired] == [pending_at_t.id]
    assert remaining.expired is True


@pytest.mark.asyncio
async def test_not_expired_after_two_minutes(pending_at_t):
    now = T + timedelta(minutes=2, seconds=1)
    async with async_session_factory() as db:
        expired = await find_expired_pending(db, now=now)
        remaining = await time_remaining(db, pending_at_t.id, now=now)

    assert expired == []
    assert remaining.minutes_remaining == 2
    assert remaining.expired is False


@pytest.mark.asyncio
async def test_custom_threshold(pending_at_t):
    async with async_session_factory() as db:
        expired = await find_expired_pending(db, threshold_minutes=1, now=T + timedelta(minutes=2))
    assert len(expired) == 1


@pytest.mark.asyncio
async def test_non_pending_bookings_never_expire(seed_data, make_booking):
    for status in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.COMPLETED):
        await make_booking(
            seed_data["futbol"], seed_data["ana"], PLAY_DATE, time(10, 0), time(11, 0), status=status, created_at=T
        )

    async with async_session_factory() as db:
        assert await find_expired_pending(db, now=T + timedelta(hours=1)) == []


@pytest.mark.asyncio
async def test_time_remaining_none_unless_pending(seed_data, make_booking):
    confirmed = await make_booking(seed_data["futbol"], seed_data["ana"], PLAY_DATE, time(10, 0), time(11, 0))
    async with async_session_factory() as db:
        assert await time_remaining(db, confirmed.id) is None
        assert await time_remaining(db, 9999) is None


@pytest.mark.asyncio
async def test_sweep_cancels_and_records(pending_at_t):
    now = T + timedelta(minutes=6)
    async with async_session_factory() as db:
        result = await sweep(db, trigger="schedule", now=now)

    assert result.success is True
    assert result.cancelled == 1
    assert result.cancelled_ids == [pending_at_t.id]
    assert "Cancelled 1" in result.message

    async with async_session_factory() as db:
        booking = await db.get(Booking, pending_at_t.id)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == EXPIRED_REASON
        assert booking.cancelled_at is not None

        run = await last_run(db)
        assert run.trigger == "schedule"
        assert run.cancelled_count == 1
        assert run.cancelled_ids == str(pending_at_t.id)


@pytest.mark.asyncio
async def test_sweep_is_idempotent(pending_at_t):
    now = T + timedelta(minutes=6)
    async with async_session_factory() as db:
        first = await sweep(db, now=now)
    async with async_session_factory() as db:
        second = await sweep(db, now=now)

    assert first.cancelled == 1
    assert second.success is True
    assert second.cancelled == 0
    assert second.message == "No expired pending bookings"

    async with async_session_factory() as db:
        runs = (await db.execute(select(SweepRun))).scalars().all()
    assert len(runs) == 2


@pytest.mark.asyncio
async def test_sweep_leaves_fresh_pending_alone(pending_at_t):
    async with async_session_factory() as db:
        result = await sweep(db, now=T + timedelta(minutes=3))
    assert result.cancelled == 0

    async with async_session_factory() as db:
        booking = await db.get(Booking, pending_at_t.id)
    assert booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_sweep_publishes_updates(pending_at_t):
    feed = ChangeFeed()
    await feed.start()
    queue = feed.subscribe("bookings")

    async with async_session_factory() as db:
        await sweep(db, now=T + timedelta(minutes=6), feed=feed)

    event = queue.get_nowait()
    assert event.event == "UPDATE"
    assert event.record["id"] == pending_at_t.id
    assert event.record["status"] == "cancelled"
    assert event.old_record == {"status": "pending"}
    await feed.stop()


@pytest.mark.asyncio
async def test_scheduled_sweep_publishes_through_redis(pending_at_t, recording_redis):
    publisher = RedisChangePublisher(recording_redis, "canchaya:changes")

    async with async_session_factory() as db:
        await sweep(db, trigger="schedule", now=T + timedelta(minutes=6), feed=publisher)

    [(channel, message)] = recording_redis.published
    payload = json.loads(message)
    assert channel == "canchaya:changes"
    assert payload["table"] == "bookings"
    assert payload["event"] == "UPDATE"
    assert payload["record"]["id"] == pending_at_t.id
    assert payload["record"]["status"] == "cancelled"
    assert payload["old_record"] == {"status": "pending"}


@pytest.mark.asyncio
async def test_overlapping_sweeps_claim_each_booking_once(pending_at_t, monkeypatch):
    now = T + timedelta(minutes=6)
    async with async_session_factory() as db:
        stale = await find_expired_pending(db, now=now)

    async with async_session_factory() as db:
        first = await sweep(db, now=now)

    # The second sweep selected before the first one committed
    async def stale_selection(*args, **kwargs):
        return stale

    monkeypatch.setattr("canchaya.services.expiration.find_expired_pending", stale_selection)
    feed = ChangeFeed()
    await feed.start()
    queue = feed.subscribe("bookings")

    async with async_session_factory() as db:
        second = await sweep(db, now=now, feed=feed)

    assert first.cancelled_ids == [pending_at_t.id]
    assert second.success is True
    assert second.cancelled == 0
    assert second.cancelled_ids == []
    assert queue.empty()
    await feed.stop()


@pytest.mark.asyncio
async def test_hold_runs_from_pending_since(seed_data, make_booking):
    reopened = await make_booking(
        seed_data["futbol"],
        seed_data["ana"],
        PLAY_DATE,
        time(10, 0),
        time(11, 0),
        status=BookingStatus.PENDING,
        created_at=T - timedelta(hours=1),
        pending_since=T,
    )
    now = T + timedelta(minutes=2, seconds=30)

    async with async_session_factory() as db:
        assert await find_expired_pending(db, now=now) == []
        remaining = await time_remaining(db, reopened.id, now=now)

    assert remaining.seconds_remaining == 150


@pytest.mark.asyncio
async def test_sweep_failure_is_reported_not_raised(pending_at_t, monkeypatch):
    async def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is gone"))

    monkeypatch.setattr("canchaya.services.expiration.find_expired_pending", broken)

    async with async_session_factory() as db:
        result = await sweep(db, now=T + timedelta(minutes=6))

    assert result.success is False
    assert result.cancelled == 0
    assert "database is gone" in result.error
