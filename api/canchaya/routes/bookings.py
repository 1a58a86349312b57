"""Booking routes: list, search, quote, create, update, delete, change status.

Every write that touches a slot runs the booking rules with the court row
locked, so two requests for the same court are checked and written one
after the other.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from canchaya.core.database import get_db
from canchaya.core.dependencies import get_change_feed, get_current_user
from canchaya.models.base import utcnow
from canchaya.models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from canchaya.models.court import Court, Customer
from canchaya.schemas import (
    BookingCreate,
    BookingDetailOut,
    BookingOut,
    BookingQuote,
    BookingStatusUpdate,
    BookingUpdate,
    OccupiedSlotOut,
    QuoteOut,
    TimeRemainingOut,
    ViolationOut,
)
from canchaya.services.booking_rules import (
    BookingViolation,
    check_availability,
    validate_booking,
    validate_time_range,
)
from canchaya.services.change_feed import ChangeFeed, ChangeType, snapshot
from canchaya.services.expiration import time_remaining
from canchaya.services.pricing import calculate_cost, compute_cost, duration_minutes

router = APIRouter(prefix="/bookings", tags=["bookings"], dependencies=[Depends(get_current_user)])

MANUAL_REASON = "manual"


def _violations_error(violations: list[BookingViolation]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=[{"rule": v.rule, "message": v.message} for v in violations],
    )


async def _get_booking(db: AsyncSession, booking_id: int, with_relations: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if with_relations:
        query = query.options(selectinload(Booking.court), selectinload(Booking.customer))
    booking = (await db.execute(query)).scalar_one_or_none()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


async def _lock_court(db: AsyncSession, court_id: int) -> Court:
    """Load the court with SELECT ... FOR UPDATE. Concurrent writers for it wait here."""
    result = await db.execute(select(Court).where(Court.id == court_id).with_for_update())
    court = result.scalar_one_or_none()
    if court is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Court not found")
    return court


async def _require_customer(db: AsyncSession, customer_id: int) -> None:
    if await db.get(Customer, customer_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")


def _set_status(booking: Booking, new_status: BookingStatus) -> None:
    """Apply a status. Any transition is allowed.

    Cancelling stamps when and why. Entering pending starts a fresh hold,
    so a reopened booking gets the full grace period before expiry.
    """
    if new_status == BookingStatus.PENDING and booking.status != BookingStatus.PENDING:
        booking.pending_since = utcnow()

    if new_status == BookingStatus.CANCELLED and booking.status != BookingStatus.CANCELLED:
        booking.cancelled_at = utcnow()
        booking.cancellation_reason = MANUAL_REASON
    elif new_status != BookingStatus.CANCELLED:
        booking.cancelled_at = None
        booking.cancellation_reason = None
    booking.status = new_status


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("", response_model=list[BookingDetailOut])
async def list_bookings(
    booking_date: date | None = Query(None, alias="date"),
    court_id: int | None = None,
    status_filter: BookingStatus | None = Query(None, alias="status"),
    q: str | None = Query(None, description="Search customer name or phone, or court name"),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking).options(selectinload(Booking.court), selectinload(Booking.customer))

    if booking_date is not None:
        query = query.where(Booking.booking_date == booking_date)
    if court_id is not None:
        query = query.where(Booking.court_id == court_id)
    if status_filter is not None:
        query = query.where(Booking.status == status_filter)
    if q:
        pattern = f"%{q.strip()}%"
        query = (
            query.join(Customer, Customer.id == Booking.customer_id)
            .join(Court, Court.id == Booking.court_id)
            .where(
                or_(
                    Customer.first_name.ilike(pattern),
                    Customer.last_name.ilike(pattern),
                    Customer.phone.ilike(pattern),
                    Court.name.ilike(pattern),
                )
            )
        )

    query = query.order_by(Booking.booking_date.desc(), Booking.start_time.desc(), Booking.id.desc()).limit(limit)
    result = await db.execute(query)
    return [BookingDetailOut.from_booking(b) for b in result.scalars().all()]


@router.get("/occupied", response_model=list[OccupiedSlotOut])
async def list_occupied_slots(
    court_id: int,
    booking_date: date = Query(..., alias="date", description="Date in YYYY-MM-DD format"),
    db: AsyncSession = Depends(get_db),
):
    """Intervals held by pending or confirmed bookings on a court for one day."""
    result = await db.execute(
        select(Booking.start_time, Booking.end_time, Booking.status)
        .where(
            Booking.court_id == court_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Booking.start_time)
    )
    return [OccupiedSlotOut(start_time=r.start_time, end_time=r.end_time, status=r.status) for r in result.all()]


@router.post("/quote", response_model=QuoteOut)
async def quote_booking(body: BookingQuote, db: AsyncSession = Depends(get_db)):
    """Check a slot and price it without writing anything."""
    court = await db.get(Court, body.court_id)
    if court is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Court not found")

    violations = await validate_booking(
        db,
        court,
        body.booking_date,
        body.start_time,
        body.end_time,
        exclude_booking_id=body.exclude_booking_id,
    )
    range_ok = validate_time_range(body.start_time, body.end_time) is None

    return QuoteOut(
        valid=not violations,
        violations=[ViolationOut(rule=v.rule, message=v.message) for v in violations],
        cost_cents=calculate_cost(court.hourly_rate_cents, body.start_time, body.end_time) if range_ok else 0,
        duration_minutes=max(0, duration_minutes(body.start_time, body.end_time)),
    )


@router.get("/{booking_id}", response_model=BookingDetailOut)
async def get_booking(booking_id: int, db: AsyncSession = Depends(get_db)):
    return BookingDetailOut.from_booking(await _get_booking(db, booking_id, with_relations=True))


@router.get("/{booking_id}/time-remaining", response_model=TimeRemainingOut)
async def get_time_remaining(booking_id: int, db: AsyncSession = Depends(get_db)):
    remaining = await time_remaining(db, booking_id)
    if remaining is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found or not pending")
    return TimeRemainingOut(booking_id=booking_id, **remaining.__dict__)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    court = await _lock_court(db, body.court_id)
    await _require_customer(db, body.customer_id)

    violations = await validate_booking(db, court, body.booking_date, body.start_time, body.end_time)
    if violations:
        raise _violations_error(violations)

    booking = Booking(
        court_id=court.id,
        customer_id=body.customer_id,
        booking_date=body.booking_date,
        start_time=body.start_time,
        end_time=body.end_time,
        cost_cents=await compute_cost(db, court.id, body.start_time, body.end_time),
        notes=body.notes,
    )
    _set_status(booking, body.status)
    db.add(booking)
    await db.commit()

    feed.publish_row("bookings", ChangeType.INSERT, booking)
    return booking


@router.patch("/{booking_id}", response_model=BookingOut)
async def update_booking(
    booking_id: int,
    body: BookingUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    booking = await _get_booking(db, booking_id)
    if booking.status == BookingStatus.CONFIRMED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Confirmed bookings cannot be edited")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    court_id = changes.get("court_id", booking.court_id)
    booking_date = changes.get("booking_date", booking.booking_date)
    start_time = changes.get("start_time", booking.start_time)
    end_time = changes.get("end_time", booking.end_time)

    court = await _lock_court(db, court_id)
    if "customer_id" in changes:
        await _require_customer(db, changes["customer_id"])

    violations = await validate_booking(
        db,
        court,
        booking_date,
        start_time,
        end_time,
        exclude_booking_id=booking.id,
        # Moving to another court needs that court open; staying put does not
        check_status=court_id != booking.court_id,
    )
    if violations:
        raise _violations_error(violations)

    old = snapshot(booking)
    new_status = changes.pop("status", None)
    for field, value in changes.items():
        setattr(booking, field, value)
    if new_status is not None:
        _set_status(booking, new_status)
    booking.cost_cents = await compute_cost(db, court_id, start_time, end_time)
    await db.commit()

    feed.publish_row("bookings", ChangeType.UPDATE, booking, old_record=old)
    return booking


@router.patch("/{booking_id}/status", response_model=BookingOut)
async def change_booking_status(
    booking_id: int,
    body: BookingStatusUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    booking = await _get_booking(db, booking_id)

    # Only cancelled bookings release their slot, so leaving cancelled must re-claim it
    if booking.status == BookingStatus.CANCELLED and body.status != BookingStatus.CANCELLED:
        await _lock_court(db, booking.court_id)
        conflict = await check_availability(
            db,
            booking.court_id,
            booking.booking_date,
            booking.start_time,
            booking.end_time,
            exclude_booking_id=booking.id,
        )
        if conflict:
            raise _violations_error([conflict])

    old = snapshot(booking)
    _set_status(booking, body.status)
    await db.commit()

    feed.publish_row("bookings", ChangeType.UPDATE, booking, old_record=old)
    return booking


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    booking = await _get_booking(db, booking_id)
    if booking.status == BookingStatus.CONFIRMED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Confirmed bookings cannot be deleted")

    record = snapshot(booking)
    await db.delete(booking)
    await db.commit()
    feed.publish_record("bookings", ChangeType.DELETE, record)
