"""Court routes: list, read, create, update, delete, change status."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.core.database import get_db
from canchaya.core.dependencies import get_change_feed, get_current_user
from canchaya.models.booking import Booking
from canchaya.models.court import Court
from canchaya.schemas import CourtCreate, CourtOut, CourtStatusUpdate, CourtUpdate
from canchaya.services.change_feed import ChangeFeed, ChangeType, snapshot

router = APIRouter(prefix="/courts", tags=["courts"], dependencies=[Depends(get_current_user)])


async def _get_court(db: AsyncSession, court_id: int) -> Court:
    court = await db.get(Court, court_id)
    if court is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Court not found")
    return court


async def _apply_changes(db: AsyncSession, feed: ChangeFeed, court: Court, changes: dict) -> Court:
    old = snapshot(court)
    for field, value in changes.items():
        setattr(court, field, value)
    await db.commit()
    feed.publish_row("courts", ChangeType.UPDATE, court, old_record=old)
    return court


@router.get("", response_model=list[CourtOut])
async def list_courts(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Court).order_by(Court.id))
    return result.scalars().all()


@router.get("/{court_id}", response_model=CourtOut)
async def get_court(court_id: int, db: AsyncSession = Depends(get_db)):
    return await _get_court(db, court_id)


@router.post("", response_model=CourtOut, status_code=status.HTTP_201_CREATED)
async def create_court(
    body: CourtCreate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    court = Court(**body.model_dump())
    db.add(court)
    await db.commit()
    feed.publish_row("courts", ChangeType.INSERT, court)
    return court


@router.patch("/{court_id}", response_model=CourtOut)
async def update_court(
    court_id: int,
    body: CourtUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    court = await _get_court(db, court_id)
    return await _apply_changes(db, feed, court, body.model_dump(exclude_unset=True, exclude_none=True))


@router.patch("/{court_id}/status", response_model=CourtOut)
async def change_court_status(
    court_id: int,
    body: CourtStatusUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    court = await _get_court(db, court_id)
    return await _apply_changes(db, feed, court, {"status": body.status})


@router.delete("/{court_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_court(
    court_id: int,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    court = await _get_court(db, court_id)

    # Bookings reference courts; they are never cascaded
    has_bookings = await db.scalar(select(exists().where(Booking.court_id == court_id)))
    if has_bookings:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Court has bookings and cannot be deleted")

    record = snapshot(court)
    await db.delete(court)
    await db.commit()
    feed.publish_record("courts", ChangeType.DELETE, record)
