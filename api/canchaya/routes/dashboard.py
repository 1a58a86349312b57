"""Dashboard routes: the figures on the staff landing page."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.core.database import get_db
from canchaya.core.dependencies import get_current_user
from canchaya.schemas import (
    BookingDetailOut,
    CourtDayOut,
    CourtUsageOut,
    DayCountOut,
    HourCountOut,
    MonthRevenueOut,
    SummaryOut,
)
from canchaya.services import stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"], dependencies=[Depends(get_current_user)])


@router.get("/summary", response_model=SummaryOut)
async def summary(db: AsyncSession = Depends(get_db)):
    return await stats.dashboard_summary(db)


@router.get("/hourly-usage", response_model=list[HourCountOut])
async def hourly_usage(db: AsyncSession = Depends(get_db)):
    return await stats.hourly_usage(db)


@router.get("/weekday-usage", response_model=list[DayCountOut])
async def weekday_usage(db: AsyncSession = Depends(get_db)):
    return await stats.weekday_usage(db)


@router.get("/court-usage", response_model=list[CourtUsageOut])
async def court_usage(db: AsyncSession = Depends(get_db)):
    return await stats.court_usage(db)


@router.get("/monthly-revenue", response_model=list[MonthRevenueOut])
async def monthly_revenue(
    months: int = Query(6, ge=1, le=24),
    db: AsyncSession = Depends(get_db),
):
    return await stats.monthly_revenue(db, months=months)


@router.get("/today-slots", response_model=list[CourtDayOut])
async def today_slots(db: AsyncSession = Depends(get_db)):
    return await stats.today_slots(db)


@router.get("/recent", response_model=list[BookingDetailOut])
async def recent(
    limit: int = Query(10, ge=1, le=100),
    on_date: date | None = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
):
    bookings = await stats.recent_bookings(db, limit=limit, on_date=on_date)
    return [BookingDetailOut.from_booking(b) for b in bookings]
