"""Pydantic schemas for API serialisation."""

from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field, field_validator

from canchaya.models.booking import BookingStatus
from canchaya.models.court import CourtStatus
from canchaya.services.booking_rules import parse_operating_hours

# --- Court ---


class CourtBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    court_type: str = Field(min_length=1, max_length=50)
    hourly_rate_cents: int = Field(ge=0)
    operating_hours: str = "08:00-23:00"
    status: CourtStatus = CourtStatus.AVAILABLE

    @field_validator("operating_hours")
    @classmethod
    def _check_window(cls, value: str) -> str:
        if parse_operating_hours(value) is None:
            raise ValueError("operating_hours must look like HH:MM-HH:MM")
        return value


class CourtCreate(CourtBase):
    pass


class CourtUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    court_type: str | None = Field(default=None, min_length=1, max_length=50)
    hourly_rate_cents: int | None = Field(default=None, ge=0)
    operating_hours: str | None = None
    status: CourtStatus | None = None

    @field_validator("operating_hours")
    @classmethod
    def _check_window(cls, value: str | None) -> str | None:
        if value is not None and parse_operating_hours(value) is None:
            raise ValueError("operating_hours must look like HH:MM-HH:MM")
        return value


class CourtStatusUpdate(BaseModel):
    status: CourtStatus


class CourtOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    court_type: str
    hourly_rate_cents: int
    operating_hours: str
    status: str
    created_at: datetime


# --- Customer ---


class CustomerCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=254)

    @field_validator("first_name", "last_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class CustomerUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=254)


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    phone: str | None
    email: str | None
    created_at: datetime


# --- Booking ---


def _whole_minute(value: time | None) -> time | None:
    # Slots are minute-grained; seconds would skew overlaps and durations
    if value is None:
        return None
    return value.replace(second=0, microsecond=0)


class BookingCreate(BaseModel):
    court_id: int
    customer_id: int
    booking_date: date
    start_time: time
    end_time: time  # 00:00 = midnight at the end of booking_date
    status: BookingStatus = BookingStatus.PENDING
    notes: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _truncate_seconds(cls, value: time) -> time:
        return _whole_minute(value)


class BookingUpdate(BaseModel):
    court_id: int | None = None
    customer_id: int | None = None
    booking_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    status: BookingStatus | None = None
    notes: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _truncate_seconds(cls, value: time | None) -> time | None:
        return _whole_minute(value)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingQuote(BaseModel):
    court_id: int
    booking_date: date
    start_time: time
    end_time: time
    exclude_booking_id: int | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _truncate_seconds(cls, value: time) -> time:
        return _whole_minute(value)


class ViolationOut(BaseModel):
    rule: str
    message: str


class QuoteOut(BaseModel):
    valid: bool
    violations: list[ViolationOut]
    cost_cents: int
    duration_minutes: int


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    court_id: int
    customer_id: int
    booking_date: date
    start_time: time
    end_time: time
    status: str
    cost_cents: int
    notes: str | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime


class BookingDetailOut(BookingOut):
    court_name: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None

    @classmethod
    def from_booking(cls, booking) -> "BookingDetailOut":
        """Build from a Booking whose court and customer are already loaded."""
        out = cls.model_validate(booking)
        out.court_name = booking.court.name if booking.court else None
        if booking.customer:
            out.customer_name = booking.customer.full_name
            out.customer_phone = booking.customer.phone
        return out


class OccupiedSlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_time: time
    end_time: time
    status: str


class TimeRemainingOut(BaseModel):
    booking_id: int
    minutes_remaining: int
    seconds_remaining: int
    expired: bool
    pct_elapsed: float


# --- Expiry sweep ---


class SweepOut(BaseModel):
    success: bool
    cancelled: int
    cancelled_ids: list[int] = []
    message: str | None = None
    error: str | None = None


class SweepServiceOut(BaseModel):
    service: str
    status: str
    description: str
    endpoint: str
    ttl_minutes: int
    interval_seconds: int
    last_run_at: datetime | None
    last_run_cancelled: int | None


# --- Dashboard ---


class SummaryOut(BaseModel):
    confirmed_today: int
    pending_today: int
    revenue_today_cents: int
    revenue_month_cents: int
    bookings_month: int
    total_courts: int
    available_courts: int
    active_customers: int


class HourCountOut(BaseModel):
    hour: str  # "HH:00"
    count: int


class DayCountOut(BaseModel):
    day: str
    count: int


class CourtUsageOut(BaseModel):
    court_id: int
    name: str
    count: int


class MonthRevenueOut(BaseModel):
    month: str  # "YYYY-MM"
    revenue_cents: int


class CourtDayOut(BaseModel):
    court_id: int
    name: str
    court_type: str
    hourly_rate_cents: int
    operating_hours: str
    occupied: list[str]
    available: list[str]
    past: list[str]
    in_maintenance: bool
    total_slots: int
