"""Booking model.

A booking reserves a court for a customer on a date between two wall-clock
times. An end time of 00:00 means midnight at the end of booking_date.
"""

import enum
from datetime import date, datetime, time

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canchaya.models.base import Base, TimestampMixin, utcnow
from canchaya.models.court import Court, Customer


class BookingStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that hold a slot on the court
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id"), nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False)

    # When
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [x.value for x in e]),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    # Start of the current pending hold: created_at, or when the booking was last reopened
    pending_since: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(String(20))  # expired | manual

    # Money
    cost_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text)

    # Relationships
    court: Mapped["Court"] = relationship()
    customer: Mapped["Customer"] = relationship()

    __table_args__ = (
        # Conflict checks and the day grid
        Index("ix_bookings_court_date", "court_id", "booking_date"),
        # Expiry sweep
        Index("ix_bookings_status_pending_since", "status", "pending_since"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.booking_date} {self.start_time}-{self.end_time} court={self.court_id}>"


class SweepRun(Base):
    """One completed expiry sweep. The newest row is the sweeper's last run."""

    __tablename__ = "sweep_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)  # startup | schedule | manual
    cancelled_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_ids: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<SweepRun {self.trigger} cancelled={self.cancelled_count}>"
