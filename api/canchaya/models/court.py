"""Court and customer models.

Court = a reservable unit of the facility (e.g. "Cancha 1 - Futbol 5"),
priced per hour.
Customer = the person a booking is made for. Customers never log in.
"""

import enum

from sqlalchemy import Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from canchaya.models.base import Base, TimestampMixin


class CourtStatus(enum.StrEnum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    MAINTENANCE = "maintenance"


class Court(TimestampMixin, Base):
    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    court_type: Mapped[str] = mapped_column(String(50), nullable=False)  # Futbol 5, Futbol 7, ...
    hourly_rate_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Window of allowed start hours, "HH:MM-HH:MM"
    operating_hours: Mapped[str] = mapped_column(String(11), default="08:00-23:00", nullable=False)

    status: Mapped[CourtStatus] = mapped_column(
        Enum(CourtStatus, name="court_status", values_callable=lambda e: [x.value for x in e]),
        default=CourtStatus.AVAILABLE,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Court {self.name} ({self.status.value})>"


class Customer(TimestampMixin, Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50))
    email: Mapped[str | None] = mapped_column(String(254))

    __table_args__ = (Index("ix_customers_last_name", "last_name"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Customer {self.full_name}>"
