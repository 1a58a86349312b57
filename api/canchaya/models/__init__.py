"""All models imported here so Base.metadata sees every table."""

from canchaya.models.base import Base
from canchaya.models.booking import ACTIVE_STATUSES, Booking, BookingStatus, SweepRun
from canchaya.models.court import Court, CourtStatus, Customer

__all__ = [
    "Base",
    "Court",
    "CourtStatus",
    "Customer",
    "Booking",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "SweepRun",
]
