"""On-demand pending-booking expiry.

POST runs one sweep right away; GET describes the service and its last
run, for uptime checks.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.core.config import settings
from canchaya.core.database import get_db
from canchaya.core.dependencies import get_change_feed, get_current_user
from canchaya.schemas import SweepOut, SweepServiceOut
from canchaya.services.change_feed import ChangeFeed
from canchaya.services.expiration import last_run, sweep

router = APIRouter(prefix="/bookings/expire-pending", tags=["expiry"])


@router.post("", response_model=SweepOut, dependencies=[Depends(get_current_user)])
async def expire_pending(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    result = await sweep(db, trigger="manual", feed=feed)
    body = SweepOut(**result.__dict__)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())
    return body


@router.get("", response_model=SweepServiceOut)
async def describe_service(db: AsyncSession = Depends(get_db)):
    run = await last_run(db)
    return SweepServiceOut(
        service="pending-booking-expiry",
        status="active",
        description=(
            f"Cancels pending bookings not confirmed within {settings.pending_ttl_minutes} minutes"
        ),
        endpoint=f"{settings.api_prefix}/bookings/expire-pending",
        ttl_minutes=settings.pending_ttl_minutes,
        interval_seconds=settings.sweep_interval_seconds,
        last_run_at=run.created_at if run else None,
        last_run_cancelled=run.cancelled_count if run else None,
    )
