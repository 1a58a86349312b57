"""Customer routes: list/search, read, create, update, delete."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from canchaya.core.database import get_db
from canchaya.core.dependencies import get_change_feed, get_current_user
from canchaya.models.booking import Booking
from canchaya.models.court import Customer
from canchaya.schemas import CustomerCreate, CustomerOut, CustomerUpdate
from canchaya.services.change_feed import ChangeFeed, ChangeType, snapshot

router = APIRouter(prefix="/customers", tags=["customers"], dependencies=[Depends(get_current_user)])


async def _get_customer(db: AsyncSession, customer_id: int) -> Customer:
    customer = await db.get(Customer, customer_id)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


@router.get("", response_model=list[CustomerOut])
async def list_customers(
    q: str | None = Query(None, description="Search first name, last name or phone"),
    db: AsyncSession = Depends(get_db),
):
    """All customers by id, or the matches for `q` ordered by last name."""
    query = select(Customer)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(
                Customer.first_name.ilike(pattern),
                Customer.last_name.ilike(pattern),
                Customer.phone.ilike(pattern),
            )
        ).order_by(Customer.last_name, Customer.id)
    else:
        query = query.order_by(Customer.id)

    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{customer_id}", response_model=CustomerOut)
async def get_customer(customer_id: int, db: AsyncSession = Depends(get_db)):
    return await _get_customer(db, customer_id)


@router.post("", response_model=CustomerOut, status_code=status.HTTP_201_CREATED)
async def create_customer(
    body: CustomerCreate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    customer = Customer(**body.model_dump())
    db.add(customer)
    await db.commit()
    feed.publish_row("customers", ChangeType.INSERT, customer)
    return customer


@router.patch("/{customer_id}", response_model=CustomerOut)
async def update_customer(
    customer_id: int,
    body: CustomerUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    customer = await _get_customer(db, customer_id)
    changes = body.model_dump(exclude_unset=True)

    for name in ("first_name", "last_name"):
        if name in changes and not (changes[name] or "").strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{name} must not be blank")

    old = snapshot(customer)
    for field, value in changes.items():
        setattr(customer, field, value.strip() if field in ("first_name", "last_name") else value)
    await db.commit()
    feed.publish_row("customers", ChangeType.UPDATE, customer, old_record=old)
    return customer


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: int,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    customer = await _get_customer(db, customer_id)

    has_bookings = await db.scalar(select(exists().where(Booking.customer_id == customer_id)))
    if has_bookings:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Customer has bookings and cannot be deleted"
        )

    record = snapshot(customer)
    await db.delete(customer)
    await db.commit()
    feed.publish_record("customers", ChangeType.DELETE, record)
