"""
Read-side helpers for rides.
"""
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ride_service.errors import RideNotFound
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import RideListQuery


async def get_ride(db: AsyncSession, ride_id: str, platform_id: Optional[str] = None) -> Optional[Ride]:
    stmt = select(Ride).where(Ride.id == ride_id)
    if platform_id:
        stmt = stmt.where(Ride.platform_id == platform_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_ride_or_raise(db: AsyncSession, ride_id: str, platform_id: Optional[str] = None) -> Ride:
    ride = await get_ride(db, ride_id, platform_id)
    if not ride:
        raise RideNotFound(details={"ride_id": ride_id})
    return ride


async def get_latest_ride_by_device(db: AsyncSession, device_code: str) -> Optional[Ride]:
    result = await db.execute(
        select(Ride)
        .where(Ride.device_code == device_code.upper())
        .order_by(Ride.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def is_last_ride(db: AsyncSession, ride: Ride) -> bool:
    """True when `ride` is the most recently created ride of its device."""
    latest = await get_latest_ride_by_device(db, ride.device_code)
    return latest is not None and latest.id == ride.id


async def list_rides(db: AsyncSession, query: RideListQuery) -> tuple[list[Ride], int]:
    conditions = []
    if query.started_at:
        conditions.append(Ride.started_at >= query.started_at)
    if query.ended_at:
        conditions.append(Ride.started_at <= query.ended_at)
    if query.search:
        conditions.append(
            or_(
                Ride.id == query.search,
                Ride.device_code == query.search,
                Ride.insurance_id == query.search,
                Ride.discount_id == query.search,
                Ride.franchise_id == query.search,
                Ride.platform_id == query.search,
                Ride.user_id == query.search,
                Ride.realname.contains(query.search),
                Ride.phone.contains(query.search),
                Ride.receipt_id == query.search,
            )
        )
    if query.platform_id:
        conditions.append(Ride.platform_id.in_(query.platform_id))
    if query.franchise_id:
        conditions.append(Ride.franchise_id.in_(query.franchise_id))
    if query.region_id:
        conditions.append(Ride.region_id.in_(query.region_id))
    if query.discount_group_id:
        conditions.append(Ride.discount_group_id.in_(query.discount_group_id))
    if query.terminated_type:
        conditions.append(Ride.terminated_type.in_([t.value for t in query.terminated_type]))
    if query.device_code:
        conditions.append(Ride.device_code.in_([c.upper() for c in query.device_code]))
    if query.monitoring_status:
        conditions.append(Ride.monitoring_status.in_([s.value for s in query.monitoring_status]))
    if query.only_terminated:
        conditions.append(Ride.terminated_at.is_not(None))
    if not query.show_terminated:
        conditions.append(Ride.terminated_at.is_(None))
    if query.terminated_before:
        conditions.append(Ride.terminated_at <= query.terminated_before)
    if query.only_photo:
        conditions.append(Ride.photo.is_not(None))
    if query.only_no_photo:
        conditions.append(Ride.photo.is_(None))

    column = getattr(Ride, query.order_by_field)
    order = column.asc() if query.order_by_sort.value == "asc" else column.desc()

    total = await db.scalar(select(func.count()).select_from(Ride).where(*conditions))
    result = await db.execute(
        select(Ride).where(*conditions).order_by(order).offset(query.skip).limit(query.take)
    )
    return list(result.scalars().all()), total or 0
