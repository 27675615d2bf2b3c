"""
FastAPI dependencies shared by the routers.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_service.config import Settings, get_settings
from ride_service.database import get_db
from ride_service.middleware.auth import get_current_platform
from ride_service.models.ride import Ride
from ride_service.redis_client import KeyedLock, get_redis
from ride_service.services.collaborators import Collaborators
from ride_service.services.monitoring import MonitoringService
from ride_service.services.payment import PaymentLedger
from ride_service.services.rides import RideStateMachine


def get_collaborators(request: Request) -> Collaborators:
    return request.app.state.collaborators


async def get_locks(settings: Settings = Depends(get_settings)) -> KeyedLock:
    redis = await get_redis()
    return KeyedLock(redis, settings.ride_lock_ttl_seconds)


def get_ride_service(
    db: AsyncSession = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
    locks: KeyedLock = Depends(get_locks),
    settings: Settings = Depends(get_settings),
) -> RideStateMachine:
    return RideStateMachine(db, collaborators, locks, settings)


def get_ledger(rides: RideStateMachine = Depends(get_ride_service)) -> PaymentLedger:
    return rides.ledger


def get_monitoring_service(
    rides: RideStateMachine = Depends(get_ride_service),
) -> MonitoringService:
    return MonitoringService(rides.db, rides.ledger, rides.collaborators.messages)


async def get_platform_ride(
    ride_id: str,
    platform_id: str = Depends(get_current_platform),
    rides: RideStateMachine = Depends(get_ride_service),
) -> Ride:
    """The ride named in the path, scoped to the calling platform."""
    return await rides.get_ride_or_raise(ride_id, platform_id)
