"""
Inbound device events.
"""
import logging
from typing import Any, Optional

from ride_service.models.ride import Ride
from ride_service.schemas.schemas import RideTerminateRequest, TerminatedTypeEnum
from ride_service.services.ride_queries import get_latest_ride_by_device
from ride_service.services.rides import RideStateMachine

logger = logging.getLogger(__name__)


async def on_low_battery(rides: RideStateMachine, device_code: str) -> Optional[Ride]:
    """Terminate the device's current ride, if it still has one."""
    ride = await get_latest_ride_by_device(rides.db, device_code)
    if ride is None or ride.terminated_at:
        logger.info("Low battery on %s: no active ride", device_code)
        return None

    logger.info("Low battery on %s: terminating ride %s", device_code, ride.id)
    request = RideTerminateRequest(terminated_type=TerminatedTypeEnum.LOW_BATTERY)
    return await rides.terminate_ride(ride, request)


async def on_speed_change(rides: RideStateMachine, device_code: str, payload: dict[str, Any]) -> Optional[Ride]:
    ride = await get_latest_ride_by_device(rides.db, device_code)
    if ride is None:
        return None
    await rides.send_speed_change(ride, payload)
    return ride
