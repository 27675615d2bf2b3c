"""
Device webhooks router — /v1/webhooks
"""
import logging

from fastapi import APIRouter, Depends

from ride_service.dependencies import get_ride_service
from ride_service.schemas.schemas import LowBatteryWebhook, SpeedChangeWebhook
from ride_service.services import webhooks
from ride_service.services.rides import RideStateMachine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/webhooks", tags=["Webhooks"])


@router.post("/low-battery")
async def low_battery(
    payload: LowBatteryWebhook,
    rides: RideStateMachine = Depends(get_ride_service),
):
    ride = await webhooks.on_low_battery(rides, payload.device_code)
    return {"terminated_ride_id": ride.id if ride else None}


@router.post("/speed-change")
async def speed_change(
    payload: SpeedChangeWebhook,
    rides: RideStateMachine = Depends(get_ride_service),
):
    body = {"speed_limit": payload.speed_limit, **payload.payload}
    ride = await webhooks.on_speed_change(rides, payload.device_code, body)
    return {"ride_id": ride.id if ride else None}
