"""
Rides router — /v1/rides
"""
import logging
from datetime import datetime
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status

from ride_service.dependencies import get_platform_ride, get_ride_service
from ride_service.middleware.auth import get_current_platform
from ride_service.middleware.idempotency import check_idempotency, store_idempotency_result
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import (
    ChangeDiscountRequest,
    DeviceStatus,
    MaxSpeedRequest,
    PhotoUploadRequest,
    RideListQuery,
    RideListResponse,
    RideResponse,
    RideStartRequest,
    RideStartResponse,
    RideTerminateRequest,
    TimelineEntry,
)
from ride_service.services.rides import RideStateMachine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


@router.get("", response_model=RideListResponse)
async def list_rides(
    query: Annotated[RideListQuery, Query()],
    platform_id: str = Depends(get_current_platform),
    rides: RideStateMachine = Depends(get_ride_service),
):
    query.platform_id = [platform_id]
    items, total = await rides.list_rides(query)
    return RideListResponse(rides=[RideResponse.model_validate(r) for r in items], total=total)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideStartResponse)
async def start_ride(
    payload: RideStartRequest,
    request: Request,
    platform_id: str = Depends(get_current_platform),
    rides: RideStateMachine = Depends(get_ride_service),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Start a ride on a device.
    - Idempotent: repeated calls with the same key return the same result.
    - Serialized per device; a concurrent start on the same device gets 409.
    """
    if idempotency_key:
        cached = await check_idempotency(request, platform_id)
        if cached:
            return cached

    ride = await rides.start_ride(platform_id, payload)
    response_body = {"ride_id": ride.id}

    if idempotency_key:
        await store_idempotency_result(idempotency_key, platform_id, 201, response_body)

    return RideStartResponse(**response_body)


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(ride: Ride = Depends(get_platform_ride)):
    return RideResponse.model_validate(ride)


@router.delete("/{ride_id}", response_model=RideResponse)
async def terminate_ride(
    params: Annotated[RideTerminateRequest, Query()],
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    ride = await rides.terminate_ride(ride, params)
    return RideResponse.model_validate(ride)


@router.post("/{ride_id}/photo", status_code=status.HTTP_204_NO_CONTENT)
async def upload_photo(
    payload: PhotoUploadRequest,
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    await rides.upload_ride_photo(ride, str(payload.photo))


@router.put("/{ride_id}/discount", response_model=RideResponse)
async def change_discount(
    payload: ChangeDiscountRequest,
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    ride = await rides.change_discount(ride, payload)
    return RideResponse.model_validate(ride)


@router.get("/{ride_id}/status", response_model=DeviceStatus)
async def get_status(
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    return await rides.get_status(ride)


@router.get("/{ride_id}/timeline", response_model=list[TimelineEntry])
async def get_timeline(
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    return await rides.get_timeline(ride)


@router.get("/{ride_id}/pricing")
async def get_pricing(
    latitude: Optional[float] = Query(default=None, ge=-90, le=90),
    longitude: Optional[float] = Query(default=None, ge=-180, le=180),
    terminated_at: Optional[datetime] = None,
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    """Fare preview (or final fare, once terminated) for the ride."""
    receipt, profile = await rides.pricing.get_pricing_by_ride(
        ride, latitude=latitude, longitude=longitude, terminated_at=terminated_at
    )
    return {
        "receipt": receipt.model_dump(mode="json"),
        "pricing": profile.pricing.model_dump(mode="json"),
    }


@router.post("/{ride_id}/lock/{state}", status_code=status.HTTP_204_NO_CONTENT)
async def set_lock(
    state: Literal["on", "off"],
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    await rides.set_lock(ride, state == "on")


@router.post("/{ride_id}/lights/{state}", status_code=status.HTTP_204_NO_CONTENT)
async def set_lights(
    state: Literal["on", "off"],
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    await rides.set_lights(ride, state == "on")


@router.put("/{ride_id}/max-speed", status_code=status.HTTP_204_NO_CONTENT)
async def set_max_speed(
    payload: MaxSpeedRequest,
    ride: Ride = Depends(get_platform_ride),
    rides: RideStateMachine = Depends(get_ride_service),
):
    await rides.set_max_speed(ride, payload.max_speed)
