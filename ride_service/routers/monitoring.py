"""
Monitoring router — /v1/rides/{ride_id}/monitoring
"""
from fastapi import APIRouter, Depends

from ride_service.dependencies import get_monitoring_service, get_platform_ride
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import (
    MonitoringLogListResponse,
    MonitoringLogResponse,
    MonitoringStatusRequest,
    RideResponse,
)
from ride_service.services.monitoring import MonitoringService

router = APIRouter(prefix="/v1/rides/{ride_id}/monitoring", tags=["Monitoring"])


@router.get("", response_model=MonitoringLogListResponse)
async def get_monitoring_logs(
    ride: Ride = Depends(get_platform_ride),
    monitoring: MonitoringService = Depends(get_monitoring_service),
):
    logs, total = await monitoring.get_monitoring_logs(ride)
    return MonitoringLogListResponse(
        monitoring_logs=[MonitoringLogResponse.model_validate(log) for log in logs],
        total=total,
    )


@router.post("", response_model=RideResponse)
async def set_monitoring_status(
    payload: MonitoringStatusRequest,
    ride: Ride = Depends(get_platform_ride),
    monitoring: MonitoringService = Depends(get_monitoring_service),
):
    ride = await monitoring.set_monitoring_status(
        ride, payload.monitoring_status, payload.send_message, payload.price
    )
    return RideResponse.model_validate(ride)
