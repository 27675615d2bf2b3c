"""
Ride lifecycle: ACTIVE -> TERMINATED.

start and terminate talk to several services that share no transaction, so
both run as an explicit Saga (see saga.py). The step lists below are the
contract:

  start      device lookup -> proximity -> device start* -> clear photo
             -> discount lock* -> insurance start* -> persist
  terminate  device status -> lights off -> stop -> discount used
             -> insurance end (non-critical) -> pricing -> payments
             -> monitoring log -> persist -> ride end webhook

  (* = has a compensation)

Terminate has no compensations: a failure after the device stopped leaves
the ride active but powered off until the caller retries.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ride_service.config import Settings
from ride_service.database import utcnow
from ride_service.errors import (
    CollaboratorError,
    DeviceInUse,
    DeviceTooFar,
    PhotoAlreadyUploaded,
    PhotoUploadNotTerminated,
    PhotoUploadTimeout,
    RideAlreadyTerminated,
)
from ride_service.models.location import Location
from ride_service.models.ride import Ride
from ride_service.redis_client import KeyedLock, device_lock_key, ride_lock_key
from ride_service.schemas.schemas import (
    ChangeDiscountRequest,
    DeviceModeEnum,
    DeviceStatus,
    MonitoringLogTypeEnum,
    PaymentTypeEnum,
    RideListQuery,
    RideResponse,
    RideStartRequest,
    RideStateEnum,
    RideTerminateRequest,
    TimelineEntry,
)
from ride_service.services import ride_queries
from ride_service.services.collaborators import Collaborators
from ride_service.services.geo import distance_meters
from ride_service.services.monitoring import add_monitoring_log
from ride_service.services.payment import PaymentLedger
from ride_service.services.pricing import PricingService, elapsed_minutes, receipt_to_model
from ride_service.services.saga import Saga

logger = logging.getLogger(__name__)

OUTSIDE_AREA_DESCRIPTION = "Returned outside service area"
EQUIPMENT_LOST_DESCRIPTION = "Equipment lost"


def ride_state(ride: Ride) -> RideStateEnum:
    return RideStateEnum.TERMINATED if ride.terminated_at else RideStateEnum.ACTIVE


def ensure_active(ride: Ride) -> None:
    if ride.terminated_at:
        raise RideAlreadyTerminated(details={"ride_id": ride.id})


class RideStateMachine:
    def __init__(
        self,
        db: AsyncSession,
        collaborators: Collaborators,
        locks: KeyedLock,
        settings: Settings,
    ):
        self.db = db
        self.collaborators = collaborators
        self.devices = collaborators.devices
        self.locks = locks
        self.settings = settings
        self.pricing = PricingService(collaborators.locations, collaborators.discounts)
        self.ledger = PaymentLedger(db, collaborators.webhooks, on_price_cleared=self.cancel_insurance)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_ride(self, ride_id: str, platform_id: Optional[str] = None) -> Optional[Ride]:
        return await ride_queries.get_ride(self.db, ride_id, platform_id)

    async def get_ride_or_raise(self, ride_id: str, platform_id: Optional[str] = None) -> Ride:
        return await ride_queries.get_ride_or_raise(self.db, ride_id, platform_id)

    async def list_rides(self, query: RideListQuery) -> tuple[list[Ride], int]:
        return await ride_queries.list_rides(self.db, query)

    async def is_last_ride(self, ride: Ride) -> bool:
        return await ride_queries.is_last_ride(self.db, ride)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_ride(self, platform_id: str, request: RideStartRequest) -> Ride:
        device_code = request.device_code.upper()
        async with self.locks.hold(device_lock_key(device_code)):
            saga = Saga("start_ride", device_code)
            saga.step("device", lambda r: self._ready_device(device_code))
            saga.step("status", lambda r: self._check_proximity(platform_id, device_code, request))
            saga.step(
                "device_start",
                lambda r: self.devices.start(device_code),
                compensate=lambda r: self.devices.stop(device_code),
            )
            saga.step("clear_photo", lambda r: self.devices.set_photo(device_code, None))
            if request.discount_group_id and request.discount_id:
                saga.step(
                    "discount_lock",
                    lambda r: self.collaborators.discounts.lock(request.discount_group_id, request.discount_id),
                    compensate=lambda r: self.collaborators.discounts.unlock(
                        request.discount_group_id, request.discount_id
                    ),
                )
            saga.step(
                "insurance",
                lambda r: self.collaborators.insurance.start(
                    provider=self.settings.insurance_provider,
                    user_id=request.user_id,
                    platform_id=platform_id,
                    device_code=device_code,
                    phone=request.phone,
                    latitude=request.latitude,
                    longitude=request.longitude,
                ),
                compensate=lambda r: self.collaborators.insurance.cancel(r["insurance"]),
            )
            saga.step("persist", lambda r: self._persist_started(platform_id, device_code, request, r))
            results = await saga.run()

        ride = results["persist"]
        logger.info("Ride started ride=%s device=%s platform=%s", ride.id, device_code, platform_id)
        return ride

    async def _ready_device(self, device_code: str):
        device = await self.devices.get_device(device_code)
        if device.mode != DeviceModeEnum.READY:
            raise DeviceInUse(details={"device_code": device_code, "mode": device.mode.value})
        return device

    async def _check_proximity(
        self, platform_id: str, device_code: str, request: RideStartRequest
    ) -> DeviceStatus:
        status = await self.devices.get_latest_status(device_code)
        if request.debug:
            if self.settings.allow_debug_start:
                logger.warning(
                    "Debug start bypassed proximity check platform=%s user=%s device=%s",
                    platform_id, request.user_id, device_code,
                )
                return status
            logger.warning(
                "Debug start refused (disabled) platform=%s user=%s device=%s",
                platform_id, request.user_id, device_code,
            )

        # Without a valid fix the device position is meaningless.
        if not status.gps.is_valid:
            return status

        distance = distance_meters(
            status.gps.latitude, status.gps.longitude, request.latitude, request.longitude
        )
        if distance > self.settings.start_distance_limit_meters:
            rounded = round(distance)
            raise DeviceTooFar(
                f"Rider is {rounded:,}m away from the device",
                {"device_code": device_code, "distance": rounded},
            )
        return status

    async def _persist_started(
        self,
        platform_id: str,
        device_code: str,
        request: RideStartRequest,
        results: dict[str, Any],
    ) -> Ride:
        device = results["device"]
        status: DeviceStatus = results["status"]
        ride = Ride(
            device_code=device_code,
            user_id=request.user_id,
            realname=request.realname,
            phone=request.phone,
            birthday=request.birthday,
            platform_id=platform_id,
            franchise_id=device.franchise_id,
            region_id=device.region_id,
            discount_group_id=request.discount_group_id,
            discount_id=request.discount_id,
            insurance_id=results["insurance"],
            started_phone_location=Location(latitude=request.latitude, longitude=request.longitude),
            started_device_location=Location(latitude=status.gps.latitude, longitude=status.gps.longitude),
            price=Decimal("0"),
        )
        self.db.add(ride)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(ride)
        return ride

    # ------------------------------------------------------------------
    # Terminate
    # ------------------------------------------------------------------

    async def terminate_ride(self, ride: Ride, request: RideTerminateRequest) -> Ride:
        ensure_active(ride)
        terminated_at = request.terminated_at or utcnow()
        elapsed_minutes(ride.started_at, terminated_at)

        async with self.locks.hold(ride_lock_key(ride.id)):
            # another request may have finished terminating while we waited
            await self.db.refresh(ride, ["terminated_at"])
            ensure_active(ride)

            code = ride.device_code
            discounts = self.collaborators.discounts
            saga = Saga("terminate_ride", ride.id)
            saga.step("status", lambda r: self.devices.get_latest_status(code))
            saga.step("lights_off", lambda r: self.devices.lights_off(code))
            saga.step("stop", lambda r: self.devices.stop(code))
            if ride.discount_group_id and ride.discount_id:
                saga.step("discount_used", lambda r: discounts.mark_used(ride.discount_group_id, ride.discount_id))
            if ride.insurance_id:
                saga.step(
                    "insurance_end",
                    lambda r: self.collaborators.insurance.end(ride.insurance_id, terminated_at),
                    critical=False,
                )
            saga.step(
                "pricing",
                lambda r: self.pricing.get_pricing_by_ride(
                    ride,
                    latitude=r["status"].gps.latitude,
                    longitude=r["status"].gps.longitude,
                    terminated_at=terminated_at,
                ),
            )
            saga.step("payments", lambda r: self._book_payments(ride, *r["pricing"]))
            saga.step(
                "monitoring_log",
                lambda r: add_monitoring_log(self.db, ride, MonitoringLogTypeEnum.INFO, "Ride terminated."),
            )
            saga.step("persist", lambda r: self._persist_terminated(ride, request, terminated_at, r))
            saga.step("ride_end", lambda r: self.send_end_webhook(ride))
            await saga.run()

        logger.info("Ride terminated ride=%s type=%s price=%s", ride.id, ride.terminated_type, ride.price)
        return ride

    async def _book_payments(self, ride: Ride, receipt, profile) -> None:
        surcharge = receipt.surcharge.total
        await self.ledger.add_payment(ride, PaymentTypeEnum.SERVICE, receipt.total - surcharge)
        await self.ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, surcharge, OUTSIDE_AREA_DESCRIPTION)

        lost_price = profile.pricing.equipment_lost_price
        if lost_price and await self.collaborators.equipment.has_unreturned(ride.id):
            await self.ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, lost_price, EQUIPMENT_LOST_DESCRIPTION)

    async def _persist_terminated(
        self,
        ride: Ride,
        request: RideTerminateRequest,
        terminated_at: datetime,
        results: dict[str, Any],
    ) -> Ride:
        status: DeviceStatus = results["status"]
        receipt, _ = results["pricing"]

        ride.terminated_at = terminated_at
        ride.terminated_type = request.terminated_type.value
        if request.latitude is not None and request.longitude is not None:
            ride.terminated_phone_location = Location(latitude=request.latitude, longitude=request.longitude)
        ride.terminated_device_location = Location(latitude=status.gps.latitude, longitude=status.gps.longitude)
        ride.receipt = receipt_to_model(receipt)
        await self.db.commit()
        await self.db.refresh(ride)
        return ride

    # ------------------------------------------------------------------
    # Follow-ups
    # ------------------------------------------------------------------

    async def change_discount(self, ride: Ride, request: ChangeDiscountRequest) -> Ride:
        ensure_active(ride)
        discounts = self.collaborators.discounts

        before = None
        if ride.discount_group_id and ride.discount_id:
            before = await discounts.get_discount(ride.discount_group_id, ride.discount_id)
        after = None
        if request.discount_group_id and request.discount_id:
            after = await discounts.get_discount(request.discount_group_id, request.discount_id)

        ride.discount_group_id = request.discount_group_id
        ride.discount_id = request.discount_id

        calls = [self.db.commit()]
        if before:
            calls.append(discounts.unlock(before.discount_group_id, before.discount_id))
        if after:
            calls.append(discounts.lock(after.discount_group_id, after.discount_id))
        await asyncio.gather(*calls)
        return ride

    async def upload_ride_photo(self, ride: Ride, photo: str) -> Ride:
        if ride.photo:
            raise PhotoAlreadyUploaded(details={"ride_id": ride.id})
        if not ride.terminated_at:
            raise PhotoUploadNotTerminated(details={"ride_id": ride.id})
        deadline = ride.terminated_at + timedelta(minutes=self.settings.photo_upload_window_minutes)
        if deadline < utcnow():
            raise PhotoUploadTimeout(details={"ride_id": ride.id, "deadline": deadline.isoformat()})

        ride.photo = photo
        await self.db.commit()

        if await self.is_last_ride(ride):
            await self.devices.set_photo(ride.device_code, photo)
        return ride

    async def cancel_insurance(self, ride: Ride) -> None:
        if not ride.insurance_id:
            return
        try:
            await self.collaborators.insurance.cancel(ride.insurance_id)
            logger.info("Insurance cancelled ride=%s insurance=%s", ride.id, ride.insurance_id)
        except CollaboratorError as exc:
            logger.warning("Insurance cancel failed ride=%s insurance=%s: %s", ride.id, ride.insurance_id, exc)

    # ------------------------------------------------------------------
    # Device pass-throughs
    # ------------------------------------------------------------------

    async def set_lock(self, ride: Ride, enabled: bool) -> None:
        ensure_active(ride)
        if enabled:
            await self.devices.lock(ride.device_code)
        else:
            await self.devices.unlock(ride.device_code)

    async def set_lights(self, ride: Ride, enabled: bool) -> None:
        ensure_active(ride)
        if enabled:
            await self.devices.lights_on(ride.device_code)
        else:
            await self.devices.lights_off(ride.device_code)

    async def set_max_speed(self, ride: Ride, max_speed: Optional[int]) -> None:
        ensure_active(ride)
        await self.devices.set_max_speed(ride.device_code, max_speed)

    async def get_status(self, ride: Ride) -> DeviceStatus:
        ensure_active(ride)
        return await self.devices.get_latest_status(ride.device_code)

    async def get_timeline(self, ride: Ride) -> list[TimelineEntry]:
        ensure_active(ride)
        statuses = await self.devices.get_status_timeline(ride.device_code, ride.started_at, utcnow())
        return [
            TimelineEntry(
                latitude=s.gps.latitude,
                longitude=s.gps.longitude,
                battery=s.power.scooter.battery,
                created_at=s.created_at,
            )
            for s in statuses
        ]

    # ------------------------------------------------------------------
    # Outbound notifications
    # ------------------------------------------------------------------

    async def send_end_webhook(self, ride: Ride) -> None:
        data = RideResponse.model_validate(ride).model_dump(mode="json")
        await self.collaborators.webhooks.send(ride.platform_id, "rideEnd", data)

    async def send_speed_change(self, ride: Ride, payload: dict[str, Any]) -> None:
        ride_data = RideResponse.model_validate(ride).model_dump(mode="json")
        await self.collaborators.webhooks.send(ride.platform_id, "speedChange", {**payload, "ride": ride_data})
