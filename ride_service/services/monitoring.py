"""
Post-termination monitoring: status workflow, audit log, rider messages and
the surcharges that come with towing/collecting a device.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ride_service.config import Settings
from ride_service.database import utcnow
from ride_service.models.monitoring import MonitoringLog
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import (
    MonitoringLogTypeEnum,
    MonitoringStatusEnum,
    PaymentTypeEnum,
    RideListQuery,
    RideResponse,
)
from ride_service.services.collaborators import MessageGateway
from ride_service.services.payment import PaymentLedger
from ride_service.services.ride_queries import list_rides

logger = logging.getLogger(__name__)

FINAL_ACTIONS = {MonitoringStatusEnum.TOWED_DEVICE, MonitoringStatusEnum.COLLECTED_DEVICE}

MESSAGE_TEMPLATES: dict[MonitoringStatusEnum, Optional[str]] = {
    MonitoringStatusEnum.BEFORE_CONFIRM: None,
    MonitoringStatusEnum.CONFIRMED: None,
    MonitoringStatusEnum.WRONG_PARKING: "monitoring_danger_parking",
    MonitoringStatusEnum.DANGER_PARKING: "monitoring_danger_parking",
    MonitoringStatusEnum.IN_COLLECTION_AREA: "monitoring_in_collection_area",
    MonitoringStatusEnum.WRONG_PICTURE: "monitoring_wrong_picture",
    MonitoringStatusEnum.NO_PICTURE: "monitoring_wrong_picture",
    MonitoringStatusEnum.COLLECTED_DEVICE: "monitoring_towed",
    MonitoringStatusEnum.TOWED_DEVICE: "monitoring_towed",
}


async def add_monitoring_log(
    db: AsyncSession,
    ride: Ride,
    log_type: MonitoringLogTypeEnum,
    message: str,
) -> MonitoringLog:
    log = MonitoringLog(
        ride_id=ride.id,
        monitoring_status=ride.monitoring_status,
        log_type=log_type.value,
        message=message,
    )
    db.add(log)
    await db.commit()
    return log


class MonitoringService:
    def __init__(self, db: AsyncSession, ledger: PaymentLedger, messages: MessageGateway):
        self.db = db
        self.ledger = ledger
        self.messages = messages

    async def get_monitoring_logs(self, ride: Ride) -> tuple[list[MonitoringLog], int]:
        where = MonitoringLog.ride_id == ride.id
        total = await self.db.scalar(select(func.count()).select_from(MonitoringLog).where(where))
        result = await self.db.execute(
            select(MonitoringLog).where(where).order_by(MonitoringLog.created_at.asc())
        )
        return list(result.scalars().all()), total or 0

    async def set_monitoring_status(
        self,
        ride: Ride,
        monitoring_status: MonitoringStatusEnum,
        send_message: bool = False,
        price: Optional[Decimal] = None,
    ) -> Ride:
        is_final_action = monitoring_status in FINAL_ACTIONS
        ride.monitoring_status = monitoring_status.value
        await self.db.commit()

        await add_monitoring_log(self.db, ride, MonitoringLogTypeEnum.CHANGED, "Monitoring status changed.")
        if is_final_action:
            await add_monitoring_log(
                self.db,
                ride,
                MonitoringLogTypeEnum.INFO,
                "Device was towed." if monitoring_status == MonitoringStatusEnum.TOWED_DEVICE
                else "Device was collected.",
            )

        template = MESSAGE_TEMPLATES.get(monitoring_status)
        if send_message and template:
            fields = {"ride": RideResponse.model_validate(ride).model_dump(mode="json")}
            await self.messages.send(ride.phone, template, fields)
            await add_monitoring_log(self.db, ride, MonitoringLogTypeEnum.SEND_MESSAGE, "Message sent to rider.")

        if is_final_action and price:
            description = "Towed" if monitoring_status == MonitoringStatusEnum.TOWED_DEVICE else "Collected"
            payment = await self.ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, price, description)
            if payment:
                await add_monitoring_log(
                    self.db, ride, MonitoringLogTypeEnum.ADD_PAYMENT, f"Charged {payment.amount}."
                )

        logger.info("Ride %s monitoring status -> %s", ride.id, monitoring_status.value)
        return ride


async def check_returned_photos(
    db: AsyncSession,
    monitoring: MonitoringService,
    settings: Settings,
) -> int:
    """Flag terminated rides that never got a return photo as NO_PICTURE.

    Returns the number of rides processed. A failing ride is logged and
    skipped; the sweep carries on with the rest.
    """
    cutoff = utcnow() - timedelta(minutes=settings.photo_checker_grace_minutes)
    query = RideListQuery(
        take=settings.photo_checker_page_size,
        only_terminated=True,
        only_no_photo=True,
        terminated_before=cutoff,
        monitoring_status=[MonitoringStatusEnum.BEFORE_CONFIRM],
        order_by_field="terminated_at",
        order_by_sort="asc",
    )

    processed = 0
    failed: set[str] = set()
    while True:
        rides, total = await list_rides(db, query)
        rides = [r for r in rides if r.id not in failed]
        if not rides:
            break
        for ride in rides:
            ride_id = ride.id
            try:
                await monitoring.set_monitoring_status(ride, MonitoringStatusEnum.NO_PICTURE)
                processed += 1
                logger.info(
                    "Returned photo checker / %s - %s(%s, %s) marked as NO_PICTURE",
                    ride_id, ride.realname, ride.user_id, ride.phone,
                )
            except Exception:
                await db.rollback()
                failed.add(ride_id)
                logger.exception("Returned photo checker / %s - could not update ride", ride_id)
                # rollback expired the rest of this page, reload it
                break
        # Processed rides drop out of the filter; skip only past the failed ones.
        query.skip = len(failed)
        if total <= query.skip:
            break
    return processed
