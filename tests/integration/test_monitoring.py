"""
Integration tests for post-ride monitoring and the returned photo checker.
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy import select

from ride_service.database import utcnow
from ride_service.models.payment import Payment
from ride_service.schemas.schemas import MonitoringStatusEnum
from ride_service.services.monitoring import MonitoringService, check_returned_photos
from ride_service.services.payment import PaymentLedger


def _service(db) -> MonitoringService:
    ledger = PaymentLedger(db, AsyncMock())
    return MonitoringService(db, ledger, AsyncMock())


@pytest.mark.asyncio
class TestSetMonitoringStatus:
    async def test_status_change_is_logged(self, db, make_ride):
        ride = await make_ride(terminated_at=utcnow())
        service = _service(db)

        await service.set_monitoring_status(ride, MonitoringStatusEnum.WRONG_PARKING)

        assert ride.monitoring_status == "WRONG_PARKING"
        logs, total = await service.get_monitoring_logs(ride)
        assert total == 1
        assert logs[0].log_type == "CHANGED"
        assert logs[0].monitoring_status == "WRONG_PARKING"
        service.messages.send.assert_not_awaited()

    async def test_message_sent_when_requested(self, db, make_ride):
        ride = await make_ride(terminated_at=utcnow())
        service = _service(db)

        await service.set_monitoring_status(ride, MonitoringStatusEnum.DANGER_PARKING, send_message=True)

        phone, template, fields = service.messages.send.await_args.args
        assert (phone, template) == (ride.phone, "monitoring_danger_parking")
        assert fields["ride"]["id"] == ride.id
        logs, _ = await service.get_monitoring_logs(ride)
        assert [log.log_type for log in logs] == ["CHANGED", "SEND_MESSAGE"]

    async def test_no_template_means_no_message(self, db, make_ride):
        ride = await make_ride(terminated_at=utcnow())
        service = _service(db)

        await service.set_monitoring_status(ride, MonitoringStatusEnum.CONFIRMED, send_message=True)

        service.messages.send.assert_not_awaited()

    async def test_towed_device_is_charged(self, db, make_ride):
        ride = await make_ride(terminated_at=utcnow())
        service = _service(db)

        await service.set_monitoring_status(ride, MonitoringStatusEnum.TOWED_DEVICE, price=Decimal("20000"))

        payments = (await db.execute(select(Payment))).scalars().all()
        assert [(p.payment_type, p.amount, p.description) for p in payments] == [
            ("SURCHARGE", Decimal("20000"), "Towed")
        ]
        assert ride.price == Decimal("20000")
        logs, _ = await service.get_monitoring_logs(ride)
        assert [log.log_type for log in logs] == ["CHANGED", "INFO", "ADD_PAYMENT"]
        assert logs[1].message == "Device was towed."

    async def test_collected_without_price(self, db, make_ride):
        ride = await make_ride(terminated_at=utcnow())
        service = _service(db)

        await service.set_monitoring_status(ride, MonitoringStatusEnum.COLLECTED_DEVICE)

        logs, _ = await service.get_monitoring_logs(ride)
        assert [log.message for log in logs] == ["Monitoring status changed.", "Device was collected."]
        assert (await db.execute(select(Payment))).scalars().all() == []


@pytest.mark.asyncio
class TestReturnedPhotoChecker:
    async def test_marks_only_overdue_rides(self, db, make_ride, settings):
        ten_minutes_ago = utcnow() - timedelta(minutes=10)
        overdue = [await make_ride(device_code=f"DEV10{i}", terminated_at=ten_minutes_ago) for i in range(3)]
        with_photo = await make_ride(terminated_at=ten_minutes_ago, photo="https://cdn.test/p.jpg")
        recent = await make_ride(terminated_at=utcnow() - timedelta(minutes=1))
        active = await make_ride()
        confirmed = await make_ride(terminated_at=ten_minutes_ago, monitoring_status="CONFIRMED")

        processed = await check_returned_photos(db, _service(db), settings)

        assert processed == 3
        assert all(r.monitoring_status == "NO_PICTURE" for r in overdue)
        assert with_photo.monitoring_status == "BEFORE_CONFIRM"
        assert recent.monitoring_status == "BEFORE_CONFIRM"
        assert active.monitoring_status == "BEFORE_CONFIRM"
        assert confirmed.monitoring_status == "CONFIRMED"

    async def test_failing_ride_is_skipped(self, db, make_ride, settings):
        base = utcnow() - timedelta(minutes=30)
        broken = await make_ride(device_code="DEV200", terminated_at=base)
        others = [
            await make_ride(device_code=f"DEV20{i}", terminated_at=base + timedelta(minutes=i))
            for i in range(1, 4)
        ]
        service = _service(db)
        original = service.set_monitoring_status
        broken_id = broken.id

        attempted = []

        async def flaky(ride, status, *args, **kwargs):
            attempted.append(ride.id)
            if ride.id == broken_id:
                raise RuntimeError("boom")
            return await original(ride, status, *args, **kwargs)

        service.set_monitoring_status = flaky

        processed = await check_returned_photos(db, service, settings)

        assert processed == 3
        for ride in others:
            await db.refresh(ride)
            assert ride.monitoring_status == "NO_PICTURE"
        assert attempted.count(broken_id) == 1

    async def test_nothing_to_do(self, db, settings):
        assert await check_returned_photos(db, _service(db), settings) == 0
