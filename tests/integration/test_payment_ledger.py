"""
Integration tests for the payment ledger against an in-memory database.
"""
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy import func, select

from ride_service.errors import NotificationFailed, PaymentNotFound, ValidationFailed
from ride_service.models.payment import Payment
from ride_service.schemas.schemas import PaymentListQuery, PaymentTypeEnum
from ride_service.services.payment import PaymentLedger


async def _unrefunded_sum(db, ride) -> Decimal:
    total = await db.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.ride_id == ride.id, Payment.refunded_at.is_(None)
        )
    )
    return Decimal(str(total))


@pytest.mark.asyncio
class TestAddPayment:
    async def test_books_payment_and_refreshes_price(self, db, make_ride):
        ride = await make_ride()
        webhooks = AsyncMock()
        ledger = PaymentLedger(db, webhooks)

        payment = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("1500"))

        assert payment.amount == Decimal("1500")
        assert payment.initial_amount == Decimal("1500")
        assert payment.platform_id == ride.platform_id
        assert ride.price == Decimal("1500")
        webhooks.send.assert_awaited_once()
        platform_id, event_type, data = webhooks.send.await_args.args
        assert (platform_id, event_type) == (ride.platform_id, "payment")
        assert data["id"] == payment.id

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10")])
    async def test_non_positive_amount_is_noop(self, db, make_ride, amount):
        ride = await make_ride()
        webhooks = AsyncMock()
        ledger = PaymentLedger(db, webhooks)

        assert await ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, amount) is None
        assert await ledger.get_payments_by_ride(ride) == []
        webhooks.send.assert_not_awaited()

    async def test_notification_failure_keeps_ledger_row(self, db, make_ride):
        ride = await make_ride()
        webhooks = AsyncMock()
        webhooks.send.side_effect = NotificationFailed()
        ledger = PaymentLedger(db, webhooks)

        with pytest.raises(NotificationFailed):
            await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("700"))

        payments = await ledger.get_payments_by_ride(ride)
        assert len(payments) == 1
        assert ride.price == Decimal("700")


@pytest.mark.asyncio
class TestRefunds:
    async def test_full_refund(self, db, make_ride):
        ride = await make_ride()
        webhooks = AsyncMock()
        ledger = PaymentLedger(db, webhooks)
        payment = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("500"))
        await ledger.set_processed(payment)

        await ledger.refund_payment(ride, payment, reason="duplicate charge")

        assert payment.amount == Decimal("0")
        assert payment.initial_amount == Decimal("500")
        assert payment.refunded_at is not None
        assert payment.processed_at is None
        assert payment.refund_reason == "duplicate charge"
        assert ride.price == Decimal("0")
        assert webhooks.send.await_args.args[1] == "refund"

    async def test_partial_refund_excludes_line_from_price(self, db, make_ride):
        ride = await make_ride()
        ledger = PaymentLedger(db, AsyncMock())
        service = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("300"))
        await ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, Decimal("200"))

        await ledger.refund_payment(ride, service, Decimal("100"))

        assert service.amount == Decimal("200")
        assert ride.price == Decimal("200")
        assert ride.price == await _unrefunded_sum(db, ride)

    async def test_over_refund_clamps_at_zero(self, db, make_ride):
        ride = await make_ride()
        ledger = PaymentLedger(db, AsyncMock())
        payment = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("300"))

        await ledger.refund_payment(ride, payment, Decimal("1000"))

        assert payment.amount == Decimal("0")
        assert payment.initial_amount == Decimal("300")

    @pytest.mark.parametrize("amount", [Decimal("-50"), Decimal("0"), Decimal("0.001")])
    async def test_non_positive_refund_rejected(self, db, make_ride, amount):
        ride = await make_ride()
        webhooks = AsyncMock()
        ledger = PaymentLedger(db, webhooks)
        payment = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("100"))
        webhooks.send.reset_mock()

        with pytest.raises(ValidationFailed):
            await ledger.refund_payment(ride, payment, amount)

        assert payment.amount == Decimal("100")
        assert payment.refunded_at is None
        assert ride.price == Decimal("100")
        webhooks.send.assert_not_awaited()

    async def test_refunding_empty_line_is_noop(self, db, make_ride):
        ride = await make_ride()
        webhooks = AsyncMock()
        ledger = PaymentLedger(db, webhooks)
        payment = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("300"))
        await ledger.refund_payment(ride, payment)
        webhooks.send.reset_mock()

        assert await ledger.refund_payment(ride, payment) is None
        webhooks.send.assert_not_awaited()

    async def test_refund_all_recomputes_price_once(self, db, make_ride):
        ride = await make_ride()
        webhooks = AsyncMock()
        cleared = AsyncMock()
        ledger = PaymentLedger(db, webhooks, on_price_cleared=cleared)
        for amount in ("100", "200", "300"):
            await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal(amount))
        assert ride.price == Decimal("600")
        webhooks.send.reset_mock()
        ledger.refresh_price = AsyncMock(wraps=ledger.refresh_price)

        refunded = await ledger.refund_all_payments(ride, reason="ride disputed")

        assert len(refunded) == 3
        assert ride.price == Decimal("0")
        ledger.refresh_price.assert_awaited_once()
        cleared.assert_awaited_once_with(ride)
        assert webhooks.send.await_count == 3
        assert all(p.refund_reason == "ride disputed" for p in refunded)

    async def test_refund_all_reports_notification_failures(self, db, make_ride):
        ride = await make_ride()
        webhooks = AsyncMock()
        ledger = PaymentLedger(db, webhooks)
        await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("100"))
        await ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, Decimal("50"))
        webhooks.send.side_effect = NotificationFailed()

        with pytest.raises(NotificationFailed):
            await ledger.refund_all_payments(ride)

        payments = await ledger.get_payments_by_ride(ride)
        assert all(p.amount == Decimal("0") for p in payments)
        assert ride.price == Decimal("0")


@pytest.mark.asyncio
class TestQueries:
    async def test_get_payment_scoped_to_ride(self, db, make_ride):
        ride = await make_ride()
        other = await make_ride(device_code="DEV002")
        ledger = PaymentLedger(db, AsyncMock())
        payment = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("100"))

        assert (await ledger.get_payment_or_raise(ride, payment.id)).id == payment.id
        with pytest.raises(PaymentNotFound):
            await ledger.get_payment_or_raise(other, payment.id)

    async def test_list_payments_filters(self, db, make_ride):
        ride = await make_ride()
        foreign = await make_ride(platform_id="platform-other")
        ledger = PaymentLedger(db, AsyncMock())
        service = await ledger.add_payment(ride, PaymentTypeEnum.SERVICE, Decimal("100"))
        await ledger.add_payment(ride, PaymentTypeEnum.SURCHARGE, Decimal("50"), "Towed")
        await ledger.add_payment(foreign, PaymentTypeEnum.SERVICE, Decimal("999"))
        await ledger.refund_payment(ride, service)

        payments, total = await ledger.list_payments(PaymentListQuery(platform_id=[ride.platform_id]))
        assert total == 2

        payments, total = await ledger.list_payments(
            PaymentListQuery(platform_id=[ride.platform_id], only_refunded=True)
        )
        assert [p.id for p in payments] == [service.id]

        payments, total = await ledger.list_payments(
            PaymentListQuery(platform_id=[ride.platform_id], payment_type=PaymentTypeEnum.SURCHARGE)
        )
        assert total == 1 and payments[0].description == "Towed"

        payments, total = await ledger.list_payments(PaymentListQuery(search="Tow"))
        assert total == 1

        payments, _ = await ledger.list_payments(
            PaymentListQuery(order_by_field="amount", order_by_sort="asc", take=1)
        )
        assert payments[0].amount == Decimal("0")
