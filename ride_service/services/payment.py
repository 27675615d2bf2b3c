"""
Payment ledger for a ride.

Every mutation is written (and the ride price recomputed) before the owning
platform is notified, so a failed notification never loses a ledger row; the
failure is still raised to the caller. Consumers of the payment/refund
webhooks are expected to be idempotent.

Invariants:
  - ride.price == Σ(payment.amount WHERE refunded_at IS NULL)
  - 0 <= payment.amount <= payment.initial_amount
"""
import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ride_service.database import utcnow
from ride_service.errors import NotificationFailed, PaymentNotFound, ValidationFailed
from ride_service.models.payment import Payment
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import PaymentListQuery, PaymentResponse, PaymentTypeEnum
from ride_service.services.collaborators import WebhookClient
from ride_service.services.pricing import to_money

logger = logging.getLogger(__name__)

PriceClearedHook = Callable[[Ride], Awaitable[None]]

ZERO = Decimal("0")


class PaymentLedger:
    def __init__(
        self,
        db: AsyncSession,
        webhooks: WebhookClient,
        on_price_cleared: Optional[PriceClearedHook] = None,
    ):
        self.db = db
        self.webhooks = webhooks
        self.on_price_cleared = on_price_cleared

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_payment(
        self,
        ride: Ride,
        payment_type: PaymentTypeEnum,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> Optional[Payment]:
        """Book a charge. Non-positive amounts are ignored (returns None)."""
        amount = to_money(amount)
        if amount <= 0:
            return None

        payment = Payment(
            ride_id=ride.id,
            platform_id=ride.platform_id,
            franchise_id=ride.franchise_id,
            payment_type=PaymentTypeEnum(payment_type).value,
            amount=amount,
            initial_amount=amount,
            description=description,
        )
        self.db.add(payment)
        await self.db.commit()
        logger.info("Payment added ride=%s payment=%s type=%s amount=%s",
                    ride.id, payment.id, payment.payment_type, amount)

        await self.refresh_price(ride)
        await self._notify(payment, "payment")
        return payment

    async def refund_payment(
        self,
        ride: Ride,
        payment: Payment,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        refresh: bool = True,
    ) -> Optional[Payment]:
        """Refund all (default) or part of the remaining amount.

        Already fully refunded lines are left alone, which makes the call
        safe to retry. A partial refund larger than the remaining amount
        refunds what is left.
        """
        if amount is not None and to_money(amount) <= 0:
            raise ValidationFailed("Refund amount must be positive", {"amount": str(amount)})
        if not self._apply_refund(payment, amount, reason):
            return None
        await self.db.commit()
        logger.info("Payment refunded ride=%s payment=%s remaining=%s", ride.id, payment.id, payment.amount)

        if refresh:
            await self.refresh_price(ride)
        await self._notify(payment, "refund")
        return payment

    async def refund_all_payments(self, ride: Ride, reason: Optional[str] = None) -> list[Payment]:
        payments = await self.get_payments_by_ride(ride)
        refunded = [p for p in payments if self._apply_refund(p, None, reason)]
        await self.db.commit()

        await self.refresh_price(ride)
        results = await asyncio.gather(
            *(self._notify(p, "refund") for p in refunded), return_exceptions=True
        )
        failures = [r for r in results if isinstance(r, Exception)]
        logger.info("Refunded %d payments ride=%s (%d notification failures)",
                    len(refunded), ride.id, len(failures))
        if failures:
            raise NotificationFailed(
                f"{len(failures)} refund notification(s) failed",
                {"ride_id": ride.id, "failed": len(failures)},
            ) from failures[0]
        return refunded

    async def set_processed(self, payment: Payment) -> Payment:
        payment.processed_at = utcnow()
        await self.db.commit()
        return payment

    async def refresh_price(self, ride: Ride) -> Decimal:
        result = await self.db.execute(
            select(Payment.amount).where(
                Payment.ride_id == ride.id,
                Payment.refunded_at.is_(None),
            )
        )
        price = to_money(sum(result.scalars().all(), ZERO))
        ride.price = price
        await self.db.commit()

        if price == 0 and self.on_price_cleared is not None:
            await self.on_price_cleared(ride)
        return price

    def _apply_refund(self, payment: Payment, amount: Optional[Decimal], reason: Optional[str]) -> bool:
        if payment.amount <= 0:
            return False
        refund = payment.amount if amount is None else min(to_money(amount), payment.amount)
        payment.amount = payment.amount - refund
        payment.refunded_at = utcnow()
        payment.processed_at = None
        if reason:
            payment.refund_reason = reason
        return True

    async def _notify(self, payment: Payment, event_type: str) -> None:
        data = PaymentResponse.model_validate(payment).model_dump(mode="json")
        try:
            await self.webhooks.send(payment.platform_id, event_type, data)
        except NotificationFailed:
            logger.error("Failed to send %s webhook payment=%s", event_type, payment.id)
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_payments_by_ride(self, ride: Ride) -> list[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.ride_id == ride.id).order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_payment(self, ride: Ride, payment_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.id == payment_id, Payment.ride_id == ride.id)
        )
        return result.scalar_one_or_none()

    async def get_payment_or_raise(self, ride: Ride, payment_id: str) -> Payment:
        payment = await self.get_payment(ride, payment_id)
        if not payment:
            raise PaymentNotFound(details={"payment_id": payment_id})
        return payment

    async def list_payments(self, query: PaymentListQuery) -> tuple[list[Payment], int]:
        conditions = []
        if query.platform_id:
            conditions.append(Payment.platform_id.in_(query.platform_id))
        if query.franchise_id:
            conditions.append(Payment.franchise_id.in_(query.franchise_id))
        if query.payment_type:
            conditions.append(Payment.payment_type == query.payment_type.value)
        if query.only_refunded is True:
            conditions.append(Payment.refunded_at.is_not(None))
        elif query.only_refunded is False:
            conditions.append(Payment.refunded_at.is_(None))
        if query.started_at:
            conditions.append(Payment.created_at >= query.started_at)
        if query.ended_at:
            conditions.append(Payment.created_at <= query.ended_at)
        if query.search:
            conditions.append(
                or_(
                    Payment.id == query.search,
                    Payment.ride_id == query.search,
                    Payment.description.contains(query.search),
                    Payment.refund_reason.contains(query.search),
                )
            )

        column = getattr(Payment, query.order_by_field)
        order = column.asc() if query.order_by_sort.value == "asc" else column.desc()

        total = await self.db.scalar(select(func.count()).select_from(Payment).where(*conditions))
        result = await self.db.execute(
            select(Payment).where(*conditions).order_by(order).offset(query.skip).limit(query.take)
        )
        return list(result.scalars().all()), total or 0
