"""
Tariff and discount calculation.

A receipt is made of three units:
  standard    - flat unlock fee (nightly fee when the nightly tariff applies)
  per_minute  - minutes beyond the included time, times the per-minute rate
  surcharge   - flat fee for regions whose profile has a surcharge

Each unit reports price / discount / total with total = price - discount >= 0.
The receipt totals are per-field sums; a region max price caps only the
aggregate total.
"""
import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel, Field

from ride_service.errors import InvalidTerminateTime, ValidationFailed
from ride_service.models.receipt import Receipt, ReceiptUnit
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import DiscountTerms, LocationProfile, Tariff
from ride_service.services.collaborators import DiscountClient, LocationClient
from ride_service.services.geo import validate_coordinates
from ride_service.database import utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class ReceiptUnitResult(BaseModel):
    price: Decimal = ZERO
    discount: Decimal = ZERO
    total: Decimal = ZERO


class ReceiptResult(BaseModel):
    standard: ReceiptUnitResult = Field(default_factory=ReceiptUnitResult)
    per_minute: ReceiptUnitResult = Field(default_factory=ReceiptUnitResult)
    surcharge: ReceiptUnitResult = Field(default_factory=ReceiptUnitResult)
    is_nightly: bool = False
    price: Decimal = ZERO
    discount: Decimal = ZERO
    total: Decimal = ZERO


# ---------------------------------------------------------------------------
# Pure calculation
# ---------------------------------------------------------------------------

def is_nightly(at: Optional[datetime] = None) -> bool:
    """Nightly tariff switch. Disabled: always the standard tariff."""
    return False


def elapsed_minutes(started_at: datetime, terminated_at: datetime) -> int:
    """Whole minutes between start and termination (truncated)."""
    seconds = (terminated_at - started_at).total_seconds()
    if seconds < 0:
        raise InvalidTerminateTime(
            details={"started_at": started_at.isoformat(), "terminated_at": terminated_at.isoformat()}
        )
    return math.floor(seconds / 60)


def _unit(price: Decimal, discount: Decimal) -> ReceiptUnitResult:
    price = to_money(price)
    discount = to_money(min(max(discount, ZERO), price))
    return ReceiptUnitResult(price=price, discount=discount, total=price - discount)


def _price_discount(price: Decimal, discount: DiscountTerms) -> Decimal:
    """Percentage first, then the static amount on top; caller clamps."""
    amount = ZERO
    if discount.ratio_price_discount:
        amount = price * discount.ratio_price_discount / 100
    if discount.static_price_discount:
        amount += discount.static_price_discount
    return amount


def standard_unit(tariff: Tariff, discount: Optional[DiscountTerms], nightly: bool) -> ReceiptUnitResult:
    price = tariff.nightly_price if nightly else tariff.standard_price
    amount = ZERO
    if discount and discount.is_standard_included:
        amount = _price_discount(price, discount)
    return _unit(price, amount)


def per_minute_unit(
    tariff: Tariff,
    discount: Optional[DiscountTerms],
    minutes: int,
    nightly: bool,
) -> ReceiptUnitResult:
    rate = tariff.per_minute_nightly_price if nightly else tariff.per_minute_standard_price
    billable = max(0, minutes - tariff.standard_time)
    free_minutes = min((discount.static_minute_discount if discount else 0) or 0, billable)

    price = billable * rate
    amount = free_minutes * rate
    if discount and discount.is_per_minute_included:
        if discount.ratio_price_discount or discount.static_price_discount:
            # price rules replace the free-minute discount, they do not stack
            # TODO: confirm with product together with the surcharge gate below; the
            # legacy fare code replaced on a percentage but stacked a static amount
            # on top of the free minutes
            amount = _price_discount(price, discount)
    return _unit(price, amount)


def surcharge_unit(
    tariff: Tariff,
    profile: LocationProfile,
    discount: Optional[DiscountTerms],
    standard: ReceiptUnitResult,
) -> ReceiptUnitResult:
    if not profile.has_surcharge:
        return ReceiptUnitResult()

    price = tariff.surcharge_price
    amount = ZERO
    if discount and discount.is_surcharge_included:
        if discount.ratio_price_discount:
            amount = price * discount.ratio_price_discount / 100
        # The static allotment is shared with the standard unit; only the part
        # the standard unit did not consume carries over.
        # TODO: confirm with product whether the standard.total == 0 gate is intended
        if discount.static_price_discount and standard.total == 0:
            amount += discount.static_price_discount - standard.discount
    return _unit(price, amount)


def compute_receipt(
    tariff: Tariff,
    profile: LocationProfile,
    discount: Optional[DiscountTerms],
    minutes: int,
    nightly: bool = False,
) -> ReceiptResult:
    if minutes < 0:
        raise ValidationFailed("minutes must not be negative", {"minutes": minutes})

    standard = standard_unit(tariff, discount, nightly)
    per_minute = per_minute_unit(tariff, discount, minutes, nightly)
    surcharge = surcharge_unit(tariff, profile, discount, standard)
    units = (standard, per_minute, surcharge)

    total = sum((u.total for u in units), ZERO)
    if tariff.max_price is not None and total > tariff.max_price:
        total = to_money(tariff.max_price)

    return ReceiptResult(
        standard=standard,
        per_minute=per_minute,
        surcharge=surcharge,
        is_nightly=nightly,
        price=sum((u.price for u in units), ZERO),
        discount=sum((u.discount for u in units), ZERO),
        total=total,
    )


def receipt_to_model(result: ReceiptResult) -> Receipt:
    """Build the immutable receipt snapshot persisted with a terminated ride."""

    def unit(u: ReceiptUnitResult) -> ReceiptUnit:
        return ReceiptUnit(price=u.price, discount=u.discount, total=u.total)

    return Receipt(
        standard=unit(result.standard),
        per_minute=unit(result.per_minute),
        surcharge=unit(result.surcharge),
        is_nightly=result.is_nightly,
        price=result.price,
        discount=result.discount,
        total=result.total,
    )


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class PricingService:
    def __init__(self, locations: LocationClient, discounts: DiscountClient):
        self.locations = locations
        self.discounts = discounts

    async def get_pricing(
        self,
        *,
        minutes: int,
        latitude: float,
        longitude: float,
        discount_group_id: Optional[str] = None,
        discount_id: Optional[str] = None,
    ) -> tuple[ReceiptResult, LocationProfile]:
        validate_coordinates(latitude, longitude)
        if bool(discount_group_id) != bool(discount_id):
            raise ValidationFailed(
                "discount_group_id and discount_id must be supplied together",
                {"discount_group_id": discount_group_id, "discount_id": discount_id},
            )
        if minutes < 0:
            raise ValidationFailed("minutes must not be negative", {"minutes": minutes})

        profile = await self.locations.get_profile(latitude, longitude)
        discount = None
        if discount_group_id and discount_id:
            discount = await self.discounts.get_discount(discount_group_id, discount_id)

        receipt = compute_receipt(profile.pricing, profile, discount, minutes, is_nightly())
        return receipt, profile

    async def get_pricing_by_ride(
        self,
        ride: Ride,
        *,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        terminated_at: Optional[datetime] = None,
    ) -> tuple[ReceiptResult, LocationProfile]:
        if latitude is None or longitude is None:
            fallback = ride.terminated_device_location or ride.started_device_location
            latitude, longitude = fallback.latitude, fallback.longitude

        terminated_at = terminated_at or ride.terminated_at or utcnow()
        minutes = elapsed_minutes(ride.started_at, terminated_at)
        logger.debug("Pricing ride=%s minutes=%s at=(%s,%s)", ride.id, minutes, latitude, longitude)
        return await self.get_pricing(
            minutes=minutes,
            latitude=latitude,
            longitude=longitude,
            discount_group_id=ride.discount_group_id,
            discount_id=ride.discount_id,
        )
