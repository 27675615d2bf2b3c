"""
Payments routers — /v1/rides/{ride_id}/payments and /v1/payments
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request, status

from ride_service.dependencies import get_ledger, get_platform_ride
from ride_service.middleware.auth import get_current_platform
from ride_service.middleware.idempotency import check_idempotency, store_idempotency_result
from ride_service.models.ride import Ride
from ride_service.schemas.schemas import (
    PaymentCreateRequest,
    PaymentListQuery,
    PaymentListResponse,
    PaymentResponse,
    RefundRequest,
)
from ride_service.services.payment import PaymentLedger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides/{ride_id}/payments", tags=["Payments"])
platform_router = APIRouter(prefix="/v1/payments", tags=["Payments"])


@router.get("", response_model=list[PaymentResponse])
async def list_ride_payments(
    ride: Ride = Depends(get_platform_ride),
    ledger: PaymentLedger = Depends(get_ledger),
):
    payments = await ledger.get_payments_by_ride(ride)
    return [PaymentResponse.model_validate(p) for p in payments]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Optional[PaymentResponse])
async def add_payment(
    payload: PaymentCreateRequest,
    request: Request,
    ride: Ride = Depends(get_platform_ride),
    ledger: PaymentLedger = Depends(get_ledger),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Book a charge on the ride.
    - Idempotent: repeated calls with the same key return the same result.
    - Non-positive amounts are accepted and ignored (null body).
    """
    if idempotency_key:
        cached = await check_idempotency(request, ride.platform_id)
        if cached:
            return cached

    payment = await ledger.add_payment(ride, payload.payment_type, payload.amount, payload.description)
    response_body = PaymentResponse.model_validate(payment).model_dump(mode="json") if payment else None

    if idempotency_key:
        await store_idempotency_result(idempotency_key, ride.platform_id, 201, response_body)

    return response_body


@router.delete("", response_model=list[PaymentResponse])
async def refund_all_payments(
    payload: Annotated[Optional[RefundRequest], Body()] = None,
    ride: Ride = Depends(get_platform_ride),
    ledger: PaymentLedger = Depends(get_ledger),
):
    reason = payload.reason if payload else None
    refunded = await ledger.refund_all_payments(ride, reason)
    return [PaymentResponse.model_validate(p) for p in refunded]


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    ride: Ride = Depends(get_platform_ride),
    ledger: PaymentLedger = Depends(get_ledger),
):
    return PaymentResponse.model_validate(await ledger.get_payment_or_raise(ride, payment_id))


@router.delete("/{payment_id}", response_model=PaymentResponse)
async def refund_payment(
    payment_id: str,
    payload: Annotated[Optional[RefundRequest], Body()] = None,
    ride: Ride = Depends(get_platform_ride),
    ledger: PaymentLedger = Depends(get_ledger),
):
    payment = await ledger.get_payment_or_raise(ride, payment_id)
    amount = payload.amount if payload else None
    reason = payload.reason if payload else None
    await ledger.refund_payment(ride, payment, amount, reason)
    return PaymentResponse.model_validate(payment)


@router.post("/{payment_id}/process", response_model=PaymentResponse)
async def process_payment(
    payment_id: str,
    ride: Ride = Depends(get_platform_ride),
    ledger: PaymentLedger = Depends(get_ledger),
):
    payment = await ledger.get_payment_or_raise(ride, payment_id)
    return PaymentResponse.model_validate(await ledger.set_processed(payment))


@platform_router.get("", response_model=PaymentListResponse)
async def list_payments(
    query: Annotated[PaymentListQuery, Query()],
    platform_id: str = Depends(get_current_platform),
    ledger: PaymentLedger = Depends(get_ledger),
):
    query.platform_id = [platform_id]
    payments, total = await ledger.list_payments(query)
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
    )
