"""Payment API endpoints, including the gateway callback."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import PlainTextResponse

from seatledger.api.v1.dependencies import (
    CurrentPrincipal,
    PaymentServiceDep,
    ReconciliationQueueDep,
)
from seatledger.queue import ReconciliationJob
from seatledger.schemas.payment import (
    CheckoutCustomerCreate,
    CheckoutCustomerResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
    PaymentResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/orders",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create payment intent",
)
async def create_payment_intent(
    intent_data: PaymentIntentCreate,
    principal: CurrentPrincipal,
    payment_service: PaymentServiceDep,
) -> PaymentIntentResponse:
    """Create or refresh payments for pending bookings under one gateway order id."""
    intent = await payment_service.create_payment_intent(
        principal,
        booking_ids=intent_data.booking_ids,
        payment_method=intent_data.payment_method,
        gateway_order_id=intent_data.gateway_order_id,
    )
    return PaymentIntentResponse(
        gateway_order_id=intent.gateway_order_id,
        amount=intent.amount,
        payments=[PaymentResponse.model_validate(p) for p in intent.payments],
    )


@router.put(
    "/orders/{gateway_order_id}/customer",
    response_model=CheckoutCustomerResponse,
    summary="Store checkout contact",
)
async def store_checkout_customer(
    gateway_order_id: str,
    contact: CheckoutCustomerCreate,
    principal: CurrentPrincipal,
    payment_service: PaymentServiceDep,
) -> CheckoutCustomerResponse:
    customer = await payment_service.store_checkout_customer(
        principal, gateway_order_id, contact.model_dump()
    )
    return CheckoutCustomerResponse.model_validate(customer)


@router.get(
    "/orders/{gateway_order_id}/checkout",
    summary="Get signed gateway checkout payload",
)
async def get_checkout_payload(
    gateway_order_id: str,
    principal: CurrentPrincipal,
    payment_service: PaymentServiceDep,
) -> dict[str, Any]:
    return await payment_service.build_checkout_payload(principal, gateway_order_id)


@router.post(
    "/notify",
    response_class=PlainTextResponse,
    summary="Payment gateway callback",
)
async def payment_notify(
    request: Request,
    payment_service: PaymentServiceDep,
    queue: ReconciliationQueueDep,
) -> str:
    """
    Server-to-server callback from the gateway.

    Stores the notification and queues it, then answers immediately; the
    gateway's response-time budget does not leave room for reconciliation.
    """
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
    else:
        data = dict(await request.form())

    notification = await payment_service.record_notification(data)
    try:
        await queue.enqueue(
            ReconciliationJob(
                notification_id=notification.notification_id,
                gateway_order_id=notification.gateway_order_id,
                enqueued_at=datetime.now(),
            )
        )
    except Exception as e:
        # Stored as RECEIVED; the re-queue task picks it up later
        logger.error(
            f"Could not enqueue notification {notification.notification_id}: {e}"
        )
    return "OK"
