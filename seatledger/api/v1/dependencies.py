"""API dependencies."""

from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.authorization import Principal, Role
from seatledger.database import get_db
from seatledger.queue import ReconciliationQueue
from seatledger.redis_client import get_redis
from seatledger.services.cart_service import CartService
from seatledger.services.checkout_service import CheckoutService
from seatledger.services.payment_service import PaymentService
from seatledger.services.ticket_service import TicketService

# Type aliases
DBSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[redis.Redis, Depends(get_redis)]


async def get_current_principal(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Principal:
    """
    Build the caller's principal from identity headers.
    The upstream gateway authenticates the user and sets both headers.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    try:
        role = Role(x_user_role) if x_user_role else Role.CUSTOMER
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {x_user_role}",
        )
    return Principal(principal_id=x_user_id, role=role)


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def get_cart_service(db: DBSession) -> CartService:
    """Get cart service."""
    return CartService(db)


def get_checkout_service(db: DBSession, redis_client: RedisClient) -> CheckoutService:
    """Get checkout service."""
    return CheckoutService(db, redis_client)


def get_payment_service(db: DBSession) -> PaymentService:
    """Get payment service."""
    return PaymentService(db)


def get_ticket_service(db: DBSession) -> TicketService:
    """Get ticket service."""
    return TicketService(db)


def get_reconciliation_queue(redis_client: RedisClient) -> ReconciliationQueue:
    return ReconciliationQueue(redis_client)


# Annotated dependencies
CartServiceDep = Annotated[CartService, Depends(get_cart_service)]
CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
ReconciliationQueueDep = Annotated[ReconciliationQueue, Depends(get_reconciliation_queue)]
