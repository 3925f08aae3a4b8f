"""Services package."""

from seatledger.services.cart_service import CartService
from seatledger.services.checkout_service import CheckoutService
from seatledger.services.expiration_service import ExpirationService
from seatledger.services.ledger_service import LedgerService
from seatledger.services.payment_service import PaymentService
from seatledger.services.reconciliation_service import ReconciliationService
from seatledger.services.ticket_service import TicketService

__all__ = [
    "LedgerService",
    "CartService",
    "CheckoutService",
    "PaymentService",
    "ReconciliationService",
    "TicketService",
    "ExpirationService",
]
