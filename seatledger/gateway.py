"""
Payment gateway signing and status mapping.

The hosted checkout is initiated with a hash over the order, and every server
callback carries an ``md5sig`` computed the same way over the callback fields.
Both use the upper-cased MD5 of the merchant secret as key material.
"""

import enum
import hashlib
import hmac
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from seatledger.config import Settings, get_settings


class GatewayOutcome(str, enum.Enum):
    """Normalised result of a gateway status code."""

    SUCCESS = "success"
    PENDING = "pending"
    CANCELLED = "cancelled"
    FAILED = "failed"
    CHARGEBACK = "chargeback"

    @property
    def is_failure(self) -> bool:
        return self in (
            GatewayOutcome.CANCELLED,
            GatewayOutcome.FAILED,
            GatewayOutcome.CHARGEBACK,
        )


STATUS_CODES: dict[str, GatewayOutcome] = {
    "2": GatewayOutcome.SUCCESS,
    "0": GatewayOutcome.PENDING,
    "-1": GatewayOutcome.CANCELLED,
    "-2": GatewayOutcome.FAILED,
    "-3": GatewayOutcome.CHARGEBACK,
}


def map_status(status_code: str | int | None) -> GatewayOutcome:
    """Map a gateway status code; anything unknown is treated as pending."""
    return STATUS_CODES.get(str(status_code).strip(), GatewayOutcome.PENDING)


def format_amount(amount: Decimal | float | str) -> str:
    """Two decimal places, as the gateway expects."""
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


@dataclass(frozen=True)
class InboundNotification:
    """Fields of a server-to-server callback."""

    merchant_id: str
    order_id: str
    payment_id: str | None
    amount: str
    currency: str
    status_code: str
    status_message: str | None
    method: str | None
    md5sig: str | None

    @classmethod
    def from_form(cls, data: Mapping[str, Any]) -> "InboundNotification":
        def get(key: str) -> str | None:
            value = data.get(key)
            return None if value is None else str(value)

        return cls(
            merchant_id=get("merchant_id") or "",
            order_id=get("order_id") or "",
            payment_id=get("payment_id"),
            amount=get("payhere_amount") or "",
            currency=get("payhere_currency") or "",
            status_code=get("status_code") or "",
            status_message=get("status_message"),
            method=get("method"),
            md5sig=get("md5sig"),
        )


class GatewaySigner:
    """Builds signed checkout payloads and verifies callback signatures."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def _secret_digest(self) -> str:
        return _md5_upper(self.settings.GATEWAY_MERCHANT_SECRET)

    def checkout_hash(self, order_id: str, amount: Decimal, currency: str) -> str:
        """Hash sent with the hosted checkout form."""
        return _md5_upper(
            f"{self.settings.GATEWAY_MERCHANT_ID}{order_id}"
            f"{format_amount(amount)}{currency}{self._secret_digest}"
        )

    def sign_checkout(
        self,
        order_id: str,
        amount: Decimal,
        items: str,
        customer: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Build the hosted checkout payload for an order.

        Args:
            order_id: Gateway order id shared by the order's payments
            amount: Order total
            items: Human readable description of the purchase
            customer: Optional contact fields forwarded to the gateway

        Returns:
            Dict of form fields to post to the gateway
        """
        currency = self.settings.GATEWAY_CURRENCY
        payload: dict[str, Any] = {
            "sandbox": self.settings.GATEWAY_SANDBOX,
            "merchant_id": self.settings.GATEWAY_MERCHANT_ID,
            "return_url": self.settings.GATEWAY_RETURN_URL,
            "cancel_url": self.settings.GATEWAY_CANCEL_URL,
            "notify_url": self.settings.GATEWAY_NOTIFY_URL,
            "order_id": order_id,
            "items": items,
            "currency": currency,
            "amount": format_amount(amount),
            "hash": self.checkout_hash(order_id, amount, currency),
        }
        if customer:
            payload.update({k: v for k, v in customer.items() if v is not None})
        return payload

    def notification_signature(self, notification: InboundNotification) -> str:
        return _md5_upper(
            f"{notification.merchant_id}{notification.order_id}{notification.amount}"
            f"{notification.currency}{notification.status_code}{self._secret_digest}"
        )

    def verify_notification(self, notification: InboundNotification) -> bool:
        """True if the callback's ``md5sig`` matches and names our merchant."""
        if not notification.md5sig:
            return False
        if notification.merchant_id != self.settings.GATEWAY_MERCHANT_ID:
            return False
        expected = self.notification_signature(notification)
        return hmac.compare_digest(expected, notification.md5sig.upper())
