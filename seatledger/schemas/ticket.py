"""Ticket schemas."""

from datetime import datetime

from pydantic import Field

from seatledger.schemas.common import BaseSchema


class TicketResponse(BaseSchema):
    """Schema for ticket response."""

    ticket_id: int
    account_owner_id: str
    booking_id: int
    shop_id: int
    event_day_id: int
    gateway_order_id: str
    gateway_payment_id: str | None = None
    ticket_no: str
    document_ref: str | None = None
    code_ref: str | None = None
    used: bool
    created_at: datetime | None = None


class TicketUseRequest(BaseSchema):
    ticket_no: str = Field(..., min_length=1, max_length=40)
    gateway_order_id: str | None = Field(None, max_length=100)


class TicketGroupResponse(BaseSchema):
    shop_id: int
    event_day_id: int
    ticket_no: str
    booking_ids: list[int]
    document_ref: str | None = None
    code_ref: str | None = None
    success: bool
    error: str | None = None


class IssuanceSummaryResponse(BaseSchema):
    """Per-group outcome of issuing tickets for an order."""

    gateway_order_id: str
    groups: list[TicketGroupResponse]
    tickets_created: int
    total_bookings: int
    success: bool
    email_sent: bool
    email_error: str | None = None
