"""Ticket API endpoints."""

from fastapi import APIRouter, Request

from seatledger.api.v1.dependencies import CurrentPrincipal, TicketServiceDep
from seatledger.exceptions import ValidationError
from seatledger.query import parse_filters
from seatledger.schemas.common import SuccessResponse
from seatledger.schemas.ticket import (
    IssuanceSummaryResponse,
    TicketGroupResponse,
    TicketResponse,
    TicketUseRequest,
)
from seatledger.ticket_numbers import parse_ticket_number

router = APIRouter()


@router.get("", response_model=list[TicketResponse], summary="List tickets")
async def list_tickets(
    request: Request,
    principal: CurrentPrincipal,
    ticket_service: TicketServiceDep,
) -> list[TicketResponse]:
    """Filter with query parameters such as ``?used=false&gateway_order_id=PG-...``."""
    filters = parse_filters(dict(request.query_params))
    tickets = await ticket_service.list_tickets(principal, filters)
    return [TicketResponse.model_validate(t) for t in tickets]


@router.get("/numbers/{ticket_no}", summary="Parse a ticket number")
async def parse_number(ticket_no: str) -> dict:
    """Decode shop, day and date from a ticket number without a lookup."""
    parsed = parse_ticket_number(ticket_no)
    if parsed is None:
        raise ValidationError(f"Invalid ticket number format: {ticket_no}")
    return {
        "ticket_no": ticket_no,
        "kind": parsed.kind,
        "shop_id": parsed.shop_id,
        "event_day_id": parsed.event_day_id,
        "booking_id": parsed.booking_id,
        "event_date": parsed.event_date.isoformat(),
    }


@router.post("/use", response_model=list[TicketResponse], summary="Redeem ticket")
async def use_ticket(
    use_data: TicketUseRequest,
    principal: CurrentPrincipal,
    ticket_service: TicketServiceDep,
) -> list[TicketResponse]:
    """Mark a scanned ticket as used. Sellers and staff only."""
    tickets = await ticket_service.mark_used(
        principal, use_data.ticket_no, use_data.gateway_order_id
    )
    return [TicketResponse.model_validate(t) for t in tickets]


@router.post(
    "/orders/{gateway_order_id}/reissue",
    response_model=IssuanceSummaryResponse,
    summary="Re-run ticket issuance",
)
async def reissue_order(
    gateway_order_id: str,
    principal: CurrentPrincipal,
    ticket_service: TicketServiceDep,
) -> IssuanceSummaryResponse:
    summary = await ticket_service.reissue_order(principal, gateway_order_id)
    return IssuanceSummaryResponse(
        gateway_order_id=summary.gateway_order_id,
        groups=[TicketGroupResponse.model_validate(g) for g in summary.groups],
        tickets_created=summary.tickets_created,
        total_bookings=summary.total_bookings,
        success=summary.success,
        email_sent=summary.email_sent,
        email_error=summary.email_error,
    )


@router.get("/{ticket_id}", response_model=TicketResponse, summary="Get ticket")
async def get_ticket(
    ticket_id: int,
    principal: CurrentPrincipal,
    ticket_service: TicketServiceDep,
) -> TicketResponse:
    return TicketResponse.model_validate(await ticket_service.get_ticket(principal, ticket_id))


@router.post(
    "/{ticket_id}/resend",
    response_model=SuccessResponse,
    summary="Resend ticket e-mail",
)
async def resend_ticket(
    ticket_id: int,
    principal: CurrentPrincipal,
    ticket_service: TicketServiceDep,
) -> SuccessResponse:
    await ticket_service.resend_tickets(principal, ticket_id)
    return SuccessResponse(message="Tickets sent")
