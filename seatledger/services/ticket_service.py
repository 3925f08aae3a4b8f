"""Ticket issuance: one shared ticket per (shop, event day) within an order."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.authorization import Action, Principal, Resource, Role, authorize
from seatledger.config import get_settings
from seatledger.documents import (
    Attachment,
    CodeGenerator,
    DispatchResult,
    DocumentRenderer,
    LoggingNotifier,
    Notifier,
    PdfTicketRenderer,
    QRCodeGenerator,
    TicketDocument,
    TicketLine,
)
from seatledger.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from seatledger.models.booking import Booking, BookingStatus
from seatledger.models.catalog import EventDay, SeatType, Shop
from seatledger.models.payment import CheckoutCustomer, Payment
from seatledger.models.ticket import CustomerTicket
from seatledger.query import Filter, apply_filters
from seatledger.ticket_numbers import shared_ticket_number, validate_ticket_number

settings = get_settings()
logger = logging.getLogger(__name__)

TICKET_FILTER_FIELDS = (
    "ticket_no",
    "shop_id",
    "event_day_id",
    "booking_id",
    "gateway_order_id",
    "used",
)


@dataclass
class GroupResult:
    """Outcome for one (shop, event day) group."""

    shop_id: int
    event_day_id: int
    ticket_no: str
    booking_ids: list[int] = field(default_factory=list)
    document_ref: str | None = None
    code_ref: str | None = None
    success: bool = True
    error: str | None = None


@dataclass
class IssuanceSummary:
    gateway_order_id: str
    groups: list[GroupResult] = field(default_factory=list)
    tickets_created: int = 0
    email_sent: bool = False
    email_error: str | None = None

    @property
    def success(self) -> bool:
        return all(group.success for group in self.groups)

    @property
    def total_bookings(self) -> int:
        return sum(len(group.booking_ids) for group in self.groups)


@dataclass
class _Member:
    booking: Booking
    shop: Shop
    seat_type: SeatType
    event_day: EventDay


class TicketService:
    """
    Issues, resends and redeems tickets.

    Document generation is isolated per group: a renderer failure for one
    group still persists that group's ticket rows (without document
    references) and leaves the other groups untouched.
    """

    def __init__(
        self,
        db: AsyncSession,
        code_generator: CodeGenerator | None = None,
        renderer: DocumentRenderer | None = None,
        notifier: Notifier | None = None,
    ):
        self.db = db
        self.codes = code_generator or QRCodeGenerator()
        self.renderer = renderer or PdfTicketRenderer()
        self.notifier = notifier or LoggingNotifier()

    async def _confirmed_members(self, gateway_order_id: str) -> list[_Member]:
        result = await self.db.execute(
            select(Booking, Shop, SeatType, EventDay)
            .join(Payment, Payment.booking_id == Booking.booking_id)
            .join(Shop, Shop.shop_id == Booking.shop_id)
            .join(SeatType, SeatType.seat_type_id == Booking.seat_type_id)
            .join(EventDay, EventDay.event_day_id == Booking.event_day_id)
            .where(
                Payment.gateway_order_id == gateway_order_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            .order_by(Booking.shop_id, Booking.event_day_id, Booking.booking_id)
            .execution_options(populate_existing=True)
        )
        return [_Member(*row) for row in result.all()]

    async def _checkout_customer(self, gateway_order_id: str) -> CheckoutCustomer | None:
        result = await self.db.execute(
            select(CheckoutCustomer).where(
                CheckoutCustomer.gateway_order_id == gateway_order_id
            )
        )
        return result.scalar_one_or_none()

    async def _tickets_for(self, booking_ids: list[int]) -> dict[int, CustomerTicket]:
        if not booking_ids:
            return {}
        result = await self.db.execute(
            select(CustomerTicket).where(CustomerTicket.booking_id.in_(booking_ids))
        )
        return {t.booking_id: t for t in result.scalars().all()}

    def _build_document(
        self,
        ticket_no: str,
        gateway_order_id: str,
        members: list[_Member],
        customer: CheckoutCustomer | None,
    ) -> TicketDocument:
        first = members[0]
        quantities: dict[str, int] = defaultdict(int)
        subtotals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for member in members:
            quantities[member.seat_type.name] += member.booking.quantity
            subtotals[member.seat_type.name] += member.booking.total_price

        return TicketDocument(
            ticket_no=ticket_no,
            gateway_order_id=gateway_order_id,
            shop_name=first.shop.name,
            shop_address=first.shop.address,
            event_name=first.event_day.event_name or settings.TICKET_EVENT_NAME,
            event_date=first.event_day.event_date,
            holder_name=(
                f"{customer.first_name} {customer.last_name}" if customer else None
            ),
            lines=[
                TicketLine(seat_type_name=name, quantity=qty, subtotal=subtotals[name])
                for name, qty in quantities.items()
            ],
        )

    async def _generate_documents(
        self,
        group: GroupResult,
        document: TicketDocument,
    ) -> None:
        try:
            group.code_ref = await asyncio.to_thread(self.codes.generate, group.ticket_no)
            group.document_ref = await asyncio.to_thread(
                self.renderer.render, document, group.code_ref
            )
        except Exception as e:
            group.success = False
            group.error = str(e)
            group.document_ref = None
            group.code_ref = None
            logger.error(
                f"Document generation failed for ticket {group.ticket_no}: {e}",
                exc_info=True,
            )

    async def issue_for_order(
        self,
        gateway_order_id: str,
        gateway_payment_id: str | None = None,
    ) -> IssuanceSummary:
        """
        Issue tickets for every confirmed booking of an order.

        Bookings are grouped by (shop, event day). Each group gets one shared
        ticket number, one QR code and one PDF; every booking in the group
        gets its own ticket row pointing at them. Bookings that already have
        a ticket are not ticketed again, so the call is safe to repeat, and a
        repeat regenerates documents for groups whose earlier attempt failed.

        Args:
            gateway_order_id: Order whose bookings were paid
            gateway_payment_id: Gateway's payment id, stored on the tickets

        Returns:
            IssuanceSummary with per-group results and the e-mail outcome
        """
        summary = IssuanceSummary(gateway_order_id=gateway_order_id)
        members = await self._confirmed_members(gateway_order_id)
        if not members:
            logger.warning(f"No confirmed bookings to ticket for order {gateway_order_id}")
            return summary

        customer = await self._checkout_customer(gateway_order_id)
        existing = await self._tickets_for([m.booking.booking_id for m in members])

        groups: dict[tuple[int, int], list[_Member]] = defaultdict(list)
        for member in members:
            groups[(member.booking.shop_id, member.booking.event_day_id)].append(member)

        for (shop_id, event_day_id), group_members in groups.items():
            ticket_no = shared_ticket_number(
                shop_id, event_day_id, group_members[0].event_day.event_date
            )
            group = GroupResult(
                shop_id=shop_id,
                event_day_id=event_day_id,
                ticket_no=ticket_no,
                booking_ids=[m.booking.booking_id for m in group_members],
            )
            summary.groups.append(group)

            issued = [existing[b] for b in group.booking_ids if b in existing]
            if issued and len(issued) == len(group_members) and all(
                t.document_ref for t in issued
            ):
                group.document_ref = issued[0].document_ref
                group.code_ref = issued[0].code_ref
                continue

            document = self._build_document(ticket_no, gateway_order_id, group_members, customer)
            await self._generate_documents(group, document)

            for member in group_members:
                ticket = existing.get(member.booking.booking_id)
                if ticket is None:
                    ticket = CustomerTicket(
                        account_owner_id=member.booking.customer_id,
                        checkout_customer_id=(
                            customer.checkout_customer_id if customer else None
                        ),
                        booking_id=member.booking.booking_id,
                        shop_id=shop_id,
                        event_day_id=event_day_id,
                        gateway_order_id=gateway_order_id,
                        gateway_payment_id=gateway_payment_id,
                        ticket_no=ticket_no,
                    )
                    self.db.add(ticket)
                    summary.tickets_created += 1
                ticket.document_ref = group.document_ref
                ticket.code_ref = group.code_ref

            logger.info(
                f"Ticket group {ticket_no} for order {gateway_order_id}: "
                f"{len(group_members)} bookings, "
                f"{'ok' if group.success else 'document failed'}"
            )

        await self.db.commit()

        result = await self._dispatch(gateway_order_id, summary.groups, customer)
        summary.email_sent = result.sent
        summary.email_error = result.error
        return summary

    async def _dispatch(
        self,
        gateway_order_id: str,
        groups: list[GroupResult],
        customer: CheckoutCustomer | None,
    ) -> DispatchResult:
        """Send one e-mail with one PDF per group. Failures are reported, not raised."""
        if customer is None or not customer.email:
            logger.warning(f"No checkout contact for order {gateway_order_id}; e-mail skipped")
            return DispatchResult(sent=False, error="No checkout contact for order")

        attachments = [
            Attachment(filename=f"{group.ticket_no}.pdf", ref=group.document_ref)
            for group in groups
            if group.document_ref
        ]
        if not attachments:
            return DispatchResult(sent=False, error="No ticket documents to send")

        try:
            result = await self.notifier.send(
                customer.email,
                f"Your tickets for order {gateway_order_id}",
                (
                    f"Hello {customer.first_name},\n\n"
                    f"Your payment was received. {len(attachments)} ticket(s) attached."
                ),
                attachments,
            )
        except Exception as e:
            logger.error(f"Ticket e-mail for order {gateway_order_id} failed: {e}")
            return DispatchResult(sent=False, error=str(e))

        if not result.sent:
            logger.error(f"Ticket e-mail for order {gateway_order_id} failed: {result.error}")
        return result

    async def _ticket_resource(self, ticket: CustomerTicket) -> Resource:
        seller_id = await self.db.scalar(
            select(Shop.seller_id).where(Shop.shop_id == ticket.shop_id)
        )
        return Resource("tickets", ticket.account_owner_id, seller_id)

    async def get_ticket(self, principal: Principal, ticket_id: int) -> CustomerTicket:
        ticket = await self.db.get(CustomerTicket, ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found")
        authorize(principal, await self._ticket_resource(ticket), Action.VIEW)
        return ticket

    async def resend_tickets(self, principal: Principal, ticket_id: int) -> DispatchResult:
        """
        Re-send the documents of the ticket's order to its checkout contact.

        Raises:
            ExternalServiceError: If the e-mail could not be sent
        """
        ticket = await self.db.get(CustomerTicket, ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found")
        authorize(principal, Resource("tickets", ticket.account_owner_id), Action.RESEND)

        result = await self.db.execute(
            select(CustomerTicket)
            .where(CustomerTicket.gateway_order_id == ticket.gateway_order_id)
            .order_by(CustomerTicket.ticket_id)
        )
        groups: dict[str, GroupResult] = {}
        for t in result.scalars().all():
            group = groups.setdefault(
                t.ticket_no,
                GroupResult(
                    shop_id=t.shop_id,
                    event_day_id=t.event_day_id,
                    ticket_no=t.ticket_no,
                    document_ref=t.document_ref,
                    code_ref=t.code_ref,
                ),
            )
            group.booking_ids.append(t.booking_id)

        customer = await self._checkout_customer(ticket.gateway_order_id)
        dispatch = await self._dispatch(ticket.gateway_order_id, list(groups.values()), customer)
        if not dispatch.sent:
            raise ExternalServiceError(f"Could not resend tickets: {dispatch.error}")
        return dispatch

    async def reissue_order(self, principal: Principal, gateway_order_id: str) -> IssuanceSummary:
        """Staff-only re-run of issuance for an order whose documents or e-mail failed."""
        authorize(principal, Resource("tickets"), Action.CREATE)
        payment_id = await self.db.scalar(
            select(Payment.gateway_payment_id)
            .where(Payment.gateway_order_id == gateway_order_id)
            .limit(1)
        )
        return await self.issue_for_order(gateway_order_id, payment_id)

    async def mark_used(
        self,
        principal: Principal,
        ticket_no: str,
        gateway_order_id: str | None = None,
    ) -> list[CustomerTicket]:
        """
        Redeem a ticket at the door.

        Shared numbers only depend on shop, day and date, so two orders for
        the same shop and day carry the same number; ``gateway_order_id``
        picks one when that happens.

        Raises:
            ValidationError: If the number is malformed or ambiguous
            NotFoundError: If no ticket has that number
            ConflictError: If the ticket was already used
        """
        authorize(principal, Resource("tickets"), Action.USE)
        if not validate_ticket_number(ticket_no):
            raise ValidationError(f"Invalid ticket number format: {ticket_no}")

        query = select(CustomerTicket).where(CustomerTicket.ticket_no == ticket_no)
        if gateway_order_id:
            query = query.where(CustomerTicket.gateway_order_id == gateway_order_id)
        result = await self.db.execute(query.order_by(CustomerTicket.ticket_id))
        tickets = list(result.scalars().all())

        if not tickets:
            raise NotFoundError(f"Ticket {ticket_no} not found")
        # One number always belongs to one shop
        authorize(principal, await self._ticket_resource(tickets[0]), Action.USE)
        if len({t.gateway_order_id for t in tickets}) > 1:
            raise ValidationError(
                f"Ticket {ticket_no} is shared by several orders; specify the order"
            )
        if all(t.used for t in tickets):
            raise ConflictError(f"Ticket {ticket_no} has already been used")

        for ticket in tickets:
            ticket.used = True
        await self.db.commit()

        logger.info(f"Ticket {ticket_no} marked used by {principal.principal_id}")
        return tickets

    async def list_tickets(
        self,
        principal: Principal,
        filters: list[Filter] | None = None,
    ) -> list[CustomerTicket]:
        """Tickets visible to the principal, narrowed by filters."""
        authorize(principal, Resource("tickets"), Action.VIEW)
        query = select(CustomerTicket)
        if principal.role is Role.SELLER:
            query = query.join(Shop, Shop.shop_id == CustomerTicket.shop_id).where(
                Shop.seller_id == principal.principal_id
            )
        elif principal.role is Role.CUSTOMER:
            query = query.where(CustomerTicket.account_owner_id == principal.principal_id)
        query = apply_filters(query, CustomerTicket, filters or [], TICKET_FILTER_FIELDS)
        query = query.order_by(CustomerTicket.ticket_id.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())
