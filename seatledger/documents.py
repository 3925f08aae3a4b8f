"""
Ticket documents and delivery.

Rendering, code generation and e-mail transport are collaborators behind
small protocols. The defaults write PNG QR codes with ``qrcode`` and PDF
tickets with ``reportlab`` to a local directory, and log instead of
sending mail.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Protocol

import qrcode
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from seatledger.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class TicketLine:
    seat_type_name: str
    quantity: int
    subtotal: Decimal


@dataclass
class TicketDocument:
    """Everything printed on one group ticket."""

    ticket_no: str
    gateway_order_id: str
    shop_name: str
    event_name: str
    event_date: date
    holder_name: str | None = None
    shop_address: str | None = None
    lines: list[TicketLine] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_amount(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))


class CodeGenerator(Protocol):
    def generate(self, ticket_no: str) -> str:
        """Create a scannable code for the ticket number and return its reference."""
        ...


class DocumentRenderer(Protocol):
    def render(self, document: TicketDocument, code_ref: str | None) -> str:
        """Render the ticket and return its reference."""
        ...


@dataclass
class Attachment:
    filename: str
    ref: str


@dataclass
class DispatchResult:
    sent: bool
    error: str | None = None


class Notifier(Protocol):
    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachments: list[Attachment],
    ) -> DispatchResult:
        ...


def _safe_name(ticket_no: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in ticket_no)


def _qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class QRCodeGenerator:
    """Writes one PNG QR code per ticket number."""

    def __init__(self, output_dir: str | Path | None = None):
        self.output_dir = Path(output_dir or settings.TICKET_OUTPUT_DIR) / "codes"

    def generate(self, ticket_no: str) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{_safe_name(ticket_no)}.png"
        path.write_bytes(_qr_png(ticket_no))
        return str(path)


class PdfTicketRenderer:
    """Renders a one page A4 ticket listing every seat line of the group."""

    def __init__(self, output_dir: str | Path | None = None):
        self.output_dir = Path(output_dir or settings.TICKET_OUTPUT_DIR) / "tickets"

    def render(self, document: TicketDocument, code_ref: str | None) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{_safe_name(document.ticket_no)}.pdf"

        c = canvas.Canvas(str(path), pagesize=A4)
        width, height = A4
        primary = HexColor("#2563eb")
        dark = HexColor("#1f2937")
        muted = HexColor("#6b7280")

        c.setFillColor(primary)
        c.setFont("Helvetica-Bold", 24)
        c.drawCentredString(width / 2, height - 30 * mm, document.event_name)

        c.setFillColor(dark)
        c.setFont("Helvetica-Bold", 16)
        c.drawCentredString(width / 2, height - 42 * mm, document.shop_name)
        c.setFont("Helvetica", 12)
        c.setFillColor(muted)
        c.drawCentredString(
            width / 2, height - 50 * mm, document.event_date.strftime("%A, %d %B %Y")
        )
        if document.shop_address:
            c.drawCentredString(width / 2, height - 57 * mm, document.shop_address)

        # QR code, drawn from the generated file when available
        qr_size = 60 * mm
        qr_x = (width - qr_size) / 2
        qr_y = height - 130 * mm
        source = code_ref or BytesIO(_qr_png(document.ticket_no))
        c.drawImage(ImageReader(source), qr_x, qr_y, width=qr_size, height=qr_size)

        c.setFillColor(dark)
        c.setFont("Helvetica-Bold", 14)
        c.drawCentredString(width / 2, qr_y - 10 * mm, document.ticket_no)

        y_pos = qr_y - 25 * mm
        c.setFont("Helvetica-Bold", 11)
        c.drawString(30 * mm, y_pos, "Seat type")
        c.drawRightString(130 * mm, y_pos, "Qty")
        c.drawRightString(width - 30 * mm, y_pos, "Subtotal")
        c.setFont("Helvetica", 11)
        for line in document.lines:
            y_pos -= 7 * mm
            c.drawString(30 * mm, y_pos, line.seat_type_name)
            c.drawRightString(130 * mm, y_pos, str(line.quantity))
            c.drawRightString(width - 30 * mm, y_pos, f"{line.subtotal:.2f}")

        y_pos -= 10 * mm
        c.setFont("Helvetica-Bold", 12)
        c.drawString(30 * mm, y_pos, f"Total seats: {document.total_quantity}")
        c.drawRightString(width - 30 * mm, y_pos, f"{document.total_amount:.2f}")

        c.setFillColor(muted)
        c.setFont("Helvetica", 9)
        footer = f"Order {document.gateway_order_id}"
        if document.holder_name:
            footer = f"{document.holder_name} - {footer}"
        c.drawCentredString(width / 2, 20 * mm, footer)

        c.showPage()
        c.save()
        return str(path)


class LoggingNotifier:
    """Stand-in transport that records what would have been sent."""

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachments: list[Attachment],
    ) -> DispatchResult:
        logger.info(
            f"Ticket e-mail to {recipient}: {subject} "
            f"({len(attachments)} attachments: {[a.filename for a in attachments]})"
        )
        return DispatchResult(sent=True)
