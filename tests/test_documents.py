"""Tests for QR code and PDF ticket output."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from seatledger.documents import (
    Attachment,
    LoggingNotifier,
    PdfTicketRenderer,
    QRCodeGenerator,
    TicketDocument,
    TicketLine,
)


@pytest.fixture
def document() -> TicketDocument:
    return TicketDocument(
        ticket_no="PGS1D1-261224-800226",
        gateway_order_id="PG-TEST",
        shop_name="Galle Face",
        shop_address="Colombo 03",
        event_name="Christmas Eve",
        event_date=date(2026, 12, 24),
        holder_name="Alice Perera",
        lines=[
            TicketLine(seat_type_name="VIP", quantity=2, subtotal=Decimal("10000.00")),
            TicketLine(seat_type_name="Standard", quantity=3, subtotal=Decimal("7500.00")),
        ],
    )


def test_document_totals(document):
    assert document.total_quantity == 5
    assert document.total_amount == Decimal("17500.00")


def test_qr_code_is_png(tmp_path):
    ref = QRCodeGenerator(tmp_path).generate("PGS1D1-261224-800226")

    path = Path(ref)
    assert path.parent == tmp_path / "codes"
    assert path.read_bytes().startswith(b"\x89PNG")


def test_pdf_embeds_generated_code(tmp_path, document):
    code_ref = QRCodeGenerator(tmp_path).generate(document.ticket_no)

    ref = PdfTicketRenderer(tmp_path).render(document, code_ref)

    path = Path(ref)
    assert path.name == "PGS1D1-261224-800226.pdf"
    assert path.read_bytes().startswith(b"%PDF")


def test_pdf_without_code_file(tmp_path, document):
    ref = PdfTicketRenderer(tmp_path).render(document, None)

    assert Path(ref).stat().st_size > 0


@pytest.mark.asyncio
async def test_logging_notifier_reports_sent():
    result = await LoggingNotifier().send(
        "alice@example.com",
        "Your tickets",
        "Hello",
        [Attachment(filename="PGS1D1-261224-800226.pdf", ref="tickets/x.pdf")],
    )

    assert result.sent is True
    assert result.error is None
