"""
Shared ticket numbers.

Bookings for the same shop and event day are covered by one physical ticket
whose number is derived from the shop, the day and the event date only::

    PGS<shop>D<day>-<YYMMDD>-<NNNNNN>

The six digits come from the MD5 digest of ``"<shop>_<day>_<YYMMDD>"`` so the
same inputs always produce the same number. Individual tickets issued before
grouping existed use ``PG<booking>-<YYMMDD>-<NNNNNN>``.
"""

import hashlib
import re
from dataclasses import dataclass
from datetime import date

SHARED_PATTERN = re.compile(r"^PGS(\d+)D(\d+)-(\d{6})-(\d{6})$")
INDIVIDUAL_PATTERN = re.compile(r"^PG(\d+)-(\d{6})-(\d{6})$")


@dataclass(frozen=True)
class ParsedTicketNumber:
    """Components of a ticket number."""

    kind: str  # "shared" or "individual"
    date_code: str
    event_date: date
    sequence: int
    shop_id: int | None = None
    event_day_id: int | None = None
    booking_id: int | None = None


def _date_code(event_date: date) -> str:
    return event_date.strftime("%y%m%d")


def _digits(key: str) -> int:
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return int(digest[:6], 16) % 900000 + 100000


def shared_ticket_number(shop_id: int, event_day_id: int, event_date: date) -> str:
    """Derive the shared ticket number for a (shop, event day) group."""
    date_code = _date_code(event_date)
    number = _digits(f"{shop_id}_{event_day_id}_{date_code}")
    return f"PGS{shop_id}D{event_day_id}-{date_code}-{number}"


def validate_ticket_number(ticket_no: str) -> bool:
    """True if ``ticket_no`` is a well formed shared or individual number."""
    return bool(SHARED_PATTERN.match(ticket_no) or INDIVIDUAL_PATTERN.match(ticket_no))


def parse_ticket_number(ticket_no: str) -> ParsedTicketNumber | None:
    """Parse a ticket number, returning ``None`` when it is malformed."""
    try:
        return _parse(ticket_no)
    except ValueError:
        # Matches the pattern but the date code is not a real date
        return None


def _parse(ticket_no: str) -> ParsedTicketNumber | None:
    match = SHARED_PATTERN.match(ticket_no)
    if match:
        shop_id, day_id, date_code, sequence = match.groups()
        return ParsedTicketNumber(
            kind="shared",
            date_code=date_code,
            event_date=_parse_date_code(date_code),
            sequence=int(sequence),
            shop_id=int(shop_id),
            event_day_id=int(day_id),
        )

    match = INDIVIDUAL_PATTERN.match(ticket_no)
    if match:
        booking_id, date_code, sequence = match.groups()
        return ParsedTicketNumber(
            kind="individual",
            date_code=date_code,
            event_date=_parse_date_code(date_code),
            sequence=int(sequence),
            booking_id=int(booking_id),
        )
    return None


def _parse_date_code(date_code: str) -> date:
    return date(2000 + int(date_code[:2]), int(date_code[2:4]), int(date_code[4:6]))
