"""Tests for shared ticket number derivation and parsing."""

from datetime import date

import pytest

from seatledger.ticket_numbers import (
    parse_ticket_number,
    shared_ticket_number,
    validate_ticket_number,
)


def test_known_value():
    assert shared_ticket_number(1, 1, date(2026, 12, 24)) == "PGS1D1-261224-800226"
    assert shared_ticket_number(12, 3, date(2025, 1, 1)) == "PGS12D3-250101-556721"


def test_deterministic():
    first = shared_ticket_number(4, 7, date(2026, 3, 1))
    assert shared_ticket_number(4, 7, date(2026, 3, 1)) == first


@pytest.mark.parametrize(
    "a, b",
    [
        ((1, 1, date(2026, 12, 24)), (1, 2, date(2026, 12, 24))),
        ((1, 1, date(2026, 12, 24)), (2, 1, date(2026, 12, 24))),
        ((1, 1, date(2026, 12, 24)), (1, 1, date(2026, 12, 25))),
        # "1_12" and "11_2" must not be confused
        ((1, 12, date(2026, 12, 24)), (11, 2, date(2026, 12, 24))),
    ],
)
def test_distinct_groups_get_distinct_numbers(a, b):
    assert shared_ticket_number(*a) != shared_ticket_number(*b)


def test_six_digit_suffix_for_many_keys():
    for shop_id in range(1, 30):
        for day_id in range(1, 30):
            suffix = shared_ticket_number(shop_id, day_id, date(2026, 1, 31)).rsplit("-", 1)[1]
            assert 100000 <= int(suffix) <= 999999


@pytest.mark.parametrize(
    "ticket_no, valid",
    [
        ("PGS1D1-261224-800226", True),
        ("PG42-261224-123456", True),
        ("PGS1D1-261224-80022", False),
        ("PGS1-261224-800226", False),
        ("pgs1d1-261224-800226", False),
        ("PGS1D1-261224-800226 ", False),
        ("", False),
    ],
)
def test_validate(ticket_no, valid):
    assert validate_ticket_number(ticket_no) is valid


def test_parse_shared():
    parsed = parse_ticket_number("PGS12D3-250101-556721")

    assert parsed.kind == "shared"
    assert parsed.shop_id == 12
    assert parsed.event_day_id == 3
    assert parsed.event_date == date(2025, 1, 1)
    assert parsed.sequence == 556721
    assert parsed.booking_id is None


def test_parse_individual():
    parsed = parse_ticket_number("PG42-261224-123456")

    assert parsed.kind == "individual"
    assert parsed.booking_id == 42
    assert parsed.event_date == date(2026, 12, 24)


def test_parse_rejects_impossible_date():
    assert parse_ticket_number("PGS1D1-261332-800226") is None


def test_parse_rejects_garbage():
    assert parse_ticket_number("not-a-ticket") is None
