"""Tests for the role policy."""

import pytest

from seatledger.authorization import (
    Action,
    Principal,
    Resource,
    Role,
    authorize,
    is_allowed,
)
from seatledger.exceptions import AuthorizationError

ALICE = Principal("alice", Role.CUSTOMER)
SELLER = Principal("seller-1", Role.SELLER)
ADMIN = Principal("admin-1", Role.ADMIN)
ROOT = Principal("root", Role.SUPER_ADMIN)


@pytest.mark.parametrize(
    "principal, resource, action, allowed",
    [
        (ALICE, Resource("cart_items", "alice"), Action.CREATE, True),
        (ALICE, Resource("cart_items", "bob"), Action.UPDATE, False),
        (ALICE, Resource("bookings", "alice"), Action.VIEW, True),
        (ALICE, Resource("bookings", "bob"), Action.VIEW, False),
        (ALICE, Resource("bookings"), Action.DELETE, False),
        (ALICE, Resource("tickets", "alice"), Action.RESEND, True),
        (ALICE, Resource("tickets", "alice"), Action.USE, False),
        (ALICE, Resource("tickets"), Action.CREATE, False),
        (ALICE, Resource("shops"), Action.VIEW, True),
        (ALICE, Resource("shops"), Action.CREATE, False),
        (ALICE, Resource("payment_notifications"), Action.VIEW, False),
        (SELLER, Resource("tickets", "alice", "seller-1"), Action.USE, True),
        (SELLER, Resource("tickets", "alice", "seller-2"), Action.USE, False),
        (SELLER, Resource("tickets", "alice", "seller-1"), Action.RESEND, False),
        (SELLER, Resource("bookings", "alice", "seller-1"), Action.VIEW, True),
        (SELLER, Resource("bookings", "alice", "seller-2"), Action.VIEW, False),
        (SELLER, Resource("bookings", "alice"), Action.VIEW, False),
        (SELLER, Resource("bookings"), Action.VIEW, True),
        (SELLER, Resource("payments", "alice", "seller-1"), Action.VIEW, False),
        (SELLER, Resource("checkout_customers", "alice", "seller-1"), Action.VIEW, False),
        (SELLER, Resource("seat_type_availability"), Action.UPDATE, True),
        (SELLER, Resource("shops"), Action.DELETE, False),
        (SELLER, Resource("admin"), Action.VIEW, False),
        (ADMIN, Resource("tickets"), Action.CREATE, True),
        (ADMIN, Resource("payment_notifications"), Action.VIEW, True),
        (ADMIN, Resource("super_admin"), Action.VIEW, False),
        (ROOT, Resource("super_admin"), Action.DELETE, True),
    ],
)
def test_is_allowed(principal, resource, action, allowed):
    assert is_allowed(principal, resource, action) is allowed


def test_authorize_raises_with_context():
    with pytest.raises(AuthorizationError) as exc_info:
        authorize(ALICE, Resource("tickets"), Action.USE)

    assert exc_info.value.status_code == 403
    assert "customer may not use tickets" in exc_info.value.message


def test_staff_flag():
    assert ADMIN.is_staff and ROOT.is_staff
    assert not SELLER.is_staff
    assert not ALICE.is_staff
