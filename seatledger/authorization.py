"""
Role-based authorization policy.

All access decisions go through :func:`is_allowed`, a pure function of
``(principal, resource, action)``. Services call :func:`authorize` which
raises instead of returning ``False``.
"""

import enum
from dataclasses import dataclass

from seatledger.exceptions import AuthorizationError


class Role(str, enum.Enum):
    """Principal roles."""

    CUSTOMER = "customer"
    SELLER = "seller"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Action(str, enum.Enum):
    """Actions a principal may attempt on a resource."""

    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    USE = "use"
    RESEND = "resend"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    principal_id: str
    role: Role = Role.CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.SUPER_ADMIN)


@dataclass(frozen=True)
class Resource:
    """
    Target of an action.

    ``owner_id`` is set for customer-owned rows; ``seller_id`` is the seller
    of the shop the row belongs to. Both stay ``None`` for collection-level
    checks, where the caller narrows the query itself.
    """

    kind: str
    owner_id: str | None = None
    seller_id: str | None = None


CATALOG = frozenset({"shops", "seat_types", "event_days", "seat_type_availability"})

# Rows that belong to a single customer account.
OWNED = frozenset(
    {"cart_items", "bookings", "payments", "tickets", "checkout_customers"}
)

STAFF_ONLY = frozenset({"admin", "super_admin", "payment_notifications"})

_GRANTS: dict[Role, dict[Action, frozenset[str]]] = {
    Role.SELLER: {
        Action.VIEW: CATALOG | frozenset({"bookings", "tickets"}),
        Action.CREATE: CATALOG,
        Action.UPDATE: frozenset({"seat_types", "seat_type_availability"}),
        Action.DELETE: frozenset(),
        Action.USE: frozenset({"tickets"}),
        Action.RESEND: frozenset(),
    },
    Role.CUSTOMER: {
        Action.VIEW: CATALOG | OWNED,
        Action.CREATE: frozenset(
            {"cart_items", "bookings", "payments", "checkout_customers"}
        ),
        Action.UPDATE: frozenset({"cart_items", "checkout_customers"}),
        Action.DELETE: frozenset({"cart_items"}),
        Action.USE: frozenset(),
        Action.RESEND: frozenset({"tickets"}),
    },
}


def is_allowed(principal: Principal, resource: Resource, action: Action) -> bool:
    """Decide whether ``principal`` may perform ``action`` on ``resource``."""
    if principal.role is Role.SUPER_ADMIN:
        return True
    if principal.role is Role.ADMIN:
        return resource.kind != "super_admin"
    if resource.kind in STAFF_ONLY:
        return False

    granted = _GRANTS.get(principal.role, {}).get(action, frozenset())
    if resource.kind not in granted:
        return False

    # Customers only ever touch their own rows
    if principal.role is Role.CUSTOMER and resource.kind in OWNED:
        return resource.owner_id is None or resource.owner_id == principal.principal_id
    # Sellers only see rows sold through their own shops
    if principal.role is Role.SELLER and resource.kind in OWNED:
        return resource.owner_id is None or resource.seller_id == principal.principal_id
    return True


def authorize(principal: Principal, resource: Resource, action: Action) -> None:
    """
    Enforce the policy.

    Raises:
        AuthorizationError: If the action is not allowed
    """
    if not is_allowed(principal, resource, action):
        raise AuthorizationError(
            f"{principal.role.value} may not {action.value} {resource.kind}"
        )
