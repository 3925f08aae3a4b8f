"""API tests through the ASGI app with database and Redis overridden."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from seatledger.database import get_db
from seatledger.main import app
from seatledger.models import ProcessingStatus
from seatledger.redis_client import get_redis
from seatledger.services.reconciliation_service import ReconciliationService
from seatledger.ticket_numbers import shared_ticket_number
from tests.helpers import set_ledger, signed_notification

ALICE = {"X-User-ID": "alice"}
BOB = {"X-User-ID": "bob"}
SELLER = {"X-User-ID": "seller-1", "X-User-Role": "seller"}


@pytest_asyncio.fixture(scope="function")
async def async_client(db, mock_redis):
    """Create async test client."""

    async def override_get_db():
        yield db

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _add(client, headers, catalog, quantity, seat_type_id=None):
    return await client.post(
        "/api/v1/cart/items",
        headers=headers,
        json={
            "shop_id": catalog.shop_a,
            "seat_type_id": seat_type_id or catalog.vip_a,
            "event_day_id": catalog.day_1,
            "quantity": quantity,
        },
    )


@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_identity_header_required(async_client, catalog):
    response = await async_client.get("/api/v1/cart")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role(async_client, catalog):
    response = await async_client.get(
        "/api/v1/cart", headers={"X-User-ID": "alice", "X-User-Role": "wizard"}
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cart_endpoints(async_client, catalog):
    created = await _add(async_client, ALICE, catalog, 2)
    assert created.status_code == 201
    item_id = created.json()["cart_item_id"]

    updated = await async_client.patch(
        f"/api/v1/cart/items/{item_id}", headers=ALICE, json={"quantity": 3}
    )
    assert updated.status_code == 200
    assert updated.json()["total_price"] == "15000.00"

    cart = (await async_client.get("/api/v1/cart", headers=ALICE)).json()
    assert cart["item_count"] == 1
    assert cart["total_quantity"] == 3
    assert cart["items"][0]["shop_name"] == "Galle Face"
    assert cart["items"][0]["available_quantity"] == 10

    forbidden = await async_client.delete(f"/api/v1/cart/items/{item_id}", headers=BOB)
    assert forbidden.status_code == 403

    removed = await async_client.delete(f"/api/v1/cart/items/{item_id}", headers=ALICE)
    assert removed.json()["success"] is True


@pytest.mark.asyncio
async def test_adding_too_many_seats_reports_availability(async_client, catalog):
    await _add(async_client, BOB, catalog, 8)

    response = await _add(async_client, ALICE, catalog, 3)

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "Conflict"
    assert body["available_quantity"] == 2


@pytest.mark.asyncio
async def test_checkout_conflict_lists_failing_lines(async_client, db, catalog):
    await _add(async_client, ALICE, catalog, 4)
    await set_ledger(db, catalog.vip_a, catalog.day_1, quantity=3)

    response = await async_client.post("/api/v1/checkout", headers=ALICE)

    assert response.status_code == 409
    items = response.json()["items"]
    assert items[0]["available_quantity"] == 3
    assert items[0]["shop_name"] == "Galle Face"


@pytest.mark.asyncio
async def test_empty_checkout(async_client, catalog):
    response = await async_client.post("/api/v1/checkout", headers=ALICE)

    assert response.status_code == 400
    assert response.json()["detail"] == "Cart is empty"


@pytest.mark.asyncio
async def test_booking_filters(async_client, catalog):
    await _add(async_client, ALICE, catalog, 2)
    await async_client.post("/api/v1/checkout", headers=ALICE)

    pending = await async_client.get("/api/v1/bookings?status=pending", headers=ALICE)
    large = await async_client.get("/api/v1/bookings?quantity__gte=5", headers=ALICE)
    bad_field = await async_client.get("/api/v1/bookings?customer_id=bob", headers=ALICE)
    bad_op = await async_client.get("/api/v1/bookings?quantity__near=2", headers=ALICE)

    assert len(pending.json()) == 1
    assert large.json() == []
    assert bad_field.status_code == 400
    assert bad_op.status_code == 400


@pytest.mark.asyncio
async def test_purchase_flow(async_client, db, catalog, mock_redis, ticket_service):
    await _add(async_client, ALICE, catalog, 2)
    await _add(async_client, ALICE, catalog, 1, seat_type_id=catalog.standard_a)

    checkout = await async_client.post("/api/v1/checkout", headers=ALICE)
    assert checkout.status_code == 201
    assert checkout.json()["total_amount"] == "12500.00"

    intent = await async_client.post(
        "/api/v1/payments/orders",
        headers=ALICE,
        json={"booking_ids": checkout.json()["booking_ids"], "payment_method": "card"},
    )
    assert intent.status_code == 201
    order_id = intent.json()["gateway_order_id"]

    contact = await async_client.put(
        f"/api/v1/payments/orders/{order_id}/customer",
        headers=ALICE,
        json={"first_name": "Alice", "last_name": "Perera", "email": "alice@example.com"},
    )
    assert contact.status_code == 200

    payload = (
        await async_client.get(f"/api/v1/payments/orders/{order_id}/checkout", headers=ALICE)
    ).json()
    assert payload["amount"] == "12500.00"
    assert payload["email"] == "alice@example.com"

    # Gateway callback: form encoded, no identity headers
    notify = await async_client.post(
        "/api/v1/payments/notify",
        data=signed_notification(order_id, 2, "12500.00"),
    )
    assert notify.status_code == 200
    assert notify.text == "OK"
    _stream, message = mock_redis.xadd.await_args.args
    assert message["gateway_order_id"] == order_id

    status = await ReconciliationService(
        db, mock_redis, ticket_service=ticket_service
    ).reconcile(int(message["notification_id"]))
    assert status == ProcessingStatus.PROCESSED

    tickets = (await async_client.get("/api/v1/tickets", headers=ALICE)).json()
    assert len(tickets) == 2
    assert len({t["ticket_no"] for t in tickets}) == 1

    ticket_no = shared_ticket_number(catalog.shop_a, catalog.day_1, catalog.event_date_1)
    used = await async_client.post(
        "/api/v1/tickets/use", headers=SELLER, json={"ticket_no": ticket_no}
    )
    assert used.status_code == 200
    assert all(t["used"] for t in used.json())

    again = await async_client.post(
        "/api/v1/tickets/use", headers=SELLER, json={"ticket_no": ticket_no}
    )
    assert again.status_code == 409

    cart = (await async_client.get("/api/v1/cart", headers=ALICE)).json()
    assert cart["items"] == []


@pytest.mark.asyncio
async def test_notify_accepts_json(async_client, db, catalog, mock_redis):
    response = await async_client.post(
        "/api/v1/payments/notify",
        json=signed_notification("PG-JSON", 2, "100.00"),
    )

    assert response.status_code == 200
    mock_redis.xadd.assert_awaited_once()


@pytest.mark.asyncio
async def test_notify_still_acknowledges_when_queue_is_down(async_client, catalog, mock_redis):
    mock_redis.xadd.side_effect = ConnectionError("redis down")

    response = await async_client.post(
        "/api/v1/payments/notify",
        data=signed_notification("PG-1", 2, "100.00"),
    )

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_notify_without_order_id(async_client, catalog):
    response = await async_client.post("/api/v1/payments/notify", data={"status_code": "2"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_parse_ticket_number(async_client):
    ok = await async_client.get("/api/v1/tickets/numbers/PGS12D3-250101-556721")
    bad = await async_client.get("/api/v1/tickets/numbers/NOPE")

    assert ok.json() == {
        "ticket_no": "PGS12D3-250101-556721",
        "kind": "shared",
        "shop_id": 12,
        "event_day_id": 3,
        "booking_id": None,
        "event_date": "2025-01-01",
    }
    assert bad.status_code == 400
