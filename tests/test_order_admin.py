import pytest
from conftest import ADMIN_HEADERS, load_order, load_reservations, set_stock, stock_of, url_prefix
from storefront.config.admin_config import admin_config
from storefront.orders.state_machine import ALLOWED_TRANSITIONS, can_transition
from storefront.schema.full_schema import OrderStatus, ReleaseReason, ReservationStatus

admin_prefix = f"{url_prefix}/admin"


def test_transition_table():
    assert can_transition(OrderStatus.PENDING, OrderStatus.PROCESSING)
    assert can_transition(OrderStatus.PENDING, OrderStatus.CANCELLED)
    assert can_transition(OrderStatus.PROCESSING, OrderStatus.SHIPPED)
    assert can_transition(OrderStatus.SHIPPED, OrderStatus.DELIVERED)

    assert not can_transition(OrderStatus.PENDING, OrderStatus.SHIPPED)
    assert not can_transition(OrderStatus.SHIPPED, OrderStatus.CANCELLED)
    assert not can_transition(OrderStatus.CANCELLED, OrderStatus.PROCESSING)
    assert ALLOWED_TRANSITIONS[OrderStatus.DELIVERED] == frozenset()


@pytest.mark.asyncio
async def test_ship_and_deliver_paid_order(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 1)])
    await post_payment(ac_client, order["order_number"], "success", "evt_1")

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/ship",
                               json={"tracking_number": "CC123456789EE"}, headers=ADMIN_HEADERS)
    assert res.status_code == 200, res.text
    assert res.json()["data"]["status"] == "shipped"
    assert res.json()["data"]["tracking_number"] == "CC123456789EE"

    res = await ac_client.post(f"{admin_prefix}/orders/{order['public_id']}/deliver", headers=ADMIN_HEADERS)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "delivered"

    stored = await load_order(order["order_number"])
    assert stored.shipped_at is not None
    assert stored.delivered_at is not None


@pytest.mark.asyncio
async def test_unpaid_order_cannot_ship(ac_client, make_product, place_order):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 1)])

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/ship", headers=ADMIN_HEADERS)
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "INVALID_TRANSITION"

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/deliver", headers=ADMIN_HEADERS)
    assert res.status_code == 409

    stored = await load_order(order["order_number"])
    assert stored.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_pending_order_releases_holds(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/cancel", headers=ADMIN_HEADERS)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "cancelled"

    stored = await load_order(order["order_number"])
    [hold] = await load_reservations(stored.id)
    assert hold.status == ReservationStatus.RELEASED
    assert hold.release_reason == ReleaseReason.ADMIN_CANCEL

    # cancelled twice
    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/cancel", headers=ADMIN_HEADERS)
    assert res.status_code == 409

    # a payment arriving afterwards is kept for manual refund
    res = await post_payment(ac_client, order["order_number"], "success", "evt_after_cancel")
    assert res.json()["data"]["action"] == "flagged_for_review"
    assert await stock_of(a) == 10


@pytest.mark.asyncio
async def test_cancel_shipped_order_rejected(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 1)])
    await post_payment(ac_client, order["order_number"], "success", "evt_1")
    await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/ship", headers=ADMIN_HEADERS)

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/cancel", headers=ADMIN_HEADERS)
    assert res.status_code == 409
    assert res.json()["error"]["details"]["info"]["status"] == "shipped"


@pytest.mark.asyncio
async def test_admin_routes_require_secret(ac_client, make_product, place_order):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 1)])

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/cancel")
    assert res.status_code == 401

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/cancel",
                               headers={"X-Admin-Secret": "wrong"})
    assert res.status_code == 401

    res = await ac_client.post(f"{admin_prefix}/orders/{order['order_number']}/cancel",
                               headers={"X-Admin-Secret": "é".encode("latin-1")})
    assert res.status_code == 401

    res = await ac_client.post(f"{admin_prefix}/orders/EST-0-UNKNOWN00/cancel", headers=ADMIN_HEADERS)
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_admin_open_on_dev_without_secret(ac_client, make_product, monkeypatch):
    await make_product(sku="A", stock=1)
    monkeypatch.setattr(admin_config, "ADMIN_SECRET", None)

    res = await ac_client.get(f"{admin_prefix}/products/low-stock")
    assert res.status_code == 200

    monkeypatch.setattr(admin_config, "ENV", "prod")
    res = await ac_client.get(f"{admin_prefix}/products/low-stock")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_low_stock_report(ac_client, make_product):
    a = await make_product(sku="A", stock=10, low_stock_threshold=3)
    b = await make_product(sku="B", stock=2, low_stock_threshold=3)
    c = await make_product(sku="C", stock=5, low_stock_threshold=5)
    await set_stock(a, 20)

    res = await ac_client.get(f"{admin_prefix}/products/low-stock", headers=ADMIN_HEADERS)
    assert res.status_code == 200
    products = res.json()["data"]["products"]
    assert [p["product_id"] for p in products] == [b, c]
    assert products[0] == {"product_id": b, "sku": "B", "name": "Product B", "stock": 2, "low_stock_threshold": 3}
