import asyncio
import pytest
from sqlalchemy.exc import OperationalError
from conftest import (
    load_order, load_reservations, payment_event, set_stock, signed_payment, stock_of, url_prefix,
)
from storefront.config.settings import config_settings
from storefront.db.connection import async_session
from storefront.inventory import ledger
from storefront.orders.services import get_order_payment_status
from storefront.payments import event_store
from storefront.payments.providers import hmac_sha256_hex
from storefront.schema.full_schema import OrderStatus, PaymentStatus, ReleaseReason, ReservationStatus


async def _event_row(event_id):
    async with async_session() as session:
        return await event_store.get_event(session, event_id)


@pytest.mark.asyncio
async def test_success_commits_stock_and_pays_order(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    res = await post_payment(ac_client, order["order_number"], "success", "evt_1", payment_id="pay_123", amount="29.79")
    assert res.status_code == 200, res.text
    assert res.json()["data"] == {
        "success": True,
        "idempotent": False,
        "action": "committed",
        "order_number": order["order_number"],
        "payment_status": "completed",
        "status": "processing",
    }

    assert await stock_of(a) == 8
    stored = await load_order(order["order_number"])
    assert stored.status == OrderStatus.PROCESSING
    assert stored.payment_status == PaymentStatus.COMPLETED
    assert stored.payment_id == "pay_123"
    assert stored.paid_at is not None

    [hold] = await load_reservations(stored.id)
    assert hold.status == ReservationStatus.COMMITTED
    assert hold.release_reason == ReleaseReason.PAYMENT_SUCCESS

    event = await _event_row("evt_1")
    assert event.processed is True
    assert event.order_id == stored.id

    status = await ac_client.get(f"{url_prefix}/orders/{order['public_id']}/status")
    assert status.json()["data"]["payment_status"] == "completed"
    assert status.json()["data"]["status"] == "processing"


@pytest.mark.asyncio
async def test_replayed_event_is_acknowledged_without_side_effects(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    first = await post_payment(ac_client, order["order_number"], "success", "evt_1")
    assert first.status_code == 200

    for _ in range(3):
        again = await post_payment(ac_client, order["order_number"], "success", "evt_1")
        assert again.status_code == 200
        assert again.json()["data"]["idempotent"] is True
        assert again.json()["data"]["action"] == "already_processed"

    assert await stock_of(a) == 8


@pytest.mark.asyncio
async def test_concurrent_duplicate_deliveries_commit_once(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    r1, r2 = await asyncio.gather(
        post_payment(ac_client, order["order_number"], "success", "evt_dup"),
        post_payment(ac_client, order["order_number"], "success", "evt_dup"),
    )
    assert r1.status_code == 200, r1.text
    assert r2.status_code == 200, r2.text
    assert sorted([r1.json()["data"]["idempotent"], r2.json()["data"]["idempotent"]]) == [False, True]

    assert await stock_of(a) == 8
    stored = await load_order(order["order_number"])
    holds = await load_reservations(stored.id)
    assert [h.status for h in holds] == [ReservationStatus.COMMITTED]


@pytest.mark.asyncio
async def test_second_success_event_for_paid_order(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    await post_payment(ac_client, order["order_number"], "success", "evt_1")
    res = await post_payment(ac_client, order["public_id"], "success", "evt_2")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "already_paid"
    assert res.json()["data"]["idempotent"] is False
    assert await stock_of(a) == 8


@pytest.mark.asyncio
async def test_failed_payment_releases_holds(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    res = await post_payment(ac_client, order["order_number"], "failed", "evt_fail")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "released"
    assert res.json()["data"]["status"] == "cancelled"
    assert res.json()["data"]["payment_status"] == "failed"

    assert await stock_of(a) == 10
    stored = await load_order(order["order_number"])
    [hold] = await load_reservations(stored.id)
    assert hold.status == ReservationStatus.RELEASED
    assert hold.release_reason == ReleaseReason.PAYMENT_FAILED
    assert stored.cancelled_at is not None


@pytest.mark.asyncio
async def test_pending_event_changes_nothing(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    res = await post_payment(ac_client, order["order_number"], "pending", "evt_pending")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "pending"

    stored = await load_order(order["order_number"])
    assert stored.status == OrderStatus.PENDING
    assert stored.payment_status == PaymentStatus.PENDING
    [hold] = await load_reservations(stored.id)
    assert hold.status == ReservationStatus.RESERVED
    assert (await _event_row("evt_pending")).processed is True


@pytest.mark.asyncio
async def test_failure_after_success_is_ignored(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    await post_payment(ac_client, order["order_number"], "success", "evt_ok")
    res = await post_payment(ac_client, order["order_number"], "failed", "evt_late_fail")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "ignored"
    assert res.json()["data"]["status"] == "processing"
    assert res.json()["data"]["payment_status"] == "completed"
    assert await stock_of(a) == 8


@pytest.mark.asyncio
async def test_unknown_order_is_not_recorded(ac_client, post_payment):
    res = await post_payment(ac_client, "EST-1-MISSING00", "success", "evt_orphan")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "ORDER_NOT_FOUND"
    assert await _event_row("evt_orphan") is None


@pytest.mark.asyncio
async def test_signature_is_required(ac_client, make_product, place_order):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])
    body, headers = signed_payment(payment_event(order["order_number"], "success", "evt_forged"))

    res = await ac_client.post(f"{url_prefix}/webhooks/payment", content=body,
                               headers={**headers, "X-Payment-Signature": "0" * 64})
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "INVALID_SIGNATURE"

    res = await ac_client.post(f"{url_prefix}/webhooks/payment", content=body, headers={"Content-Type": "application/json"})
    assert res.status_code == 401

    assert await stock_of(a) == 10
    assert await _event_row("evt_forged") is None


@pytest.mark.asyncio
async def test_non_ascii_signature_is_rejected(ac_client, make_product, place_order):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])
    body, headers = signed_payment(payment_event(order["order_number"], "success", "evt_latin1"))

    res = await ac_client.post(f"{url_prefix}/webhooks/payment", content=body,
                               headers={**headers, "X-Payment-Signature": "éabc".encode("latin-1")})
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "INVALID_SIGNATURE"
    assert await stock_of(a) == 10
    assert await _event_row("evt_latin1") is None


@pytest.mark.asyncio
async def test_unset_secret_refuses_every_signature(ac_client, make_product, place_order, monkeypatch):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])
    body, headers = signed_payment(payment_event(order["order_number"], "success", "evt_unset"))
    monkeypatch.setattr(config_settings, "PAYMENT_WEBHOOK_SECRET", None)

    for key in ("dev-payment-webhook-secret", ""):
        forged = {**headers, "X-Payment-Signature": hmac_sha256_hex(key, body)}
        res = await ac_client.post(f"{url_prefix}/webhooks/payment", content=body, headers=forged)
        assert res.status_code == 503
        assert res.json()["error"]["code"] == "PROVIDER_NOT_CONFIGURED"

    assert await stock_of(a) == 10
    assert await _event_row("evt_unset") is None
    assert (await load_order(order["order_number"])).payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_malformed_payloads(ac_client):
    body, headers = signed_payment({"event_id": "evt_x"})
    res = await ac_client.post(f"{url_prefix}/webhooks/payment", content=body, headers=headers)
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_WEBHOOK_PAYLOAD"

    raw = b"not json"
    _, headers = signed_payment({})
    headers["X-Payment-Signature"] = hmac_sha256_hex(config_settings.PAYMENT_WEBHOOK_SECRET, raw)
    res = await ac_client.post(f"{url_prefix}/webhooks/payment", content=raw, headers=headers)
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_late_failure_after_timeout(ac_client, make_product, place_order, post_payment, expire_holds):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])
    assert await expire_holds(order["order_number"]) == 1

    status = await ac_client.get(f"{url_prefix}/orders/{order['order_number']}/status")
    assert status.json()["data"] == {
        "order_number": order["order_number"],
        "payment_status": "pending",
        "status": "pending",
        "reservation_expired": True,
    }

    res = await post_payment(ac_client, order["order_number"], "failed", "evt_fail_late")
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "cancelled"
    assert res.json()["data"]["payment_status"] == "failed"

    stored = await load_order(order["order_number"])
    [hold] = await load_reservations(stored.id)
    assert hold.release_reason == ReleaseReason.TIMEOUT
    assert await stock_of(a) == 10


@pytest.mark.asyncio
async def test_late_success_takes_stock_again(ac_client, make_product, place_order, post_payment, expire_holds):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])
    await expire_holds(order["order_number"])

    res = await post_payment(ac_client, order["order_number"], "success", "evt_late")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "committed_late"
    assert res.json()["data"]["status"] == "processing"
    assert res.json()["data"]["payment_status"] == "completed"
    assert await stock_of(a) == 8


@pytest.mark.asyncio
async def test_late_success_without_stock_is_flagged(ac_client, make_product, place_order, post_payment, expire_holds):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])
    await expire_holds(order["order_number"])
    await set_stock(a, 1)

    res = await post_payment(ac_client, order["order_number"], "success", "evt_late", payment_id="pay_late")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "flagged_for_review"
    assert res.json()["data"]["status"] == "cancelled"
    assert res.json()["data"]["payment_status"] == "completed"

    stored = await load_order(order["order_number"])
    assert stored.review_reason == "late_payment_out_of_stock"
    assert stored.payment_id == "pay_late"
    assert await stock_of(a) == 1


@pytest.mark.asyncio
async def test_payment_after_cancel_is_flagged(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 2)])

    await post_payment(ac_client, order["order_number"], "failed", "evt_fail")
    res = await post_payment(ac_client, order["order_number"], "success", "evt_paid_anyway")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "flagged_for_review"
    assert res.json()["data"]["status"] == "cancelled"

    stored = await load_order(order["order_number"])
    assert stored.review_reason == "payment_after_cancel"
    assert await stock_of(a) == 10


@pytest.mark.asyncio
async def test_failure_mid_commit_rolls_everything_back(ac_client, make_product, place_order, post_payment, monkeypatch):
    a = await make_product(sku="A", stock=10)
    b = await make_product(sku="B", stock=10)
    order = await place_order(ac_client, [(a, 2), (b, 1)])

    real_decrement = ledger._decrement_stock

    async def flaky_decrement(session, product_id, quantity):
        if product_id == b:
            raise OperationalError("UPDATE product SET stock", {}, Exception("disk I/O error"))
        return await real_decrement(session, product_id, quantity)

    monkeypatch.setattr(ledger, "_decrement_stock", flaky_decrement)
    res = await post_payment(ac_client, order["order_number"], "success", "evt_atomic")
    assert res.status_code == 503
    assert res.json()["error"]["code"] == "DATABASE_UNAVAILABLE"

    assert await stock_of(a) == 10
    assert await stock_of(b) == 10
    stored = await load_order(order["order_number"])
    assert stored.status == OrderStatus.PENDING
    assert stored.payment_status == PaymentStatus.PENDING
    holds = await load_reservations(stored.id)
    assert all(h.status == ReservationStatus.RESERVED for h in holds)
    assert await _event_row("evt_atomic") is None

    # provider retry after the outage goes through
    monkeypatch.undo()
    res = await post_payment(ac_client, order["order_number"], "success", "evt_atomic")
    assert res.status_code == 200
    assert res.json()["data"]["action"] == "committed"
    assert await stock_of(a) == 8
    assert await stock_of(b) == 9


@pytest.mark.asyncio
async def test_webhook_outcomes_are_exported(ac_client, make_product, place_order, post_payment):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 1)])
    await post_payment(ac_client, order["order_number"], "success", "evt_metrics")

    res = await ac_client.get("/metrics")
    assert res.status_code == 200
    assert 'storefront_payment_webhooks_total{provider="manual",outcome="committed"}' in res.text


@pytest.mark.asyncio
async def test_payment_status_after_commit(ac_client, make_product, place_order, post_payment, db_session):
    a = await make_product(sku="A", stock=10)
    order = await place_order(ac_client, [(a, 1)])
    await post_payment(ac_client, order["order_number"], "success", "evt_poll")

    status = await get_order_payment_status(db_session, order["public_id"])
    assert status == {
        "order_number": order["order_number"],
        "payment_status": "completed",
        "status": "processing",
        "reservation_expired": False,
    }
