import json
import os
import tempfile
from datetime import timedelta
from decimal import Decimal

_TEST_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'storefront_test.db')}"
os.environ["REAPER_ENABLED"] = "false"
os.environ["ENV"] = "dev"
os.environ["ADMIN_SECRET"] = "test-admin-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-payment-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["MONTONIO_SECRET_KEY"] = "montonio-test-secret"
os.environ["PAYSERA_SIGN_PASSWORD"] = "paysera-test-password"

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, update
from sqlmodel import SQLModel
from storefront.common.utils import now
from storefront.config.settings import config_settings
from storefront.db.connection import async_engine, async_session
from storefront.inventory import ledger
from storefront.main import app
from storefront.payments.constants import PAYMENT_SIGNATURE_HEADER
from storefront.payments.providers import hmac_sha256_hex
from storefront.schema.full_schema import Orders, Product, StockReservation

url_prefix = "/api/v1"
ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}


@pytest.fixture(autouse=True)
async def fresh_schema():
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield


@pytest.fixture
async def db_session():

    async with async_session() as session:
        yield session


@pytest.fixture
async def ac_client():
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def make_product():
    async def _make(sku="SKU-1", price="12.40", stock=10, low_stock_threshold=3):
        async with async_session() as session:
            product = Product(
                sku=sku,
                name=f"Product {sku}",
                price=Decimal(price),
                stock=stock,
                low_stock_threshold=low_stock_threshold,
            )
            session.add(product)
            await session.commit()
            return product.id
    return _make


def checkout_payload(items, shipping_method="omniva", email="buyer@example.com"):
    return {
        "order": {
            "customer_email": email,
            "customer_name": "Mari Maasikas",
            "shipping_method": shipping_method,
            "shipping_address": {"line1": "Narva mnt 5", "city": "Tallinn", "postal_code": "10117"},
            "payment_method": "montonio",
        },
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
    }


@pytest.fixture
def place_order():
    async def _place(client, items, **kwargs):
        res = await client.post(f"{url_prefix}/orders", json=checkout_payload(items, **kwargs))
        assert res.status_code == 201, res.text
        return res.json()["data"]
    return _place


def signed_payment(payload):
    body = json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        PAYMENT_SIGNATURE_HEADER: hmac_sha256_hex(config_settings.PAYMENT_WEBHOOK_SECRET, body),
    }
    return body, headers


def payment_event(order_ref, status, event_id, provider="manual", amount=None, payment_id=None):
    payload = {
        "provider": provider,
        "event_id": event_id,
        "event_type": f"payment.{status}",
        "order_id": order_ref,
        "status": status,
    }
    if amount is not None:
        payload["amount"] = str(amount)
    if payment_id is not None:
        payload["payment_id"] = payment_id
    return payload


@pytest.fixture
def post_payment():
    async def _post(client, order_ref, status, event_id, **kwargs):
        body, headers = signed_payment(payment_event(order_ref, status, event_id, **kwargs))
        return await client.post(f"{url_prefix}/webhooks/payment", content=body, headers=headers)
    return _post


async def load_order(order_number):
    async with async_session() as session:
        res = await session.execute(select(Orders).where(Orders.order_number == order_number))
        return res.scalar_one()


async def load_reservations(order_id):
    async with async_session() as session:
        return list(await ledger.get_reservations(session, order_id))


async def stock_of(product_id):
    async with async_session() as session:
        res = await session.execute(select(Product.stock).where(Product.id == product_id))
        return res.scalar_one()


async def set_stock(product_id, stock):
    async with async_session() as session:
        await session.execute(update(Product).where(Product.id == product_id).values(stock=stock))
        await session.commit()


@pytest.fixture
def expire_holds():
    """Move an order's hold window into the past and run one sweep, as the reaper would."""
    async def _expire(order_number):
        past = now() - timedelta(minutes=1)
        async with async_session() as session:
            order = (await session.execute(select(Orders).where(Orders.order_number == order_number))).scalar_one()
            await session.execute(update(Orders).where(Orders.id == order.id).values(reservation_expires_at=past))
            await session.execute(update(StockReservation).where(StockReservation.order_id == order.id).values(expires_at=past))
            released = await ledger.expire_sweep(session)
            await session.commit()
            return released
    return _expire
