from datetime import timedelta
from typing import Any, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.custom_exceptions import OrderNotFoundError
from storefront.common.utils import now
from storefront.inventory import ledger
from storefront.inventory.constants import RESERVATION_TTL_MINUTES
from storefront.inventory.repository import get_products_for_checkout
from storefront.orders.constants import CURRENCY, logger
from storefront.orders.models import CheckoutIn
from storefront.orders.repository import get_order_by_ref, insert_order_with_items, reservation_expired, serialize_order
from storefront.orders.utils import compute_order_totals, generate_order_number, to_cents
from storefront.schema.full_schema import OrderItem, OrderStatus, Orders, PaymentStatus


def _merge_lines(payload: CheckoutIn) -> Dict[int, int]:
    # the same product twice in one cart becomes one line / one hold
    merged: Dict[int, int] = {}
    for it in payload.items:
        merged[it.product_id] = merged.get(it.product_id, 0) + it.quantity
    return merged


async def create_order(session: AsyncSession, payload: CheckoutIn) -> Dict[str, Any]:
    """Order + items + stock holds in the caller's transaction. Totals are computed here, never trusted from the client."""
    lines = _merge_lines(payload)
    products = await get_products_for_checkout(session, list(lines))

    items = []
    for product_id, qty in sorted(lines.items()):
        p = products[product_id]
        unit = to_cents(p.price)
        items.append(OrderItem(
            product_id=p.id,
            sku=p.sku,
            product_name=p.name,
            quantity=qty,
            price=unit,
            subtotal=to_cents(unit * qty),
        ))

    info = payload.order
    totals = compute_order_totals(((i.price, i.quantity) for i in items), info.shipping_method)
    created = now()
    expires_at = created + timedelta(minutes=RESERVATION_TTL_MINUTES)

    order = Orders(
        order_number=generate_order_number(),
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        payment_method=info.payment_method,
        reservation_expires_at=expires_at,
        currency=CURRENCY,
        customer_email=info.customer_email,
        customer_name=info.customer_name,
        customer_phone=info.customer_phone,
        shipping_method=info.shipping_method,
        shipping_address=info.shipping_address.model_dump(),
        notes=info.notes,
        created_at=created,
        updated_at=created,
        **totals,
    )
    await insert_order_with_items(session, order, items)
    await ledger.reserve(session, order.id, items, expires_at)

    logger.info("order.created", extra={
        "order_number": order.order_number,
        "items": len(items),
        "total": str(order.total),
        "customer_email": order.customer_email,
    })
    return serialize_order(order, items)


async def get_order_payment_status(session: AsyncSession, order_ref: str) -> Dict[str, Any]:
    """Polling contract for the checkout page."""
    order = await get_order_by_ref(session, order_ref)
    if order is None:
        raise OrderNotFoundError("order not found", details={"order_ref": order_ref})

    return {
        "order_number": order.order_number,
        "payment_status": order.payment_status.value,
        "status": order.status.value,
        "reservation_expired": reservation_expired(order),
    }


async def get_order_details(session: AsyncSession, order_ref: str) -> Dict[str, Any]:
    order = await get_order_by_ref(session, order_ref)
    if order is None:
        raise OrderNotFoundError("order not found", details={"order_ref": order_ref})
    return serialize_order(order, list(order.items))
