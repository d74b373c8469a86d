import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.utils import as_utc, now
from storefront.schema.full_schema import Orders, OrderItem, StockReservation


def _parse_public_id(order_ref: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(order_ref))
    except (ValueError, AttributeError, TypeError):
        return None


async def get_order_by_ref(session: AsyncSession, order_ref: str, for_update: bool = False) -> Optional[Orders]:
    """Resolve an order by public uuid or by order number; row locked when ``for_update``."""
    public_id = _parse_public_id(order_ref)
    if public_id is not None:
        cond = Orders.public_id == public_id
    else:
        cond = Orders.order_number == order_ref

    stmt = select(Orders).where(cond).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_order_by_id(session: AsyncSession, order_id: int) -> Optional[Orders]:
    stmt = select(Orders).where(Orders.id == order_id).execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def insert_order_with_items(session: AsyncSession, order: Orders, items: List[OrderItem]) -> Orders:
    session.add(order)
    await session.flush()  # order.id
    for item in items:
        item.order_id = order.id
    session.add_all(items)
    await session.flush()
    return order


def reservation_expired(order: Orders) -> bool:
    expires_at = as_utc(order.reservation_expires_at)
    return expires_at is not None and expires_at < now()


def serialize_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "product_id": item.product_id,
        "sku": item.sku,
        "product_name": item.product_name,
        "quantity": item.quantity,
        "price": item.price,
        "subtotal": item.subtotal,
    }


def serialize_reservation(r: StockReservation) -> Dict[str, Any]:
    return {
        "product_id": r.product_id,
        "quantity": r.quantity,
        "status": r.status.value,
        "expires_at": r.expires_at,
        "released_at": r.released_at,
        "release_reason": r.release_reason.value if r.release_reason else None,
    }


def serialize_order(order: Orders, items: Optional[List[OrderItem]] = None) -> Dict[str, Any]:
    data = {
        "public_id": str(order.public_id),
        "order_number": order.order_number,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_method": order.payment_method,
        "payment_id": order.payment_id,
        "currency": order.currency,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "tax": order.tax,
        "total": order.total,
        "customer_email": order.customer_email,
        "customer_name": order.customer_name,
        "shipping_method": order.shipping_method,
        "shipping_address": order.shipping_address,
        "tracking_number": order.tracking_number,
        "review_reason": order.review_reason,
        "reservation_expires_at": order.reservation_expires_at,
        "created_at": order.created_at,
    }
    if items is not None:
        data["items"] = [serialize_item(i) for i in items]
    return data
