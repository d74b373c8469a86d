"""Order lifecycle.

    pending    -> processing   payment committed
    pending    -> cancelled    payment failed / admin cancel / late payment without stock
    processing -> shipped      admin
    processing -> cancelled    admin cancel
    shipped    -> delivered    admin

Each transition is a single conditional UPDATE guarded on the allowed source states, so a
transition that raced and lost affects zero rows. Payment driven transitions report that
as ``False``; admin transitions raise ``InvalidTransitionError``.
"""
from typing import Dict, FrozenSet, List, Optional
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.custom_exceptions import InvalidTransitionError, OrderNotFoundError
from storefront.common.utils import now
from storefront.inventory import ledger
from storefront.orders.constants import logger
from storefront.orders.repository import get_order_by_id
from storefront.schema.full_schema import OrderStatus, Orders, PaymentStatus, ReleaseReason

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def sources_for(target: OrderStatus) -> List[OrderStatus]:
    return [src for src, targets in ALLOWED_TRANSITIONS.items() if target in targets]


async def _apply(session: AsyncSession, order_id: int, target: OrderStatus, sources: List[OrderStatus],
                 extra_where=(), **values) -> bool:
    stmt = (
        update(Orders)
        .where(Orders.id == order_id, Orders.status.in_(sources), *extra_where)
        .values(status=target, updated_at=now(), **values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return bool(res.rowcount)


# ---------------------------------------------------------------- payment driven

async def mark_paid(session: AsyncSession, order_id: int, payment_id: Optional[str]) -> bool:
    """pending -> processing with payment completed."""
    ts = now()
    changed = await _apply(
        session, order_id, OrderStatus.PROCESSING, [OrderStatus.PENDING],
        payment_status=PaymentStatus.COMPLETED, payment_id=payment_id, paid_at=ts,
    )
    if not changed:
        logger.info("order.mark_paid.noop", extra={"order_id": order_id, "payment_id": payment_id})
    return changed


async def mark_payment_failed(session: AsyncSession, order_id: int) -> bool:
    """pending/pending -> cancelled/failed. A stray failure after a success changes nothing."""
    changed = await _apply(
        session, order_id, OrderStatus.CANCELLED, [OrderStatus.PENDING],
        extra_where=(Orders.payment_status == PaymentStatus.PENDING,),
        payment_status=PaymentStatus.FAILED, cancelled_at=now(),
    )
    if not changed:
        logger.info("order.mark_payment_failed.noop", extra={"order_id": order_id})
    return changed


async def cancel_paid_without_stock(session: AsyncSession, order_id: int, payment_id: Optional[str], review_reason: str) -> bool:
    """Money captured but the goods are gone: cancel and leave the order flagged for a manual refund."""
    ts = now()
    return await _apply(
        session, order_id, OrderStatus.CANCELLED, [OrderStatus.PENDING],
        payment_status=PaymentStatus.COMPLETED, payment_id=payment_id, paid_at=ts,
        cancelled_at=ts, review_reason=review_reason,
    )


async def flag_for_review(session: AsyncSession, order_id: int, review_reason: str, payment_id: Optional[str] = None) -> None:
    values = {"review_reason": review_reason, "updated_at": now()}
    if payment_id:
        values["payment_id"] = payment_id
    stmt = (
        update(Orders)
        .where(Orders.id == order_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


# ---------------------------------------------------------------- admin

async def _admin_transition(session: AsyncSession, order: Orders, target: OrderStatus, **values) -> Orders:
    changed = await _apply(session, order.id, target, sources_for(target), **values)
    current = await get_order_by_id(session, order.id)
    if current is None:
        raise OrderNotFoundError("order not found", details={"order_number": order.order_number})
    if not changed:
        raise InvalidTransitionError(
            f"cannot move order from {current.status.value} to {target.value}",
            details={"order_number": current.order_number, "status": current.status.value, "target": target.value},
        )
    logger.info("order.transition", extra={"order_number": current.order_number, "to": target.value})
    return current


async def ship(session: AsyncSession, order: Orders, tracking_number: Optional[str] = None) -> Orders:
    values = {"shipped_at": now()}
    if tracking_number:
        values["tracking_number"] = tracking_number
    return await _admin_transition(session, order, OrderStatus.SHIPPED, **values)


async def deliver(session: AsyncSession, order: Orders) -> Orders:
    return await _admin_transition(session, order, OrderStatus.DELIVERED, delivered_at=now())


async def cancel(session: AsyncSession, order: Orders) -> Orders:
    """Admin cancel; any still live holds go back with ``admin_cancel``."""
    cancelled = await _admin_transition(session, order, OrderStatus.CANCELLED, cancelled_at=now())
    await ledger.release(session, order.id, ReleaseReason.ADMIN_CANCEL)
    return cancelled
