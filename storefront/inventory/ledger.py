"""Reservation ledger: per-order, per-product stock holds.

Every status change is a conditional UPDATE on ``status = 'reserved'`` so concurrent
callers (webhook retries, the reaper, admin cancel) settle on whichever transaction
flips the row first; the loser simply affects zero rows. Product stock is only ever
changed here, as a relative decrement, after the holds were flipped to committed.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.custom_exceptions import ProductNotFoundError
from storefront.common.utils import now
from storefront.inventory.constants import logger
from storefront.schema.full_schema import Product, ReleaseReason, ReservationStatus, StockReservation


@dataclass
class CommittedHold:
    reservation_id: int
    product_id: int
    quantity: int
    stock_after: int


@dataclass
class ReacquireResult:
    acquired: bool
    committed: List[CommittedHold] = field(default_factory=list)
    short_product_ids: List[int] = field(default_factory=list)


class _InsufficientStock(Exception):
    def __init__(self, product_ids: List[int]):
        super().__init__(f"insufficient stock for products {product_ids}")
        self.product_ids = product_ids


async def reserve(session: AsyncSession, order_id: int, items: Iterable, expires_at: datetime) -> List[StockReservation]:
    """Insert one ``reserved`` row per item (objects with ``product_id`` and ``quantity``).

    No stock check happens here; holds are soft and the stock number is settled at commit.
    """
    rows = [
        StockReservation(
            order_id=order_id,
            product_id=item.product_id,
            quantity=item.quantity,
            status=ReservationStatus.RESERVED,
            expires_at=expires_at,
        )
        for item in items
    ]
    session.add_all(rows)
    await session.flush()
    logger.debug("inventory.reserved", extra={"order_id": order_id, "holds": len(rows), "expires_at": expires_at.isoformat()})
    return rows


async def _decrement_stock(session: AsyncSession, product_id: int, quantity: int) -> int:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock - quantity, updated_at=now())
        .returning(Product.stock)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    remaining = res.scalar_one_or_none()
    if remaining is None:
        raise ProductNotFoundError("product vanished while committing reservation", details={"product_id": product_id})
    return remaining


async def _decrement_stock_if_available(session: AsyncSession, product_id: int, quantity: int) -> Optional[int]:
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, updated_at=now())
        .returning(Product.stock)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def commit(session: AsyncSession, order_id: int, payment_id: Optional[str] = None) -> List[CommittedHold]:
    """Flip the order's live holds to committed, then decrement stock once per flipped row.

    Runs inside the caller's transaction. Holds that are already committed or released are
    left alone, so a retried commit decrements nothing. Returns the holds committed by this call.
    """
    ts = now()
    stmt = (
        update(StockReservation)
        .where(
            StockReservation.order_id == order_id,
            StockReservation.status == ReservationStatus.RESERVED,
        )
        .values(
            status=ReservationStatus.COMMITTED,
            released_at=ts,
            release_reason=ReleaseReason.PAYMENT_SUCCESS,
        )
        .returning(StockReservation.id, StockReservation.product_id, StockReservation.quantity)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    flipped = res.all()

    committed: List[CommittedHold] = []
    for row in sorted(flipped, key=lambda r: r.product_id):  # stable lock order across products
        remaining = await _decrement_stock(session, row.product_id, row.quantity)
        if remaining < 0:
            logger.warning("inventory.oversold", extra={
                "order_id": order_id, "product_id": row.product_id,
                "quantity": row.quantity, "stock_after": remaining,
            })
        committed.append(CommittedHold(row.id, row.product_id, row.quantity, remaining))

    if committed:
        logger.info("inventory.committed", extra={"order_id": order_id, "payment_id": payment_id, "holds": len(committed)})
    return committed


async def release(session: AsyncSession, order_id: int, reason: ReleaseReason) -> int:
    """Release the order's live holds with ``reason``. Stock is untouched; zero rows is a no-op."""
    stmt = (
        update(StockReservation)
        .where(
            StockReservation.order_id == order_id,
            StockReservation.status == ReservationStatus.RESERVED,
        )
        .values(status=ReservationStatus.RELEASED, released_at=now(), release_reason=reason)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    released = res.rowcount or 0
    if released:
        logger.info("inventory.released", extra={"order_id": order_id, "reason": reason.value, "holds": released})
    return released


async def expire_sweep(session: AsyncSession, as_of: Optional[datetime] = None) -> int:
    """Release every live hold whose ``expires_at`` is in the past, in one statement."""
    as_of = as_of or now()
    stmt = (
        update(StockReservation)
        .where(
            StockReservation.status == ReservationStatus.RESERVED,
            StockReservation.expires_at < as_of,
        )
        .values(status=ReservationStatus.RELEASED, released_at=as_of, release_reason=ReleaseReason.TIMEOUT)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount or 0


async def get_reservations(session: AsyncSession, order_id: int) -> Sequence[StockReservation]:
    stmt = (
        select(StockReservation)
        .where(StockReservation.order_id == order_id)
        .order_by(StockReservation.id)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return res.scalars().all()


async def reacquire_expired(session: AsyncSession, order_id: int, payment_id: Optional[str] = None) -> ReacquireResult:
    """Late payment for an order whose holds timed out: take the stock again if it is all still there.

    All-or-nothing inside a SAVEPOINT. On success the order gets fresh committed holds; on
    shortage nothing changes and the short product ids are reported.
    """
    holds = await get_reservations(session, order_id)
    timed_out = [
        h for h in holds
        if h.status == ReservationStatus.RELEASED and h.release_reason == ReleaseReason.TIMEOUT
    ]
    if not timed_out or any(h.status == ReservationStatus.COMMITTED for h in holds):
        return ReacquireResult(acquired=False)

    wanted = {}
    for h in timed_out:
        wanted[h.product_id] = wanted.get(h.product_id, 0) + h.quantity

    committed: List[CommittedHold] = []
    try:
        async with session.begin_nested():
            short = []
            taken = {}
            for product_id in sorted(wanted):
                remaining = await _decrement_stock_if_available(session, product_id, wanted[product_id])
                if remaining is None:
                    short.append(product_id)
                else:
                    taken[product_id] = remaining
            if short:
                raise _InsufficientStock(short)

            ts = now()
            rows = [
                StockReservation(
                    order_id=order_id,
                    product_id=product_id,
                    quantity=wanted[product_id],
                    status=ReservationStatus.COMMITTED,
                    expires_at=ts,
                    released_at=ts,
                    release_reason=ReleaseReason.PAYMENT_SUCCESS,
                )
                for product_id in sorted(wanted)
            ]
            session.add_all(rows)
            await session.flush()
            committed = [CommittedHold(r.id, r.product_id, r.quantity, taken[r.product_id]) for r in rows]
    except _InsufficientStock as exc:
        logger.warning("inventory.reacquire.short", extra={"order_id": order_id, "product_ids": exc.product_ids})
        return ReacquireResult(acquired=False, short_product_ids=exc.product_ids)

    logger.warning("inventory.reacquire.ok", extra={"order_id": order_id, "payment_id": payment_id, "holds": len(committed)})
    return ReacquireResult(acquired=True, committed=committed)
