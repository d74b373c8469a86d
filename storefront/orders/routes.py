from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.constants import request_id_ctx
from storefront.common.custom_exceptions import OrderNotFoundError
from storefront.common.utils import success_response
from storefront.db.dependencies import get_session
from storefront.orders import state_machine
from storefront.orders.dependency import require_admin
from storefront.orders.models import CheckoutIn, ShipIn
from storefront.orders.repository import get_order_by_ref, serialize_order
from storefront.orders.services import create_order, get_order_details, get_order_payment_status
from storefront.orders.utils import list_shipping_rates


orders_router=APIRouter()


@orders_router.post("/orders")
async def checkout(payload: CheckoutIn, session: AsyncSession = Depends(get_session)):
    # order, items and stock holds land together or not at all
    data = await create_order(session, payload)
    await session.commit()
    return success_response(data, status_code=status.HTTP_201_CREATED, request_id=request_id_ctx.get(None))


@orders_router.get("/shipping/rates")
async def shipping_rates():
    return success_response({"rates": list_shipping_rates()}, request_id=request_id_ctx.get(None))


@orders_router.get("/orders/number/{order_number}")
async def order_by_number(order_number: str, session: AsyncSession = Depends(get_session)):
    data = await get_order_details(session, order_number)
    return success_response(data, request_id=request_id_ctx.get(None))


@orders_router.get("/orders/{order_ref}/status")
async def order_payment_status(order_ref: str, session: AsyncSession = Depends(get_session)):
    """Polled by the checkout page until the payment settles."""
    data = await get_order_payment_status(session, order_ref)
    return success_response(data, request_id=request_id_ctx.get(None))


@orders_router.get("/orders/{order_ref}")
async def order_details(order_ref: str, session: AsyncSession = Depends(get_session)):
    data = await get_order_details(session, order_ref)
    return success_response(data, request_id=request_id_ctx.get(None))

#--------------------------------------------------------------------------------------------------------

orders_admin_router=APIRouter()


async def _load_for_admin(session: AsyncSession, order_ref: str):
    order = await get_order_by_ref(session, order_ref, for_update=True)
    if order is None:
        raise OrderNotFoundError("order not found", details={"order_ref": order_ref})
    return order


@orders_admin_router.post("/{order_ref}/ship", dependencies=[require_admin()])
async def ship_order(order_ref: str, payload: Optional[ShipIn] = None, session: AsyncSession = Depends(get_session)):
    order = await _load_for_admin(session, order_ref)
    updated = await state_machine.ship(session, order, tracking_number=payload.tracking_number if payload else None)
    await session.commit()
    return success_response(serialize_order(updated), request_id=request_id_ctx.get(None))


@orders_admin_router.post("/{order_ref}/deliver", dependencies=[require_admin()])
async def deliver_order(order_ref: str, session: AsyncSession = Depends(get_session)):
    order = await _load_for_admin(session, order_ref)
    updated = await state_machine.deliver(session, order)
    await session.commit()
    return success_response(serialize_order(updated), request_id=request_id_ctx.get(None))


@orders_admin_router.post("/{order_ref}/cancel", dependencies=[require_admin()])
async def cancel_order(order_ref: str, session: AsyncSession = Depends(get_session)):
    order = await _load_for_admin(session, order_ref)
    updated = await state_machine.cancel(session, order)
    await session.commit()
    return success_response(serialize_order(updated), request_id=request_id_ctx.get(None))
