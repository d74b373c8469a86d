from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.constants import request_id_ctx
from storefront.common.utils import success_response
from storefront.db.dependencies import get_session
from storefront.inventory.repository import list_low_stock
from storefront.orders.dependency import require_admin

inventory_admin_router=APIRouter()


@inventory_admin_router.get("/low-stock", dependencies=[require_admin()])
async def low_stock_products(limit: int = Query(default=100, ge=1, le=500), session: AsyncSession = Depends(get_session)):
    products = await list_low_stock(session, limit=limit)
    return success_response({"products": products}, request_id=request_id_ctx.get(None))
