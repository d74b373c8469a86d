from typing import Dict, List, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.custom_exceptions import ProductNotFoundError
from storefront.schema.full_schema import Product


async def get_products_for_checkout(session: AsyncSession, product_ids: Sequence[int]) -> Dict[int, Product]:
    """Load the products of a checkout keyed by id; any unknown id is a 404."""
    wanted = set(product_ids)
    stmt = select(Product).where(Product.id.in_(wanted))
    res = await session.execute(stmt)
    products = {p.id: p for p in res.scalars().all()}

    missing = sorted(wanted - products.keys())
    if missing:
        raise ProductNotFoundError("unknown products in checkout", details={"product_ids": missing})
    return products


async def list_low_stock(session: AsyncSession, limit: int = 100) -> List[dict]:

    stmt = (
        select(Product.id, Product.sku, Product.name, Product.stock, Product.low_stock_threshold)
        .where(Product.stock <= Product.low_stock_threshold)
        .order_by(Product.stock.asc(), Product.id.asc())
        .limit(limit)
    )
    res = await session.execute(stmt)
    return [
        {
            "product_id": r.id,
            "sku": r.sku,
            "name": r.name,
            "stock": r.stock,
            "low_stock_threshold": r.low_stock_threshold,
        }
        for r in res.all()
    ]
