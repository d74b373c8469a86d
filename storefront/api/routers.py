from fastapi import APIRouter
from storefront.api import version_prefix
from storefront.orders.routes import orders_router, orders_admin_router
from storefront.payments.webhooks import webhooks_router
from storefront.inventory.routes import inventory_admin_router
from storefront.common.routes import home_router



public_routers = APIRouter(prefix=version_prefix)


public_routers.include_router(orders_router,tags=["orders"])
public_routers.include_router(webhooks_router,prefix="/webhooks",tags=["webhooks"])
public_routers.include_router(home_router,tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(orders_admin_router, prefix="/orders",tags=["orders-admin"])
admin_routers.include_router(inventory_admin_router, prefix="/products",tags=["inventory-admin"])
