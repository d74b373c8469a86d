from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from storefront.common.utils import secrets_match
from storefront.config.admin_config import admin_config
from storefront.orders.constants import logger


def require_admin():
    async def _checker(x_admin_secret: Optional[str] = Header(default=None)):
        expected = admin_config.ADMIN_SECRET
        if not expected:
            # no secret configured: only a dev box may use the admin routes
            if admin_config.ENV == "dev":
                return True
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="admin access is not configured")

        if not x_admin_secret or not secrets_match(expected, x_admin_secret):
            logger.warning("admin.auth.rejected")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid admin credentials")
        return True

    return Depends(_checker)
