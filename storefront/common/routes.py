from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import  AsyncSession
from storefront.common.logging_setup import get_logger
from storefront.common.utils import success_response
from storefront.db.dependencies import get_session
from storefront.config.admin_config import admin_config

logger = get_logger("storefront.app")

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session:AsyncSession=Depends(get_session)):
    stmt=select(1)

    try:
        await session.execute(stmt)
    except SQLAlchemyError:
        logger.error("health.database_unreachable", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database connection error")

    return success_response({"status": "healthy", "service": admin_config.SERVICE_NAME})
