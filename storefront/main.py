import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from storefront.api.routers import public_routers,admin_routers
from storefront.background_workers.reservation_reaper import ReservationReaper, stop_reaper
from storefront.common.custom_exceptions import register_all_exceptions
from storefront.common.logging_setup import setup_logging, shutdown_logging
from storefront.middlewares.request_id_middleware import RequestIdMiddleware
from storefront.db.connection import async_engine,async_session
from storefront.api import cur_version
from storefront.config.admin_config import admin_config
from storefront.config.settings import config_settings
from metrics.custom_instrumentator import instrumentator


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    logger = setup_logging()

    reaper = None
    reaper_task = None
    if config_settings.REAPER_ENABLED:
        reaper = ReservationReaper(async_session, interval_seconds=config_settings.REAPER_INTERVAL_SECONDS)
        reaper_task = asyncio.create_task(reaper.run(), name="reservation-reaper")
    app.state.reaper = reaper
    logger.info("app.startup", extra={"env": admin_config.ENV, "reaper_enabled": reaper is not None})

    try:
        yield
    finally:
        # at this point new requests accept has been stopped already before calling shutdown
        if reaper is not None:
            await stop_reaper(reaper, reaper_task)
        # safe to dispose DB engine after workers exit
        await async_engine.dispose()
        shutdown_logging()


def create_app():
    app=FastAPI(
        title="Storefront",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        if admin_config.ENV == "prod" and not admin_config.ADMIN_SECRET:
            raise RuntimeError("Unsafe configuration: ENABLE_ADMIN=true in PROD requires ADMIN_SECRET")
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)
    instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    return app

app=create_app()
