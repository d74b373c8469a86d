import asyncio
from typing import Any, Callable, Optional
from prometheus_client import Counter
from storefront import logger
from storefront.common.retries import retry_async
from storefront.common.utils import now
from storefront.inventory import ledger

DEFAULT_INTERVAL_SECONDS = 60.0

RESERVATIONS_EXPIRED = Counter(
    "storefront_reservations_expired_total",
    "Stock reservations released by the reaper after their hold expired",
)


class ReservationReaper:
    """Periodically releases stock holds whose ``expires_at`` has passed.

    Orders behind those holds keep ``payment_status=pending``: an abandoned checkout, not a
    failed payment. Each sweep is its own short transaction.
    """

    def __init__(self, session_factory: Callable[[], Any], interval_seconds: float = DEFAULT_INTERVAL_SECONDS):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()

    def stop(self):
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @retry_async(attempts=3, base_delay=0.5, max_delay=5.0)
    async def sweep_once(self) -> int:
        as_of = now()
        async with self.session_factory() as session:
            async with session.begin():
                released = await ledger.expire_sweep(session, as_of)

        RESERVATIONS_EXPIRED.inc(released)
        logger.info("reaper.sweep", extra={"expired": released, "as_of": as_of.isoformat()})
        return released

    async def run(self):
        logger.info("reaper.starting", extra={"interval_seconds": self.interval_seconds})
        while not self._stop.is_set():
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("reaper.sweep_failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("reaper.stopped")


async def stop_reaper(reaper: ReservationReaper, task: Optional[asyncio.Task], timeout: float = 10.0) -> None:
    """Ask the loop to exit; cancel it if it does not finish in time."""
    reaper.stop()
    if task is None:
        return
    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("reaper.stop_timeout")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
