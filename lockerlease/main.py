import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from lockerlease.core.errors import StoreUnavailable
from lockerlease.infrastructure.config import settings
from lockerlease.infrastructure.database import Base, engine, SessionLocal
from lockerlease.presentation.routers import router
from lockerlease.services.locker_service import (
    expire_stale_leases_service,
    get_command_bus,
    provision_lockers_service,
    watch_device_status_service,
)

logger = logging.getLogger(__name__)


def _provision() -> list[str]:
    db = SessionLocal()
    try:
        return provision_lockers_service(db)["locker_ids"]
    finally:
        db.close()


def _sweep_once() -> int:
    db = SessionLocal()
    try:
        return expire_stale_leases_service(db)
    finally:
        db.close()


async def _sweep_expired_leases(interval: float) -> None:
    """
    Active expiry for lockers that are never read again after their lease lapses
    """
    while True:
        await asyncio.sleep(interval)
        try:
            expired = await run_in_threadpool(_sweep_once)
        except StoreUnavailable:
            logger.exception("lease_sweep_failed")
            continue
        except Exception:
            logger.exception("lease_sweep_failed_unexpectedly")
            continue
        if expired:
            logger.info("lease_sweep", extra={"expired": expired})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    On startup configure logging, ensure the provisioned lockers exist, connect the command bus and start the expiry sweep
    """
    logging.basicConfig(level=settings.log_level)
    locker_ids = _provision()
    bus = get_command_bus()
    bus.connect()
    watch_device_status_service(locker_ids)

    sweeper = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(_sweep_expired_leases(settings.sweep_interval_seconds))
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        bus.disconnect()


app = FastAPI(title="Locker Lease API", lifespan=lifespan)
Base.metadata.create_all(bind=engine)
app.include_router(router)
