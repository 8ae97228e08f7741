import contextlib
from contextlib import asynccontextmanager
import asyncio
import logging

from app.core.config import settings
from app.core.services import ServiceContainer, build_services

logger = logging.getLogger(__name__)


async def purge_expired_sessions(services: ServiceContainer) -> list[str]:
    expired = await services.pipeline.purge_expired_sessions()
    for session_id in expired:
        services.orchestrators.close_session(session_id)
    return expired


@asynccontextmanager
async def lifespan(app):
    services = getattr(app.state, "services", None) or build_services()
    await services.blob_store.initialize()
    app.state.services = services

    stop_event = asyncio.Event()

    async def periodic_purge() -> None:
        while not stop_event.is_set():
            try:
                expired = await purge_expired_sessions(services)
                if expired:
                    logger.info("session_retention_purge expired=%s", len(expired))
            except Exception as exc:  # noqa: BLE001
                logger.warning("session_retention_purge_failed: %s", exc)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=settings.session_purge_interval_s)
            except asyncio.TimeoutError:
                continue

    purge_task = asyncio.create_task(periodic_purge())
    yield
    stop_event.set()
    if not purge_task.done():
        purge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await purge_task
    services.orchestrators.close_all()
    await services.blob_store.close()
    del app.state.services
