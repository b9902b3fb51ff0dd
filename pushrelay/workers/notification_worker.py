from __future__ import annotations

import asyncio
import logging
import signal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushrelay.core.config import Settings, get_settings
from pushrelay.core.logging import configure_logging
from pushrelay.persistence import db
from pushrelay.persistence.stores import SqlEndpointRegistry, SqlJobStore
from pushrelay.providers.push.base import PushTransport
from pushrelay.providers.push.factory import get_push_transport
from pushrelay.services.delivery.orchestrator import BatchSummary, DeliveryOrchestrator


logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    transport: PushTransport | None = None,
) -> DeliveryOrchestrator:
    settings = settings or get_settings()
    factory = session_factory or db.SessionLocal
    return DeliveryOrchestrator(
        job_store=SqlJobStore(factory),
        endpoints=SqlEndpointRegistry(factory),
        transport=transport or get_push_transport(settings),
        interval_s=settings.notification_worker_interval_s,
        batch_size=max(1, int(settings.notification_worker_batch_size)),
        schedule_mode=settings.notification_worker_schedule_mode,
    )


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops lack add_signal_handler; KeyboardInterrupt still ends the run.
            logger.debug("signal handler unavailable for %s", sig)


async def run_worker(*, stop_event: asyncio.Event | None = None) -> None:
    # Run until SIGINT/SIGTERM: stop scheduling, let the in-flight batch finish, then close the pool.
    settings = get_settings()
    if not settings.is_push_configured() and settings.push_provider.lower() == "webpush":
        logger.warning("VAPID credentials missing; pending notification jobs will be dead-lettered")
    await db.check_connection(db.engine)
    orchestrator = build_orchestrator(settings)
    stop = stop_event or asyncio.Event()
    if stop_event is None:
        _install_signal_handlers(stop)
    await orchestrator.start()
    try:
        await stop.wait()
    finally:
        await orchestrator.stop(timeout_s=settings.notification_worker_shutdown_timeout_s)
        await db.engine.dispose()


async def run_once() -> BatchSummary:
    # Single drain cycle for cron-style scheduling or manual operator runs.
    orchestrator = build_orchestrator()
    try:
        return await orchestrator.run_batch()
    finally:
        await db.engine.dispose()


def main() -> None:
    configure_logging()
    asyncio.run(run_worker())
