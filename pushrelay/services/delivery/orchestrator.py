from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from pushrelay.core.errors import (
    CONFIGURATION_ERROR_REASON,
    NO_ENDPOINTS_REASON,
    SchemaNotReadyError,
    StoreError,
)
from pushrelay.domain.delivery import DeliveryEndpoint, JobStatus, PendingNotification, PushPayload
from pushrelay.providers.push.base import (
    DeliveryOutcome,
    DeliverySucceeded,
    EndpointExpired,
    PushTransport,
    TransientFailure,
    error_message,
)
from pushrelay.services.delivery.contracts import EndpointRegistry, JobStore


logger = logging.getLogger(__name__)

SCHEDULE_FIXED_RATE = "fixed_rate"
SCHEDULE_FIXED_DELAY = "fixed_delay"
SCHEDULE_MODES = (SCHEDULE_FIXED_RATE, SCHEDULE_FIXED_DELAY)

# Recorded when every endpoint was pruned as expired and no transient message exists.
ALL_ENDPOINTS_EXPIRED_REASON = "All push subscriptions for user have expired."


@dataclass(slots=True)
class JobOutcome:
    job_id: str
    status: str
    reason: str | None = None
    attempted: int = 0
    delivered: int = 0
    removed: int = 0


@dataclass(slots=True)
class BatchSummary:
    status: str = "ok"
    selected: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    endpoints_removed: int = 0
    error: str | None = None

    @property
    def aborted(self) -> bool:
        return self.status == "store_error"

    def record(self, outcome: JobOutcome) -> None:
        if outcome.status == JobStatus.SENT:
            self.sent += 1
        elif outcome.status == JobStatus.FAILED:
            self.failed += 1
        self.endpoints_removed += outcome.removed


class DeliveryOrchestrator:
    """Drains pending notification jobs and fans each one out to every endpoint of its user.

    One instance per process. ``start`` runs a batch immediately and then one per
    interval; ``stop`` halts scheduling and waits for in-flight batches. Jobs inside a
    batch, and endpoints inside a job, are handled strictly one at a time.
    """

    def __init__(
        self,
        *,
        job_store: JobStore,
        endpoints: EndpointRegistry,
        transport: PushTransport,
        interval_s: float = 30.0,
        batch_size: int = 25,
        schedule_mode: str = SCHEDULE_FIXED_RATE,
    ) -> None:
        if schedule_mode not in SCHEDULE_MODES:
            raise ValueError(f"schedule_mode must be one of {', '.join(SCHEDULE_MODES)}")
        self._jobs = job_store
        self._endpoints = endpoints
        self._transport = transport
        self._interval_s = max(0.0, float(interval_s))
        self._batch_size = max(1, int(batch_size))
        self._schedule_mode = schedule_mode
        self._stop_event: asyncio.Event | None = None
        self._scheduler: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    @property
    def inflight_batches(self) -> int:
        return len(self._inflight)

    async def start(self) -> None:
        if self.running:
            return
        # Bind the stop event to the running loop at start time, not construction time.
        self._stop_event = asyncio.Event()
        self._scheduler = asyncio.create_task(self._schedule(), name="notification-delivery-scheduler")
        logger.info(
            "notification worker started interval_s=%s batch_size=%d schedule_mode=%s",
            self._interval_s,
            self._batch_size,
            self._schedule_mode,
        )

    async def stop(self, *, timeout_s: float | None = None) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        pending = set(self._inflight)
        if self._scheduler is not None:
            pending.add(self._scheduler)
        if pending:
            _done, not_done = await asyncio.wait(pending, timeout=timeout_s)
            # Abandoned jobs keep status pending with their attempt already counted.
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning("notification worker cancelled %d unfinished task(s) on shutdown", len(not_done))
                await asyncio.gather(*not_done, return_exceptions=True)
        self._scheduler = None
        logger.info("notification worker stopped")

    async def _schedule(self) -> None:
        assert self._stop_event is not None
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stop_event.is_set():
            task = self._launch_batch()
            if self._schedule_mode == SCHEDULE_FIXED_DELAY:
                await asyncio.wait({task})
                next_tick = loop.time() + self._interval_s
            else:
                # Fixed rate: the next tick does not wait for this batch; never fire a burst to catch up.
                next_tick = max(next_tick + self._interval_s, loop.time())
            if await self._wait_for_stop(next_tick - loop.time()):
                break

    async def _wait_for_stop(self, delay_s: float) -> bool:
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, delay_s))
        except asyncio.TimeoutError:
            return False
        return True

    def _launch_batch(self) -> asyncio.Task:
        if self._inflight:
            # Overlap is tolerated under at-least-once delivery; surface it for operators.
            logger.warning("notification batch starting while %d previous batch(es) still running", len(self._inflight))
        task = asyncio.create_task(self._run_batch_safely(), name="notification-delivery-batch")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_batch_safely(self) -> BatchSummary | None:
        try:
            return await self.run_batch()
        except Exception:  # noqa: BLE001 - keep the scheduler alive while surfacing errors in logs.
            logger.exception("notification delivery cycle failed")
            return None

    async def run_batch(self) -> BatchSummary:
        summary = BatchSummary()
        try:
            jobs = list(await self._jobs.list_pending_jobs(self._batch_size))
        except SchemaNotReadyError:
            logger.warning("notification tables missing; waiting for migrations")
            summary.status = "waiting_for_migrations"
            return summary
        except StoreError as exc:
            logger.exception("notification batch aborted: pending jobs could not be listed")
            summary.status = "store_error"
            summary.error = str(exc)
            return summary
        if not jobs:
            summary.status = "empty"
            return summary

        summary.selected = len(jobs)
        for job in jobs:
            try:
                outcome = await self.process_job(job)
            except StoreError as exc:
                # Remaining jobs stay pending and are picked up by the next tick.
                logger.exception("notification batch aborted at job_id=%s", job.id)
                summary.status = "store_error"
                summary.error = str(exc)
                break
            except Exception:  # noqa: BLE001 - one broken job must not stall the rest of the batch.
                logger.exception("notification job processing failed job_id=%s", job.id)
                summary.skipped += 1
                continue
            summary.record(outcome)

        logger.info(
            "notification batch finished status=%s selected=%d sent=%d failed=%d skipped=%d endpoints_removed=%d",
            summary.status,
            summary.selected,
            summary.sent,
            summary.failed,
            summary.skipped,
            summary.endpoints_removed,
        )
        return summary

    async def process_job(self, job: PendingNotification) -> JobOutcome:
        # Count the attempt before any delivery so a crash mid-job still consumes it.
        await self._jobs.mark_attempt(job.id)

        if not self._transport.is_configured():
            await self._jobs.mark_failed(job.id, CONFIGURATION_ERROR_REASON)
            logger.warning("notification job failed job_id=%s reason=push_not_configured", job.id)
            return JobOutcome(job_id=job.id, status=JobStatus.FAILED, reason=CONFIGURATION_ERROR_REASON)

        endpoints = list(await self._endpoints.list_endpoints_for_user(job.user_id))
        if not endpoints:
            # Terminal: a subscription added later does not revive this job.
            await self._jobs.mark_failed(job.id, NO_ENDPOINTS_REASON)
            logger.info("notification job failed job_id=%s user_id=%s reason=no_endpoints", job.id, job.user_id)
            return JobOutcome(job_id=job.id, status=JobStatus.FAILED, reason=NO_ENDPOINTS_REASON)

        payload = PushPayload.for_job(job)
        outcome = JobOutcome(job_id=job.id, status=JobStatus.PENDING)
        last_error: str | None = None
        for endpoint in endpoints:
            result = await self._send(endpoint, payload)
            outcome.attempted += 1
            if isinstance(result, DeliverySucceeded):
                outcome.delivered += 1
            elif isinstance(result, EndpointExpired):
                # Pruning stands regardless of how the job ends.
                await self._endpoints.delete_endpoint(endpoint.id)
                outcome.removed += 1
                logger.info(
                    "removed expired push subscription endpoint_id=%s user_id=%s job_id=%s",
                    endpoint.id,
                    job.user_id,
                    job.id,
                )
            else:
                last_error = result.message
                logger.warning(
                    "push delivery failed job_id=%s endpoint_id=%s error=%s",
                    job.id,
                    endpoint.id,
                    result.message,
                )

        if outcome.delivered:
            await self._jobs.mark_sent(job.id)
            outcome.status = JobStatus.SENT
            return outcome

        reason = last_error or ALL_ENDPOINTS_EXPIRED_REASON
        await self._jobs.mark_failed(job.id, reason)
        outcome.status = JobStatus.FAILED
        outcome.reason = reason
        return outcome

    async def _send(self, endpoint: DeliveryEndpoint, payload: PushPayload) -> DeliveryOutcome:
        try:
            result = await self._transport.send(endpoint, payload)
        except Exception as exc:  # noqa: BLE001 - a misbehaving transport must not abort sibling endpoints.
            logger.warning("push transport raised endpoint_id=%s", endpoint.id, exc_info=True)
            return TransientFailure(error_message(exc))
        if isinstance(result, (DeliverySucceeded, EndpointExpired, TransientFailure)):
            return result
        return TransientFailure(f"Unexpected delivery outcome: {result!r}")
