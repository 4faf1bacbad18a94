"""
Background dispatch of alert side effects.

New alerts are auto-saved to history and handed to the notifier by a small
pool of worker tasks fed through a bounded queue. Submitting never waits on
the side effects, and their failures are logged and counted without ever
reaching the refresh cycle.
"""

import asyncio
from collections import Counter as TallyCounter
from typing import Iterable, List, Optional, Tuple

import structlog

from fleetd.monitoring.engine_metrics import EngineMetrics
from fleetd.monitoring.notifications.base import Notifier
from fleetd.storage.gateway import PersistenceGateway
from .models import Alert

logger = structlog.get_logger(__name__)

AUTO_SAVE = "auto_save"
NOTIFY = "notify"


class SideEffectDispatcher:
    """
    Bounded worker pool for auto-save and notification calls.
    """

    def __init__(self,
                 gateway: Optional[PersistenceGateway],
                 notifier: Optional[Notifier],
                 metrics: Optional[EngineMetrics] = None,
                 workers: int = 4,
                 buffer_size: int = 1000,
                 call_timeout_seconds: float = 30.0):
        """
        Initialize the dispatcher.

        Args:
            gateway: Store receiving auto-saved alerts (skipped when None)
            notifier: Notifier sink (skipped when None)
            metrics: Engine metrics for failure counters
            workers: Number of worker tasks
            buffer_size: Maximum queued jobs before new jobs are dropped
            call_timeout_seconds: Upper bound for one side-effect call
        """
        self.gateway = gateway
        self.notifier = notifier
        self.metrics = metrics or EngineMetrics()
        self.worker_count = max(1, workers)
        self.call_timeout_seconds = call_timeout_seconds
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._workers: List[asyncio.Task] = []
        self.failures = TallyCounter()
        self.dropped = TallyCounter()
        self.completed = TallyCounter()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Start worker tasks on the running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(index))
            for index in range(self.worker_count)
        ]
        logger.info("Side-effect dispatcher started", workers=self.worker_count)

    async def stop(self, drain_timeout: Optional[float] = 5.0) -> None:
        """Stop the workers, waiting up to ``drain_timeout`` for queued jobs."""
        if not self._workers:
            return
        if drain_timeout:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Side-effect queue not drained before stop",
                               pending=self._queue.qsize())

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Side-effect dispatcher stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    def submit(self, alerts: Iterable[Alert]) -> int:
        """
        Queue auto-save and notification jobs for new alerts.

        Returns:
            Number of jobs queued
        """
        self.start()
        queued = 0
        for alert in alerts:
            for kind, enabled in ((AUTO_SAVE, self.gateway is not None),
                                  (NOTIFY, self.notifier is not None)):
                if not enabled:
                    continue
                try:
                    self._queue.put_nowait((kind, alert))
                    queued += 1
                except asyncio.QueueFull:
                    self.dropped[kind] += 1
                    self.metrics.side_effects_dropped.labels(kind=kind).inc()
                    logger.warning("Side-effect buffer full, job dropped",
                                   kind=kind,
                                   alert_id=alert.id)
        return queued

    async def _worker_loop(self, index: int) -> None:
        while True:
            job: Tuple[str, Alert] = await self._queue.get()
            try:
                await self._run_job(*job)
            finally:
                self._queue.task_done()

    async def _run_job(self, kind: str, alert: Alert) -> None:
        try:
            if kind == AUTO_SAVE:
                result = await asyncio.wait_for(
                    self.gateway.auto_save_alert(alert), timeout=self.call_timeout_seconds
                )
                ok, error = result.success, result.error
            else:
                ok = await asyncio.wait_for(
                    self.notifier.notify(alert), timeout=self.call_timeout_seconds
                )
                error = None if ok else "notifier rejected alert"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(kind, alert, type(e).__name__, str(e))
            return

        if ok:
            self.completed[kind] += 1
        else:
            self._record_failure(kind, alert, "Rejected", error)

    def _record_failure(self, kind: str, alert: Alert, error_type: str, error: Optional[str]) -> None:
        self.failures[kind] += 1
        self.metrics.side_effect_failures.labels(kind=kind, error_type=error_type).inc()
        logger.error("Side effect failed",
                     kind=kind,
                     alert_id=alert.id,
                     error_type=error_type,
                     error=error)
