"""
Refresh cycle for the alert engine.

One cycle fetches telemetry, records ignition changes, classifies every
snapshot, merges the candidates into the active queue and hands new alerts
to the side-effect dispatcher. Cycles run on a fixed interval and on
demand; at most one cycle runs at a time.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from fleetd.monitoring.engine_metrics import EngineMetrics
from fleetd.storage.gateway import PersistenceGateway
from fleetd.telemetry.base import TelemetrySource
from .classifier import ClassifierConfig, classify_all
from .dispatcher import SideEffectDispatcher
from .ignition import IgnitionTracker
from .models import Alert, FetchResult, FetchStatus, TelemetrySnapshot
from .queue import ActiveAlertStore, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class CycleResult:
    """Summary of one refresh cycle."""
    fetch_status: FetchStatus
    vehicles: int
    candidates: int
    new_alerts: List[Alert]
    queue_size: int
    duration_seconds: float
    errors: List[str] = field(default_factory=list)
    ignition_events: int = 0


class AlertMonitor:
    """
    Periodic alert monitor.

    Drives the fetch, classify, merge and dispatch pipeline. A trigger that
    arrives while a cycle is running waits for that cycle and receives its
    result instead of starting a second one.
    """

    def __init__(self,
                 source: TelemetrySource,
                 store: ActiveAlertStore,
                 dispatcher: Optional[SideEffectDispatcher] = None,
                 metrics: Optional[EngineMetrics] = None,
                 classifier_config: Optional[ClassifierConfig] = None,
                 refresh_interval_seconds: float = 300.0,
                 fetch_timeout_seconds: float = 60.0,
                 cleanup_interval_hours: float = 24.0,
                 alert_retention_hours: int = 24,
                 ignition_tracker: Optional[IgnitionTracker] = None,
                 history: Optional[PersistenceGateway] = None):
        """
        Initialize the monitor.

        Args:
            source: Telemetry source
            store: Active alert queue
            dispatcher: Side-effect dispatcher for new alerts
            metrics: Engine metrics
            classifier_config: Classifier thresholds
            refresh_interval_seconds: Period of the refresh loop
            fetch_timeout_seconds: Upper bound for one telemetry fetch
            cleanup_interval_hours: How often old alerts are cleaned from the queue
            alert_retention_hours: Age after which queued alerts are cleaned
            ignition_tracker: Engine state tracker fed with every fetch
            history: Store for ignition events and idle spans
        """
        self.source = source
        self.store = store
        self.dispatcher = dispatcher
        self.metrics = metrics or EngineMetrics()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.refresh_interval_seconds = refresh_interval_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.cleanup_interval = timedelta(hours=cleanup_interval_hours)
        self.alert_retention_hours = alert_retention_hours
        self.ignition_tracker = ignition_tracker
        self.history = history

        self._inflight: Optional[asyncio.Task] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._last_cleanup: Optional[datetime] = None
        self.last_result: Optional[CycleResult] = None
        self.cycles_run = 0

    @property
    def running(self) -> bool:
        return self._running

    async def run_cycle(self) -> CycleResult:
        """
        Run one refresh cycle, or join the one already in flight.
        """
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._execute_cycle())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def refresh_now(self) -> CycleResult:
        """Manual refresh trigger."""
        logger.info("Manual refresh requested")
        return await self.run_cycle()

    async def _fetch(self) -> FetchResult:
        try:
            return await asyncio.wait_for(self.source.fetch(), timeout=self.fetch_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Telemetry fetch timed out",
                         source=self.source.name,
                         timeout_seconds=self.fetch_timeout_seconds)
            return FetchResult(snapshots=[], status=FetchStatus.ERROR,
                               errors=[f"fetch timed out after {self.fetch_timeout_seconds}s"])
        except Exception as e:
            logger.error("Telemetry fetch failed",
                         source=self.source.name,
                         error=str(e),
                         exc_info=True)
            return FetchResult(snapshots=[], status=FetchStatus.ERROR, errors=[str(e)])

    async def _execute_cycle(self) -> CycleResult:
        started = time.monotonic()

        fetched = await self._fetch()
        ignition_events = await self._track_ignition(fetched.snapshots)
        candidates = classify_all(fetched.snapshots, self.classifier_config)
        for alert in candidates:
            self.metrics.alerts_classified.labels(
                type=alert.type.value, severity=alert.severity.value
            ).inc()

        outcome = await self.store.merge_and_persist(candidates)
        for alert in outcome.new_alerts:
            self.metrics.alerts_new.labels(severity=alert.severity.value).inc()

        if self.dispatcher is not None and outcome.new_alerts:
            self.dispatcher.submit(outcome.new_alerts)

        await self._maybe_clean_old_alerts()

        duration = time.monotonic() - started
        queue_size = len(self.store)
        self.metrics.queue_size.set(queue_size)
        self.metrics.cycles_total.labels(fetch_status=fetched.status.value).inc()
        self.metrics.cycle_duration.observe(duration)

        result = CycleResult(
            fetch_status=fetched.status,
            vehicles=len(fetched.snapshots),
            candidates=len(candidates),
            new_alerts=outcome.new_alerts,
            queue_size=queue_size,
            duration_seconds=duration,
            errors=list(fetched.errors),
            ignition_events=ignition_events,
        )
        self.last_result = result
        self.cycles_run += 1

        logger.info("Refresh cycle completed",
                    fetch_status=fetched.status.value,
                    vehicles=result.vehicles,
                    candidates=result.candidates,
                    new_alerts=len(result.new_alerts),
                    queue_size=queue_size,
                    duration_seconds=round(duration, 3))
        return result

    async def _track_ignition(self, snapshots: List[TelemetrySnapshot]) -> int:
        if self.ignition_tracker is None or not snapshots:
            return 0

        update = self.ignition_tracker.observe(snapshots)
        if self.history is not None:
            for event in update.events:
                saved = await self.history.add_ignition_event(event)
                if not saved.success:
                    logger.warning("Ignition event not saved",
                                   plate=event.plate,
                                   error=saved.error)
            for record in update.idle_records:
                saved = await self.history.add_idle_record(record)
                if not saved.success:
                    logger.warning("Idle record not saved",
                                   plate=record.plate,
                                   error=saved.error)
        return len(update.events)

    async def _maybe_clean_old_alerts(self) -> None:
        now = utc_now()
        if self._last_cleanup is None:
            self._last_cleanup = now
            return
        if now - self._last_cleanup >= self.cleanup_interval:
            await self.store.clean_old_alerts(self.alert_retention_hours, now=now)
            self._last_cleanup = now

    async def start(self) -> None:
        """Start the periodic refresh loop."""
        if self._running:
            logger.warning("Alert monitor is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Alert monitor started",
                    refresh_interval_seconds=self.refresh_interval_seconds)

    async def stop(self) -> None:
        """Stop the periodic refresh loop."""
        if not self._running:
            return

        self._running = False
        self._wake.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Alert monitor stopped", cycles_run=self.cycles_run)

    async def _monitor_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in refresh cycle", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.refresh_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
