"""
Main application entry point.

Wires the telemetry sources, the alert engine, the side-effect dispatcher,
the history store and the retention scheduler from configuration, and runs
them until interrupted.
"""

import asyncio
import logging
import signal
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional

from fleetd.alerts.classifier import ClassifierConfig
from fleetd.alerts.dispatcher import SideEffectDispatcher
from fleetd.alerts.ignition import IgnitionTracker
from fleetd.alerts.lifecycle import LifecycleManager
from fleetd.alerts.monitor import AlertMonitor
from fleetd.alerts.queue import ActiveAlertStore
from fleetd.config.settings import FleetSettings, load_settings
from fleetd.monitoring.engine_metrics import EngineMetrics
from fleetd.monitoring.metrics_endpoint import MetricsEndpoint
from fleetd.monitoring.notifications import LogNotifier, Notifier, TelegramNotifier
from fleetd.storage.retention_config import RetentionConfigManager
from fleetd.storage.retention_logging import RetentionAuditLog
from fleetd.storage.retention_manager import RetentionEngine
from fleetd.storage.retention_scheduler import RetentionScheduler
from fleetd.storage.sqlite_gateway import SQLiteGateway
from fleetd.telemetry import ColtrackSource, CompositeTelemetrySource, FagorSource, TelemetrySource


def build_source(settings: FleetSettings) -> TelemetrySource:
    """Build the telemetry source from the configured carriers."""
    telemetry = settings.telemetry
    sources: List[TelemetrySource] = []
    if telemetry.coltrack_url:
        sources.append(ColtrackSource(telemetry.coltrack_url,
                                      username=telemetry.coltrack_user,
                                      password=telemetry.coltrack_password,
                                      timeout_seconds=telemetry.timeout_seconds))
    if telemetry.fagor_url:
        sources.append(FagorSource(telemetry.fagor_url,
                                   username=telemetry.fagor_user,
                                   password=telemetry.fagor_password,
                                   company=telemetry.fagor_company,
                                   timeout_seconds=telemetry.timeout_seconds))
    if not sources:
        raise ValueError("No telemetry source configured (set COLTRACK_API_URL and/or FAGOR_API_URL)")
    if len(sources) == 1:
        return sources[0]
    return CompositeTelemetrySource(sources, source_timeout_seconds=telemetry.source_timeout_seconds)


def build_notifier(settings: FleetSettings) -> Notifier:
    """Telegram when configured, the log otherwise."""
    telegram = settings.telegram
    if telegram.enabled:
        return TelegramNotifier(bot_token=telegram.bot_token,
                                chat_id=telegram.chat_id,
                                min_severity=telegram.min_severity)
    return LogNotifier()


class FleetApp:
    """Fleet alert engine application."""

    def __init__(self, settings: FleetSettings, source: Optional[TelemetrySource] = None,
                 notifier: Optional[Notifier] = None):
        self.settings = settings
        self.logger = logging.getLogger(__name__)
        engine = settings.engine
        storage = settings.storage

        self.metrics = EngineMetrics()
        self.source = source or build_source(settings)
        self.notifier = notifier or build_notifier(settings)
        self.gateway = SQLiteGateway(storage.db_path)
        self.store = ActiveAlertStore(
            cache_path=storage.cache_path,
            max_size=engine.queue_max_size,
            dedup_window=timedelta(minutes=engine.dedup_window_minutes),
            promoted_ttl_hours=engine.promoted_ttl_hours,
            history=self.gateway
        )
        self.lifecycle = LifecycleManager(self.store, self.gateway)
        self.dispatcher = SideEffectDispatcher(
            self.gateway, self.notifier, self.metrics,
            workers=settings.dispatcher.workers,
            buffer_size=settings.dispatcher.buffer_size
        )
        self.ignition = IgnitionTracker(idle_alert_minutes=engine.idle_alert_minutes)
        self.monitor = AlertMonitor(
            self.source, self.store, self.dispatcher, self.metrics,
            classifier_config=ClassifierConfig(speed_limit_kmh=engine.speed_limit_kmh),
            refresh_interval_seconds=engine.refresh_interval_seconds,
            fetch_timeout_seconds=engine.fetch_timeout_seconds,
            alert_retention_hours=engine.alert_retention_hours,
            ignition_tracker=self.ignition,
            history=self.gateway
        )
        self.retention = RetentionEngine(
            self.gateway,
            RetentionConfigManager(storage.retention_config_path),
            audit_log=RetentionAuditLog(storage.retention_logs_dir),
            metrics=self.metrics
        )
        self.scheduler = RetentionScheduler(self.retention, state_path=storage.retention_state_path)
        self.metrics_endpoint = MetricsEndpoint(self.metrics, self.health)
        self._stopped = asyncio.Event()

    def health(self) -> Dict[str, object]:
        last = self.monitor.last_result
        return {
            'cycles_run': self.monitor.cycles_run,
            'queue_size': len(self.store),
            'idling_vehicles': len(self.ignition.current_idle()),
            'last_fetch_status': last.fetch_status.value if last else None,
            'side_effect_failures': dict(self.dispatcher.failures),
            'side_effects_dropped': dict(self.dispatcher.dropped),
        }

    async def start(self):
        """Start every background component."""
        self.logger.info("Starting fleet alert engine...")
        self.dispatcher.start()
        await self.monitor.start()
        await self.scheduler.start()
        if self.settings.metrics.port:
            await self.metrics_endpoint.start(self.settings.metrics.host, self.settings.metrics.port)
        self.logger.info("Fleet alert engine started")

    async def shutdown(self):
        """Stop background components in reverse order."""
        self.logger.info("Stopping fleet alert engine...")
        await self.metrics_endpoint.stop()
        await self.scheduler.stop()
        await self.monitor.stop()
        await self.dispatcher.stop()
        await self.source.close()
        self.logger.info("Fleet alert engine shutdown complete")

    def request_stop(self):
        self._stopped.set()

    async def run(self):
        """Run until a stop is requested."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                pass

        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.shutdown()


async def main(config_path: Optional[Path] = None):
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    settings = load_settings(config_path)
    app = FleetApp(settings)
    await app.run()


if __name__ == "__main__":
    asyncio.run(main())
