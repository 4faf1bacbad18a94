"""
Shared fixtures for the alert engine tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fleetd.alerts.classifier import build_alert
from fleetd.alerts.models import AlertSeverity, AlertType, ApiSource, TelemetrySnapshot
from fleetd.monitoring.engine_metrics import EngineMetrics

BASE_TIME = datetime(2024, 5, 20, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_snapshot():
    """Factory for telemetry snapshots."""
    def _make(vehicle_id="COL-ABC123", speed=30.0, event="", source=ApiSource.COLTRACK.value,
              timestamp=None, **kwargs):
        return TelemetrySnapshot(
            vehicle_id=vehicle_id,
            plate=kwargs.pop('plate', vehicle_id.split('-', 1)[-1]),
            driver=kwargs.pop('driver', "Juan Perez"),
            event=event,
            speed=speed,
            latitude=kwargs.pop('latitude', 4.65),
            longitude=kwargs.pop('longitude', -74.05),
            location=kwargs.pop('location', "Bogota"),
            source=source,
            contract=kwargs.pop('contract', "CT-01"),
            timestamp=timestamp or BASE_TIME.isoformat(),
        )
    return _make


@pytest.fixture
def make_alert(make_snapshot):
    """Factory for alerts at an offset (in minutes) from the base time."""
    def _make(vehicle_id="COL-ABC123", alert_type=AlertType.SPEED_VIOLATION,
              minutes=0.0, severity=None, base=BASE_TIME):
        timestamp = (base + timedelta(minutes=minutes)).isoformat()
        snapshot = make_snapshot(vehicle_id=vehicle_id, speed=95.0, timestamp=timestamp)
        return build_alert(snapshot, alert_type, severity or AlertSeverity.CRITICAL, "test alert")
    return _make


@pytest.fixture
def metrics():
    """Engine metrics on a private registry."""
    return EngineMetrics()
