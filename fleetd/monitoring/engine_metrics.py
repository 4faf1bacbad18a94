"""
Prometheus metrics for the alert engine.

Counts classified alerts, side-effect failures, dropped background jobs,
refresh cycles and retention evictions.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class EngineMetrics:
    """
    Metrics shared by the refresh cycle, the side-effect dispatcher and the
    retention engine.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize engine metrics.

        Args:
            registry: Prometheus registry. A private registry is created when
                omitted so several instances can coexist in tests.
        """
        self.registry = registry or CollectorRegistry()
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        """Initialize Prometheus metrics."""

        self.alerts_classified = Counter(
            'fleet_alerts_classified_total',
            'Alert candidates produced by the classifier',
            ['type', 'severity'],
            registry=self.registry
        )

        self.alerts_new = Counter(
            'fleet_alerts_new_total',
            'Alerts that entered the active queue',
            ['severity'],
            registry=self.registry
        )

        self.queue_size = Gauge(
            'fleet_alert_queue_size',
            'Number of alerts in the active queue',
            registry=self.registry
        )

        self.cycles_total = Counter(
            'fleet_refresh_cycles_total',
            'Completed refresh cycles',
            ['fetch_status'],
            registry=self.registry
        )

        self.cycle_duration = Histogram(
            'fleet_refresh_cycle_duration_seconds',
            'Duration of a refresh cycle',
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
            registry=self.registry
        )

        self.side_effect_failures = Counter(
            'fleet_side_effect_failures_total',
            'Failed auto-save or notification calls',
            ['kind', 'error_type'],
            registry=self.registry
        )

        self.side_effects_dropped = Counter(
            'fleet_side_effects_dropped_total',
            'Side-effect jobs dropped because the buffer was full',
            ['kind'],
            registry=self.registry
        )

        self.records_evicted = Counter(
            'fleet_retention_records_evicted_total',
            'Records deleted by the retention sweep',
            ['category'],
            registry=self.registry
        )

        self.export_failures = Counter(
            'fleet_retention_export_failures_total',
            'Retention exports that failed or timed out',
            ['category'],
            registry=self.registry
        )
