"""
Monitoring module for the fleet alert engine.

Provides Prometheus metrics for the refresh cycle, side-effect dispatch and
retention sweeps, the metrics endpoint, and the notifier sinks that receive
new alerts.
"""

from .engine_metrics import EngineMetrics
from .metrics_endpoint import MetricsEndpoint
from .notifications import LogNotifier, Notifier, TelegramNotifier

__all__ = [
    'EngineMetrics',
    'LogNotifier',
    'MetricsEndpoint',
    'Notifier',
    'TelegramNotifier'
]
