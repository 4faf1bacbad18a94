"""
fleetd - Fleet telemetry alert daemon.

This package contains the runtime components for turning vehicle telemetry
snapshots into operational alerts, including classification, the active
alert queue, the alert lifecycle, and data retention.
"""

__version__ = "0.1.0"
