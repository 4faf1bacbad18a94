"""
Telemetry sources for the alert engine.
"""

from .base import TelemetrySource
from .composite import CompositeTelemetrySource
from .http_source import ColtrackSource, FagorSource, HttpTelemetrySource, TelemetryFetchError
from .normalizer import normalize_record, normalize_records, parse_fagor_xml

__all__ = [
    "TelemetrySource",
    "HttpTelemetrySource",
    "ColtrackSource",
    "FagorSource",
    "CompositeTelemetrySource",
    "TelemetryFetchError",
    "normalize_record",
    "normalize_records",
    "parse_fagor_xml",
]
