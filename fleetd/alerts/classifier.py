"""
Rule-based alert classification.

This module turns one telemetry snapshot into zero or more alert candidates.
Classification is pure: no I/O, no shared state, and identical snapshots
always yield identical alerts. Event vocabularies are kept as data so each
rule can be tested on its own.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Alert, AlertSeverity, AlertType, ApiSource, TelemetrySnapshot


class EventClass(Enum):
    """Tags produced by matching the free-text event field."""
    PANIC = "panic"
    HARSH_BRAKING = "harsh_braking"
    HARSH_ACCELERATION = "harsh_acceleration"
    GEOFENCE = "geofence"
    BATTERY_DISCONNECT = "battery_disconnect"
    IDLE = "idle"
    INFRACTION = "infraction"
    EXCEEDS = "exceeds"
    EMERGENCY = "emergency"
    UNCLASSIFIED = "unclassified"


EVENT_VOCABULARY: Dict[EventClass, Tuple[str, ...]] = {
    EventClass.PANIC: ("PANICO", "PANIC", "SOS", "BOTON PANICO"),
    EventClass.HARSH_BRAKING: ("FRENADA BRUSCA", "FRENO BRUSCO", "HARSH BRAKE"),
    EventClass.HARSH_ACCELERATION: ("SOBRE ACELERACION", "ACELERACION BRUSCA", "HARSH ACCELERATION"),
    EventClass.GEOFENCE: ("GEOCERCA", "GEOFENCE", "SALIDA DE ZONA", "FUERA DE ZONA"),
    EventClass.BATTERY_DISCONNECT: ("BATERIA DESCONECTADA", "BATTERY DISCONNECT", "DESCONEXION"),
    EventClass.IDLE: ("RALENTI", "IDLE", "ALERTA RALENTI"),
    EventClass.INFRACTION: ("INFRACCION",),
    EventClass.EXCEEDS: ("EXCESO",),
    EventClass.EMERGENCY: ("ALERTA", "EMERGENCIA"),
}

GEOFENCE_EXIT_VOCABULARY: Tuple[str, ...] = ("SALIDA", "EXIT", "FUERA", "OUT OF ZONE")

# Classes that map onto a dedicated alert type.
SPECIFIC_EVENT_CLASSES = frozenset({
    EventClass.PANIC,
    EventClass.HARSH_BRAKING,
    EventClass.HARSH_ACCELERATION,
    EventClass.GEOFENCE,
    EventClass.BATTERY_DISCONNECT,
    EventClass.IDLE,
})

RULE_SEVERITY: Dict[AlertType, AlertSeverity] = {
    AlertType.SPEED_VIOLATION: AlertSeverity.CRITICAL,
    AlertType.PANIC_BUTTON: AlertSeverity.CRITICAL,
    AlertType.HARSH_BRAKING: AlertSeverity.MEDIUM,
    AlertType.HARSH_ACCELERATION: AlertSeverity.MEDIUM,
    AlertType.GEOFENCE_ENTRY: AlertSeverity.HIGH,
    AlertType.GEOFENCE_EXIT: AlertSeverity.HIGH,
    AlertType.BATTERY_DISCONNECT: AlertSeverity.CRITICAL,
    AlertType.IDLE_EXCESSIVE: AlertSeverity.LOW,
}


@dataclass(frozen=True)
class ClassifierConfig:
    """Thresholds for the classification rules."""
    speed_limit_kmh: float = 80.0


DEFAULT_CONFIG = ClassifierConfig()


def normalize_event(event: Optional[str]) -> str:
    """Upper-case an event string, treating missing values as empty."""
    if event is None:
        return ""
    return str(event).upper()


def match_event(event: Optional[str]) -> List[EventClass]:
    """
    Match an event string against every vocabulary.

    Returns:
        Matching classes in catalogue order, or ``[EventClass.UNCLASSIFIED]``
        when nothing matches.
    """
    text = normalize_event(event)
    matches = [
        event_class
        for event_class, vocabulary in EVENT_VOCABULARY.items()
        if text and any(keyword in text for keyword in vocabulary)
    ]
    return matches or [EventClass.UNCLASSIFIED]


def is_geofence_exit(event: Optional[str]) -> bool:
    text = normalize_event(event)
    return any(keyword in text for keyword in GEOFENCE_EXIT_VOCABULARY)


def _as_speed(value) -> float:
    try:
        speed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(speed):
        return 0.0
    return speed


def _source_name(source) -> str:
    if isinstance(source, ApiSource):
        return source.value
    return str(source or "").upper()


def _format_speed(value: float) -> str:
    return f"{value:g}"


def build_alert(snapshot: TelemetrySnapshot, alert_type: AlertType,
                severity: AlertSeverity, details: str) -> Alert:
    """
    Create an alert from a snapshot.

    The alert timestamp is the snapshot's own timestamp, so re-reading the
    same tracker position yields the same alert id.
    """
    timestamp = snapshot.timestamp or ""
    return Alert(
        id=f"{snapshot.vehicle_id}-{alert_type.value}-{timestamp}",
        vehicle_id=snapshot.vehicle_id,
        plate=snapshot.plate or "",
        type=alert_type,
        severity=severity,
        timestamp=timestamp,
        details=details,
        location=snapshot.location,
        latitude=snapshot.latitude,
        longitude=snapshot.longitude,
        speed=_as_speed(snapshot.speed),
        driver=snapshot.driver,
        source=_source_name(snapshot.source) or None,
        contract=snapshot.contract,
    )


def classify(snapshot: TelemetrySnapshot, config: Optional[ClassifierConfig] = None) -> List[Alert]:
    """
    Classify one snapshot into alert candidates.

    Args:
        snapshot: Vehicle telemetry reading
        config: Rule thresholds (defaults to an 80 km/h speed limit)

    Returns:
        Alerts in rule-catalogue order; empty when no rule fires
    """
    config = config or DEFAULT_CONFIG
    alerts: List[Alert] = []
    speed = _as_speed(snapshot.speed)
    event_classes = set(match_event(snapshot.event))
    source = _source_name(snapshot.source)

    def emit(alert_type: AlertType, details: str, severity: Optional[AlertSeverity] = None) -> None:
        alerts.append(build_alert(snapshot, alert_type, severity or RULE_SEVERITY[alert_type], details))

    if speed >= config.speed_limit_kmh:
        emit(
            AlertType.SPEED_VIOLATION,
            f"Speed: {_format_speed(speed)} km/h (limit: {_format_speed(config.speed_limit_kmh)} km/h)",
        )

    if EventClass.PANIC in event_classes:
        emit(AlertType.PANIC_BUTTON, "Panic button activated - requires immediate attention")

    if EventClass.HARSH_BRAKING in event_classes:
        emit(AlertType.HARSH_BRAKING, "Harsh braking detected")

    if EventClass.HARSH_ACCELERATION in event_classes:
        emit(AlertType.HARSH_ACCELERATION, "Harsh acceleration detected")

    if EventClass.GEOFENCE in event_classes:
        if is_geofence_exit(snapshot.event):
            emit(AlertType.GEOFENCE_EXIT, "Vehicle left the allowed zone")
        else:
            emit(AlertType.GEOFENCE_ENTRY, "Vehicle entered the allowed zone")

    if EventClass.BATTERY_DISCONNECT in event_classes:
        emit(AlertType.BATTERY_DISCONNECT, "Battery disconnected - possible tampering")

    if EventClass.IDLE in event_classes:
        emit(AlertType.IDLE_EXCESSIVE, "Excessive idle detected")

    event_text = snapshot.event or ""

    if source == ApiSource.COLTRACK.value and EventClass.INFRACTION in event_classes:
        # A more specific event rule already covers this snapshot.
        if not event_classes & SPECIFIC_EVENT_CLASSES:
            emit(AlertType.GENERAL_ALERT, event_text or "Infraction detected", AlertSeverity.MEDIUM)

    if source == ApiSource.FAGOR.value:
        # One general alert per snapshot keeps alert ids unique; emergency outranks exceeds.
        if EventClass.EMERGENCY in event_classes:
            emit(AlertType.GENERAL_ALERT, event_text or "General alert", AlertSeverity.HIGH)
        elif EventClass.EXCEEDS in event_classes:
            if not any(alert.type == AlertType.SPEED_VIOLATION for alert in alerts):
                emit(AlertType.GENERAL_ALERT, event_text or "Limit exceeded", AlertSeverity.MEDIUM)

    return alerts


def classify_all(snapshots: Iterable[TelemetrySnapshot],
                 config: Optional[ClassifierConfig] = None) -> List[Alert]:
    """Classify every snapshot, keeping snapshot order."""
    alerts: List[Alert] = []
    for snapshot in snapshots:
        alerts.extend(classify(snapshot, config))
    return alerts
