"""
Data models for the fleet alert engine.

Telemetry snapshots, alerts, promoted (saved) alerts, action plans and
inspections. Enum values are the strings used in the cache and the
persistent store.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ApiSource(Enum):
    """Telemetry carriers."""
    COLTRACK = "COLTRACK"
    FAGOR = "FAGOR"


class AlertType(Enum):
    """Alert classification types."""
    SPEED_VIOLATION = "speed_violation"
    PANIC_BUTTON = "panic_button"
    HARSH_BRAKING = "harsh_braking"
    HARSH_ACCELERATION = "harsh_acceleration"
    GEOFENCE_ENTRY = "geofence_entry"
    GEOFENCE_EXIT = "geofence_exit"
    BATTERY_DISCONNECT = "battery_disconnect"
    IDLE_EXCESSIVE = "idle_excessive"
    GENERAL_ALERT = "general_alert"


class AlertSeverity(Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class SavedAlertStatus(Enum):
    """Workflow states of a promoted alert."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class ActionPlanStatus(Enum):
    """Workflow states of an action plan."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class FetchStatus(Enum):
    """Outcome of one telemetry fetch."""
    OK = "ok"
    DEGRADED = "degraded"
    ERROR = "error"


@dataclass(frozen=True)
class TelemetrySnapshot:
    """One vehicle's latest telemetry reading."""
    vehicle_id: str
    plate: str = ""
    driver: Optional[str] = None
    event: Optional[str] = None
    speed: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location: Optional[str] = None
    source: Optional[str] = None
    contract: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class FetchResult:
    """Snapshots returned by a telemetry source plus the fetch status."""
    snapshots: List[TelemetrySnapshot]
    status: FetchStatus
    errors: List[str] = field(default_factory=list)


@dataclass
class Alert:
    """A detected occurrence for one vehicle."""
    id: str
    vehicle_id: str
    plate: str
    type: AlertType
    severity: AlertSeverity
    timestamp: str
    details: str
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: float = 0.0
    driver: Optional[str] = None
    source: Optional[str] = None
    contract: Optional[str] = None
    sent: bool = False
    sent_at: Optional[str] = None
    sent_by: Optional[str] = None
    saved_to_database: bool = False
    saved_at: Optional[str] = None

    @property
    def dedup_key(self) -> tuple:
        return (self.vehicle_id, self.type)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        data['type'] = self.type.value
        data['severity'] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        """Build an alert from its cached dictionary form."""
        values = dict(data)
        values['type'] = AlertType(values['type'])
        values['severity'] = AlertSeverity(values['severity'])
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class ActionPlan:
    """Remediation item attached to a saved alert."""
    id: str
    saved_alert_id: str
    description: str
    responsible: str
    status: ActionPlanStatus = ActionPlanStatus.PENDING
    observations: Optional[str] = None
    created_by: str = "operator"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SavedAlert:
    """An alert that has entered long-term history."""
    id: str
    alert_id: str
    vehicle_id: str
    plate: str
    type: AlertType
    severity: AlertSeverity
    timestamp: str
    details: str
    status: SavedAlertStatus
    saved_by: str
    saved_at: datetime
    promoted: bool = False
    location: Optional[str] = None
    speed: float = 0.0
    driver: Optional[str] = None
    source: Optional[str] = None
    contract: Optional[str] = None
    updated_at: Optional[datetime] = None
    action_plans: List[ActionPlan] = field(default_factory=list)


@dataclass
class Inspection:
    """Pre-operational inspection crossing for a vehicle."""
    id: str
    plate: str
    inspected_at: datetime
    driver: Optional[str] = None
    findings: int = 0
    state: Optional[str] = None
    contract: Optional[str] = None
    vehicle_type: Optional[str] = None
    ignition_at: Optional[datetime] = None


class IgnitionEventType(Enum):
    """Engine state changes derived from consecutive snapshots."""
    ON = "ignition_on"
    OFF = "ignition_off"


class InspectionStatus(Enum):
    """Outcome of crossing an ignition with the day's inspection report."""
    OK = "ok"
    MISSING = "no_inspection"
    LATE = "late"


@dataclass
class IgnitionEvent:
    """An ignition change observed for one vehicle."""
    plate: str
    event_type: IgnitionEventType
    occurred_at: datetime
    driver: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: Optional[str] = None


@dataclass
class IdleRecord:
    """A finished idle span: stopped with the engine running."""
    plate: str
    started_at: datetime
    ended_at: datetime
    duration_minutes: float
    driver: Optional[str] = None
    contract: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: Optional[str] = None


@dataclass
class InspectionReport:
    """One row of an uploaded pre-operational inspection report."""
    plate: str
    inspection_date: date
    inspected_at: Optional[datetime] = None
    key: Optional[str] = None
    driver: Optional[str] = None
    findings: int = 0
    state: Optional[str] = None
    contract: Optional[str] = None
    vehicle_type: Optional[str] = None
