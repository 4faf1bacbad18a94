"""
Persistence gateway interface.

This module provides the abstract interface for the durable store that
holds saved alerts, action plans, inspections and ignition history. Every
operation returns a GatewayResult; implementations never raise past this
boundary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fleetd.alerts.models import (
    ActionPlanStatus, Alert, IdleRecord, IgnitionEvent, IgnitionEventType, Inspection,
    SavedAlertStatus
)


class RecordCategory(Enum):
    """Record families subject to retention."""
    ACTIVE_ALERTS = "active_alerts"
    RESOLVED_ALERTS = "resolved_alerts"
    INSPECTIONS = "inspections"
    COMPLETED_ACTION_PLANS = "completed_action_plans"


@dataclass
class GatewayResult:
    """Outcome of a gateway call."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    existing: bool = False

    @classmethod
    def ok(cls, data: Any = None, existing: bool = False) -> "GatewayResult":
        return cls(success=True, data=data, existing=existing)

    @classmethod
    def fail(cls, error: str) -> "GatewayResult":
        return cls(success=False, error=error)


class PersistenceGateway(ABC):
    """Abstract interface for the persistent alert store."""

    @abstractmethod
    async def auto_save_alert(self, alert: Alert) -> GatewayResult:
        """Record a detected alert in history; duplicates are a successful no-op."""
        pass

    @abstractmethod
    async def promote_alert(self, alert: Alert, saved_by: str) -> GatewayResult:
        """
        Promote an alert for follow-up. ``data`` is the saved alert id.

        Promoting an alert that is already promoted succeeds with
        ``existing`` set and the id of the existing row.
        """
        pass

    @abstractmethod
    async def promoted_alert_ids(self, alert_ids: List[str]) -> GatewayResult:
        """The subset of ``alert_ids`` already promoted for follow-up, as a set."""
        pass

    @abstractmethod
    async def get_saved_alert(self, saved_id: str) -> GatewayResult:
        """Get a saved alert with its action plans."""
        pass

    @abstractmethod
    async def list_saved_alerts(self,
                                status: Optional[SavedAlertStatus] = None,
                                severity: Optional[str] = None,
                                start: Optional[datetime] = None,
                                end: Optional[datetime] = None,
                                promoted_only: bool = True) -> GatewayResult:
        """List saved alerts, most recent first."""
        pass

    @abstractmethod
    async def update_alert_status(self, saved_id: str, status: SavedAlertStatus) -> GatewayResult:
        pass

    @abstractmethod
    async def delete_saved_alert(self, saved_id: str) -> GatewayResult:
        pass

    @abstractmethod
    async def add_action_plan(self, saved_id: str, description: str, responsible: str,
                              status: ActionPlanStatus = ActionPlanStatus.PENDING,
                              observations: Optional[str] = None,
                              created_by: str = "operator") -> GatewayResult:
        pass

    @abstractmethod
    async def update_action_plan(self, plan_id: str, fields: Dict[str, Any]) -> GatewayResult:
        pass

    @abstractmethod
    async def delete_action_plan(self, plan_id: str) -> GatewayResult:
        pass

    @abstractmethod
    async def add_inspection(self, inspection: Inspection) -> GatewayResult:
        pass

    @abstractmethod
    async def list_inspections(self, start: Optional[datetime] = None,
                               end: Optional[datetime] = None) -> GatewayResult:
        """Inspection crossings in a time window, oldest first."""
        pass

    @abstractmethod
    async def add_ignition_event(self, event: IgnitionEvent) -> GatewayResult:
        pass

    @abstractmethod
    async def list_ignition_events(self, start: datetime, end: datetime,
                                   event_type: Optional[IgnitionEventType] = None) -> GatewayResult:
        """Ignition events in ``[start, end]``, oldest first."""
        pass

    @abstractmethod
    async def add_idle_record(self, record: IdleRecord) -> GatewayResult:
        pass

    @abstractmethod
    async def count_records(self, category: RecordCategory) -> GatewayResult:
        pass

    @abstractmethod
    async def select_expired(self, category: RecordCategory, cutoff: datetime) -> GatewayResult:
        """Records of a category older than ``cutoff``, oldest first, as dicts."""
        pass

    @abstractmethod
    async def select_overflow(self, category: RecordCategory, max_records: int) -> GatewayResult:
        """Oldest records of a category beyond ``max_records``, as dicts."""
        pass

    @abstractmethod
    async def select_dependents(self, category: RecordCategory, record_ids: List[str]) -> GatewayResult:
        """Rows deleted together with the given records (action plans of saved alerts), as dicts."""
        pass

    @abstractmethod
    async def delete_records(self, category: RecordCategory, record_ids: List[str]) -> GatewayResult:
        """Delete records by id. ``data`` is the number deleted."""
        pass
