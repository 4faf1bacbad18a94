"""
Alert lifecycle management.

Handles the per-alert transitions of the active queue (detected, sent,
promoted to history) and the follow-up workflow of promoted alerts and
their action plans. Every operation returns a LifecycleResult; lifecycle
violations are reported, never raised.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

import structlog

from fleetd.storage.gateway import PersistenceGateway
from .models import ActionPlanStatus, SavedAlertStatus
from .queue import ActiveAlertStore

logger = structlog.get_logger(__name__)


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle operation."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    noop: bool = False


class LifecycleManager:
    """
    Lifecycle manager for active and promoted alerts.

    Owns the flag transitions on the active queue and delegates the
    follow-up workflow to the persistence gateway.
    """

    def __init__(self, store: ActiveAlertStore, gateway: PersistenceGateway):
        """
        Initialize the lifecycle manager.

        Args:
            store: Active alert queue
            gateway: Persistent store for promoted alerts
        """
        self.store = store
        self.gateway = gateway

    async def mark_sent(self, alert_id: str, sent_by: str) -> LifecycleResult:
        """
        Mark an alert as sent (copied/acknowledged by an operator).

        The alert stays in the active queue.
        """
        alert = await self.store.mark_sent(alert_id, sent_by)
        if alert is None:
            return LifecycleResult(success=False, error=f"Alert not found: {alert_id}")

        logger.info("Alert marked as sent", alert_id=alert_id, sent_by=sent_by)
        return LifecycleResult(success=True, data=alert)

    async def promote(self, alert_id: str, saved_by: str) -> LifecycleResult:
        """
        Promote an alert to the follow-up history.

        Writes the alert to the persistent store, flags the cached copy as
        saved, and purges promoted entries from the active queue. Promoting
        an already promoted alert is a no-op. A failed write leaves the
        queue untouched.

        Args:
            alert_id: Alert ID in the active queue
            saved_by: Operator promoting the alert

        Returns:
            Result whose ``data`` is the saved alert id
        """
        if self.store.is_promoted(alert_id):
            return LifecycleResult(success=True, noop=True,
                                   error="Alert is already in the follow-up history")

        alert = self.store.get(alert_id)
        if alert is None:
            return LifecycleResult(success=False, error=f"Alert not found: {alert_id}")
        if alert.saved_to_database:
            return LifecycleResult(success=True, noop=True,
                                   error="Alert is already in the follow-up history")

        result = await self.gateway.promote_alert(alert, saved_by)
        if not result.success:
            logger.error("Alert promotion failed",
                         alert_id=alert_id,
                         error=result.error)
            return LifecycleResult(success=False, error=result.error)

        await self.store.mark_saved(alert_id)
        removed = await self.store.purge_saved()

        if result.existing:
            logger.info("Alert was already promoted",
                        alert_id=alert_id,
                        saved_id=result.data,
                        purged=removed)
            return LifecycleResult(success=True, data=result.data, noop=True)

        logger.info("Alert promoted to history",
                    alert_id=alert_id,
                    saved_id=result.data,
                    saved_by=saved_by,
                    purged=removed)
        return LifecycleResult(success=True, data=result.data)

    async def update_status(self, saved_id: str,
                            status: Union[SavedAlertStatus, str]) -> LifecycleResult:
        """Set the workflow status of a saved alert; any transition is allowed."""
        try:
            status = SavedAlertStatus(status)
        except ValueError:
            return LifecycleResult(success=False, error=f"Invalid status: {status}")

        result = await self.gateway.update_alert_status(saved_id, status)
        if result.success:
            logger.info("Saved alert status updated", saved_id=saved_id, status=status.value)
        return LifecycleResult(success=result.success, error=result.error)

    async def delete_saved_alert(self, saved_id: str) -> LifecycleResult:
        result = await self.gateway.delete_saved_alert(saved_id)
        if result.success:
            logger.info("Saved alert deleted", saved_id=saved_id)
        return LifecycleResult(success=result.success, error=result.error)

    async def add_action_plan(self, saved_id: str, description: str, responsible: str,
                              status: Union[ActionPlanStatus, str] = ActionPlanStatus.PENDING,
                              observations: Optional[str] = None,
                              created_by: str = "operator") -> LifecycleResult:
        """Attach an action plan to a saved alert."""
        if not description or not responsible:
            return LifecycleResult(success=False, error="description and responsible are required")
        try:
            status = ActionPlanStatus(status)
        except ValueError:
            return LifecycleResult(success=False, error=f"Invalid action plan status: {status}")

        result = await self.gateway.add_action_plan(
            saved_id, description, responsible, status, observations, created_by
        )
        if result.success:
            logger.info("Action plan added", saved_id=saved_id, plan_id=result.data.id)
        return LifecycleResult(success=result.success, data=result.data, error=result.error)

    async def update_action_plan(self, plan_id: str, **fields) -> LifecycleResult:
        """Edit an action plan (description, responsible, status, observations)."""
        normalized: Dict[str, Any] = {
            name: value.value if isinstance(value, ActionPlanStatus) else value
            for name, value in fields.items()
        }
        result = await self.gateway.update_action_plan(plan_id, normalized)
        return LifecycleResult(success=result.success, error=result.error)

    async def delete_action_plan(self, plan_id: str) -> LifecycleResult:
        result = await self.gateway.delete_action_plan(plan_id)
        return LifecycleResult(success=result.success, error=result.error)

    async def get_saved_alert(self, saved_id: str) -> LifecycleResult:
        result = await self.gateway.get_saved_alert(saved_id)
        return LifecycleResult(success=result.success, data=result.data, error=result.error)

    async def list_saved_alerts(self,
                                status: Optional[Union[SavedAlertStatus, str]] = None,
                                severity: Optional[str] = None,
                                start: Optional[datetime] = None,
                                end: Optional[datetime] = None) -> LifecycleResult:
        """List promoted alerts with their action plans, most recent first."""
        try:
            status = SavedAlertStatus(status) if status is not None else None
        except ValueError:
            return LifecycleResult(success=False, error=f"Invalid status: {status}")

        result = await self.gateway.list_saved_alerts(status=status, severity=severity,
                                                      start=start, end=end)
        return LifecycleResult(success=result.success, data=result.data, error=result.error)

    async def get_statistics(self) -> LifecycleResult:
        """Counts of promoted alerts per workflow status and severity."""
        result = await self.gateway.list_saved_alerts()
        if not result.success:
            return LifecycleResult(success=False, error=result.error)

        stats = {'total': len(result.data)}
        for status in SavedAlertStatus:
            stats[status.value] = 0
        for severity in ('critical', 'high', 'medium', 'low'):
            stats[severity] = 0
        for saved in result.data:
            stats[saved.status.value] += 1
            stats[saved.severity.value] += 1

        return LifecycleResult(success=True, data=stats)
