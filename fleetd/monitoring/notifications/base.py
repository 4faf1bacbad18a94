"""
Notifier interface and the logging notifier.
"""

from abc import ABC, abstractmethod
from typing import Union

import structlog

from fleetd.alerts.models import Alert, AlertSeverity

logger = structlog.get_logger(__name__)


class Notifier(ABC):
    """
    Sink for newly classified alerts.

    ``min_severity`` is the notifier's own policy: alerts below it are
    skipped and reported as delivered.
    """

    def __init__(self, min_severity: Union[AlertSeverity, str] = AlertSeverity.LOW):
        self.min_severity = AlertSeverity(min_severity)

    def should_notify(self, alert: Alert) -> bool:
        return alert.severity.rank >= self.min_severity.rank

    async def notify(self, alert: Alert) -> bool:
        """
        Deliver an alert.

        Returns:
            True if delivered or skipped by policy, False otherwise
        """
        if not self.should_notify(alert):
            logger.debug("Notification skipped by severity policy",
                         alert_id=alert.id,
                         severity=alert.severity.value,
                         min_severity=self.min_severity.value)
            return True
        return await self.send_alert(alert)

    @abstractmethod
    async def send_alert(self, alert: Alert) -> bool:
        pass


class LogNotifier(Notifier):
    """Writes alerts to the log."""

    async def send_alert(self, alert: Alert) -> bool:
        log = logger.warning if alert.severity.rank >= AlertSeverity.HIGH.rank else logger.info
        log("Fleet alert",
            alert_id=alert.id,
            plate=alert.plate,
            type=alert.type.value,
            severity=alert.severity.value,
            details=alert.details,
            location=alert.location)
        return True
