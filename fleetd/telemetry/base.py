"""
Telemetry source interface.
"""

from abc import ABC, abstractmethod

from fleetd.alerts.models import FetchResult


class TelemetrySource(ABC):
    """
    Abstract source of vehicle snapshots.

    ``fetch`` reports failures through ``FetchResult.status`` and
    ``FetchResult.errors`` rather than raising.
    """

    name: str = "telemetry"

    @abstractmethod
    async def fetch(self) -> FetchResult:
        """Return the latest snapshot of every vehicle the source knows about."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
