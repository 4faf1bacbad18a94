"""
Composite telemetry source that queries several carriers in parallel.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from fleetd.alerts.models import FetchResult, FetchStatus
from .base import TelemetrySource

logger = logging.getLogger(__name__)


class CompositeTelemetrySource(TelemetrySource):
    """
    Fan-out over several sources.

    Status is ``ok`` when every source succeeded, ``degraded`` when only
    some did, and ``error`` when all failed. With ``source_timeout_seconds``
    set, a carrier that does not answer in time counts as failed and the
    snapshots of the others are still returned.
    """

    name = "composite"

    def __init__(self, sources: Sequence[TelemetrySource],
                 source_timeout_seconds: Optional[float] = None):
        if not sources:
            raise ValueError("At least one telemetry source is required")
        self.sources: List[TelemetrySource] = list(sources)
        self.source_timeout_seconds = source_timeout_seconds

    async def _fetch_one(self, source: TelemetrySource) -> FetchResult:
        if self.source_timeout_seconds is None:
            return await source.fetch()
        try:
            return await asyncio.wait_for(source.fetch(), timeout=self.source_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Telemetry source {source.name} timed out after "
                         f"{self.source_timeout_seconds}s")
            return FetchResult(
                snapshots=[],
                status=FetchStatus.ERROR,
                errors=[f"{source.name}: timed out after {self.source_timeout_seconds}s"]
            )

    async def fetch(self) -> FetchResult:
        results = await asyncio.gather(
            *(self._fetch_one(source) for source in self.sources),
            return_exceptions=True
        )

        snapshots = []
        errors = []
        failed = 0
        degraded = 0
        for source, result in zip(self.sources, results):
            if isinstance(result, Exception):
                failed += 1
                errors.append(f"{source.name}: {result}")
                logger.error(f"Telemetry source {source.name} raised: {result}")
                continue
            snapshots.extend(result.snapshots)
            errors.extend(result.errors)
            if result.status == FetchStatus.ERROR:
                failed += 1
            elif result.status == FetchStatus.DEGRADED:
                degraded += 1

        if failed == 0 and degraded == 0:
            status = FetchStatus.OK
        elif failed >= len(self.sources):
            status = FetchStatus.ERROR
        else:
            status = FetchStatus.DEGRADED

        return FetchResult(snapshots=snapshots, status=status, errors=errors)

    async def close(self) -> None:
        for source in self.sources:
            await source.close()
