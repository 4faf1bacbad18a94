"""
Retention engine - evicts aged and overflowing history records.

For each enabled category the engine selects the records older than the
policy cutoff plus the oldest records beyond the category's maximum, exports
them, and deletes them only once the export has been written and verified.
A failed or timed-out export keeps the whole category for that sweep.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from fleetd.monitoring.engine_metrics import EngineMetrics
from .gateway import PersistenceGateway, RecordCategory
from .retention_config import RetentionConfigManager
from .retention_export import RetentionExporter, RetentionExportError
from .retention_logging import RetentionAuditLog
from .retention_models import (
    CleanupOperation, RetentionPolicy, StorageEstimate, SweepFailure, SweepResult
)

logger = logging.getLogger(__name__)

# Categories in processing order
SWEEP_ORDER = (
    RecordCategory.RESOLVED_ALERTS,
    RecordCategory.ACTIVE_ALERTS,
    RecordCategory.INSPECTIONS,
    RecordCategory.COMPLETED_ACTION_PLANS,
)


def retention_cutoff(retention_days: int, now: datetime) -> datetime:
    """Start of the day ``retention_days`` before ``now``."""
    return (now - timedelta(days=retention_days)).replace(hour=0, minute=0, second=0, microsecond=0)


def estimate_storage(record_counts: Dict[str, int], settings: Dict[str, object]) -> StorageEstimate:
    """
    Estimate storage from record counts and average record sizes.

    Args:
        record_counts: Records per category
        settings: ``storage_monitoring`` section of the retention config

    Returns:
        Estimate with usage ratio against the configured budget
    """
    sizes = {
        RecordCategory.ACTIVE_ALERTS.value: int(settings.get('avg_alert_size_bytes', 1024)),
        RecordCategory.RESOLVED_ALERTS.value: int(settings.get('avg_alert_size_bytes', 1024)),
        RecordCategory.INSPECTIONS.value: int(settings.get('avg_inspection_size_bytes', 512)),
        RecordCategory.COMPLETED_ACTION_PLANS.value: int(settings.get('avg_action_plan_size_bytes', 512)),
    }
    budget = int(settings.get('max_database_size_bytes', 500 * 1024 * 1024))
    threshold = float(settings.get('warning_threshold', 0.8))

    total = sum(count * sizes.get(category, 0) for category, count in record_counts.items())
    ratio = total / budget if budget > 0 else 0.0
    return StorageEstimate(
        record_counts=dict(record_counts),
        estimated_bytes=total,
        budget_bytes=budget,
        usage_ratio=ratio,
        warning=ratio >= threshold
    )


def _unique_by_id(*groups: Iterable[Dict]) -> List[Dict]:
    seen = set()
    records = []
    for group in groups:
        for record in group:
            if record['id'] in seen:
                continue
            seen.add(record['id'])
            records.append(record)
    return records


class RetentionEngine:
    """
    Orchestrates retention sweeps.

    Only one sweep runs at a time; scheduled and manual triggers share the
    same lock.
    """

    def __init__(self,
                 gateway: PersistenceGateway,
                 config_manager: RetentionConfigManager,
                 exporter: Optional[RetentionExporter] = None,
                 audit_log: Optional[RetentionAuditLog] = None,
                 metrics: Optional[EngineMetrics] = None):
        self.gateway = gateway
        self.config_manager = config_manager
        self.config = config_manager.config
        self.policies = config_manager.get_retention_policies()

        export_settings = self.config.export_settings
        self.exporter = exporter or RetentionExporter(
            directory=str(export_settings.get('directory', 'data/retention_exports')),
            export_format=str(export_settings.get('format', 'csv'))
        )
        self.export_timeout_seconds = float(export_settings.get('timeout_seconds', 60))
        self.audit_log = audit_log
        self.metrics = metrics or EngineMetrics()
        self._lock = asyncio.Lock()

        logger.info(f"Retention engine initialized with {len(self.policies)} policies")

    @property
    def sweeping(self) -> bool:
        return self._lock.locked()

    async def _export(self, name: str, records: List[Dict], now: datetime) -> str:
        return await asyncio.wait_for(
            self.exporter.export(name, records, now),
            timeout=self.export_timeout_seconds
        )

    async def sweep(self, now: Optional[datetime] = None,
                    categories: Optional[List[str]] = None) -> SweepResult:
        """
        Run one retention sweep.

        Args:
            now: Reference time for the cutoffs (defaults to the current time)
            categories: Restrict the sweep to these category names

        Returns:
            Sweep result; ``success`` is False when any category failed
        """
        async with self._lock:
            now = now or datetime.now(timezone.utc)
            result = SweepResult(started_at=now)

            if not self.config_manager.is_enabled():
                logger.info("Data retention is disabled")
                result.finished_at = datetime.now(timezone.utc)
                return result

            for category in SWEEP_ORDER:
                if categories is not None and category.value not in categories:
                    continue
                policy = self.policies.get(category.value)
                if policy is None or not policy.enabled:
                    logger.info(f"Retention disabled for category: {category.value}")
                    continue

                operation = await self._sweep_category(category, policy, now, result)
                result.operations.append(operation)
                if self.audit_log:
                    self.audit_log.log_cleanup_operation(operation, policy)

            result.finished_at = datetime.now(timezone.utc)
            if self.audit_log:
                self.audit_log.log_sweep(result)

            if result.success:
                logger.info(f"Retention sweep completed: {result.total_deleted} records deleted")
            else:
                failed = ', '.join(f"{f.category} ({f.reason})" for f in result.failures)
                logger.error(f"Retention sweep finished with failures: {failed}")
            return result

    async def _sweep_category(self, category: RecordCategory, policy: RetentionPolicy,
                              now: datetime, result: SweepResult) -> CleanupOperation:
        started = time.monotonic()
        operation = CleanupOperation(
            operation_id=uuid.uuid4().hex,
            timestamp=now,
            category=category.value,
            records_processed=0,
            records_deleted=0,
            status='success',
            duration_seconds=0.0
        )

        def fail(reason: str, count: int) -> CleanupOperation:
            operation.status = 'failed'
            operation.error_message = reason
            operation.duration_seconds = time.monotonic() - started
            result.failures.append(SweepFailure(category=category.value, count=count, reason=reason))
            return operation

        cutoff = retention_cutoff(policy.retention_days, now)
        expired = await self.gateway.select_expired(category, cutoff)
        if not expired.success:
            return fail(f"select expired failed: {expired.error}", 0)
        overflow = await self.gateway.select_overflow(category, policy.max_records)
        if not overflow.success:
            return fail(f"select overflow failed: {overflow.error}", 0)

        candidates = _unique_by_id(expired.data, overflow.data)
        operation.records_processed = len(candidates)
        if not candidates:
            operation.status = 'skipped'
            operation.duration_seconds = time.monotonic() - started
            result.deleted[category.value] = 0
            return operation

        candidate_ids = [record['id'] for record in candidates]
        # Rows removed along with the candidates (action plans of saved alerts).
        dependents = await self.gateway.select_dependents(category, candidate_ids)
        if not dependents.success:
            return fail(f"select dependents failed: {dependents.error}", len(candidates))

        try:
            path = await self._export(category.value, candidates, now)
            operation.export_path = path
            result.exported_files.append(path)
            if dependents.data:
                dependents_path = await self._export(f"{category.value}_action_plans", dependents.data, now)
                operation.dependents_export_path = dependents_path
                result.exported_files.append(dependents_path)
        except asyncio.TimeoutError:
            self.metrics.export_failures.labels(category=category.value).inc()
            return fail(f"export timed out after {self.export_timeout_seconds}s", len(candidates))
        except RetentionExportError as e:
            self.metrics.export_failures.labels(category=category.value).inc()
            return fail(f"export failed: {e}", len(candidates))

        deleted = await self.gateway.delete_records(category, candidate_ids)
        if not deleted.success:
            return fail(f"delete failed: {deleted.error}", len(candidates))

        operation.records_deleted = deleted.data
        operation.duration_seconds = time.monotonic() - started
        result.deleted[category.value] = deleted.data
        self.metrics.records_evicted.labels(category=category.value).inc(deleted.data)
        logger.info(f"Evicted {deleted.data} {category.value} records "
                    f"(cutoff {cutoff.isoformat()}, max {policy.max_records})")
        return operation

    async def get_record_counts(self) -> Dict[str, int]:
        """Current record count per category."""
        counts = {}
        for category in RecordCategory:
            counted = await self.gateway.count_records(category)
            if not counted.success:
                logger.error(f"Failed to count {category.value}: {counted.error}")
                continue
            counts[category.value] = counted.data
        return counts

    async def estimate_storage(self) -> StorageEstimate:
        """Estimate storage use of the history tables."""
        estimate = estimate_storage(await self.get_record_counts(), self.config.storage_monitoring)
        if estimate.warning:
            logger.warning(f"Estimated storage at {estimate.usage_ratio:.0%} of budget "
                           f"({estimate.estimated_mb:.2f} MB)")
        return estimate

    def get_retention_status(self) -> Dict[str, object]:
        """Get retention system status."""
        return {
            'enabled': self.config_manager.is_enabled(),
            'sweeping': self.sweeping,
            'export_format': self.exporter.export_format,
            'export_directory': str(self.exporter.directory),
            'policies': {
                name: {
                    'enabled': policy.enabled,
                    'retention_days': policy.retention_days,
                    'max_records': policy.max_records,
                    'description': policy.description
                }
                for name, policy in self.policies.items()
            }
        }


def create_retention_engine(config_path: str, db_path: str,
                            logs_dir: str = "logs/retention",
                            metrics: Optional[EngineMetrics] = None) -> RetentionEngine:
    """Create a retention engine over a SQLite history database."""
    from .sqlite_gateway import SQLiteGateway

    return RetentionEngine(
        gateway=SQLiteGateway(db_path),
        config_manager=RetentionConfigManager(config_path),
        audit_log=RetentionAuditLog(logs_dir),
        metrics=metrics
    )
