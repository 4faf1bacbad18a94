"""
Data models for the retention system.

This module contains the data classes used by the retention engine,
its scheduler and the audit log.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention policy for one record category."""
    enabled: bool
    retention_days: int
    max_records: int
    description: str


@dataclass
class CleanupOperation:
    """Outcome of the retention pass over one category."""
    operation_id: str
    timestamp: datetime
    category: str
    records_processed: int
    records_deleted: int
    status: str  # 'success', 'failed', 'skipped'
    duration_seconds: float
    export_path: Optional[str] = None
    dependents_export_path: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class SweepFailure:
    """A category whose records were kept because the export did not succeed."""
    category: str
    count: int
    reason: str


@dataclass
class SweepResult:
    """Result of one retention sweep across all categories."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    deleted: Dict[str, int] = field(default_factory=dict)
    exported_files: List[str] = field(default_factory=list)
    failures: List[SweepFailure] = field(default_factory=list)
    operations: List[CleanupOperation] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


@dataclass
class StorageEstimate:
    """Approximate storage used by the history tables."""
    record_counts: Dict[str, int]
    estimated_bytes: int
    budget_bytes: int
    usage_ratio: float
    warning: bool

    @property
    def estimated_mb(self) -> float:
        return self.estimated_bytes / (1024 * 1024)


@dataclass
class RetentionConfig:
    """Configuration for retention operations."""
    global_settings: Dict[str, object]
    scheduler_settings: Dict[str, object]
    retention_policies: Dict[str, RetentionPolicy]
    export_settings: Dict[str, object]
    storage_monitoring: Dict[str, object]
