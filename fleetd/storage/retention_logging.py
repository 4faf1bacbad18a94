"""
Audit trail for the retention system.

Every category operation and every sweep summary is appended as one JSON
line to a daily file under the audit directory.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .retention_models import CleanupOperation, RetentionPolicy, SweepResult

logger = logging.getLogger(__name__)


class RetentionAuditLog:
    """Handles logging and audit trails for retention operations."""

    def __init__(self, logs_dir: str = "logs/retention"):
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def log_cleanup_operation(self, operation: CleanupOperation, policy: Optional[RetentionPolicy]):
        """Log one category operation and append it to the audit trail."""
        log_entry = {
            "kind": "operation",
            "operation_id": operation.operation_id,
            "timestamp": operation.timestamp.isoformat(),
            "category": operation.category,
            "records_processed": operation.records_processed,
            "records_deleted": operation.records_deleted,
            "status": operation.status,
            "duration_seconds": round(operation.duration_seconds, 3),
            "duration_formatted": self._format_duration(operation.duration_seconds),
            "export_path": operation.export_path,
            "dependents_export_path": operation.dependents_export_path,
            "error_message": operation.error_message,
            "retention_policy_applied": self._get_policy_summary(policy),
        }

        if operation.status == 'success':
            logger.info(f"Retention operation completed: {operation.category} - "
                        f"{operation.records_deleted} records deleted in {log_entry['duration_formatted']}")
        elif operation.status == 'failed':
            logger.error(f"Retention operation failed: {operation.category} - {operation.error_message}")
        else:
            logger.info(f"Retention operation {operation.status}: {operation.category}")

        self._append(log_entry)

    def log_sweep(self, result: SweepResult):
        """Append the summary of a whole sweep."""
        duration = 0.0
        if result.finished_at:
            duration = (result.finished_at - result.started_at).total_seconds()

        self._append({
            "kind": "sweep",
            "started_at": result.started_at.isoformat(),
            "finished_at": result.finished_at.isoformat() if result.finished_at else None,
            "duration_seconds": round(duration, 3),
            "success": result.success,
            "deleted": dict(result.deleted),
            "total_deleted": result.total_deleted,
            "exported_files": list(result.exported_files),
            "failures": [
                {"category": f.category, "count": f.count, "reason": f.reason}
                for f in result.failures
            ],
        })

    def _format_duration(self, duration_seconds: float) -> str:
        """Format duration in a human-readable format."""
        if duration_seconds < 60:
            return f"{duration_seconds:.2f}s"
        elif duration_seconds < 3600:
            return f"{duration_seconds / 60:.1f}m"
        return f"{duration_seconds / 3600:.1f}h"

    def _get_policy_summary(self, policy: Optional[RetentionPolicy]) -> Optional[Dict[str, Any]]:
        if policy is None:
            return None
        return {
            "retention_days": policy.retention_days,
            "max_records": policy.max_records,
            "enabled": policy.enabled,
        }

    def _log_file(self, when: Optional[datetime] = None) -> Path:
        log_date = (when or datetime.now()).strftime("%Y-%m-%d")
        return self.logs_dir / f"retention_audit_{log_date}.jsonl"

    def _append(self, log_entry: Dict[str, Any]):
        try:
            with open(self._log_file(), 'a') as f:
                f.write(json.dumps(log_entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to write retention audit entry: {e}")

    def read_entries(self, when: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Read back the audit entries of one day."""
        log_file = self._log_file(when)
        if not log_file.exists():
            return []
        with open(log_file, 'r') as f:
            return [json.loads(line) for line in f if line.strip()]
