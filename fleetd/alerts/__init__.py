"""
Alert engine: classification, the active queue, lifecycle and the refresh cycle.
"""

from .classifier import ClassifierConfig, classify, classify_all
from .lifecycle import LifecycleManager, LifecycleResult
from .models import (
    ActionPlan,
    ActionPlanStatus,
    Alert,
    AlertSeverity,
    AlertType,
    ApiSource,
    FetchResult,
    FetchStatus,
    Inspection,
    SavedAlert,
    SavedAlertStatus,
    TelemetrySnapshot,
)
from .queue import ActiveAlertStore, MergeOutcome, cap, merge

__all__ = [
    "ActionPlan",
    "ActionPlanStatus",
    "ActiveAlertStore",
    "Alert",
    "AlertSeverity",
    "AlertType",
    "ApiSource",
    "ClassifierConfig",
    "FetchResult",
    "FetchStatus",
    "Inspection",
    "LifecycleManager",
    "LifecycleResult",
    "MergeOutcome",
    "SavedAlert",
    "SavedAlertStatus",
    "TelemetrySnapshot",
    "cap",
    "classify",
    "classify_all",
    "merge",
]
