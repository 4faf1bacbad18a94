"""
Active alert queue.

Provides the deduplicating merge of freshly classified alerts into the
active queue, the size cap, and the store object that owns the queue and
persists it as a single JSON document on every write.
"""

import asyncio
import json
import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from .models import Alert

logger = structlog.get_logger(__name__)

DEDUP_WINDOW = timedelta(minutes=5)
MAX_QUEUE_SIZE = 500

LIFECYCLE_FIELDS = ("sent", "sent_at", "sent_by", "saved_to_database", "saved_at")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_duplicate(a: Alert, b: Alert, window: timedelta = DEDUP_WINDOW) -> bool:
    """True when two alerts share (vehicle, type) and fall within the window."""
    if a.dedup_key != b.dedup_key:
        return False
    if a.id == b.id:
        return True
    ta = parse_timestamp(a.timestamp)
    tb = parse_timestamp(b.timestamp)
    if ta is None or tb is None:
        return False
    return abs(ta - tb) <= window


def _carry_flags(target: Alert, source: Alert) -> Alert:
    """Copy lifecycle flags set on ``source`` onto ``target``."""
    updates = {}
    if source.sent and not target.sent:
        updates.update(sent=True, sent_at=source.sent_at, sent_by=source.sent_by)
    if source.saved_to_database and not target.saved_to_database:
        updates.update(saved_to_database=True, saved_at=source.saved_at)
    return replace(target, **updates) if updates else target


def merge(new_alerts: Sequence[Alert], existing_queue: Sequence[Alert],
          window: timedelta = DEDUP_WINDOW) -> List[Alert]:
    """
    Merge new alerts ahead of the existing queue and collapse duplicates.

    An entry is dropped when any earlier entry of the concatenated list has
    the same (vehicle, type) within ``window`` of it. The surviving entry
    inherits the ``sent`` and ``saved_to_database`` flags of the entries it
    absorbed, so a fresh detection never erases an operator's acknowledgement.

    Args:
        new_alerts: Freshly classified alerts
        existing_queue: Current queue, most recent first
        window: Dedup window

    Returns:
        Deduplicated list, new alerts first
    """
    combined = list(new_alerts) + list(existing_queue)
    kept: List[Alert] = []
    # Index of the kept entry each scanned entry resolved to, per dedup key.
    seen: Dict[tuple, List[tuple]] = {}

    for candidate in combined:
        earlier = seen.setdefault(candidate.dedup_key, [])
        owner = None
        for previous, kept_index in earlier:
            if is_duplicate(previous, candidate, window):
                owner = kept_index
                break

        if owner is None:
            kept_index = len(kept)
            kept.append(candidate)
        else:
            kept_index = owner
            kept[owner] = _carry_flags(kept[owner], candidate)
        earlier.append((candidate, kept_index))

    return kept


def cap(queue: Sequence[Alert], max_size: int = MAX_QUEUE_SIZE) -> List[Alert]:
    """Keep the head of the queue, at most ``max_size`` entries."""
    if max_size <= 0:
        return []
    return list(queue[:max_size])


@dataclass
class MergeOutcome:
    """Result of one merge into the active queue."""
    queue: List[Alert]
    new_alerts: List[Alert]


class ActiveAlertStore:
    """
    Owner of the active alert queue.

    All writes go through this object under a single asyncio lock, and the
    whole queue is rewritten to the cache file after each write. Promoted
    alert ids are remembered so a re-detected alert never returns to the
    unsaved view. Once a remembered id has expired, ``history`` (the
    persistence gateway) is asked whether an unknown candidate was already
    promoted before it is queued.
    """

    def __init__(self,
                 cache_path: Optional[str] = None,
                 max_size: int = MAX_QUEUE_SIZE,
                 dedup_window: timedelta = DEDUP_WINDOW,
                 promoted_ttl_hours: int = 72,
                 history=None):
        self.cache_path = Path(cache_path) if cache_path else None
        self.history = history
        self.max_size = max_size
        self.dedup_window = dedup_window
        self.promoted_ttl_hours = promoted_ttl_hours
        self._lock = asyncio.Lock()
        self._alerts: List[Alert] = []
        self._promoted: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.cache_path or not self.cache_path.exists():
            return
        try:
            with open(self.cache_path, 'r') as f:
                document = json.load(f)
            self._alerts = [Alert.from_dict(item) for item in document.get('alerts', [])]
            self._promoted = dict(document.get('promoted', {}))
            logger.info("Alert cache loaded",
                        path=str(self.cache_path),
                        alerts=len(self._alerts))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Error loading alert cache",
                         path=str(self.cache_path),
                         error=str(e))
            self._alerts = []
            self._promoted = {}

    def _persist(self) -> None:
        if not self.cache_path:
            return
        document = {
            'alerts': [alert.to_dict() for alert in self._alerts],
            'promoted': self._promoted,
        }
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.cache_path.with_suffix(self.cache_path.suffix + '.tmp')
            with open(tmp_path, 'w') as f:
                json.dump(document, f)
            os.replace(tmp_path, self.cache_path)
        except OSError as e:
            logger.error("Error persisting alert cache",
                         path=str(self.cache_path),
                         error=str(e))

    def all(self) -> List[Alert]:
        """Every cached alert, most recent first."""
        return list(self._alerts)

    def unsaved(self) -> List[Alert]:
        """Alerts still awaiting triage."""
        return [alert for alert in self._alerts
                if not alert.saved_to_database and alert.id not in self._promoted]

    def get(self, alert_id: str) -> Optional[Alert]:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def is_promoted(self, alert_id: str) -> bool:
        return alert_id in self._promoted

    def __len__(self) -> int:
        return len(self._alerts)

    async def merge_and_persist(self, candidates: Iterable[Alert]) -> MergeOutcome:
        """
        Merge candidates into the queue, cap it, and persist the result.

        Returns:
            The new queue and the alerts that were not in it before
        """
        async with self._lock:
            fresh = [alert for alert in candidates if alert.id not in self._promoted]
            previous_ids = {alert.id for alert in self._alerts}
            fresh = await self._drop_promoted_in_history(fresh, previous_ids)

            merged = cap(merge(fresh, self._alerts, self.dedup_window), self.max_size)

            # Detections absorbing a promoted alert count as promoted too.
            for alert in merged:
                if alert.saved_to_database:
                    self._promoted.setdefault(alert.id, alert.saved_at or utc_now().isoformat())
            self._alerts = [alert for alert in merged if not alert.saved_to_database]

            new_alerts = [alert for alert in self._alerts if alert.id not in previous_ids]
            self._persist()

            logger.debug("Alert queue merged",
                         candidates=len(fresh),
                         new_alerts=len(new_alerts),
                         queue_size=len(self._alerts))
            return MergeOutcome(queue=list(self._alerts), new_alerts=new_alerts)

    async def _drop_promoted_in_history(self, fresh: List[Alert], queued_ids: set) -> List[Alert]:
        unknown = sorted({alert.id for alert in fresh if alert.id not in queued_ids})
        if self.history is None or not unknown:
            return fresh

        found = await self.history.promoted_alert_ids(unknown)
        if not found.success:
            logger.warning("Promoted alert lookup failed",
                           candidates=len(unknown),
                           error=found.error)
            return fresh
        if not found.data:
            return fresh

        remembered_at = utc_now().isoformat()
        for alert_id in found.data:
            self._promoted[alert_id] = remembered_at
        logger.info("Dropped re-detected promoted alerts", count=len(found.data))
        return [alert for alert in fresh if alert.id not in found.data]

    async def mark_sent(self, alert_id: str, sent_by: str,
                        now: Optional[datetime] = None) -> Optional[Alert]:
        """Flag an alert as sent/acknowledged; it stays in the queue."""
        async with self._lock:
            for index, alert in enumerate(self._alerts):
                if alert.id == alert_id:
                    updated = replace(alert, sent=True,
                                      sent_at=(now or utc_now()).isoformat(),
                                      sent_by=sent_by)
                    self._alerts[index] = updated
                    self._persist()
                    return updated
            return None

    async def mark_saved(self, alert_id: str, now: Optional[datetime] = None) -> Optional[Alert]:
        """Flag an alert as promoted to history and remember its id."""
        async with self._lock:
            saved_at = (now or utc_now()).isoformat()
            self._promoted[alert_id] = saved_at
            updated = None
            for index, alert in enumerate(self._alerts):
                if alert.id == alert_id:
                    updated = replace(alert, saved_to_database=True, saved_at=saved_at)
                    self._alerts[index] = updated
            self._persist()
            return updated

    async def purge_saved(self) -> int:
        """Drop promoted entries from the queue."""
        async with self._lock:
            before = len(self._alerts)
            self._alerts = [alert for alert in self._alerts
                            if not alert.saved_to_database and alert.id not in self._promoted]
            removed = before - len(self._alerts)
            if removed:
                self._persist()
            return removed

    async def clean_old_alerts(self, retention_hours: int = 24,
                               now: Optional[datetime] = None) -> int:
        """
        Remove promoted alerts and alerts older than ``retention_hours``.

        Alerts whose timestamp cannot be parsed are removed as well. Promoted
        ids older than the promoted TTL are forgotten.
        """
        async with self._lock:
            now = now or utc_now()
            cutoff = now - timedelta(hours=retention_hours)
            before = len(self._alerts)

            kept = []
            for alert in self._alerts:
                if alert.saved_to_database or alert.id in self._promoted:
                    continue
                timestamp = parse_timestamp(alert.timestamp)
                if timestamp is None or timestamp <= cutoff:
                    continue
                kept.append(alert)
            self._alerts = kept

            promoted_cutoff = now - timedelta(hours=self.promoted_ttl_hours)
            self._promoted = {
                alert_id: saved_at for alert_id, saved_at in self._promoted.items()
                if (parse_timestamp(saved_at) or now) > promoted_cutoff
            }

            self._persist()
            removed = before - len(self._alerts)
            logger.info("Old alerts cleaned",
                        removed=removed,
                        retention_hours=retention_hours)
            return removed
