"""
Ignition tracking and idle detection.

Each refresh cycle feeds the latest snapshots to an IgnitionTracker, which
remembers the engine state per plate between cycles. A change of state
yields an IgnitionEvent; a vehicle stopped with the engine running opens
an idle span that is closed, and reported as an IdleRecord, when it moves
again or the engine goes off.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .classifier import normalize_event
from .models import IdleRecord, IgnitionEvent, IgnitionEventType, TelemetrySnapshot
from .queue import parse_timestamp, utc_now

logger = structlog.get_logger(__name__)

IGNITION_ON_VOCABULARY: Tuple[str, ...] = ("IGNICION ON", "IGNITION ON", "MOTOR ENCENDIDO")
IGNITION_OFF_VOCABULARY: Tuple[str, ...] = ("IGNICION OFF", "IGNITION OFF", "MOTOR APAGADO")

# A stopped vehicle that reported this recently is taken to have the engine on.
RECENT_REPORT = timedelta(minutes=5)

# Shorter spans are not recorded.
MIN_IDLE = timedelta(minutes=1)

IDLE_ALERT_MINUTES = 10.0


def is_ignition_on(snapshot: TelemetrySnapshot, now: Optional[datetime] = None) -> bool:
    """Best guess of the engine state from one snapshot."""
    if (snapshot.speed or 0) > 0:
        return True

    event = normalize_event(snapshot.event)
    if any(word in event for word in IGNITION_ON_VOCABULARY):
        return True
    if any(word in event for word in IGNITION_OFF_VOCABULARY):
        return False

    reported = parse_timestamp(snapshot.timestamp)
    if reported is None:
        return False
    return (now or utc_now()) - reported < RECENT_REPORT


def plate_of(snapshot: TelemetrySnapshot) -> str:
    return snapshot.plate or snapshot.vehicle_id


@dataclass
class _IdleSpan:
    started_at: datetime
    snapshot: TelemetrySnapshot
    reported: bool = False


@dataclass
class TrackerUpdate:
    """What one batch of snapshots changed."""
    events: List[IgnitionEvent] = field(default_factory=list)
    idle_records: List[IdleRecord] = field(default_factory=list)


class IgnitionTracker:
    """
    Per-plate engine state across refresh cycles.

    The first snapshot of a plate only seeds its state; events are emitted
    for later changes. State lives in memory and starts empty on restart.
    """

    def __init__(self, idle_alert_minutes: float = IDLE_ALERT_MINUTES):
        self.idle_alert_minutes = idle_alert_minutes
        self._ignition: Dict[str, bool] = {}
        self._idle: Dict[str, _IdleSpan] = {}

    def observe(self, snapshots: Iterable[TelemetrySnapshot],
                now: Optional[datetime] = None) -> TrackerUpdate:
        now = now or utc_now()
        update = TrackerUpdate()
        for snapshot in snapshots:
            self._observe_one(snapshot, now, update)
        return update

    def _observe_one(self, snapshot: TelemetrySnapshot, now: datetime,
                     update: TrackerUpdate) -> None:
        plate = plate_of(snapshot)
        ignition = is_ignition_on(snapshot, now)

        previous = self._ignition.get(plate)
        if previous is not None and previous != ignition:
            update.events.append(IgnitionEvent(
                plate=plate,
                event_type=IgnitionEventType.ON if ignition else IgnitionEventType.OFF,
                occurred_at=now,
                driver=snapshot.driver,
                location=snapshot.location,
                latitude=snapshot.latitude,
                longitude=snapshot.longitude,
                source=snapshot.source,
            ))
        self._ignition[plate] = ignition

        if ignition and not snapshot.speed:
            span = self._idle.get(plate)
            if span is None:
                self._idle[plate] = _IdleSpan(started_at=now, snapshot=snapshot)
                logger.debug("Vehicle started idling", plate=plate)
            elif not span.reported and self._minutes(span, now) >= self.idle_alert_minutes:
                span.reported = True
                logger.info("Vehicle idling",
                            plate=plate,
                            minutes=round(self._minutes(span, now)))
            return

        span = self._idle.pop(plate, None)
        if span is None or now - span.started_at < MIN_IDLE:
            return
        start = span.snapshot
        record = IdleRecord(
            plate=plate,
            started_at=span.started_at,
            ended_at=now,
            duration_minutes=round(self._minutes(span, now), 2),
            driver=start.driver,
            contract=start.contract,
            location=start.location,
            latitude=start.latitude,
            longitude=start.longitude,
            source=start.source,
        )
        update.idle_records.append(record)
        logger.info("Idle span finished", plate=plate, minutes=record.duration_minutes)

    @staticmethod
    def _minutes(span: _IdleSpan, now: datetime) -> float:
        return (now - span.started_at).total_seconds() / 60

    def current_idle(self, now: Optional[datetime] = None) -> List[Tuple[str, float]]:
        """Plates idling right now with their minutes so far, longest first."""
        now = now or utc_now()
        idle = [(plate, round(self._minutes(span, now), 2)) for plate, span in self._idle.items()]
        return sorted(idle, key=lambda item: item[1], reverse=True)
