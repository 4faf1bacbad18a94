"""
Unit tests for ignition tracking and idle detection.
"""

from datetime import timedelta

import pytest

from fleetd.alerts.ignition import IgnitionTracker, is_ignition_on
from fleetd.alerts.models import IgnitionEventType


class TestIsIgnitionOn:
    """Test the engine state guess for one snapshot."""

    def test_moving_vehicle_is_on(self, make_snapshot, base_time):
        assert is_ignition_on(make_snapshot(speed=12), base_time + timedelta(hours=1))

    def test_ignition_vocabulary(self, make_snapshot, base_time):
        later = base_time + timedelta(hours=1)
        assert is_ignition_on(make_snapshot(speed=0, event="Motor encendido"), later)
        assert not is_ignition_on(make_snapshot(speed=0, event="IGNICION OFF"), base_time)

    def test_recent_report_while_stopped(self, make_snapshot, base_time):
        snapshot = make_snapshot(speed=0)

        assert is_ignition_on(snapshot, base_time + timedelta(minutes=4))
        assert not is_ignition_on(snapshot, base_time + timedelta(minutes=5))

    def test_missing_data_is_off(self, make_snapshot, base_time):
        snapshot = make_snapshot(speed=None, timestamp="not a time")

        assert not is_ignition_on(snapshot, base_time)


class TestIgnitionTracker:
    """Test state changes across refresh cycles."""

    @pytest.fixture
    def tracker(self):
        return IgnitionTracker()

    def test_first_sight_only_seeds_state(self, tracker, make_snapshot, base_time):
        update = tracker.observe([make_snapshot(speed=50)], now=base_time)

        assert update.events == []
        assert update.idle_records == []

    def test_ignition_change_emits_event(self, tracker, make_snapshot, base_time):
        tracker.observe([make_snapshot(speed=0, event="IGNICION OFF")], now=base_time)

        update = tracker.observe([make_snapshot(speed=35)], now=base_time + timedelta(minutes=3))

        assert len(update.events) == 1
        event = update.events[0]
        assert event.plate == "ABC123"
        assert event.event_type == IgnitionEventType.ON
        assert event.occurred_at == base_time + timedelta(minutes=3)
        assert event.driver == "Juan Perez"

    def test_idle_span_recorded_when_vehicle_moves(self, tracker, make_snapshot, base_time):
        stopped = make_snapshot(speed=0, event="IGNICION ON", location="Patio")
        tracker.observe([make_snapshot(speed=20)], now=base_time)
        tracker.observe([stopped], now=base_time + timedelta(minutes=1))
        tracker.observe([stopped], now=base_time + timedelta(minutes=12))

        assert tracker.current_idle(base_time + timedelta(minutes=13)) == [("ABC123", 12.0)]

        update = tracker.observe([make_snapshot(speed=25)], now=base_time + timedelta(minutes=16))

        assert update.events == []
        assert len(update.idle_records) == 1
        record = update.idle_records[0]
        assert record.started_at == base_time + timedelta(minutes=1)
        assert record.duration_minutes == 15.0
        assert record.location == "Patio"
        assert tracker.current_idle(base_time + timedelta(minutes=17)) == []

    def test_short_idle_is_not_recorded(self, tracker, make_snapshot, base_time):
        tracker.observe([make_snapshot(speed=0, event="IGNICION ON")], now=base_time)

        update = tracker.observe([make_snapshot(speed=10)], now=base_time + timedelta(seconds=40))

        assert update.idle_records == []

    def test_engine_off_closes_idle_span(self, tracker, make_snapshot, base_time):
        tracker.observe([make_snapshot(speed=0, event="IGNICION ON")], now=base_time)

        update = tracker.observe([make_snapshot(speed=0, event="IGNICION OFF")],
                                 now=base_time + timedelta(minutes=8))

        assert [e.event_type for e in update.events] == [IgnitionEventType.OFF]
        assert update.idle_records[0].duration_minutes == 8.0

    def test_vehicles_are_tracked_separately(self, tracker, make_snapshot, base_time):
        tracker.observe([
            make_snapshot(vehicle_id="COL-A", speed=30),
            make_snapshot(vehicle_id="COL-B", speed=0, event="IGNICION OFF"),
        ], now=base_time)

        update = tracker.observe([
            make_snapshot(vehicle_id="COL-A", speed=30),
            make_snapshot(vehicle_id="COL-B", speed=10),
        ], now=base_time + timedelta(minutes=2))

        assert [(e.plate, e.event_type) for e in update.events] == [("B", IgnitionEventType.ON)]
