"""
Unit tests for the SQLite persistence gateway.
"""

import asyncio
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from fleetd.alerts.models import (
    ActionPlanStatus, IdleRecord, IgnitionEvent, IgnitionEventType, Inspection, SavedAlertStatus
)
from fleetd.storage.gateway import RecordCategory
from fleetd.storage.sqlite_gateway import AUTO_SAVED_BY, SQLiteGateway, to_utc_iso


class TestSQLiteGateway:
    """Test the SQLite history store."""

    @pytest.fixture
    def temp_dir(self):
        temp_dir = tempfile.mkdtemp()
        yield Path(temp_dir)
        shutil.rmtree(temp_dir)

    @pytest.fixture
    def gateway(self, temp_dir):
        return SQLiteGateway(str(temp_dir / "nested" / "fleetd.db"))

    def test_to_utc_iso(self):
        naive = datetime(2024, 5, 20, 14, 0, 0)
        assert to_utc_iso(naive) == "2024-05-20T14:00:00+00:00"

    @pytest.mark.asyncio
    async def test_auto_save_is_idempotent(self, gateway, make_alert):
        alert = make_alert()

        first = await gateway.auto_save_alert(alert)
        second = await gateway.auto_save_alert(alert)

        assert first.success and first.data
        assert second.success and second.data is None
        assert (await gateway.count_records(RecordCategory.ACTIVE_ALERTS)).data == 1

    @pytest.mark.asyncio
    async def test_auto_saved_alerts_are_not_listed_as_promoted(self, gateway, make_alert):
        await gateway.auto_save_alert(make_alert())

        promoted = await gateway.list_saved_alerts()
        everything = await gateway.list_saved_alerts(promoted_only=False)

        assert promoted.data == []
        assert len(everything.data) == 1
        assert everything.data[0].saved_by == AUTO_SAVED_BY

    @pytest.mark.asyncio
    async def test_promote_twice_returns_existing_row(self, gateway, make_alert):
        alert = make_alert()
        first = await gateway.promote_alert(alert, "ana")
        assert first.success
        assert not first.existing

        again = await gateway.promote_alert(alert, "luis")

        assert again.success
        assert again.existing
        assert again.data == first.data
        saved = (await gateway.get_saved_alert(first.data)).data
        assert saved.saved_by == "ana"

    @pytest.mark.asyncio
    async def test_promoted_alert_ids(self, gateway, make_alert):
        promoted = make_alert(vehicle_id="COL-A")
        auto_saved = make_alert(vehicle_id="COL-B")
        await gateway.promote_alert(promoted, "ana")
        await gateway.auto_save_alert(auto_saved)

        found = await gateway.promoted_alert_ids([promoted.id, auto_saved.id, "unknown"])

        assert found.data == {promoted.id}
        assert (await gateway.promoted_alert_ids([])).data == set()

    @pytest.mark.asyncio
    async def test_list_filters(self, gateway, make_alert, base_time):
        early = make_alert(vehicle_id="COL-A", minutes=-120)
        late = make_alert(vehicle_id="COL-B")
        early_id = (await gateway.promote_alert(early, "ana")).data
        late_id = (await gateway.promote_alert(late, "ana")).data
        await gateway.update_alert_status(early_id, SavedAlertStatus.IN_PROGRESS)

        ordered = (await gateway.list_saved_alerts()).data
        assert [s.id for s in ordered] == [late_id, early_id]

        in_progress = (await gateway.list_saved_alerts(status=SavedAlertStatus.IN_PROGRESS)).data
        assert [s.id for s in in_progress] == [early_id]

        windowed = (await gateway.list_saved_alerts(start=base_time.replace(hour=13))).data
        assert [s.id for s in windowed] == [late_id]

        assert (await gateway.list_saved_alerts(severity="low")).data == []

    @pytest.mark.asyncio
    async def test_missing_records(self, gateway):
        assert not (await gateway.get_saved_alert("nope")).success
        assert not (await gateway.update_alert_status("nope", SavedAlertStatus.RESOLVED)).success
        assert not (await gateway.delete_saved_alert("nope")).success
        assert not (await gateway.add_action_plan("nope", "Check", "Ops")).success
        assert not (await gateway.update_action_plan("nope", {'observations': 'x'})).success

    @pytest.mark.asyncio
    async def test_update_action_plan_validation(self, gateway, make_alert):
        saved_id = (await gateway.promote_alert(make_alert(), "ana")).data
        plan = (await gateway.add_action_plan(saved_id, "Check", "Ops")).data

        assert not (await gateway.update_action_plan(plan.id, {'status': 'done'})).success
        assert not (await gateway.update_action_plan(plan.id, {})).success
        assert (await gateway.update_action_plan(plan.id, {'responsible': 'Fleet lead'})).success

    @pytest.mark.asyncio
    async def test_retention_categories(self, gateway, make_alert):
        pending_id = (await gateway.promote_alert(make_alert(vehicle_id="COL-A"), "ana")).data
        resolved_id = (await gateway.promote_alert(make_alert(vehicle_id="COL-B"), "ana")).data
        await gateway.update_alert_status(resolved_id, SavedAlertStatus.RESOLVED)
        await gateway.add_action_plan(pending_id, "Open", "Ops")
        await gateway.add_action_plan(pending_id, "Done", "Ops", status=ActionPlanStatus.COMPLETED)

        assert (await gateway.count_records(RecordCategory.ACTIVE_ALERTS)).data == 1
        assert (await gateway.count_records(RecordCategory.RESOLVED_ALERTS)).data == 1
        assert (await gateway.count_records(RecordCategory.COMPLETED_ACTION_PLANS)).data == 1
        assert (await gateway.count_records(RecordCategory.INSPECTIONS)).data == 0

    @pytest.mark.asyncio
    async def test_select_expired_and_delete(self, gateway, make_alert, base_time):
        old = make_alert(vehicle_id="COL-OLD", minutes=-10 * 24 * 60)
        new = make_alert(vehicle_id="COL-NEW")
        old_id = (await gateway.promote_alert(old, "ana")).data
        await gateway.promote_alert(new, "ana")

        expired = await gateway.select_expired(
            RecordCategory.ACTIVE_ALERTS, base_time.replace(day=13, hour=0)
        )

        assert [r['id'] for r in expired.data] == [old_id]
        deleted = await gateway.delete_records(RecordCategory.ACTIVE_ALERTS, [old_id])
        assert deleted.data == 1
        assert (await gateway.count_records(RecordCategory.ACTIVE_ALERTS)).data == 1

    @pytest.mark.asyncio
    async def test_delete_records_respects_category(self, gateway, make_alert):
        saved_id = (await gateway.promote_alert(make_alert(), "ana")).data

        deleted = await gateway.delete_records(RecordCategory.RESOLVED_ALERTS, [saved_id])

        assert deleted.data == 0
        assert (await gateway.get_saved_alert(saved_id)).success

    @pytest.mark.asyncio
    async def test_select_overflow_returns_oldest(self, gateway, base_time):
        for day in range(1, 6):
            await gateway.add_inspection(Inspection(
                id=f"insp-{day}", plate="ABC123",
                inspected_at=datetime(2024, 5, day, 8, 0, tzinfo=timezone.utc)
            ))

        overflow = await gateway.select_overflow(RecordCategory.INSPECTIONS, 3)
        within = await gateway.select_overflow(RecordCategory.INSPECTIONS, 10)

        assert [r['id'] for r in overflow.data] == ["insp-1", "insp-2"]
        assert within.data == []

    @pytest.mark.asyncio
    async def test_select_dependents_returns_action_plans_of_alerts(self, gateway, make_alert):
        saved_id = (await gateway.promote_alert(make_alert(), "ana")).data
        other_id = (await gateway.promote_alert(make_alert(vehicle_id="COL-B"), "ana")).data
        open_plan = (await gateway.add_action_plan(saved_id, "Call driver", "Ops",
                                                   status=ActionPlanStatus.IN_PROGRESS)).data
        await gateway.add_action_plan(other_id, "Review route", "Ops")

        dependents = await gateway.select_dependents(RecordCategory.ACTIVE_ALERTS, [saved_id])
        none = await gateway.select_dependents(RecordCategory.INSPECTIONS, [saved_id])

        assert [row['id'] for row in dependents.data] == [open_plan.id]
        assert dependents.data[0]['status'] == 'in_progress'
        assert none.data == []

    @pytest.mark.asyncio
    async def test_calls_run_off_the_event_loop(self, gateway, make_alert):
        results = await asyncio.gather(*(
            gateway.auto_save_alert(make_alert(vehicle_id=f"COL-{n}")) for n in range(5)
        ))

        assert all(result.success for result in results)
        assert (await gateway.count_records(RecordCategory.ACTIVE_ALERTS)).data == 5

    @pytest.mark.asyncio
    async def test_ignition_events_by_window_and_type(self, gateway, base_time):
        for minutes, event_type in ((0, IgnitionEventType.ON), (30, IgnitionEventType.OFF),
                                    (26 * 60, IgnitionEventType.ON)):
            await gateway.add_ignition_event(IgnitionEvent(
                plate="ABC123", event_type=event_type,
                occurred_at=base_time + timedelta(minutes=minutes), driver="Juan"
            ))

        day = await gateway.list_ignition_events(base_time - timedelta(hours=1),
                                                 base_time + timedelta(hours=2))
        starts = await gateway.list_ignition_events(base_time - timedelta(hours=1),
                                                    base_time + timedelta(days=2),
                                                    event_type=IgnitionEventType.ON)

        assert [e.event_type for e in day.data] == [IgnitionEventType.ON, IgnitionEventType.OFF]
        assert day.data[0].occurred_at == base_time
        assert day.data[0].driver == "Juan"
        assert len(starts.data) == 2

    @pytest.mark.asyncio
    async def test_idle_record_is_saved(self, gateway, base_time):
        saved = await gateway.add_idle_record(IdleRecord(
            plate="ABC123", started_at=base_time,
            ended_at=base_time + timedelta(minutes=15), duration_minutes=15.0
        ))

        assert saved.success and saved.data
