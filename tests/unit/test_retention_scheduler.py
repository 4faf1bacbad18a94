"""
Unit tests for the Retention Scheduler.

Tests schedule evaluation, persisted sweep state, manual sweeps and
scheduler status monitoring.
"""

import asyncio
import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from fleetd.storage.retention_manager import RetentionEngine
from fleetd.storage.retention_models import SweepFailure, SweepResult
from fleetd.storage.retention_scheduler import RetentionScheduler, SchedulerConfig, SchedulerStatus

NOW = datetime(2024, 5, 20, 14, 0, 0, tzinfo=timezone.utc)


def make_engine(**scheduler_settings):
    settings = {
        'enabled': True,
        'cleanup_interval_days': 7,
        'cleanup_hour': 2,
        'run_on_startup': True,
        'check_interval_minutes': 60,
    }
    settings.update(scheduler_settings)
    engine = Mock(spec=RetentionEngine)
    engine.config = Mock(scheduler_settings=settings)
    engine.sweep = AsyncMock(return_value=SweepResult(started_at=NOW, finished_at=NOW,
                                                      deleted={'resolved_alerts': 2}))
    return engine


class TestSchedulerConfig(unittest.TestCase):
    """Test scheduler configuration functionality."""

    def test_settings_are_read(self):
        scheduler = RetentionScheduler(make_engine())

        self.assertEqual(scheduler.config.cleanup_interval_days, 7)

    def test_defaults_from_settings(self):
        engine = make_engine()
        engine.config = Mock(scheduler_settings={})
        scheduler = RetentionScheduler(engine)

        self.assertEqual(scheduler.config, SchedulerConfig(
            enabled=True,
            cleanup_interval_days=1,
            cleanup_hour=2,
            run_on_startup=True,
            check_interval_minutes=60
        ))


class TestShouldRunCleanup(unittest.TestCase):
    """Test schedule evaluation."""

    def test_runs_on_startup_when_never_run(self):
        scheduler = RetentionScheduler(make_engine())
        self.assertTrue(scheduler.should_run_cleanup(NOW.replace(hour=0)))

    def test_first_run_waits_for_hour_without_startup_run(self):
        scheduler = RetentionScheduler(make_engine(run_on_startup=False))

        self.assertFalse(scheduler.should_run_cleanup(NOW.replace(hour=1)))
        self.assertTrue(scheduler.should_run_cleanup(NOW.replace(hour=2)))

    def test_interval_must_elapse(self):
        scheduler = RetentionScheduler(make_engine())
        scheduler._last_cleanup = NOW - timedelta(days=6)

        self.assertFalse(scheduler.should_run_cleanup(NOW))

    def test_due_after_interval_from_cleanup_hour(self):
        scheduler = RetentionScheduler(make_engine())
        scheduler._last_cleanup = NOW.replace(hour=0) - timedelta(days=7)

        self.assertFalse(scheduler.should_run_cleanup(NOW.replace(hour=1)))
        self.assertTrue(scheduler.should_run_cleanup(NOW.replace(hour=3)))

    def test_disabled_scheduler_never_runs(self):
        scheduler = RetentionScheduler(make_engine(enabled=False))
        self.assertFalse(scheduler.should_run_cleanup(NOW))

    def test_daily_sweep_due_next_day_at_cleanup_hour(self):
        scheduler = RetentionScheduler(make_engine(cleanup_interval_days=1))
        scheduler._last_cleanup = datetime(2024, 5, 19, 2, 0, 40, tzinfo=timezone.utc)

        self.assertFalse(scheduler.should_run_cleanup(datetime(2024, 5, 19, 23, 0, tzinfo=timezone.utc)))
        self.assertFalse(scheduler.should_run_cleanup(datetime(2024, 5, 20, 1, 0, tzinfo=timezone.utc)))
        self.assertTrue(scheduler.should_run_cleanup(datetime(2024, 5, 20, 2, 0, tzinfo=timezone.utc)))


class TestRetentionScheduler:
    """Test scheduler lifecycle and sweep bookkeeping."""

    @pytest.fixture
    def state_path(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            yield Path(temp_dir) / "state" / "retention_state.json"

    @pytest.mark.asyncio
    async def test_manual_sweep_updates_statistics(self, state_path):
        engine = make_engine()
        scheduler = RetentionScheduler(engine, state_path=str(state_path))

        result = await scheduler.trigger_manual_sweep(['resolved_alerts'])

        engine.sweep.assert_awaited_once_with(categories=['resolved_alerts'])
        assert result.total_deleted == 2
        status = scheduler.get_status()
        assert status.total_cleanups == 1
        assert status.successful_cleanups == 1
        assert status.last_cleanup == NOW
        assert scheduler.last_result is result

    @pytest.mark.asyncio
    async def test_failed_sweep_is_counted(self):
        engine = make_engine()
        engine.sweep = AsyncMock(return_value=SweepResult(
            started_at=NOW, failures=[SweepFailure('resolved_alerts', 3, 'export failed')]
        ))
        scheduler = RetentionScheduler(engine)

        await scheduler.trigger_manual_sweep()

        status = scheduler.get_status()
        assert status.failed_cleanups == 1
        assert status.last_error == "1 categories failed"
        assert status.last_cleanup is None
        assert scheduler.should_run_cleanup(NOW)

    @pytest.mark.asyncio
    async def test_last_cleanup_survives_restart(self, state_path):
        scheduler = RetentionScheduler(make_engine(), state_path=str(state_path))
        await scheduler.trigger_manual_sweep()

        with open(state_path) as f:
            assert json.load(f)['last_cleanup'] == NOW.isoformat()

        restarted = RetentionScheduler(make_engine(), state_path=str(state_path))
        assert restarted.get_status().last_cleanup == NOW
        assert not restarted.should_run_cleanup(NOW + timedelta(days=1))

    def test_corrupt_state_is_ignored(self, state_path):
        state_path.parent.mkdir(parents=True)
        state_path.write_text("not json")

        scheduler = RetentionScheduler(make_engine(), state_path=str(state_path))

        assert scheduler.get_status().last_cleanup is None

    @pytest.mark.asyncio
    async def test_start_runs_startup_sweep_and_stop(self):
        engine = make_engine()
        scheduler = RetentionScheduler(engine)

        await scheduler.start()
        await asyncio.sleep(0.05)
        status = scheduler.get_status()
        await scheduler.stop()

        assert isinstance(status, SchedulerStatus)
        assert status.running is True
        assert status.next_cleanup is not None
        engine.sweep.assert_awaited_once()
        assert scheduler.get_status().running is False

    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_start(self):
        scheduler = RetentionScheduler(make_engine(enabled=False))

        await scheduler.start()

        assert scheduler.get_status().running is False

    @pytest.mark.asyncio
    async def test_failed_sweep_keeps_previous_state(self, state_path):
        scheduler = RetentionScheduler(make_engine(cleanup_interval_days=1), state_path=str(state_path))
        await scheduler.trigger_manual_sweep()
        scheduler.engine.sweep = AsyncMock(return_value=SweepResult(
            started_at=NOW + timedelta(days=1),
            failures=[SweepFailure('inspections', 1, 'export timed out')]
        ))

        await scheduler.trigger_manual_sweep()

        assert scheduler.get_status().last_cleanup == NOW
        with open(state_path) as f:
            assert json.load(f)['last_cleanup'] == NOW.isoformat()
        assert scheduler.should_run_cleanup(NOW + timedelta(days=1, hours=1))
