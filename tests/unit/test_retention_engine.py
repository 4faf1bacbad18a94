"""
Unit tests for the retention engine.

Tests cutoff computation, candidate selection, export-before-delete
ordering and storage estimation against a mocked gateway.
"""

import asyncio
import shutil
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import yaml

from fleetd.storage.gateway import GatewayResult, PersistenceGateway, RecordCategory
from fleetd.storage.retention_export import RetentionExporter, RetentionExportError
from fleetd.storage.retention_logging import RetentionAuditLog
from fleetd.storage.retention_config import RetentionConfigManager
from fleetd.storage.retention_manager import (
    RetentionEngine, estimate_storage, retention_cutoff
)

NOW = datetime(2024, 5, 20, 14, 30, 0, tzinfo=timezone.utc)


class TestRetentionCutoff(unittest.TestCase):
    """Test cutoff computation."""

    def test_cutoff_is_start_of_day(self):
        cutoff = retention_cutoff(7, NOW)
        self.assertEqual(cutoff, datetime(2024, 5, 13, 0, 0, 0, tzinfo=timezone.utc))

    def test_zero_days_is_today(self):
        self.assertEqual(retention_cutoff(0, NOW), datetime(2024, 5, 20, tzinfo=timezone.utc))


class TestStorageEstimate(unittest.TestCase):
    """Test storage estimation."""

    def test_estimate_uses_average_sizes(self):
        estimate = estimate_storage(
            {'active_alerts': 10, 'resolved_alerts': 5, 'inspections': 4, 'completed_action_plans': 2},
            {}
        )

        self.assertEqual(estimate.estimated_bytes, 15 * 1024 + 4 * 512 + 2 * 512)
        self.assertFalse(estimate.warning)

    def test_warning_threshold(self):
        estimate = estimate_storage(
            {'resolved_alerts': 900},
            {'max_database_size_bytes': 1024 * 1000, 'warning_threshold': 0.8}
        )

        self.assertAlmostEqual(estimate.usage_ratio, 0.9)
        self.assertTrue(estimate.warning)


def record(record_id, day):
    return {'id': record_id, 'occurred_at': f"2024-05-{day:02d}T10:00:00+00:00"}


class TestRetentionEngine:
    """Test sweeps against a mocked gateway."""

    @pytest.fixture
    def temp_dir(self):
        temp_dir = tempfile.mkdtemp()
        yield Path(temp_dir)
        shutil.rmtree(temp_dir)

    @pytest.fixture
    def config_manager(self, temp_dir):
        config_path = temp_dir / "retention.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'export': {'directory': str(temp_dir / "exports"), 'timeout_seconds': 5}}, f)
        return RetentionConfigManager(str(config_path))

    @pytest.fixture
    def gateway(self):
        gateway = Mock(spec=PersistenceGateway)
        gateway.select_expired = AsyncMock(return_value=GatewayResult.ok([]))
        gateway.select_overflow = AsyncMock(return_value=GatewayResult.ok([]))
        gateway.delete_records = AsyncMock(
            side_effect=lambda category, ids: GatewayResult.ok(len(ids))
        )
        gateway.count_records = AsyncMock(return_value=GatewayResult.ok(3))
        gateway.select_dependents = AsyncMock(return_value=GatewayResult.ok([]))
        return gateway

    @pytest.fixture
    def engine(self, gateway, config_manager, temp_dir, metrics):
        return RetentionEngine(gateway, config_manager,
                               audit_log=RetentionAuditLog(str(temp_dir / "logs")),
                               metrics=metrics)

    def expire(self, gateway, category, records):
        async def select_expired(requested, cutoff):
            return GatewayResult.ok(records if requested == category else [])
        gateway.select_expired = AsyncMock(side_effect=select_expired)

    @pytest.mark.asyncio
    async def test_empty_sweep(self, engine, gateway):
        result = await engine.sweep(now=NOW)

        assert result.success
        assert result.total_deleted == 0
        assert all(op.status == 'skipped' for op in result.operations)
        assert len(result.operations) == 4
        gateway.delete_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cutoff_uses_policy_days(self, engine, gateway):
        await engine.sweep(now=NOW)

        cutoffs = {call.args[0]: call.args[1] for call in gateway.select_expired.await_args_list}
        assert cutoffs[RecordCategory.RESOLVED_ALERTS] == datetime(2024, 5, 13, tzinfo=timezone.utc)
        assert cutoffs[RecordCategory.ACTIVE_ALERTS] == datetime(2024, 4, 20, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_expired_records_exported_then_deleted(self, engine, gateway, metrics):
        self.expire(gateway, RecordCategory.RESOLVED_ALERTS, [record('a', 10), record('b', 11)])

        result = await engine.sweep(now=NOW)

        assert result.success
        assert result.deleted['resolved_alerts'] == 2
        assert len(result.exported_files) == 1
        assert Path(result.exported_files[0]).exists()
        gateway.delete_records.assert_awaited_once_with(RecordCategory.RESOLVED_ALERTS, ['a', 'b'])
        assert metrics.registry.get_sample_value(
            'fleet_retention_records_evicted_total', {'category': 'resolved_alerts'}
        ) == 2

    @pytest.mark.asyncio
    async def test_overflow_and_expired_are_unioned(self, engine, gateway):
        self.expire(gateway, RecordCategory.INSPECTIONS, [record('a', 1), record('b', 2)])
        gateway.select_overflow = AsyncMock(side_effect=lambda category, limit: GatewayResult.ok(
            [record('b', 2), record('c', 15)] if category == RecordCategory.INSPECTIONS else []
        ))

        result = await engine.sweep(now=NOW)

        gateway.delete_records.assert_awaited_once_with(RecordCategory.INSPECTIONS, ['a', 'b', 'c'])
        assert result.deleted['inspections'] == 3

    @pytest.mark.asyncio
    async def test_export_failure_prevents_delete(self, engine, gateway, metrics):
        engine.exporter = Mock(spec=RetentionExporter)
        engine.exporter.export = AsyncMock(side_effect=RetentionExportError("disk full"))
        self.expire(gateway, RecordCategory.RESOLVED_ALERTS, [record('a', 10)])

        result = await engine.sweep(now=NOW)

        assert not result.success
        assert result.failures[0].category == 'resolved_alerts'
        assert result.failures[0].count == 1
        assert "disk full" in result.failures[0].reason
        gateway.delete_records.assert_not_awaited()
        assert metrics.registry.get_sample_value(
            'fleet_retention_export_failures_total', {'category': 'resolved_alerts'}
        ) == 1

    @pytest.mark.asyncio
    async def test_export_timeout_prevents_delete(self, engine, gateway):
        async def hang(category, records, now=None):
            await asyncio.sleep(10)

        engine.exporter = Mock(spec=RetentionExporter)
        engine.exporter.export = AsyncMock(side_effect=hang)
        engine.export_timeout_seconds = 0.05
        self.expire(gateway, RecordCategory.ACTIVE_ALERTS, [record('a', 1)])

        result = await engine.sweep(now=NOW)

        assert not result.success
        assert "timed out" in result.failures[0].reason
        gateway.delete_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_in_one_category_does_not_stop_others(self, engine, gateway):
        async def export(name, records, now=None):
            if name == 'resolved_alerts':
                raise RetentionExportError("disk full")
            return f"/exports/{name}.csv"

        engine.exporter = Mock(spec=RetentionExporter)
        engine.exporter.export = AsyncMock(side_effect=export)

        async def select_expired(category, cutoff):
            if category in (RecordCategory.RESOLVED_ALERTS, RecordCategory.COMPLETED_ACTION_PLANS):
                return GatewayResult.ok([record(category.value, 1)])
            return GatewayResult.ok([])
        gateway.select_expired = AsyncMock(side_effect=select_expired)

        result = await engine.sweep(now=NOW)

        assert [f.category for f in result.failures] == ['resolved_alerts']
        assert result.deleted['completed_action_plans'] == 1
        assert result.exported_files == ["/exports/completed_action_plans.csv"]

    @pytest.mark.asyncio
    async def test_every_category_is_exported_before_delete(self, engine, gateway):
        calls = []
        engine.exporter = Mock(spec=RetentionExporter)
        engine.exporter.export = AsyncMock(
            side_effect=lambda name, records, now=None: calls.append(('export', name)) or f"/{name}.csv"
        )
        gateway.delete_records = AsyncMock(
            side_effect=lambda category, ids: calls.append(('delete', category.value)) or GatewayResult.ok(len(ids))
        )

        async def select_expired(category, cutoff):
            return GatewayResult.ok([record(category.value, 1)])
        gateway.select_expired = AsyncMock(side_effect=select_expired)

        result = await engine.sweep(now=NOW)

        assert result.success
        for category in RecordCategory:
            assert calls.index(('export', category.value)) < calls.index(('delete', category.value))

    @pytest.mark.asyncio
    async def test_dependent_action_plans_exported_with_alerts(self, engine, gateway):
        self.expire(gateway, RecordCategory.RESOLVED_ALERTS, [record('a', 10)])
        plan = {'id': 'p1', 'saved_alert_id': 'a', 'status': 'in_progress'}
        gateway.select_dependents = AsyncMock(side_effect=lambda category, ids: GatewayResult.ok(
            [plan] if category == RecordCategory.RESOLVED_ALERTS else []
        ))

        result = await engine.sweep(now=NOW)

        gateway.select_dependents.assert_any_await(RecordCategory.RESOLVED_ALERTS, ['a'])
        assert len(result.exported_files) == 2
        operation = result.operations[0]
        assert operation.dependents_export_path == result.exported_files[1]
        assert Path(operation.dependents_export_path).name.startswith("resolved_alerts_action_plans_")
        assert result.deleted['resolved_alerts'] == 1

    @pytest.mark.asyncio
    async def test_dependent_export_failure_prevents_delete(self, engine, gateway):
        async def export(name, records, now=None):
            if name.endswith('_action_plans'):
                raise RetentionExportError("disk full")
            return f"/exports/{name}.csv"

        engine.exporter = Mock(spec=RetentionExporter)
        engine.exporter.export = AsyncMock(side_effect=export)
        self.expire(gateway, RecordCategory.ACTIVE_ALERTS, [record('a', 1)])
        gateway.select_dependents = AsyncMock(return_value=GatewayResult.ok([{'id': 'p1'}]))

        result = await engine.sweep(now=NOW, categories=['active_alerts'])

        assert not result.success
        assert result.failures[0].category == 'active_alerts'
        gateway.delete_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dependent_selection_failure_prevents_delete(self, engine, gateway):
        self.expire(gateway, RecordCategory.RESOLVED_ALERTS, [record('a', 10)])
        gateway.select_dependents = AsyncMock(return_value=GatewayResult.fail("database is locked"))

        result = await engine.sweep(now=NOW, categories=['resolved_alerts'])

        assert "select dependents failed" in result.failures[0].reason
        assert result.exported_files == []
        gateway.delete_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_selection_failure_is_reported(self, engine, gateway):
        gateway.select_expired = AsyncMock(return_value=GatewayResult.fail("database is locked"))

        result = await engine.sweep(now=NOW, categories=['inspections'])

        assert [op.category for op in result.operations] == ['inspections']
        assert result.operations[0].status == 'failed'
        assert "database is locked" in result.failures[0].reason

    @pytest.mark.asyncio
    async def test_sweep_is_audited(self, engine, gateway):
        self.expire(gateway, RecordCategory.RESOLVED_ALERTS, [record('a', 10)])

        await engine.sweep(now=NOW)

        entries = engine.audit_log.read_entries()
        kinds = [entry['kind'] for entry in entries]
        assert kinds.count('operation') == 4
        assert kinds[-1] == 'sweep'

    @pytest.mark.asyncio
    async def test_disabled_retention_does_nothing(self, gateway, temp_dir, metrics):
        config_path = temp_dir / "disabled.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'global': {'enabled': False}}, f)
        engine = RetentionEngine(gateway, RetentionConfigManager(str(config_path)), metrics=metrics)

        result = await engine.sweep(now=NOW)

        assert result.operations == []
        gateway.select_expired.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_are_serialized(self, engine, gateway):
        active = []
        overlaps = []

        async def select_expired(category, cutoff):
            active.append(category)
            if len(active) > 1:
                overlaps.append(category)
            await asyncio.sleep(0)
            active.remove(category)
            return GatewayResult.ok([])
        gateway.select_expired = AsyncMock(side_effect=select_expired)

        await asyncio.gather(engine.sweep(now=NOW), engine.sweep(now=NOW))

        assert overlaps == []
        assert gateway.select_expired.await_count == 8

    @pytest.mark.asyncio
    async def test_storage_estimate_and_status(self, engine):
        estimate = await engine.estimate_storage()
        status = engine.get_retention_status()

        assert estimate.record_counts == {category.value: 3 for category in RecordCategory}
        assert status['enabled'] is True
        assert status['export_format'] == 'csv'
        assert status['policies']['resolved_alerts']['retention_days'] == 7
