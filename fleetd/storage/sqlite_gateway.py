"""
SQLite implementation of the persistence gateway.

Stores saved alerts, action plans, inspections and ignition history in a
local SQLite database. All timestamps are stored as UTC ISO-8601 strings
so retention queries can compare them directly.
"""

import asyncio
import functools
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fleetd.alerts.models import (
    ActionPlan, ActionPlanStatus, Alert, AlertSeverity, AlertType, IdleRecord,
    IgnitionEvent, IgnitionEventType, Inspection, SavedAlert, SavedAlertStatus
)
from fleetd.alerts.queue import parse_timestamp
from .gateway import GatewayResult, PersistenceGateway, RecordCategory

logger = logging.getLogger(__name__)

AUTO_SAVED_BY = "system (auto)"

# table, timestamp column, status filter
CATEGORY_TABLES: Dict[RecordCategory, Tuple[str, str, Tuple[str, ...]]] = {
    RecordCategory.ACTIVE_ALERTS: (
        'saved_alerts', 'occurred_at',
        (SavedAlertStatus.PENDING.value, SavedAlertStatus.IN_PROGRESS.value)
    ),
    RecordCategory.RESOLVED_ALERTS: (
        'saved_alerts', 'occurred_at', (SavedAlertStatus.RESOLVED.value,)
    ),
    RecordCategory.INSPECTIONS: ('inspections', 'inspected_at', ()),
    RecordCategory.COMPLETED_ACTION_PLANS: (
        'action_plans', 'created_at', (ActionPlanStatus.COMPLETED.value,)
    ),
}

ACTION_PLAN_FIELDS = ('description', 'responsible', 'status', 'observations')


def to_utc_iso(value: datetime) -> str:
    """Format a datetime as a UTC ISO string; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='seconds')


def _now_iso() -> str:
    return to_utc_iso(datetime.now(timezone.utc))


def _parse_stored(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


def run_in_thread(func):
    """Run a blocking gateway method in a worker thread."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)
    return wrapper


class SQLiteGateway(PersistenceGateway):
    """Persistence gateway backed by SQLite."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize_database(self) -> None:
        """Initialize database tables."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS saved_alerts (
                    id TEXT PRIMARY KEY,
                    alert_id TEXT NOT NULL,
                    vehicle_id TEXT NOT NULL,
                    plate TEXT,
                    driver TEXT,
                    type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    location TEXT,
                    speed REAL,
                    details TEXT,
                    contract TEXT,
                    source TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    promoted INTEGER NOT NULL DEFAULT 0,
                    saved_by TEXT NOT NULL,
                    saved_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (vehicle_id, type, timestamp)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS action_plans (
                    id TEXT PRIMARY KEY,
                    saved_alert_id TEXT NOT NULL
                        REFERENCES saved_alerts(id) ON DELETE CASCADE,
                    description TEXT NOT NULL,
                    responsible TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    observations TEXT,
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS inspections (
                    id TEXT PRIMARY KEY,
                    plate TEXT NOT NULL,
                    driver TEXT,
                    inspected_at TEXT NOT NULL,
                    findings INTEGER DEFAULT 0,
                    state TEXT,
                    contract TEXT,
                    vehicle_type TEXT,
                    ignition_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS ignition_events (
                    id TEXT PRIMARY KEY,
                    plate TEXT NOT NULL,
                    driver TEXT,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    location TEXT,
                    latitude REAL,
                    longitude REAL,
                    source TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS idle_records (
                    id TEXT PRIMARY KEY,
                    plate TEXT NOT NULL,
                    driver TEXT,
                    contract TEXT,
                    started_at TEXT NOT NULL,
                    ended_at TEXT NOT NULL,
                    duration_minutes REAL NOT NULL,
                    location TEXT,
                    latitude REAL,
                    longitude REAL,
                    source TEXT
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_saved_alerts_status ON saved_alerts(status, occurred_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_action_plans_alert ON action_plans(saved_alert_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_ignition_events_time ON ignition_events(occurred_at)"
            )
            conn.commit()

    # ---- saved alerts -------------------------------------------------

    def _alert_row(self, alert: Alert, saved_by: str, promoted: bool) -> Dict[str, Any]:
        now = _now_iso()
        occurred = parse_timestamp(alert.timestamp)
        return {
            'id': uuid.uuid4().hex,
            'alert_id': alert.id,
            'vehicle_id': alert.vehicle_id,
            'plate': alert.plate,
            'driver': alert.driver,
            'type': alert.type.value,
            'severity': alert.severity.value,
            'timestamp': alert.timestamp,
            'occurred_at': to_utc_iso(occurred) if occurred else now,
            'location': alert.location,
            'speed': alert.speed,
            'details': alert.details,
            'contract': alert.contract,
            'source': alert.source,
            'status': SavedAlertStatus.PENDING.value,
            'promoted': 1 if promoted else 0,
            'saved_by': saved_by,
            'saved_at': now,
            'updated_at': now,
        }

    def _insert_alert(self, conn: sqlite3.Connection, row: Dict[str, Any], ignore: bool) -> bool:
        columns = ', '.join(row.keys())
        placeholders = ', '.join('?' for _ in row)
        verb = "INSERT OR IGNORE" if ignore else "INSERT"
        cursor = conn.execute(
            f"{verb} INTO saved_alerts ({columns}) VALUES ({placeholders})",
            tuple(row.values())
        )
        return cursor.rowcount > 0

    @run_in_thread
    def auto_save_alert(self, alert: Alert) -> GatewayResult:
        try:
            with self._connect() as conn:
                row = self._alert_row(alert, AUTO_SAVED_BY, promoted=False)
                inserted = self._insert_alert(conn, row, ignore=True)
                conn.commit()
            return GatewayResult.ok(row['id'] if inserted else None)
        except sqlite3.Error as e:
            logger.error(f"Error auto-saving alert {alert.id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def promote_alert(self, alert: Alert, saved_by: str) -> GatewayResult:
        try:
            with self._connect() as conn:
                existing = conn.execute(
                    "SELECT id, promoted FROM saved_alerts WHERE vehicle_id = ? AND type = ? AND timestamp = ?",
                    (alert.vehicle_id, alert.type.value, alert.timestamp)
                ).fetchone()

                if existing is not None:
                    if existing['promoted']:
                        return GatewayResult.ok(existing['id'], existing=True)
                    now = _now_iso()
                    conn.execute(
                        "UPDATE saved_alerts SET promoted = 1, saved_by = ?, saved_at = ?, updated_at = ? WHERE id = ?",
                        (saved_by, now, now, existing['id'])
                    )
                    conn.commit()
                    return GatewayResult.ok(existing['id'])

                row = self._alert_row(alert, saved_by, promoted=True)
                self._insert_alert(conn, row, ignore=False)
                conn.commit()
                return GatewayResult.ok(row['id'])

        except sqlite3.Error as e:
            logger.error(f"Error promoting alert {alert.id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def promoted_alert_ids(self, alert_ids: List[str]) -> GatewayResult:
        if not alert_ids:
            return GatewayResult.ok(set())
        placeholders = ', '.join('?' for _ in alert_ids)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT alert_id FROM saved_alerts WHERE promoted = 1 AND alert_id IN ({placeholders})",
                    tuple(alert_ids)
                ).fetchall()
            return GatewayResult.ok({row['alert_id'] for row in rows})
        except sqlite3.Error as e:
            logger.error(f"Error looking up promoted alerts: {e}")
            return GatewayResult.fail(str(e))

    def _build_saved_alert(self, row: sqlite3.Row, plans: List[ActionPlan]) -> SavedAlert:
        return SavedAlert(
            id=row['id'],
            alert_id=row['alert_id'],
            vehicle_id=row['vehicle_id'],
            plate=row['plate'],
            type=AlertType(row['type']),
            severity=AlertSeverity(row['severity']),
            timestamp=row['timestamp'],
            details=row['details'],
            status=SavedAlertStatus(row['status']),
            saved_by=row['saved_by'],
            saved_at=_parse_stored(row['saved_at']),
            promoted=bool(row['promoted']),
            location=row['location'],
            speed=row['speed'] or 0.0,
            driver=row['driver'],
            source=row['source'],
            contract=row['contract'],
            updated_at=_parse_stored(row['updated_at']),
            action_plans=plans,
        )

    def _build_action_plan(self, row: sqlite3.Row) -> ActionPlan:
        return ActionPlan(
            id=row['id'],
            saved_alert_id=row['saved_alert_id'],
            description=row['description'],
            responsible=row['responsible'],
            status=ActionPlanStatus(row['status']),
            observations=row['observations'],
            created_by=row['created_by'],
            created_at=_parse_stored(row['created_at']),
            updated_at=_parse_stored(row['updated_at']),
        )

    def _plans_for(self, conn: sqlite3.Connection, saved_id: str) -> List[ActionPlan]:
        rows = conn.execute(
            "SELECT * FROM action_plans WHERE saved_alert_id = ? ORDER BY created_at ASC, rowid ASC",
            (saved_id,)
        ).fetchall()
        return [self._build_action_plan(row) for row in rows]

    @run_in_thread
    def get_saved_alert(self, saved_id: str) -> GatewayResult:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM saved_alerts WHERE id = ?", (saved_id,)).fetchone()
                if row is None:
                    return GatewayResult.fail(f"Saved alert not found: {saved_id}")
                return GatewayResult.ok(self._build_saved_alert(row, self._plans_for(conn, saved_id)))
        except sqlite3.Error as e:
            logger.error(f"Error fetching saved alert {saved_id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def list_saved_alerts(self,
                          status: Optional[SavedAlertStatus] = None,
                          severity: Optional[str] = None,
                          start: Optional[datetime] = None,
                          end: Optional[datetime] = None,
                          promoted_only: bool = True) -> GatewayResult:
        clauses = []
        params: List[Any] = []
        if promoted_only:
            clauses.append("promoted = 1")
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if severity:
            clauses.append("severity = ?")
            params.append(severity)
        if start is not None:
            clauses.append("occurred_at >= ?")
            params.append(to_utc_iso(start))
        if end is not None:
            clauses.append("occurred_at <= ?")
            params.append(to_utc_iso(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM saved_alerts {where} ORDER BY occurred_at DESC", params
                ).fetchall()
                alerts = [self._build_saved_alert(row, self._plans_for(conn, row['id'])) for row in rows]
            return GatewayResult.ok(alerts)
        except sqlite3.Error as e:
            logger.error(f"Error listing saved alerts: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def update_alert_status(self, saved_id: str, status: SavedAlertStatus) -> GatewayResult:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE saved_alerts SET status = ?, updated_at = ? WHERE id = ?",
                    (status.value, _now_iso(), saved_id)
                )
                conn.commit()
                if cursor.rowcount == 0:
                    return GatewayResult.fail(f"Saved alert not found: {saved_id}")
            return GatewayResult.ok()
        except sqlite3.Error as e:
            logger.error(f"Error updating status of saved alert {saved_id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def delete_saved_alert(self, saved_id: str) -> GatewayResult:
        try:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM saved_alerts WHERE id = ?", (saved_id,))
                conn.commit()
                if cursor.rowcount == 0:
                    return GatewayResult.fail(f"Saved alert not found: {saved_id}")
            return GatewayResult.ok()
        except sqlite3.Error as e:
            logger.error(f"Error deleting saved alert {saved_id}: {e}")
            return GatewayResult.fail(str(e))

    # ---- action plans -------------------------------------------------

    @run_in_thread
    def add_action_plan(self, saved_id: str, description: str, responsible: str,
                        status: ActionPlanStatus = ActionPlanStatus.PENDING,
                        observations: Optional[str] = None,
                        created_by: str = "operator") -> GatewayResult:
        try:
            with self._connect() as conn:
                parent = conn.execute("SELECT id FROM saved_alerts WHERE id = ?", (saved_id,)).fetchone()
                if parent is None:
                    return GatewayResult.fail(f"Saved alert not found: {saved_id}")

                now = _now_iso()
                plan_id = uuid.uuid4().hex
                conn.execute("""
                    INSERT INTO action_plans
                    (id, saved_alert_id, description, responsible, status,
                     observations, created_by, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (plan_id, saved_id, description, responsible, status.value,
                      observations, created_by, now, now))
                conn.commit()

                row = conn.execute("SELECT * FROM action_plans WHERE id = ?", (plan_id,)).fetchone()
                return GatewayResult.ok(self._build_action_plan(row))
        except sqlite3.Error as e:
            logger.error(f"Error adding action plan to {saved_id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def update_action_plan(self, plan_id: str, fields: Dict[str, Any]) -> GatewayResult:
        updates = {}
        for name, value in fields.items():
            if name not in ACTION_PLAN_FIELDS:
                return GatewayResult.fail(f"Unknown action plan field: {name}")
            if name == 'status':
                try:
                    value = ActionPlanStatus(value).value
                except ValueError:
                    return GatewayResult.fail(f"Invalid action plan status: {value}")
            updates[name] = value
        if not updates:
            return GatewayResult.fail("No fields to update")

        updates['updated_at'] = _now_iso()
        assignments = ', '.join(f"{name} = ?" for name in updates)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE action_plans SET {assignments} WHERE id = ?",
                    (*updates.values(), plan_id)
                )
                conn.commit()
                if cursor.rowcount == 0:
                    return GatewayResult.fail(f"Action plan not found: {plan_id}")
            return GatewayResult.ok()
        except sqlite3.Error as e:
            logger.error(f"Error updating action plan {plan_id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def delete_action_plan(self, plan_id: str) -> GatewayResult:
        try:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM action_plans WHERE id = ?", (plan_id,))
                conn.commit()
                if cursor.rowcount == 0:
                    return GatewayResult.fail(f"Action plan not found: {plan_id}")
            return GatewayResult.ok()
        except sqlite3.Error as e:
            logger.error(f"Error deleting action plan {plan_id}: {e}")
            return GatewayResult.fail(str(e))

    # ---- inspections --------------------------------------------------

    @run_in_thread
    def add_inspection(self, inspection: Inspection) -> GatewayResult:
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO inspections
                    (id, plate, driver, inspected_at, findings, state, contract, vehicle_type, ignition_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (inspection.id, inspection.plate, inspection.driver,
                      to_utc_iso(inspection.inspected_at), inspection.findings,
                      inspection.state, inspection.contract, inspection.vehicle_type,
                      to_utc_iso(inspection.ignition_at) if inspection.ignition_at else None))
                conn.commit()
            return GatewayResult.ok(inspection.id)
        except sqlite3.Error as e:
            logger.error(f"Error saving inspection {inspection.id}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def list_inspections(self, start: Optional[datetime] = None,
                         end: Optional[datetime] = None) -> GatewayResult:
        clauses = []
        params: List[Any] = []
        if start is not None:
            clauses.append("COALESCE(ignition_at, inspected_at) >= ?")
            params.append(to_utc_iso(start))
        if end is not None:
            clauses.append("COALESCE(ignition_at, inspected_at) <= ?")
            params.append(to_utc_iso(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM inspections {where} "
                    "ORDER BY COALESCE(ignition_at, inspected_at) ASC, plate ASC",
                    params
                ).fetchall()
            return GatewayResult.ok([
                Inspection(
                    id=row['id'],
                    plate=row['plate'],
                    inspected_at=_parse_stored(row['inspected_at']),
                    driver=row['driver'],
                    findings=row['findings'] or 0,
                    state=row['state'],
                    contract=row['contract'],
                    vehicle_type=row['vehicle_type'],
                    ignition_at=_parse_stored(row['ignition_at']),
                )
                for row in rows
            ])
        except sqlite3.Error as e:
            logger.error(f"Error listing inspections: {e}")
            return GatewayResult.fail(str(e))

    # ---- ignition history ---------------------------------------------

    @run_in_thread
    def add_ignition_event(self, event: IgnitionEvent) -> GatewayResult:
        event_id = uuid.uuid4().hex
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO ignition_events
                    (id, plate, driver, event_type, occurred_at, location, latitude, longitude, source)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (event_id, event.plate, event.driver, event.event_type.value,
                      to_utc_iso(event.occurred_at), event.location,
                      event.latitude, event.longitude, event.source))
                conn.commit()
            return GatewayResult.ok(event_id)
        except sqlite3.Error as e:
            logger.error(f"Error saving ignition event for {event.plate}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def list_ignition_events(self, start: datetime, end: datetime,
                             event_type: Optional[IgnitionEventType] = None) -> GatewayResult:
        clauses = ["occurred_at >= ?", "occurred_at <= ?"]
        params: List[Any] = [to_utc_iso(start), to_utc_iso(end)]
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(event_type.value)

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM ignition_events WHERE {' AND '.join(clauses)} "
                    "ORDER BY occurred_at ASC, rowid ASC",
                    params
                ).fetchall()
            return GatewayResult.ok([
                IgnitionEvent(
                    plate=row['plate'],
                    event_type=IgnitionEventType(row['event_type']),
                    occurred_at=_parse_stored(row['occurred_at']),
                    driver=row['driver'],
                    location=row['location'],
                    latitude=row['latitude'],
                    longitude=row['longitude'],
                    source=row['source'],
                )
                for row in rows
            ])
        except sqlite3.Error as e:
            logger.error(f"Error listing ignition events: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def add_idle_record(self, record: IdleRecord) -> GatewayResult:
        record_id = uuid.uuid4().hex
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO idle_records
                    (id, plate, driver, contract, started_at, ended_at, duration_minutes,
                     location, latitude, longitude, source)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (record_id, record.plate, record.driver, record.contract,
                      to_utc_iso(record.started_at), to_utc_iso(record.ended_at),
                      record.duration_minutes, record.location,
                      record.latitude, record.longitude, record.source))
                conn.commit()
            return GatewayResult.ok(record_id)
        except sqlite3.Error as e:
            logger.error(f"Error saving idle record for {record.plate}: {e}")
            return GatewayResult.fail(str(e))

    # ---- retention primitives -----------------------------------------

    def _category_filter(self, category: RecordCategory) -> Tuple[str, str, str, List[Any]]:
        table, time_column, statuses = CATEGORY_TABLES[category]
        if statuses:
            placeholders = ', '.join('?' for _ in statuses)
            return table, time_column, f"status IN ({placeholders})", list(statuses)
        return table, time_column, "1 = 1", []

    @run_in_thread
    def count_records(self, category: RecordCategory) -> GatewayResult:
        table, _, where, params = self._category_filter(category)
        try:
            with self._connect() as conn:
                count = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]
            return GatewayResult.ok(count)
        except sqlite3.Error as e:
            logger.error(f"Error counting {category.value}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def select_expired(self, category: RecordCategory, cutoff: datetime) -> GatewayResult:
        table, time_column, where, params = self._category_filter(category)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM {table} WHERE {where} AND {time_column} < ? ORDER BY {time_column} ASC",
                    (*params, to_utc_iso(cutoff))
                ).fetchall()
            return GatewayResult.ok([dict(row) for row in rows])
        except sqlite3.Error as e:
            logger.error(f"Error selecting expired {category.value}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def select_overflow(self, category: RecordCategory, max_records: int) -> GatewayResult:
        table, time_column, where, params = self._category_filter(category)
        try:
            with self._connect() as conn:
                count = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]
                excess = count - max_records
                if excess <= 0:
                    return GatewayResult.ok([])
                rows = conn.execute(
                    f"SELECT * FROM {table} WHERE {where} ORDER BY {time_column} ASC LIMIT ?",
                    (*params, excess)
                ).fetchall()
            return GatewayResult.ok([dict(row) for row in rows])
        except sqlite3.Error as e:
            logger.error(f"Error selecting overflow {category.value}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def select_dependents(self, category: RecordCategory, record_ids: List[str]) -> GatewayResult:
        if not record_ids or CATEGORY_TABLES[category][0] != 'saved_alerts':
            return GatewayResult.ok([])
        placeholders = ', '.join('?' for _ in record_ids)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM action_plans WHERE saved_alert_id IN ({placeholders}) "
                    "ORDER BY created_at ASC, rowid ASC",
                    tuple(record_ids)
                ).fetchall()
            return GatewayResult.ok([dict(row) for row in rows])
        except sqlite3.Error as e:
            logger.error(f"Error selecting dependents of {category.value}: {e}")
            return GatewayResult.fail(str(e))

    @run_in_thread
    def delete_records(self, category: RecordCategory, record_ids: List[str]) -> GatewayResult:
        if not record_ids:
            return GatewayResult.ok(0)
        table, _, where, params = self._category_filter(category)
        placeholders = ', '.join('?' for _ in record_ids)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"DELETE FROM {table} WHERE {where} AND id IN ({placeholders})",
                    (*params, *record_ids)
                )
                conn.commit()
            return GatewayResult.ok(cursor.rowcount)
        except sqlite3.Error as e:
            logger.error(f"Error deleting {category.value}: {e}")
            return GatewayResult.fail(str(e))
