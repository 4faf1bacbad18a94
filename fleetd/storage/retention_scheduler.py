"""
Retention scheduler.

Runs the retention sweep automatically once ``cleanup_interval_days`` calendar
days (one by default) have passed since the last successful sweep and the
configured hour has been reached, and on startup when no sweep has run yet. Manual sweeps go through the same
engine and share its lock.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .retention_manager import RetentionEngine
from .retention_models import SweepResult


@dataclass
class SchedulerConfig:
    """Configuration for the retention scheduler."""
    enabled: bool
    cleanup_interval_days: int
    cleanup_hour: int
    run_on_startup: bool
    check_interval_minutes: int


@dataclass
class SchedulerStatus:
    """Status information for the scheduler."""
    running: bool
    last_cleanup: Optional[datetime]
    next_cleanup: Optional[datetime]
    total_cleanups: int
    successful_cleanups: int
    failed_cleanups: int
    last_error: Optional[str]
    uptime_seconds: float


class RetentionScheduler:
    """
    Automated scheduler for retention sweeps.

    The time of the last sweep is kept in a small JSON state file so the
    interval survives restarts.
    """

    def __init__(self, engine: RetentionEngine, state_path: Optional[str] = None):
        self.engine = engine
        self.logger = logging.getLogger(__name__)
        self.config = self._load_config(engine.config.scheduler_settings)
        self.state_path = Path(state_path) if state_path else None

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None
        self._last_cleanup: Optional[datetime] = self._load_last_cleanup()
        self._total_cleanups = 0
        self._successful_cleanups = 0
        self._failed_cleanups = 0
        self._last_error: Optional[str] = None
        self.last_result: Optional[SweepResult] = None

    def _load_config(self, settings: Dict[str, Any]) -> SchedulerConfig:
        return SchedulerConfig(
            enabled=bool(settings.get('enabled', True)),
            cleanup_interval_days=int(settings.get('cleanup_interval_days', 1)),
            cleanup_hour=int(settings.get('cleanup_hour', 2)),
            run_on_startup=bool(settings.get('run_on_startup', True)),
            check_interval_minutes=int(settings.get('check_interval_minutes', 60))
        )

    def _load_last_cleanup(self) -> Optional[datetime]:
        if not self.state_path or not self.state_path.exists():
            return None
        try:
            with open(self.state_path, 'r') as f:
                value = json.load(f).get('last_cleanup')
            return datetime.fromisoformat(value) if value else None
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to read scheduler state: {e}")
            return None

    def _save_last_cleanup(self):
        if not self.state_path or not self._last_cleanup:
            return
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_path, 'w') as f:
                json.dump({'last_cleanup': self._last_cleanup.isoformat()}, f)
        except OSError as e:
            self.logger.error(f"Failed to save scheduler state: {e}")

    async def start(self):
        """Start the retention scheduler."""
        if self._running:
            self.logger.warning("Retention scheduler is already running")
            return

        if not self.config.enabled:
            self.logger.info("Retention scheduler is disabled")
            return

        self._running = True
        self._start_time = datetime.now(timezone.utc)
        self._task = asyncio.create_task(self._scheduler_loop())

        self.logger.info(f"Retention scheduler started (every {self.config.cleanup_interval_days} days "
                         f"from {self.config.cleanup_hour:02d}:00)")

    async def stop(self):
        """Stop the retention scheduler."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.logger.info("Retention scheduler stopped")

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        while self._running:
            try:
                if self.should_run_cleanup():
                    await self._run_cleanup_cycle()

                await asyncio.sleep(self.config.check_interval_minutes * 60)

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in scheduler loop: {e}")
                self._last_error = str(e)
                await asyncio.sleep(300)

    def should_run_cleanup(self, now: Optional[datetime] = None) -> bool:
        """Check if a scheduled sweep is due."""
        if not self.config.enabled:
            return False

        now = now or datetime.now(timezone.utc)
        if self._last_cleanup is None:
            return self.config.run_on_startup or now.hour >= self.config.cleanup_hour

        last = self._last_cleanup
        if last.tzinfo is None and now.tzinfo is not None:
            last = last.replace(tzinfo=timezone.utc)
        # Calendar days, so a daily sweep is not pushed back by its own duration.
        days_since = (now.astimezone(timezone.utc).date() - last.astimezone(timezone.utc).date()).days
        if days_since >= self.config.cleanup_interval_days:
            return now.hour >= self.config.cleanup_hour
        return False

    async def _run_cleanup_cycle(self, categories: Optional[List[str]] = None) -> SweepResult:
        """Run one sweep and update statistics."""
        result = await self.engine.sweep(categories=categories)

        self._total_cleanups += 1
        if result.success:
            self._successful_cleanups += 1
            self._last_error = None
        else:
            self._failed_cleanups += 1
            self._last_error = f"{len(result.failures)} categories failed"

        # A failed sweep is retried at the next check.
        if result.success:
            self._last_cleanup = result.started_at
            self._save_last_cleanup()
        self.last_result = result
        return result

    async def trigger_manual_sweep(self, categories: Optional[List[str]] = None) -> SweepResult:
        """Run a sweep now, regardless of the schedule."""
        self.logger.info(f"Running manual retention sweep for: {categories or 'all categories'}")
        return await self._run_cleanup_cycle(categories)

    def get_status(self) -> SchedulerStatus:
        """Get current scheduler status."""
        now = datetime.now(timezone.utc)
        uptime = (now - self._start_time).total_seconds() if self._start_time else 0.0

        next_cleanup = None
        if self._running:
            if self._last_cleanup is None:
                next_cleanup = now
            else:
                last = self._last_cleanup
                if last.tzinfo is None:
                    last = last.replace(tzinfo=timezone.utc)
                due_date = last.astimezone(timezone.utc).date() + timedelta(days=self.config.cleanup_interval_days)
                due = datetime.combine(due_date, dt_time(self.config.cleanup_hour), tzinfo=timezone.utc)
                next_cleanup = max(due, now)

        return SchedulerStatus(
            running=self._running,
            last_cleanup=self._last_cleanup,
            next_cleanup=next_cleanup,
            total_cleanups=self._total_cleanups,
            successful_cleanups=self._successful_cleanups,
            failed_cleanups=self._failed_cleanups,
            last_error=self._last_error,
            uptime_seconds=uptime
        )
