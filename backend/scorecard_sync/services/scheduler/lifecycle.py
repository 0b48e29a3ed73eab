"""Start, stop, edit and delete schedules, keeping timers and storage in step."""

import logging

from scorecard_sync.core.errors import AlreadyRunning, NotRunning
from scorecard_sync.models.schedule import RUNNING, Schedule, ScheduleUpdate
from scorecard_sync.services.scheduler.runner import JobRunner
from scorecard_sync.services.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


class ScheduleLifecycle:
    def __init__(self, store: ScheduleStore, runner: JobRunner):
        self.store = store
        self.runner = runner

    def start(self, schedule_id: str) -> Schedule:
        schedule = self.store.require(schedule_id)
        if schedule.is_active:
            raise AlreadyRunning(schedule_id)

        self.runner.arm(schedule)
        try:
            return self.store.set_active(schedule_id, True, reset_run_state=True)
        except Exception:
            self.runner.disarm(schedule_id)
            raise

    def stop(self, schedule_id: str) -> Schedule:
        schedule = self.store.require(schedule_id)
        if not schedule.is_active:
            raise NotRunning(schedule_id)

        # Only future fires stop; a run in flight finishes on its own
        self.runner.disarm(schedule_id)
        return self.store.set_active(schedule_id, False, reset_run_state=True, reset_progress=False)

    def check_runnable(self, schedule_id: str) -> Schedule:
        """Raise unless a manual run of ``schedule_id`` could start now."""
        schedule = self.store.require(schedule_id)
        if schedule.status == RUNNING or self.runner.is_executing(schedule_id):
            raise AlreadyRunning(schedule_id)
        return schedule

    def update(self, schedule_id: str, changes: ScheduleUpdate) -> Schedule:
        before = self.store.require(schedule_id)
        schedule = self.store.update(schedule_id, changes)

        if schedule.cron_expression != before.cron_expression and self.runner.is_armed(schedule_id):
            self.runner.disarm(schedule_id)
            self.runner.arm(schedule)
            logger.info(f"Re-armed schedule {schedule_id} with '{schedule.cron_expression}'")
        return schedule

    def delete(self, schedule_id: str) -> None:
        self.store.require(schedule_id)
        self.runner.disarm(schedule_id)
        self.store.delete(schedule_id)
