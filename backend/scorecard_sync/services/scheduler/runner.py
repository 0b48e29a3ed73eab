"""Timer registry and fire handler for active schedules.

Each active schedule owns one APScheduler job driven by its cron expression.
Every fire goes through :meth:`JobRunner.fire`, which does the execution
bookkeeping around the job body and is the only place a run's outcome is
turned into persisted state.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import tzinfo
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from scorecard_sync.core.config import settings
from scorecard_sync.core.errors import AlreadyRunning, PersistenceFailure, ValidationError
from scorecard_sync.models.schedule import COMPLETED, FAILED, RUNNING, Schedule
from scorecard_sync.services.scheduler.cron import CronExpressionTrigger
from scorecard_sync.services.scheduler.progress import ProgressBroadcaster, ProgressEvent
from scorecard_sync.services.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

MISFIRE_GRACE_SECONDS = 60


@dataclass
class JobOutcome:
    status: str
    message: str

    @classmethod
    def completed(cls, message: str = "Task completed successfully") -> "JobOutcome":
        return cls(COMPLETED, message)

    @classmethod
    def failed(cls, message: str) -> "JobOutcome":
        return cls(FAILED, message)


class JobContext:
    """Progress reporting handle given to a job body for one execution."""

    def __init__(
        self,
        store: ScheduleStore,
        broadcaster: ProgressBroadcaster,
        schedule_id: str,
        execution_id: str,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.schedule_id = schedule_id
        self.execution_id = execution_id
        self.progress = 0

    def report(self, progress: Optional[int] = None, message: Optional[str] = None) -> None:
        if progress is not None:
            self.progress = max(0, min(100, int(progress)))
        try:
            current = self.store.set_run_state(
                self.schedule_id,
                progress=self.progress,
                message=message,
                expected_execution_id=self.execution_id,
            )
        except PersistenceFailure:
            logger.exception(f"Failed to record progress for schedule {self.schedule_id}")
            current = True
        if not current:
            logger.debug(
                f"Execution {self.execution_id} is no longer current for schedule {self.schedule_id}"
            )
            return
        self.broadcaster.publish(
            ProgressEvent(
                schedule_id=self.schedule_id,
                progress=self.progress,
                status=RUNNING,
                message=message,
            )
        )


JobBody = Callable[[Schedule, JobContext], Awaitable[Optional[JobOutcome]]]


class JobRunner:
    def __init__(
        self,
        store: ScheduleStore,
        broadcaster: ProgressBroadcaster,
        job_body: JobBody,
        timezone: tzinfo | str | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._store = store
        self._broadcaster = broadcaster
        self._job_body = job_body
        self._timezone = timezone or settings.timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._timezone)
        self._timers: dict[str, str] = {}  # schedule id -> scheduler job id
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    # --- Lifecycle ---

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Job runner started")

    def shutdown(self) -> None:
        with self._lock:
            self._timers.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Job runner stopped")

    # --- Timer registry ---

    def arm(self, schedule: Schedule) -> None:
        """Register the recurring timer for ``schedule``; returns immediately."""
        with self._lock:
            if schedule.id in self._timers:
                raise AlreadyRunning(schedule.id)
            try:
                trigger = CronExpressionTrigger(schedule.cron_expression, self._timezone)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            job = self._scheduler.add_job(
                self.fire,
                trigger=trigger,
                args=[schedule.id],
                id=f"schedule-{schedule.id}",
                name=schedule.name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=MISFIRE_GRACE_SECONDS,
                replace_existing=True,
            )
            self._timers[schedule.id] = job.id
        logger.info(f"Armed schedule '{schedule.name}' ({schedule.id}): {schedule.cron_expression}")

    def disarm(self, schedule_id: str) -> bool:
        """Remove the timer for ``schedule_id``. Returns False if none was armed."""
        with self._lock:
            job_id = self._timers.pop(schedule_id, None)
            if job_id is None:
                return False
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                logger.debug(f"Timer {job_id} was already gone from the scheduler")
        logger.info(f"Disarmed schedule {schedule_id}")
        return True

    def is_armed(self, schedule_id: str) -> bool:
        with self._lock:
            return schedule_id in self._timers

    def armed_ids(self) -> list[str]:
        with self._lock:
            return list(self._timers)

    def is_executing(self, schedule_id: str) -> bool:
        return schedule_id in self._in_flight

    # --- Fire handler ---

    async def fire(self, schedule_id: str) -> None:
        """Run the job body once for ``schedule_id``; never raises on job failure."""
        if schedule_id in self._in_flight:
            logger.warning(f"Skipping fire for schedule {schedule_id}: previous run still in progress")
            return
        self._in_flight.add(schedule_id)
        try:
            await self._execute(schedule_id)
        finally:
            self._in_flight.discard(schedule_id)

    async def _execute(self, schedule_id: str) -> None:
        try:
            schedule = self._store.get(schedule_id)
        except PersistenceFailure:
            logger.exception(f"Could not load schedule {schedule_id}, skipping fire")
            return
        if schedule is None:
            logger.warning(f"Schedule {schedule_id} no longer exists, skipping fire")
            return
        if schedule.status == RUNNING:
            logger.warning(f"Schedule {schedule_id} is already running, skipping fire")
            return

        logger.info(f"Executing task for schedule {schedule.id}: {schedule.task}")
        try:
            execution_id = self._store.begin_run(schedule.id)
        except PersistenceFailure:
            logger.exception(f"Could not open an execution for schedule {schedule.id}, skipping fire")
            return
        if execution_id is None:
            logger.warning(f"Schedule {schedule.id} could not be marked running, skipping fire")
            return

        self._publish(schedule.id, 0, RUNNING, "Task started")
        context = JobContext(self._store, self._broadcaster, schedule.id, execution_id)

        try:
            outcome = await self._job_body(schedule, context)
        except asyncio.CancelledError:
            self._finish(schedule, context, JobOutcome.failed("Task cancelled"))
            raise
        except Exception as e:
            logger.exception(f"Error executing task for schedule {schedule.id}")
            outcome = JobOutcome.failed(str(e) or e.__class__.__name__)

        self._finish(schedule, context, outcome or JobOutcome.completed())

    def _finish(self, schedule: Schedule, context: JobContext, outcome: JobOutcome) -> None:
        try:
            current = self._store.finish_run(
                schedule.id, context.execution_id, outcome.status, outcome.message
            )
        except PersistenceFailure:
            logger.exception(f"Failed to record outcome of execution {context.execution_id}")
            current = True

        if not current:
            logger.warning(
                f"Execution {context.execution_id} finished after being superseded; "
                f"schedule {schedule.id} left unchanged"
            )
            return

        progress = 100 if outcome.status == COMPLETED else context.progress
        self._publish(schedule.id, progress, outcome.status, outcome.message)
        if outcome.status == COMPLETED:
            logger.info(f"Schedule '{schedule.name}' completed: {outcome.message}")
        else:
            logger.error(f"Schedule '{schedule.name}' failed: {outcome.message}")

    def _publish(self, schedule_id: str, progress: int, status: str, message: str | None) -> None:
        self._broadcaster.publish(
            ProgressEvent(schedule_id=schedule_id, progress=progress, status=status, message=message)
        )
