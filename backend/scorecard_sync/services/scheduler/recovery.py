"""Startup reconciliation of persisted run state with the fresh process."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from scorecard_sync.core.errors import PersistenceFailure
from scorecard_sync.models.schedule import FAILED, RUNNING
from scorecard_sync.services.scheduler.progress import ProgressBroadcaster, ProgressEvent
from scorecard_sync.services.scheduler.runner import JobRunner
from scorecard_sync.services.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Task interrupted due to server restart"


@dataclass
class RecoveryReport:
    interrupted: list[str] = field(default_factory=list)
    armed: list[str] = field(default_factory=list)
    failed_to_arm: list[str] = field(default_factory=list)


def recover(
    store: ScheduleStore, runner: JobRunner, broadcaster: ProgressBroadcaster
) -> RecoveryReport:
    """Fail runs orphaned by the previous process, then re-arm active schedules.

    Must run before any request is served: nothing is armed yet, so nothing can
    legitimately be running.
    """
    logger.info("Restoring schedules...")
    report = RecoveryReport()
    now = datetime.now(timezone.utc)

    for execution in store.list_running_executions():
        try:
            store.seal_execution(execution.id, FAILED, now)
        except PersistenceFailure:
            logger.exception(f"Could not seal orphaned execution {execution.id}")

    for schedule in store.list_by_status(RUNNING):
        try:
            store.set_run_state(
                schedule.id,
                status=FAILED,
                last_status=FAILED,
                progress=0,
                execution_id=None,
                message=INTERRUPTED_MESSAGE,
                last_run=now,
            )
        except PersistenceFailure:
            logger.exception(f"Could not mark schedule {schedule.id} as interrupted")
        report.interrupted.append(schedule.id)
        logger.warning(f"Schedule '{schedule.name}' ({schedule.id}) was interrupted by a restart")
        broadcaster.publish(
            ProgressEvent(
                schedule_id=schedule.id,
                progress=0,
                status=FAILED,
                message=INTERRUPTED_MESSAGE,
                timestamp=now,
            )
        )

    for schedule in store.list_active():
        try:
            runner.arm(schedule)
        except Exception:
            logger.exception(f"Failed to restore schedule '{schedule.name}' ({schedule.id})")
            report.failed_to_arm.append(schedule.id)
        else:
            logger.info(f"Restored schedule: {schedule.name} ({schedule.id})")
            report.armed.append(schedule.id)

    logger.info(
        f"Schedule system initialized: {len(report.armed)} armed, "
        f"{len(report.interrupted)} interrupted, {len(report.failed_to_arm)} failed"
    )
    return report
