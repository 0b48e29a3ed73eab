"""Schedule lifecycle and execution engine."""

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from scorecard_sync.services.scheduler.lifecycle import ScheduleLifecycle
from scorecard_sync.services.scheduler.progress import ProgressBroadcaster
from scorecard_sync.services.scheduler.recovery import RecoveryReport, recover
from scorecard_sync.services.scheduler.runner import JobBody, JobRunner
from scorecard_sync.services.scheduler.store import ScheduleStore


@dataclass
class SchedulerServices:
    store: ScheduleStore
    broadcaster: ProgressBroadcaster
    runner: JobRunner
    lifecycle: ScheduleLifecycle

    def start(self) -> RecoveryReport:
        """Start the timers and reconcile persisted state. Call once, inside the event loop."""
        self.runner.start()
        return recover(self.store, self.runner, self.broadcaster)

    def shutdown(self) -> None:
        self.runner.shutdown()


def build_services(engine: Engine, job_body: JobBody) -> SchedulerServices:
    """Wire the scheduler components. Must be called with an event loop running."""
    store = ScheduleStore(engine)
    broadcaster = ProgressBroadcaster()
    runner = JobRunner(store, broadcaster, job_body)
    return SchedulerServices(
        store=store,
        broadcaster=broadcaster,
        runner=runner,
        lifecycle=ScheduleLifecycle(store, runner),
    )
