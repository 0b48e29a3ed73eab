"""Durable CRUD over schedules and their execution history."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from scorecard_sync.core.errors import NotFound, PersistenceFailure, ValidationError
from scorecard_sync.models.schedule import (
    FAILED,
    IDLE,
    RUNNING,
    TERMINAL_STATUSES,
    JobExecution,
    Schedule,
    ScheduleCreate,
    ScheduleUpdate,
)
from scorecard_sync.services.scheduler import cron

logger = logging.getLogger(__name__)

MAX_RETRIES_RANGE = (0, 10)
RETRY_DELAY_RANGE = (0, 3600)  # seconds

# Columns an edit may change but never clear
NOT_NULL_FIELDS = ("name", "cron_expression", "task", "max_retries", "retry_delay", "include_children")

_UNSET: Any = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_definition(
    name: str | None,
    cron_expression: str | None,
    task: str | None,
    max_retries: int,
    retry_delay: int,
) -> None:
    """Raise ValidationError if a schedule definition is not acceptable."""
    if not name or not cron_expression or not task:
        raise ValidationError("Missing required fields: name, cron_expression and task")
    if not cron.validate(cron_expression):
        raise ValidationError(f"Invalid cron expression: '{cron_expression}'")
    low, high = MAX_RETRIES_RANGE
    if not low <= max_retries <= high:
        raise ValidationError(f"max_retries must be between {low} and {high}")
    low, high = RETRY_DELAY_RANGE
    if not low <= retry_delay <= high:
        raise ValidationError(f"retry_delay must be between {low} and {high} seconds")


class ScheduleStore:
    """Schedules and execution records on top of a SQLModel engine.

    Run-state writes go through column-level UPDATE statements so they never
    overwrite fields an edit is changing at the same time.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceFailure(str(e)) from e

    # --- Schedules ---

    def create(self, definition: ScheduleCreate) -> Schedule:
        validate_definition(
            definition.name,
            definition.cron_expression,
            definition.task,
            definition.max_retries,
            definition.retry_delay,
        )
        now = _utcnow()
        schedule = Schedule(
            **definition.model_dump(),
            is_active=False,
            status=IDLE,
            progress=0,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(schedule)
            session.commit()
            session.refresh(schedule)
        logger.info(f"Created schedule '{schedule.name}' ({schedule.id})")
        return schedule

    def get(self, schedule_id: str) -> Schedule | None:
        with self._session() as session:
            return session.get(Schedule, schedule_id)

    def require(self, schedule_id: str) -> Schedule:
        schedule = self.get(schedule_id)
        if schedule is None:
            raise NotFound(schedule_id)
        return schedule

    def list_all(self) -> list[Schedule]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Schedule).order_by(Schedule.created_at, Schedule.id)  # type: ignore
                ).all()
            )

    def list_active(self) -> list[Schedule]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Schedule).where(Schedule.is_active == True)  # noqa: E712
                ).all()
            )

    def list_by_status(self, status: str) -> list[Schedule]:
        with self._session() as session:
            return list(session.exec(select(Schedule).where(Schedule.status == status)).all())

    def update(self, schedule_id: str, changes: ScheduleUpdate) -> Schedule:
        fields = changes.model_dump(exclude_unset=True)
        cleared = [key for key in NOT_NULL_FIELDS if key in fields and fields[key] is None]
        if cleared:
            raise ValidationError(f"Fields cannot be null: {', '.join(cleared)}")
        with self._session() as session:
            schedule = session.get(Schedule, schedule_id)
            if schedule is None:
                raise NotFound(schedule_id)

            merged = {
                "name": schedule.name,
                "cron_expression": schedule.cron_expression,
                "task": schedule.task,
                "max_retries": schedule.max_retries,
                "retry_delay": schedule.retry_delay,
            }
            merged.update({k: v for k, v in fields.items() if k in merged})
            validate_definition(**merged)

            for key, value in fields.items():
                setattr(schedule, key, value)
            schedule.updated_at = _utcnow()
            # Only dirty columns are written, so run-state columns are untouched
            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            return schedule

    def set_active(
        self,
        schedule_id: str,
        active: bool,
        reset_run_state: bool,
        reset_progress: bool = True,
    ) -> Schedule:
        """Flip the enabled flag.

        With ``reset_run_state`` the status goes back to idle, and progress to 0
        when ``reset_progress`` is set, unless a run is in flight.
        """
        values: dict[str, Any] = {"is_active": active, "updated_at": _utcnow()}
        with self._session() as session:
            if reset_run_state:
                values["status"] = IDLE
                if reset_progress:
                    values["progress"] = 0
                # A run in flight keeps its state until it finishes on its own
                session.execute(
                    sa_update(Schedule)
                    .where(Schedule.id == schedule_id, Schedule.status != RUNNING)  # type: ignore
                    .values(**values)
                )
                values = {"is_active": active, "updated_at": values["updated_at"]}
            result = session.execute(
                sa_update(Schedule).where(Schedule.id == schedule_id).values(**values)  # type: ignore
            )
            if result.rowcount == 0:
                session.rollback()
                raise NotFound(schedule_id)
            session.commit()
            schedule = session.get(Schedule, schedule_id, populate_existing=True)
            return schedule  # type: ignore[return-value]

    def set_run_state(
        self,
        schedule_id: str,
        *,
        status: str = _UNSET,
        progress: int = _UNSET,
        message: str | None = _UNSET,
        execution_id: str | None = _UNSET,
        last_run: datetime | None = _UNSET,
        last_status: str | None = _UNSET,
        expected_execution_id: str | None = None,
    ) -> bool:
        """Write only the given run-state columns.

        With ``expected_execution_id`` the write is dropped unless the row's
        ``current_job_id`` still matches it. Returns whether a row changed.
        """
        values: dict[str, Any] = {"updated_at": _utcnow()}
        for column, value in (
            ("status", status),
            ("progress", progress),
            ("message", message),
            ("current_job_id", execution_id),
            ("last_run", last_run),
            ("last_status", last_status),
        ):
            if value is not _UNSET:
                values[column] = value

        stmt = sa_update(Schedule).where(Schedule.id == schedule_id)  # type: ignore
        if expected_execution_id is not None:
            stmt = stmt.where(Schedule.current_job_id == expected_execution_id)  # type: ignore
        with self._session() as session:
            result = session.execute(stmt.values(**values))
            session.commit()
            return result.rowcount > 0

    def delete(self, schedule_id: str) -> None:
        with self._session() as session:
            schedule = session.get(Schedule, schedule_id)
            if schedule is None:
                raise NotFound(schedule_id)
            session.execute(
                sa_delete(JobExecution).where(JobExecution.schedule_id == schedule_id)  # type: ignore
            )
            session.delete(schedule)
            session.commit()
        logger.info(f"Deleted schedule {schedule_id}")

    # --- Executions ---

    def create_execution(self, schedule_id: str) -> str:
        with self._session() as session:
            execution = JobExecution(schedule_id=schedule_id, status=RUNNING)
            session.add(execution)
            session.commit()
            return execution.id

    def seal_execution(self, execution_id: str, status: str, end_time: datetime | None = None) -> bool:
        """Record the terminal status of an execution. Sealed records never change."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot seal execution with status '{status}'")
        with self._session() as session:
            result = session.execute(
                sa_update(JobExecution)
                .where(JobExecution.id == execution_id, JobExecution.end_time == None)  # type: ignore # noqa: E711
                .values(status=status, end_time=end_time or _utcnow())
            )
            session.commit()
            return result.rowcount > 0

    def get_execution(self, execution_id: str) -> JobExecution | None:
        with self._session() as session:
            return session.get(JobExecution, execution_id)

    def list_running_executions(self) -> list[JobExecution]:
        with self._session() as session:
            return list(
                session.exec(select(JobExecution).where(JobExecution.status == RUNNING)).all()
            )

    def list_executions(self, schedule_id: str, limit: int = 20) -> list[JobExecution]:
        with self._session() as session:
            return list(
                session.exec(
                    select(JobExecution)
                    .where(JobExecution.schedule_id == schedule_id)
                    .order_by(JobExecution.start_time.desc())  # type: ignore
                    .limit(limit)
                ).all()
            )

    # --- Run bookkeeping (each a single transaction) ---

    def begin_run(self, schedule_id: str) -> str | None:
        """Open an execution and mark the schedule running.

        Returns None, writing nothing, if the schedule is gone or already running.
        """
        with self._session() as session:
            execution = JobExecution(schedule_id=schedule_id, status=RUNNING)
            session.add(execution)
            session.flush()
            result = session.execute(
                sa_update(Schedule)
                .where(Schedule.id == schedule_id, Schedule.status != RUNNING)  # type: ignore
                .values(
                    status=RUNNING,
                    progress=0,
                    current_job_id=execution.id,
                    message="Task started",
                    updated_at=_utcnow(),
                )
            )
            if result.rowcount == 0:
                session.rollback()
                return None
            session.commit()
            return execution.id

    def finish_run(
        self,
        schedule_id: str,
        execution_id: str,
        status: str,
        message: str | None,
    ) -> bool:
        """Seal the execution and move the schedule to its terminal state.

        The schedule row is only touched while ``execution_id`` is still its
        current run; the execution record is sealed regardless.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot finish run with status '{status}'")
        now = _utcnow()
        values: dict[str, Any] = {
            "status": status,
            "last_status": status,
            "current_job_id": None,
            "message": message,
            "last_run": now,
            "updated_at": now,
        }
        if status != FAILED:
            values["progress"] = 100
        with self._session() as session:
            session.execute(
                sa_update(JobExecution)
                .where(JobExecution.id == execution_id, JobExecution.end_time == None)  # type: ignore # noqa: E711
                .values(status=status, end_time=now)
            )
            result = session.execute(
                sa_update(Schedule)
                .where(Schedule.id == schedule_id, Schedule.current_job_id == execution_id)  # type: ignore
                .values(**values)
            )
            session.commit()
            return result.rowcount > 0
