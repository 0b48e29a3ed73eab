"""Schedule definitions, run history, and the schemas used to create/edit them."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlmodel import Field, SQLModel

# Run states of a schedule. Execution records only ever hold the last three.
IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATUSES = (COMPLETED, FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Schedule(SQLModel, table=True):
    __tablename__ = "schedules"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    cron_expression: str  # "0 0 * * *" or with leading seconds field
    task: str
    is_active: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_run: Optional[datetime] = None

    # Run state
    status: str = Field(default=IDLE)
    last_status: Optional[str] = None
    progress: int = Field(default=0)
    current_job_id: Optional[str] = None  # set iff status == running
    message: Optional[str] = None

    # Retry policy (persisted, advisory)
    max_retries: int = Field(default=3)
    retry_delay: int = Field(default=60)
    retry_attempts: int = Field(default=0)

    # Job body parameters
    pe: Optional[str] = None
    ou: Optional[str] = None
    scorecard: Optional[int] = None
    include_children: bool = Field(default=False)


class JobExecution(SQLModel, table=True):
    __tablename__ = "job_executions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    schedule_id: str = Field(foreign_key="schedules.id", index=True)
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    status: str = Field(default=RUNNING)


class ScheduleCreate(BaseModel):
    # Required fields are checked by the store so they fail as ValidationError
    name: Optional[str] = None
    cron_expression: Optional[str] = None
    task: Optional[str] = None
    max_retries: int = 3
    retry_delay: int = 60
    pe: Optional[str] = None
    ou: Optional[str] = None
    scorecard: Optional[int] = None
    include_children: bool = False


class ScheduleUpdate(BaseModel):
    name: Optional[str] = None
    cron_expression: Optional[str] = None
    task: Optional[str] = None
    max_retries: Optional[int] = None
    retry_delay: Optional[int] = None
    pe: Optional[str] = None
    ou: Optional[str] = None
    scorecard: Optional[int] = None
    include_children: Optional[bool] = None
