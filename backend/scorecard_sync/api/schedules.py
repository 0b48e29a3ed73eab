"""REST API for managing schedules and streaming their progress."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import StreamingResponse

from scorecard_sync.models.schedule import IDLE, JobExecution, Schedule, ScheduleCreate, ScheduleUpdate
from scorecard_sync.services.scheduler import SchedulerServices
from scorecard_sync.services.scheduler.cron import next_run
from scorecard_sync.services.scheduler.progress import ProgressBroadcaster, ProgressEvent
from scorecard_sync.services.scheduler.store import ScheduleStore

router = APIRouter()
logger = logging.getLogger(__name__)


def get_services(request: Request) -> SchedulerServices:
    return request.app.state.scheduler


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def schedule_to_dict(schedule: Schedule) -> dict[str, Any]:
    return {
        "id": schedule.id,
        "name": schedule.name,
        "cron_expression": schedule.cron_expression,
        "task": schedule.task,
        "is_active": schedule.is_active,
        "created_at": _iso(schedule.created_at),
        "updated_at": _iso(schedule.updated_at),
        "last_run": _iso(schedule.last_run),
        "next_run": _iso(next_run(schedule)),
        "progress": schedule.progress,
        "status": schedule.status,
        "last_status": schedule.last_status,
        "current_job_id": schedule.current_job_id,
        "message": schedule.message,
        "max_retries": schedule.max_retries,
        "retry_delay": schedule.retry_delay,
        "retry_attempts": schedule.retry_attempts,
        "pe": schedule.pe,
        "ou": schedule.ou,
        "scorecard": schedule.scorecard,
        "include_children": schedule.include_children,
    }


def _execution_to_dict(execution: JobExecution) -> dict[str, Any]:
    return {
        "id": execution.id,
        "start_time": _iso(execution.start_time),
        "end_time": _iso(execution.end_time),
        "status": execution.status,
    }


@router.post("/", status_code=201)
async def create_schedule(body: ScheduleCreate, services: SchedulerServices = Depends(get_services)):
    schedule = services.store.create(body)
    return {"message": "Schedule created successfully", "schedule": schedule_to_dict(schedule)}


@router.get("/")
async def list_schedules(services: SchedulerServices = Depends(get_services)):
    return {"schedules": [schedule_to_dict(s) for s in services.store.list_all()]}


@router.get("/{schedule_id}")
async def get_schedule(schedule_id: str, services: SchedulerServices = Depends(get_services)):
    return {"schedule": schedule_to_dict(services.store.require(schedule_id))}


@router.put("/{schedule_id}")
async def update_schedule(
    schedule_id: str, body: ScheduleUpdate, services: SchedulerServices = Depends(get_services)
):
    schedule = services.lifecycle.update(schedule_id, body)
    return {"schedule": schedule_to_dict(schedule)}


@router.post("/{schedule_id}/start")
async def start_schedule(schedule_id: str, services: SchedulerServices = Depends(get_services)):
    schedule = services.lifecycle.start(schedule_id)
    return {"message": "Schedule started successfully", "schedule": schedule_to_dict(schedule)}


@router.post("/{schedule_id}/stop")
async def stop_schedule(schedule_id: str, services: SchedulerServices = Depends(get_services)):
    schedule = services.lifecycle.stop(schedule_id)
    return {"message": "Schedule stopped successfully", "schedule": schedule_to_dict(schedule)}


@router.post("/{schedule_id}/run", status_code=202)
async def run_schedule(
    schedule_id: str,
    background_tasks: BackgroundTasks,
    services: SchedulerServices = Depends(get_services),
):
    services.lifecycle.check_runnable(schedule_id)
    background_tasks.add_task(services.runner.fire, schedule_id)
    return {"message": "Schedule run triggered"}


@router.delete("/{schedule_id}")
async def delete_schedule(schedule_id: str, services: SchedulerServices = Depends(get_services)):
    services.lifecycle.delete(schedule_id)
    return {"message": "Schedule deleted successfully"}


@router.get("/{schedule_id}/runs")
async def list_schedule_runs(
    schedule_id: str, limit: int = 20, services: SchedulerServices = Depends(get_services)
):
    services.store.require(schedule_id)
    return [_execution_to_dict(e) for e in services.store.list_executions(schedule_id, limit)]


async def progress_stream(store: ScheduleStore, broadcaster: ProgressBroadcaster, schedule_id: str):
    """Yield the persisted state of a schedule, then every live event for it."""
    subscription = broadcaster.subscribe(schedule_id)
    try:
        schedule = store.get(schedule_id)
        if schedule is None:
            return
        yield ProgressEvent(
            schedule_id=schedule_id,
            progress=schedule.progress or 0,
            status=schedule.status or IDLE,
        ).to_sse()
        while True:
            yield await subscription.get()
    finally:
        broadcaster.unsubscribe(subscription)


@router.get("/{schedule_id}/progress")
async def stream_progress(schedule_id: str, services: SchedulerServices = Depends(get_services)):
    services.store.require(schedule_id)
    return StreamingResponse(
        progress_stream(services.store, services.broadcaster, schedule_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
