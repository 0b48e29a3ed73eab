"""Tests for startup recovery."""

import json

import pytest
from sqlalchemy import update

from scorecard_sync.models.schedule import Schedule
from scorecard_sync.services.scheduler.recovery import INTERRUPTED_MESSAGE, recover
from scorecard_sync.services.scheduler.runner import JobRunner


async def _noop(schedule, context):
    return None


@pytest.mark.asyncio
async def test_running_schedule_is_marked_failed(store, broadcaster, make_schedule, assert_consistent):
    schedule = make_schedule()
    execution_id = store.begin_run(schedule.id)
    store.set_run_state(schedule.id, progress=60)
    received = []
    broadcaster.subscribe(schedule.id, received.append)

    report = recover(store, JobRunner(store, broadcaster, _noop), broadcaster)

    assert report.interrupted == [schedule.id]
    recovered = store.get(schedule.id)
    assert recovered.status == "failed"
    assert recovered.last_status == "failed"
    assert recovered.progress == 0
    assert recovered.message == INTERRUPTED_MESSAGE
    assert recovered.last_run is not None
    assert_consistent(recovered)

    execution = store.get_execution(execution_id)
    assert execution.status == "failed"
    assert execution.end_time is not None

    [record] = received
    event = json.loads(record[len("data: "):])
    assert event["status"] == "failed"
    assert event["progress"] == 0
    assert event["message"] == INTERRUPTED_MESSAGE


@pytest.mark.asyncio
async def test_idle_schedules_are_untouched(store, broadcaster, make_schedule):
    schedule = make_schedule()
    report = recover(store, JobRunner(store, broadcaster, _noop), broadcaster)
    assert report.interrupted == []
    assert store.get(schedule.id).status == "idle"


@pytest.mark.asyncio
async def test_active_schedules_are_armed(store, broadcaster, make_schedule):
    active = make_schedule(name="active")
    inactive = make_schedule(name="inactive")
    store.set_active(active.id, True, reset_run_state=True)
    runner = JobRunner(store, broadcaster, _noop)

    report = recover(store, runner, broadcaster)

    assert report.armed == [active.id]
    assert runner.is_armed(active.id)
    assert not runner.is_armed(inactive.id)


@pytest.mark.asyncio
async def test_one_bad_schedule_does_not_block_others(store, broadcaster, make_schedule):
    good = make_schedule(name="good")
    bad = make_schedule(name="bad")
    for s in (good, bad):
        store.set_active(s.id, True, reset_run_state=True)
    # Written directly, as an older version might have persisted it
    with store._session() as session:
        session.execute(update(Schedule).where(Schedule.id == bad.id).values(cron_expression="nonsense"))
        session.commit()

    runner = JobRunner(store, broadcaster, _noop)
    report = recover(store, runner, broadcaster)

    assert report.armed == [good.id]
    assert report.failed_to_arm == [bad.id]
    assert runner.is_armed(good.id)
    assert not runner.is_armed(bad.id)
