"""Tests for the schedule store."""

import pytest
from sqlmodel import Session, select

from scorecard_sync.core.errors import NotFound, ValidationError
from scorecard_sync.models.schedule import JobExecution, ScheduleCreate, ScheduleUpdate


def test_create_sets_initial_state(make_schedule, assert_consistent):
    schedule = make_schedule()
    assert schedule.id
    assert schedule.status == "idle"
    assert schedule.is_active is False
    assert schedule.progress == 0
    assert schedule.current_job_id is None
    assert schedule.last_run is None
    assert_consistent(schedule)


@pytest.mark.parametrize("missing", ["name", "cron_expression", "task"])
def test_create_requires_fields(make_schedule, missing):
    with pytest.raises(ValidationError):
        make_schedule(**{missing: None})


def test_create_rejects_invalid_cron(make_schedule):
    with pytest.raises(ValidationError, match="cron"):
        make_schedule(cron_expression="every day")


@pytest.mark.parametrize(
    "overrides",
    [{"max_retries": 11}, {"max_retries": -1}, {"retry_delay": 3601}, {"retry_delay": -5}],
)
def test_create_rejects_retry_out_of_bounds(make_schedule, overrides):
    with pytest.raises(ValidationError):
        make_schedule(**overrides)


def test_create_accepts_retry_upper_bounds(make_schedule):
    schedule = make_schedule(max_retries=10, retry_delay=3600)
    assert schedule.max_retries == 10
    assert schedule.retry_delay == 3600


def test_get_and_require(store, make_schedule):
    schedule = make_schedule()
    assert store.get(schedule.id).name == "daily"
    assert store.get("missing") is None
    with pytest.raises(NotFound):
        store.require("missing")


def test_list_all_is_stable(store, make_schedule):
    ids = [make_schedule(name=f"s{i}").id for i in range(3)]
    first = [s.id for s in store.list_all()]
    assert sorted(first) == sorted(ids)
    assert [s.id for s in store.list_all()] == first


def test_update_merges_fields(store, make_schedule):
    schedule = make_schedule()
    updated = store.update(schedule.id, ScheduleUpdate(name="weekly", cron_expression="0 0 * * 0"))
    assert updated.name == "weekly"
    assert updated.cron_expression == "0 0 * * 0"
    assert updated.task == "sync"
    assert updated.updated_at >= schedule.updated_at


def test_update_validates_merged_values(store, make_schedule):
    schedule = make_schedule()
    with pytest.raises(ValidationError):
        store.update(schedule.id, ScheduleUpdate(max_retries=11))
    with pytest.raises(ValidationError):
        store.update(schedule.id, ScheduleUpdate(cron_expression="bad"))
    assert store.get(schedule.id).max_retries == 3


@pytest.mark.parametrize("field", ["max_retries", "retry_delay", "include_children", "cron_expression"])
def test_update_rejects_null_for_required_columns(store, make_schedule, field):
    schedule = make_schedule()
    with pytest.raises(ValidationError, match=field):
        store.update(schedule.id, ScheduleUpdate(**{field: None}))
    fresh = store.get(schedule.id)
    assert fresh.max_retries == 3
    assert fresh.retry_delay == 60
    assert fresh.include_children is False


def test_update_allows_clearing_job_parameters(store, make_schedule):
    schedule = make_schedule()
    updated = store.update(schedule.id, ScheduleUpdate(pe=None, scorecard=None))
    assert updated.pe is None
    assert updated.scorecard is None
    assert updated.ou == "ImspTQPwCqd"


def test_update_unknown_raises(store):
    with pytest.raises(NotFound):
        store.update("missing", ScheduleUpdate(name="x"))


def test_update_does_not_clobber_run_state(store, make_schedule):
    schedule = make_schedule()
    execution_id = store.begin_run(schedule.id)
    store.update(schedule.id, ScheduleUpdate(name="renamed"))
    fresh = store.get(schedule.id)
    assert fresh.status == "running"
    assert fresh.current_job_id == execution_id
    assert fresh.name == "renamed"


def test_set_run_state_is_field_level(store, make_schedule):
    schedule = make_schedule()
    assert store.set_run_state(schedule.id, progress=40, message="working")
    fresh = store.get(schedule.id)
    assert fresh.progress == 40
    assert fresh.message == "working"
    assert fresh.name == "daily"
    assert fresh.status == "idle"


def test_set_run_state_rejects_stale_execution(store, make_schedule):
    schedule = make_schedule()
    execution_id = store.begin_run(schedule.id)
    assert store.set_run_state(schedule.id, progress=10, expected_execution_id=execution_id)
    assert not store.set_run_state(schedule.id, progress=99, expected_execution_id="old-run")
    assert store.get(schedule.id).progress == 10


def test_begin_and_finish_run(store, make_schedule, assert_consistent):
    schedule = make_schedule()
    execution_id = store.begin_run(schedule.id)
    running = store.get(schedule.id)
    assert running.status == "running"
    assert running.current_job_id == execution_id
    assert_consistent(running)
    assert [e.id for e in store.list_running_executions()] == [execution_id]

    assert store.finish_run(schedule.id, execution_id, "completed", "done")
    done = store.get(schedule.id)
    assert done.status == "completed"
    assert done.last_status == "completed"
    assert done.progress == 100
    assert done.last_run is not None
    assert_consistent(done)

    execution = store.get_execution(execution_id)
    assert execution.status == "completed"
    assert execution.end_time is not None
    assert store.list_running_executions() == []


def test_begin_run_refuses_when_already_running(store, make_schedule):
    schedule = make_schedule()
    assert store.begin_run(schedule.id) is not None
    assert store.begin_run(schedule.id) is None
    assert len(store.list_executions(schedule.id)) == 1


def test_finish_run_from_stale_execution_leaves_schedule(store, make_schedule):
    schedule = make_schedule()
    first = store.begin_run(schedule.id)
    store.finish_run(schedule.id, first, "completed", "ok")
    second = store.begin_run(schedule.id)

    assert not store.finish_run(schedule.id, first, "failed", "late")
    fresh = store.get(schedule.id)
    assert fresh.status == "running"
    assert fresh.current_job_id == second


def test_sealed_execution_is_not_mutated(store, make_schedule):
    schedule = make_schedule()
    execution_id = store.create_execution(schedule.id)
    assert store.seal_execution(execution_id, "failed")
    assert not store.seal_execution(execution_id, "completed")
    assert store.get_execution(execution_id).status == "failed"


def test_seal_execution_requires_terminal_status(store, make_schedule):
    execution_id = store.create_execution(make_schedule().id)
    with pytest.raises(ValueError):
        store.seal_execution(execution_id, "running")


def test_set_active_keeps_in_flight_run(store, make_schedule, assert_consistent):
    schedule = make_schedule()
    store.set_active(schedule.id, True, reset_run_state=True)
    store.begin_run(schedule.id)
    stopped = store.set_active(schedule.id, False, reset_run_state=True)
    assert stopped.is_active is False
    assert stopped.status == "running"
    assert_consistent(stopped)


def test_set_active_can_keep_progress(store, make_schedule):
    schedule = make_schedule()
    store.set_active(schedule.id, True, reset_run_state=True)
    execution_id = store.begin_run(schedule.id)
    store.finish_run(schedule.id, execution_id, "completed", "Task completed successfully")

    stopped = store.set_active(schedule.id, False, reset_run_state=True, reset_progress=False)
    assert stopped.status == "idle"
    assert stopped.progress == 100

    started = store.set_active(schedule.id, True, reset_run_state=True)
    assert started.progress == 0


def test_delete_removes_schedule_and_history(store, make_schedule):
    schedule = make_schedule()
    store.create_execution(schedule.id)
    store.delete(schedule.id)
    assert store.get(schedule.id) is None
    with Session(store._engine) as session:
        assert session.exec(select(JobExecution)).all() == []
    with pytest.raises(NotFound):
        store.delete(schedule.id)


def test_scenario_create(store):
    schedule = store.create(
        ScheduleCreate(
            name="daily", cron_expression="0 0 * * *", task="sync", max_retries=3, retry_delay=60
        )
    )
    assert schedule.status == "idle"
    assert schedule.is_active is False
