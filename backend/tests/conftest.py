"""Shared test fixtures for backend tests."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from scorecard_sync.models.schedule import ScheduleCreate
from scorecard_sync.services.scheduler.progress import ProgressBroadcaster
from scorecard_sync.services.scheduler.runner import JobOutcome
from scorecard_sync.services.scheduler.store import ScheduleStore

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import scorecard_sync.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def store():
    return ScheduleStore(test_engine)


@pytest.fixture
def broadcaster():
    return ProgressBroadcaster()


@pytest.fixture
def make_schedule(store):
    """Insert a schedule through the store; keyword overrides are applied on top."""
    def _make(**overrides):
        fields = {
            "name": "daily",
            "cron_expression": "0 0 * * *",
            "task": "sync",
            "max_retries": 3,
            "retry_delay": 60,
            "pe": "LAST_12_MONTHS",
            "ou": "ImspTQPwCqd",
            "scorecard": 7,
        }
        fields.update(overrides)
        return store.create(ScheduleCreate(**fields))
    return _make


@pytest.fixture
def job_calls():
    """Schedules the fake job body was invoked with."""
    return []


@pytest.fixture
def client(job_calls):
    """FastAPI TestClient on the test DB with the job body replaced."""
    async def fake_job_body(schedule, context):
        job_calls.append(schedule.id)
        context.report(50, "Halfway")
        return JobOutcome.completed()

    with (
        patch("scorecard_sync.core.database.engine", test_engine),
        patch("scorecard_sync.main.run_scorecard_sync", fake_job_body),
    ):
        from scorecard_sync.main import app

        with TestClient(app) as c:
            yield c


@pytest.fixture
def assert_consistent():
    """Check that a schedule has a current execution exactly while it is running."""
    def _check(schedule):
        assert (schedule.status == "running") == (schedule.current_job_id is not None)
    return _check
