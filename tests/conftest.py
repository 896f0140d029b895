"""Shared fixtures: a throwaway SQLite database, a fake Redis and plan requests."""

from datetime import date

import fakeredis
import pytest

from src.config import Settings
from src.database import init_database
from src.job_queue import JobRegistry
from src.persistence import PlanPersistenceWriter
from src.plan_schemas import Objective, PlanRequest, TrainingLevel
from src.store import PlanStore
from src.tasks import configure_celery, set_worker_context
from src.worker import GenerationWorker, WorkerContext


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'planner.db'}"


@pytest.fixture
def session_factory(database_url):
    factory = init_database(database_url)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def store(session_factory):
    return PlanStore(session_factory)


@pytest.fixture
def writer(session_factory):
    return PlanPersistenceWriter(session_factory)


@pytest.fixture
def redis_client():
    """A Redis of our own per test; nothing leaks between tests."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def registry(redis_client):
    return JobRegistry(redis_client)


@pytest.fixture
def marathon_request():
    """12-week intermediate marathon plan, 4 sessions per week."""
    return PlanRequest(
        objective=Objective.MARATHON,
        level=TrainingLevel.INTERMEDIATE,
        duration_weeks=12,
        sessions_per_week=4,
        start_date=date(2025, 6, 1),
    )


@pytest.fixture
def too_short_request():
    """A 3-week request that bypassed validation (engine must reject it)."""
    return PlanRequest.model_construct(
        objective=Objective.FIVE_K,
        level=TrainingLevel.BEGINNER,
        duration_weeks=3,
        sessions_per_week=3,
        start_date=date(2025, 6, 1),
    )


@pytest.fixture
def settings(database_url):
    """
    Settings pointing at the throwaway database, with fast polling.

    Celery runs tasks inline (no broker) with an in-memory transport.
    """
    return Settings(
        _env_file=None,
        database_url=database_url,
        broker_url="memory://",
        result_backend="cache+memory://",
        task_always_eager=True,
        status_poll_attempts=200,
        status_poll_interval_seconds=0.05,
    )


@pytest.fixture
def eager_celery(settings):
    """Celery configured from the test settings; tasks run inside apply_async."""
    yield configure_celery(settings)
    set_worker_context(None)


@pytest.fixture
def run_jobs_with(eager_celery, store, registry):
    """
    Install a processor for the generation task.

    Usage:
        run_jobs_with(lambda job: {"success": True})
    """

    def install(processor):
        set_worker_context(WorkerContext(store=store, registry=registry, processor=processor))
        return processor

    return install


@pytest.fixture
def generation_worker(run_jobs_with, store, writer):
    """The real generation processor, run inline by the task."""
    return run_jobs_with(GenerationWorker(store, writer))
