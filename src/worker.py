"""
Generation worker: processes 'generate-plan' jobs.

For each job:
1. Map the job payload to a PlanRequest (trusting upstream validation)
2. Generate the plan with the periodization engine
3. Persist weeks/sessions and mark the plan generated

Any failure that will not be retried marks the plan 'failed' and is re-raised
as UnrecoverableJobError so the queue records the job as failed.

The Celery task in `src.tasks` calls the processor through a WorkerContext.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

import redis
from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError

from src.config import Settings
from src.database import Base, get_engine, get_session_factory
from src.errors import PersistenceError, UnrecoverableJobError
from src.job_queue import JobRegistry, create_redis_client
from src.persistence import PlanPersistenceWriter
from src.plan_schemas import Objective, PlanRequest, TrainingLevel, parse_date
from src.planner import TrainingPlanGenerator
from src.schemas import QueuedJob
from src.store import PlanStore

logger = logging.getLogger(__name__)


class RetryClassifier(Protocol):
    """Decides whether a failed attempt is worth retrying."""

    def is_retriable(self, error: BaseException) -> bool:
        ...


class NeverRetry:
    """Every failure is terminal."""

    def is_retriable(self, error: BaseException) -> bool:
        return False


class TransientDatabaseRetry:
    """Retries persistence failures caused by dropped or flaky connections."""

    TRANSIENT_ERRORS = (OperationalError, DisconnectionError)

    def is_retriable(self, error: BaseException) -> bool:
        if not isinstance(error, PersistenceError):
            return False
        cause = error.__cause__
        if isinstance(cause, self.TRANSIENT_ERRORS):
            return True
        return isinstance(cause, DBAPIError) and cause.connection_invalidated


def to_plan_request(payload: Dict[str, Any]) -> PlanRequest:
    """
    Map a queued request payload to engine input.

    Ranges are not re-validated; the submission path already did that.
    Missing or unparseable fields raise KeyError/ValueError.
    """

    def value(name: str, alias: str):
        return payload[alias] if alias in payload else payload[name]

    return PlanRequest.model_construct(
        objective=Objective(payload["objective"]),
        level=TrainingLevel(payload["level"]),
        duration_weeks=int(value("duration_weeks", "durationWeeks")),
        sessions_per_week=int(value("sessions_per_week", "sessionsPerWeek")),
        start_date=parse_date(value("start_date", "startDate")),
    )


class GenerationWorker:
    """
    Job processor for plan generation.

    Args:
        store: Plan record store (failure status writes)
        writer: Persistence writer for generated plans
        generator_factory: Builds a fresh engine per job
        retry_classifier: Decides which failures are retried (default: none)
    """

    def __init__(
        self,
        store: PlanStore,
        writer: PlanPersistenceWriter,
        generator_factory: Callable[[], TrainingPlanGenerator] = TrainingPlanGenerator,
        retry_classifier: Optional[RetryClassifier] = None,
    ):
        self.store = store
        self.writer = writer
        self.generator_factory = generator_factory
        self.retry_classifier = retry_classifier or NeverRetry()

    def __call__(self, job: QueuedJob) -> Dict[str, Any]:
        return self.process(job)

    def process(self, job: QueuedJob) -> Dict[str, Any]:
        """
        Generate and persist the plan for one job.

        Returns:
            {"success": True, "plan_id": ...}

        Raises:
            UnrecoverableJobError: The plan was marked failed
            Exception: A retriable failure, re-raised as is for another attempt
        """
        plan_id = job.data.plan_id
        logger.info(
            "Processing generate-plan job %s (plan %s, owner %s, attempt %d/%d)",
            job.job_id,
            plan_id,
            job.data.owner_id,
            job.attempts_made + 1,
            job.options.attempts,
        )

        try:
            request = to_plan_request(job.data.request)
            plan = self.generator_factory().generate(request)
            self.writer.persist(plan_id, plan)
        except Exception as e:
            if not job.is_last_attempt and self.retry_classifier.is_retriable(e):
                logger.warning("Plan %s attempt failed, will retry: %s", plan_id, e)
                raise
            self._fail(plan_id, e)

        logger.info("Plan %s generated and saved", plan_id)
        return {"success": True, "plan_id": plan_id}

    def _fail(self, plan_id: str, error: Exception) -> None:
        message = str(error) or type(error).__name__
        logger.error("Failed to generate plan %s: %s", plan_id, message)
        try:
            self.store.mark_failed(plan_id, message)
        except PersistenceError:
            logger.exception("Could not record failure for plan %s", plan_id)
        raise UnrecoverableJobError(message) from error


@dataclass
class WorkerContext:
    """
    What a process needs to execute generation jobs.

    Built once per worker process, or by `planner_runtime` when jobs run
    in-process.
    """

    store: PlanStore
    registry: JobRegistry
    processor: Callable[[QueuedJob], Dict[str, Any]]
    closers: List[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for close in reversed(self.closers):
            close()
        self.closers = []


def open_worker_context(
    settings: Settings,
    redis_client: Optional[redis.Redis] = None,
    retry_classifier: Optional[RetryClassifier] = None,
) -> WorkerContext:
    """
    Open the database and the job registry and build the processor.

    A Redis client passed in is left open on close().
    """
    engine = get_engine(settings.database_url)
    Base.metadata.create_all(engine)
    session_factory = get_session_factory(engine)
    closers: List[Callable[[], None]] = [engine.dispose]

    if redis_client is None:
        redis_client = create_redis_client(settings.redis_url)
        closers.append(redis_client.close)

    store = PlanStore(session_factory)
    registry = JobRegistry(
        redis_client,
        completed_marker_seconds=settings.completed_job_marker_seconds,
    )
    processor = GenerationWorker(
        store,
        PlanPersistenceWriter(session_factory),
        retry_classifier=retry_classifier,
    )
    return WorkerContext(store=store, registry=registry, processor=processor, closers=closers)
