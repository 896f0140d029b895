"""
Plan generation service.

The submission/status façade in front of the generation pipeline:
- submit(): create the pending plan record, then enqueue the job
- get_status() / wait_for_status(): answer status polls
- get_plan() / list_plans(): read models for generated plans

`planner_runtime()` wires store, job registry, Celery queue and service
together and owns their lifecycle.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

import redis

from src.config import Settings
from src.errors import QueueError
from src.job_queue import JobQueue, JobRegistry
from src.plan_schemas import PlanRequest, PlanStatus
from src.schemas import (
    JobOptions,
    PlanDetail,
    PlanStatusView,
    PlanSummary,
    SubmissionResult,
)
from src.store import PlanStore
from src.tasks import configure_celery, generate_plan_task, set_worker_context
from src.worker import RetryClassifier, open_worker_context

logger = logging.getLogger(__name__)


class PlanGenerationService:
    """
    Accepts plan generation requests and answers status queries.

    Requests reaching this class are already validated. The service only
    creates plan records; status changes belong to the worker.

    Args:
        store: Plan record store
        queue: Generation job queue
        job_options: Delivery options for generation jobs
        sleep: Used between status polls
    """

    def __init__(
        self,
        store: PlanStore,
        queue: JobQueue,
        job_options: Optional[JobOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.queue = queue
        self.job_options = job_options
        self._sleep = sleep

    def submit(self, owner_id: str, request: PlanRequest) -> SubmissionResult:
        """
        Create a pending plan and enqueue its generation job.

        Raises:
            QueueError: If the job could not be enqueued. The pending record
                is removed first so no orphaned plan is left behind.
        """
        plan_id = self.store.create_pending(owner_id, request)
        try:
            result = self.queue.enqueue(plan_id, owner_id, request, self.job_options)
        except Exception as e:
            logger.error("Failed to enqueue generation job for plan %s: %s", plan_id, e)
            self.store.delete_plan(plan_id)
            if isinstance(e, QueueError):
                raise
            raise QueueError(f"Failed to enqueue generation job: {e}") from e

        logger.info("Plan %s submitted (%s)", plan_id, result.outcome.value)
        return SubmissionResult(plan_id=plan_id, status=PlanStatus.PENDING, outcome=result.outcome)

    def get_status(self, owner_id: str, plan_id: str) -> PlanStatusView:
        return self.store.get_status(plan_id, owner_id)

    def wait_for_status(
        self,
        owner_id: str,
        plan_id: str,
        attempts: int = 20,
        interval: float = 0.5,
    ) -> PlanStatusView:
        """
        Poll until the plan reaches a terminal status or attempts run out.

        Returns:
            The last observed status, which may still be pending
        """
        view = self.get_status(owner_id, plan_id)
        for _ in range(attempts - 1):
            if view.status.is_terminal:
                break
            self._sleep(interval)
            view = self.get_status(owner_id, plan_id)
        return view

    def get_plan(self, owner_id: str, plan_id: str) -> PlanDetail:
        return self.store.get_plan(plan_id, owner_id)

    def list_plans(self, owner_id: str) -> List[PlanSummary]:
        return self.store.list_plans(owner_id)


@dataclass
class PlannerRuntime:
    """Everything a process needs to accept generation jobs."""

    settings: Settings
    store: PlanStore
    registry: JobRegistry
    queue: JobQueue
    service: PlanGenerationService


@contextmanager
def planner_runtime(
    settings: Settings,
    redis_client: Optional[redis.Redis] = None,
    retry_classifier: Optional[RetryClassifier] = None,
) -> Iterator[PlannerRuntime]:
    """
    Configure Celery, open the database and the job registry; close them on exit.

    Jobs are executed by a Celery worker, or inline when
    `settings.task_always_eager` is set.

    Usage:
        with planner_runtime(get_settings()) as runtime:
            runtime.service.submit(owner_id, request)
    """
    configure_celery(settings)
    context = open_worker_context(settings, redis_client, retry_classifier)

    job_options = JobOptions(
        attempts=settings.job_attempts,
        backoff_seconds=settings.job_backoff_seconds,
        remove_on_fail_seconds=settings.failed_job_retention_seconds,
    )
    queue = JobQueue(context.registry, generate_plan_task, job_options)
    service = PlanGenerationService(context.store, queue, job_options)

    set_worker_context(context)
    try:
        yield PlannerRuntime(settings, context.store, context.registry, queue, service)
    finally:
        logger.info("Shutting down plan generation runtime")
        set_worker_context(None)
        context.close()
