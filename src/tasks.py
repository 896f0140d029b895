"""
Celery app and the plan generation task.

The task is imported by the API and CLI (to enqueue) and by the worker (to
execute). Delivery is acknowledged late, so a job whose worker dies is
redelivered by the broker.

Run a worker with:
    python3 -m src.cli worker
"""

import logging
import threading
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import Celery
from celery.signals import task_failure, task_prerun, task_retry, task_success, worker_process_shutdown

from src.config import Settings, get_settings
from src.errors import UnrecoverableJobError
from src.schemas import GENERATE_PLAN_QUEUE_NAME, GenerationJob, JobOptions, QueuedJob
from src.worker import WorkerContext, open_worker_context

logger = logging.getLogger(__name__)

GENERATE_PLAN_TASK_NAME = "tasks.generate_plan"

celery_app = Celery("training_planner")


def rate_limit_for(settings: Settings) -> str:
    """Celery rate limit string, e.g. 10 jobs per 1 s -> '10/s'."""
    per_second = settings.rate_limit_max / settings.rate_limit_duration_seconds
    return f"{per_second:g}/s"


def configure_celery(settings: Settings) -> Celery:
    """Apply settings to the Celery app and the generation task."""
    celery_app.conf.update(
        broker_url=settings.broker_url,
        result_backend=settings.result_backend,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        task_acks_late=True,  # redeliver jobs whose worker died mid-run
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.worker_concurrency,
        result_expires=timedelta(seconds=settings.failed_job_retention_seconds),
        task_routes={GENERATE_PLAN_TASK_NAME: {"queue": GENERATE_PLAN_QUEUE_NAME}},
        task_default_queue=GENERATE_PLAN_QUEUE_NAME,
        task_always_eager=settings.task_always_eager,
    )
    generate_plan_task.rate_limit = rate_limit_for(settings)
    return celery_app


# ===== WORKER CONTEXT =====

_worker_context: Optional[WorkerContext] = None
_context_lock = threading.Lock()


def set_worker_context(context: Optional[WorkerContext]) -> None:
    """Install the context tasks run against (None to clear it)."""
    global _worker_context
    with _context_lock:
        _worker_context = context


def get_worker_context() -> WorkerContext:
    """Current context, opened from settings on first use in a worker process."""
    global _worker_context
    with _context_lock:
        if _worker_context is None:
            _worker_context = open_worker_context(get_settings())
        return _worker_context


@worker_process_shutdown.connect
def _close_worker_context(**kwargs) -> None:
    global _worker_context
    with _context_lock:
        if _worker_context is not None:
            _worker_context.close()
            _worker_context = None


# ===== TASKS =====


@celery_app.task(name=GENERATE_PLAN_TASK_NAME, bind=True, max_retries=0, rate_limit="10/s")
def generate_plan_task(self, job: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Run one delivery of a generate-plan job.

    Failures the processor reports as unrecoverable are final. Any other
    failure is retried with exponential backoff while attempts remain.
    """
    context = get_worker_context()
    job_options = JobOptions.model_validate(options or {})
    data = GenerationJob.model_validate(job)
    queued = QueuedJob(
        job_id=self.request.id or data.job_id,
        data=data,
        attempts_made=self.request.retries or 0,
        options=job_options,
    )
    context.registry.mark_active(queued.job_id, queued.attempts_made)

    try:
        result = context.processor(queued)
    except UnrecoverableJobError as e:
        context.registry.fail(queued.job_id, e, queued.attempts_made + 1)
        raise
    except Exception as e:
        attempts_made = queued.attempts_made + 1
        if queued.is_last_attempt:
            context.registry.fail(queued.job_id, e, attempts_made)
            raise
        delay = job_options.backoff_delay(attempts_made)
        context.registry.mark_delayed(queued.job_id, attempts_made, e)
        logger.info(
            "Job %s failed attempt %d/%d; retrying in %.2fs",
            queued.job_id,
            attempts_made,
            job_options.attempts,
            delay,
        )
        raise self.retry(exc=e, countdown=delay, max_retries=job_options.attempts - 1)

    context.registry.complete(queued.job_id, result)
    return result


# ===== LIFECYCLE LOGGING =====


@task_prerun.connect
def _log_task_active(task_id=None, task=None, **kwargs) -> None:
    logger.debug("Job %s active (%s)", task_id, getattr(task, "name", task))


@task_success.connect
def _log_task_completed(sender=None, result=None, **kwargs) -> None:
    task_id = sender.request.id if sender is not None else None
    logger.info("Job %s completed", task_id)


@task_retry.connect
def _log_task_retry(request=None, reason=None, **kwargs) -> None:
    logger.warning("Job %s will be retried: %s", getattr(request, "id", None), reason)


@task_failure.connect
def _log_task_failed(task_id=None, exception=None, **kwargs) -> None:
    logger.error("Job %s failed: %s", task_id, exception)


configure_celery(get_settings())
