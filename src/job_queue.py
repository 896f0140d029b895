"""
Job bookkeeping and enqueueing for plan generation.

Jobs travel through Celery on a Redis broker. The task id is the plan id, but
a Celery result backend answers PENDING for ids it has never seen, so job
identity is tracked separately in Redis:

- `<queue>:job:<id>` hash: a job the queue still remembers (waiting, delayed,
  active, completed-and-kept, or failed inside its retention window)
- `<queue>:done:<id>` marker: the id has finished before and was forgotten

Enqueueing an id with a live job hash is a no-op; enqueueing an id with only
a done marker starts a new execution. Every key carries a TTL, so finished
jobs never accumulate.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis
from redis.exceptions import RedisError

from src.errors import QueueError
from src.plan_schemas import PlanRequest
from src.schemas import (
    GENERATE_PLAN_QUEUE_NAME,
    EnqueueOutcome,
    EnqueueResult,
    GenerationJob,
    JobOptions,
    JobSnapshot,
    JobState,
)

logger = logging.getLogger(__name__)

DEFAULT_COMPLETED_MARKER_SECONDS = 24 * 60 * 60


def create_redis_client(url: str) -> redis.Redis:
    """Redis client for job bookkeeping. Responses are decoded to str."""
    return redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
        retry_on_timeout=True,
        health_check_interval=30,
    )


def _milliseconds(seconds: float) -> int:
    return max(1, int(seconds * 1000))


class JobRegistry:
    """
    Redis record of the jobs a queue knows about.

    Args:
        client: Redis client created with decode_responses=True
        queue_name: Key prefix
        completed_marker_seconds: How long a forgotten job id is remembered
            as finished, which decides between ENQUEUED_NEW and
            ENQUEUED_AFTER_COMPLETION
    """

    def __init__(
        self,
        client: redis.Redis,
        queue_name: str = GENERATE_PLAN_QUEUE_NAME,
        completed_marker_seconds: float = DEFAULT_COMPLETED_MARKER_SECONDS,
    ):
        self.client = client
        self.queue_name = queue_name
        self.completed_marker_seconds = completed_marker_seconds

    def job_key(self, job_id: str) -> str:
        return f"{self.queue_name}:job:{job_id}"

    def done_key(self, job_id: str) -> str:
        return f"{self.queue_name}:done:{job_id}"

    # ===== PRODUCER SIDE =====

    def claim(self, job_id: str, options: JobOptions) -> EnqueueResult:
        """
        Reserve a job id before the task is published.

        Returns:
            DUPLICATE_IN_FLIGHT with the live job's state when the id is
            taken, otherwise a fresh WAITING claim
        """
        key = self.job_key(job_id)
        while not self.client.hsetnx(key, "state", JobState.WAITING.value):
            state = self.client.hget(key, "state")
            if state is not None:
                logger.debug("Job %s already known (%s); not enqueued again", job_id, state)
                return EnqueueResult(
                    job_id=job_id,
                    outcome=EnqueueOutcome.DUPLICATE_IN_FLIGHT,
                    state=JobState(state),
                )
            # the hash expired between the two calls; claim again

        self.client.hset(
            key,
            mapping={"attempts_made": 0, "options": options.model_dump_json()},
        )
        if self.client.delete(self.done_key(job_id)):
            outcome = EnqueueOutcome.ENQUEUED_AFTER_COMPLETION
        else:
            outcome = EnqueueOutcome.ENQUEUED_NEW
        return EnqueueResult(job_id=job_id, outcome=outcome, state=JobState.WAITING)

    def release(self, job_id: str) -> None:
        """Drop a claim whose task was never published."""
        self.client.delete(self.job_key(job_id))

    # ===== WORKER SIDE =====

    def mark_active(self, job_id: str, attempts_made: int) -> None:
        key = self.job_key(job_id)
        with self.client.pipeline() as pipe:
            pipe.hset(key, mapping={"state": JobState.ACTIVE.value, "attempts_made": attempts_made})
            pipe.persist(key)
            pipe.execute()

    def mark_delayed(self, job_id: str, attempts_made: int, error: BaseException) -> None:
        """Record a failed attempt that will be retried after its backoff."""
        self.client.hset(
            self.job_key(job_id),
            mapping={
                "state": JobState.DELAYED.value,
                "attempts_made": attempts_made,
                "failed_reason": str(error),
            },
        )

    def complete(self, job_id: str, result: Optional[Dict[str, Any]] = None) -> None:
        options = self._options(job_id)
        key = self.job_key(job_id)
        marker_ms = _milliseconds(self.completed_marker_seconds)
        with self.client.pipeline() as pipe:
            if options.remove_on_complete:
                pipe.delete(key)
            else:
                pipe.hset(
                    key,
                    mapping={
                        "state": JobState.COMPLETED.value,
                        "result": json.dumps(result),
                    },
                )
                pipe.pexpire(key, marker_ms)
            pipe.set(self.done_key(job_id), JobState.COMPLETED.value, px=marker_ms)
            pipe.execute()

    def fail(self, job_id: str, error: BaseException, attempts_made: int) -> None:
        """
        Record the final failure of a job.

        The job keeps its id for `remove_on_fail_seconds`, then expires and
        leaves a done marker behind.
        """
        options = self._options(job_id)
        key = self.job_key(job_id)
        retention = options.remove_on_fail_seconds
        with self.client.pipeline() as pipe:
            if retention <= 0:
                pipe.delete(key)
                pipe.set(
                    self.done_key(job_id),
                    JobState.FAILED.value,
                    px=_milliseconds(self.completed_marker_seconds),
                )
            else:
                pipe.hset(
                    key,
                    mapping={
                        "state": JobState.FAILED.value,
                        "attempts_made": attempts_made,
                        "failed_reason": str(error),
                    },
                )
                pipe.pexpire(key, _milliseconds(retention))
                pipe.set(
                    self.done_key(job_id),
                    JobState.FAILED.value,
                    px=_milliseconds(retention + self.completed_marker_seconds),
                )
            pipe.execute()

    # ===== INSPECTION =====

    def get(self, job_id: str) -> Optional[JobSnapshot]:
        data = self.client.hgetall(self.job_key(job_id))
        if not data or "state" not in data:
            return None
        return JobSnapshot(
            job_id=job_id,
            state=JobState(data["state"]),
            attempts_made=int(data.get("attempts_made", 0)),
            failed_reason=data.get("failed_reason"),
            result=json.loads(data["result"]) if data.get("result") else None,
            options=self._parse_options(data.get("options")),
        )

    def counts(self) -> Dict[JobState, int]:
        counts = {state: 0 for state in JobState}
        for key in self.client.scan_iter(match=f"{self.queue_name}:job:*"):
            state = self.client.hget(key, "state")
            if state is not None:
                counts[JobState(state)] += 1
        return counts

    def _options(self, job_id: str) -> JobOptions:
        return self._parse_options(self.client.hget(self.job_key(job_id), "options"))

    @staticmethod
    def _parse_options(raw: Optional[str]) -> JobOptions:
        return JobOptions.model_validate_json(raw) if raw else JobOptions()


class JobQueue:
    """
    Producer for a Celery task keyed by job id.

    Args:
        registry: Job bookkeeping in Redis
        task: Celery task consuming the queue
        default_options: Options applied when enqueue() gets none
    """

    def __init__(
        self,
        registry: JobRegistry,
        task,
        default_options: Optional[JobOptions] = None,
    ):
        self.registry = registry
        self.task = task
        self.default_options = default_options or JobOptions()

    @property
    def name(self) -> str:
        return self.registry.queue_name

    def enqueue(
        self,
        plan_id: str,
        owner_id: str,
        request: PlanRequest,
        options: Optional[JobOptions] = None,
    ) -> EnqueueResult:
        """
        Submit a plan generation job; the plan id is the job id.

        Raises:
            QueueError: If the request cannot be serialized or the job
                cannot be published
        """
        try:
            payload = request.model_dump(mode="json", by_alias=True)
        except Exception as e:
            raise QueueError(f"Could not serialize request for plan {plan_id}: {e}") from e
        return self.add(GenerationJob(owner_id=owner_id, plan_id=plan_id, request=payload), options)

    def add(self, job: GenerationJob, options: Optional[JobOptions] = None) -> EnqueueResult:
        """Publish a job unless its id is already known to the queue."""
        options = options or self.default_options
        try:
            claimed = self.registry.claim(job.job_id, options)
        except RedisError as e:
            raise QueueError(f"Job registry unavailable for {job.job_id}: {e}") from e
        if not claimed.outcome.created_execution:
            return claimed

        try:
            self.task.apply_async(
                args=[job.model_dump(mode="json")],
                kwargs={"options": options.model_dump(mode="json")},
                task_id=job.job_id,
                queue=self.name,
            )
        except Exception as e:
            logger.error("Could not publish job %s to '%s': %s", job.job_id, self.name, e)
            self.registry.release(job.job_id)
            raise QueueError(f"Failed to enqueue job {job.job_id}: {e}") from e

        logger.debug("Enqueued job %s on '%s' (%s)", job.job_id, self.name, claimed.outcome.value)
        return claimed

    def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        return self.registry.get(job_id)
