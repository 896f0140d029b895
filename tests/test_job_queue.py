"""
Tests for the job registry, the Celery-backed queue and the generation task.

Covers:
- Enqueue outcomes: new, duplicate while known, new after completion
- Failed-job retention and removal on completion
- Every finished job expires from Redis
- Retries with exponential backoff, unrecoverable failures
- Publish and registry failures surface as QueueError
- Celery wiring: concurrency, rate limit, late acknowledgement, routing
"""

import time
from datetime import timedelta

import fakeredis
import pytest

from src.errors import QueueError, UnrecoverableJobError
from src.job_queue import JobQueue, JobRegistry
from src.schemas import (
    GENERATE_PLAN_QUEUE_NAME,
    EnqueueOutcome,
    GenerationJob,
    JobOptions,
    JobState,
)
from src.tasks import (
    GENERATE_PLAN_TASK_NAME,
    celery_app,
    generate_plan_task,
    rate_limit_for,
)


def make_job(plan_id="plan-1", owner_id="user-1"):
    return GenerationJob(owner_id=owner_id, plan_id=plan_id, request={"objective": "5k"})


class RecordingProcessor:
    """Processor that records every delivery and fails as told."""

    def __init__(self, failures=()):
        self.calls = []
        self.failures = list(failures)

    def __call__(self, job):
        self.calls.append((job.job_id, job.attempts_made))
        if self.failures:
            raise self.failures.pop(0)
        return {"success": True, "plan_id": job.data.plan_id}


class BrokerDownTask:
    """Stands in for a Celery task whose broker refuses connections."""

    def apply_async(self, *args, **kwargs):
        raise ConnectionError("broker unreachable")


class HeldTask:
    """Accepts jobs without running them, like a broker with no worker attached."""

    def __init__(self):
        self.sent = []

    def apply_async(self, args=None, kwargs=None, **options):
        self.sent.append((args, kwargs, options))


# ===== REGISTRY OUTCOMES =====


def test_first_claim_is_new(registry):
    result = registry.claim("plan-1", JobOptions())

    assert result.outcome == EnqueueOutcome.ENQUEUED_NEW
    assert result.state == JobState.WAITING
    assert registry.get("plan-1").state == JobState.WAITING


def test_claim_while_waiting_is_duplicate(registry):
    registry.claim("plan-1", JobOptions())

    result = registry.claim("plan-1", JobOptions())

    assert result.outcome == EnqueueOutcome.DUPLICATE_IN_FLIGHT
    assert result.outcome.created_execution is False
    assert result.state == JobState.WAITING


def test_claim_while_active_reports_active(registry):
    registry.claim("plan-1", JobOptions())
    registry.mark_active("plan-1", 0)

    result = registry.claim("plan-1", JobOptions())

    assert result.outcome == EnqueueOutcome.DUPLICATE_IN_FLIGHT
    assert result.state == JobState.ACTIVE


def test_completed_job_is_removed_and_reenqueued_after_completion(registry):
    registry.claim("plan-1", JobOptions())
    registry.complete("plan-1", {"success": True})

    assert registry.get("plan-1") is None
    result = registry.claim("plan-1", JobOptions())
    assert result.outcome == EnqueueOutcome.ENQUEUED_AFTER_COMPLETION
    assert result.outcome.created_execution is True


def test_completed_job_kept_when_not_removed_on_complete(registry):
    registry.claim("plan-1", JobOptions(remove_on_complete=False))
    registry.complete("plan-1", {"success": True, "plan_id": "plan-1"})

    snapshot = registry.get("plan-1")
    assert snapshot.state == JobState.COMPLETED
    assert snapshot.result == {"success": True, "plan_id": "plan-1"}
    assert registry.claim("plan-1", JobOptions()).outcome == EnqueueOutcome.DUPLICATE_IN_FLIGHT


def test_failed_job_retained_for_retention_window(registry, redis_client):
    registry.claim("plan-1", JobOptions())
    registry.fail("plan-1", RuntimeError("boom"), attempts_made=1)

    snapshot = registry.get("plan-1")
    assert snapshot.state == JobState.FAILED
    assert snapshot.attempts_made == 1
    assert snapshot.failed_reason == "boom"
    assert 295_000 < redis_client.pttl(registry.job_key("plan-1")) <= 300_000

    result = registry.claim("plan-1", JobOptions())
    assert result.outcome == EnqueueOutcome.DUPLICATE_IN_FLIGHT
    assert result.state == JobState.FAILED


def test_failed_job_expires_after_retention_window(registry):
    registry.claim("plan-1", JobOptions(remove_on_fail_seconds=0.2))
    registry.fail("plan-1", RuntimeError("boom"), attempts_made=1)
    assert registry.get("plan-1") is not None

    time.sleep(0.4)

    assert registry.get("plan-1") is None
    assert registry.claim("plan-1", JobOptions()).outcome == EnqueueOutcome.ENQUEUED_AFTER_COMPLETION


def test_failed_job_with_zero_retention_is_removed_at_once(registry):
    registry.claim("plan-1", JobOptions(remove_on_fail_seconds=0))
    registry.fail("plan-1", RuntimeError("boom"), attempts_made=1)

    assert registry.get("plan-1") is None
    assert registry.claim("plan-1", JobOptions()).outcome == EnqueueOutcome.ENQUEUED_AFTER_COMPLETION


def test_released_claim_leaves_no_trace(registry):
    registry.claim("plan-1", JobOptions())
    registry.release("plan-1")

    assert registry.get("plan-1") is None
    assert registry.claim("plan-1", JobOptions()).outcome == EnqueueOutcome.ENQUEUED_NEW


def test_counts_by_state(registry):
    registry.claim("plan-1", JobOptions())
    registry.claim("plan-2", JobOptions())
    registry.mark_active("plan-2", 0)
    registry.claim("plan-3", JobOptions())
    registry.fail("plan-3", RuntimeError("boom"), attempts_made=1)

    counts = registry.counts()
    assert counts[JobState.WAITING] == 1
    assert counts[JobState.ACTIVE] == 1
    assert counts[JobState.FAILED] == 1
    assert counts[JobState.COMPLETED] == 0


# ===== BOUNDED MEMORY =====


def test_every_finished_job_key_expires(registry, redis_client):
    for i in range(50):
        registry.claim(f"done-{i}", JobOptions())
        registry.complete(f"done-{i}", {"success": True})
    for i in range(50):
        registry.claim(f"failed-{i}", JobOptions())
        registry.fail(f"failed-{i}", RuntimeError("boom"), attempts_made=1)

    keys = list(redis_client.scan_iter())
    assert keys
    assert all(redis_client.ttl(key) > 0 for key in keys)


def test_finished_jobs_do_not_accumulate(redis_client):
    registry = JobRegistry(redis_client, completed_marker_seconds=0.2)
    options = JobOptions(remove_on_fail_seconds=0.1)
    for i in range(100):
        registry.claim(f"plan-{i}", options)
        if i % 2:
            registry.complete(f"plan-{i}", {"success": True})
        else:
            registry.fail(f"plan-{i}", RuntimeError("boom"), attempts_made=1)
    assert redis_client.dbsize() > 0

    time.sleep(0.5)

    assert redis_client.dbsize() == 0
    assert registry.claim("plan-1", JobOptions()).outcome == EnqueueOutcome.ENQUEUED_NEW


# ===== QUEUE AND TASK =====


def test_enqueue_runs_job_and_forgets_it(registry, run_jobs_with):
    processor = run_jobs_with(RecordingProcessor())
    queue = JobQueue(registry, generate_plan_task)

    result = queue.add(make_job())

    assert result.outcome == EnqueueOutcome.ENQUEUED_NEW
    assert processor.calls == [("plan-1", 0)]
    assert queue.get_job("plan-1") is None


def test_resubmit_after_completion_runs_again(registry, run_jobs_with):
    processor = run_jobs_with(RecordingProcessor())
    queue = JobQueue(registry, generate_plan_task)

    queue.add(make_job())
    result = queue.add(make_job())

    assert result.outcome == EnqueueOutcome.ENQUEUED_AFTER_COMPLETION
    assert processor.calls == [("plan-1", 0), ("plan-1", 0)]


def test_duplicate_is_not_published(registry):
    task = HeldTask()
    queue = JobQueue(registry, task)

    first = queue.add(make_job())
    second = queue.add(make_job())

    assert first.outcome == EnqueueOutcome.ENQUEUED_NEW
    assert second.outcome == EnqueueOutcome.DUPLICATE_IN_FLIGHT
    assert len(task.sent) == 1


def test_task_id_is_plan_id_and_routed_to_queue(registry):
    task = HeldTask()
    queue = JobQueue(registry, task, JobOptions(attempts=2))

    queue.add(make_job("plan-9"))

    args, kwargs, options = task.sent[0]
    assert options["task_id"] == "plan-9"
    assert options["queue"] == GENERATE_PLAN_QUEUE_NAME
    assert args[0]["plan_id"] == "plan-9"
    assert kwargs["options"]["attempts"] == 2


def test_unrecoverable_failure_is_not_retried(registry, run_jobs_with):
    processor = run_jobs_with(RecordingProcessor([UnrecoverableJobError("Minimum plan duration is 4 weeks")]))
    queue = JobQueue(registry, generate_plan_task, JobOptions(attempts=3, backoff_seconds=0))

    queue.add(make_job())

    assert processor.calls == [("plan-1", 0)]
    snapshot = queue.get_job("plan-1")
    assert snapshot.state == JobState.FAILED
    assert snapshot.attempts_made == 1
    assert snapshot.failed_reason == "Minimum plan duration is 4 weeks"


def test_ordinary_failure_is_retried_until_success(registry, run_jobs_with):
    processor = run_jobs_with(RecordingProcessor([RuntimeError("flaky")]))
    queue = JobQueue(registry, generate_plan_task, JobOptions(attempts=2, backoff_seconds=0))

    queue.add(make_job())

    assert processor.calls == [("plan-1", 0), ("plan-1", 1)]
    assert queue.get_job("plan-1") is None


def test_single_attempt_failure_is_final(registry, run_jobs_with):
    processor = run_jobs_with(RecordingProcessor([RuntimeError("boom")]))
    queue = JobQueue(registry, generate_plan_task, JobOptions(attempts=1))

    queue.add(make_job())

    assert processor.calls == [("plan-1", 0)]
    snapshot = queue.get_job("plan-1")
    assert snapshot.state == JobState.FAILED
    assert snapshot.failed_reason == "boom"


def test_retries_exhausted_leave_failed_job(registry, run_jobs_with):
    processor = run_jobs_with(RecordingProcessor([RuntimeError("a"), RuntimeError("b"), RuntimeError("c")]))
    queue = JobQueue(registry, generate_plan_task, JobOptions(attempts=3, backoff_seconds=0))

    queue.add(make_job())

    assert [attempt for _, attempt in processor.calls] == [0, 1, 2]
    snapshot = queue.get_job("plan-1")
    assert snapshot.state == JobState.FAILED
    assert snapshot.attempts_made == 3
    assert snapshot.failed_reason == "c"


def test_backoff_doubles_per_attempt():
    options = JobOptions(attempts=4, backoff_seconds=0.5)

    assert [options.backoff_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]


# ===== FAILURES TO ENQUEUE =====


def test_publish_failure_raises_queue_error_and_releases_claim(registry):
    queue = JobQueue(registry, BrokerDownTask())

    with pytest.raises(QueueError, match="broker unreachable"):
        queue.add(make_job())

    assert registry.get("plan-1") is None
    assert registry.claim("plan-1", JobOptions()).outcome == EnqueueOutcome.ENQUEUED_NEW


def test_registry_outage_raises_queue_error():
    server = fakeredis.FakeServer()
    server.connected = False
    registry = JobRegistry(fakeredis.FakeRedis(server=server, decode_responses=True))
    task = HeldTask()

    with pytest.raises(QueueError):
        JobQueue(registry, task).add(make_job())
    assert task.sent == []


# ===== CELERY WIRING =====


def test_celery_configuration(eager_celery, settings):
    conf = eager_celery.conf

    assert conf.worker_concurrency == 5
    assert conf.task_acks_late is True
    assert conf.task_reject_on_worker_lost is True
    assert conf.worker_prefetch_multiplier == 1
    assert conf.result_expires == timedelta(seconds=300)
    assert conf.task_routes[GENERATE_PLAN_TASK_NAME] == {"queue": GENERATE_PLAN_QUEUE_NAME}
    assert conf.task_serializer == "json"


def test_generation_task_limits(eager_celery):
    task = celery_app.tasks[GENERATE_PLAN_TASK_NAME]

    assert task.rate_limit == "10/s"
    assert task.max_retries == 0


def test_rate_limit_from_settings(settings):
    assert rate_limit_for(settings) == "10/s"
    assert rate_limit_for(settings.model_copy(update={"rate_limit_duration_seconds": 2.0})) == "5/s"
    assert rate_limit_for(settings.model_copy(update={"rate_limit_max": 3})) == "3/s"
