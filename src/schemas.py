"""
Data schemas for the generation pipeline.

This module defines Pydantic models for:
- Generation jobs: the queue message and its delivery options
- Job lifecycle: queue-side job states and enqueue outcomes
- Read models: plan status, plan summaries and full plan detail
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.plan_schemas import PlanStatus, SessionType, TrainingPhase

GENERATE_PLAN_QUEUE_NAME = "generate-plan"


# ===== JOBS =====


class JobOptions(BaseModel):
    """
    Delivery options for a queued job.

    Plan generation runs a single attempt; other job types may opt into
    retries with exponential backoff.
    """

    attempts: int = Field(1, ge=1, description="Total attempts before the job fails")
    backoff_seconds: float = Field(
        1.0, ge=0, description="Base delay for exponential backoff between attempts"
    )
    remove_on_complete: bool = Field(
        True, description="Forget the job as soon as it completes"
    )
    remove_on_fail_seconds: float = Field(
        300.0, ge=0, description="How long a failed job is retained for diagnostics"
    )

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before the next attempt after `attempts_made` failures."""
        return self.backoff_seconds * (2 ** (attempts_made - 1))


class GenerationJob(BaseModel):
    """
    Queue message correlating a plan with its request and owner.

    `request` is the plan request as plain JSON; the worker maps it back.
    """

    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)
    request: Dict[str, Any] = Field(...)

    @property
    def job_id(self) -> str:
        return self.plan_id


class JobState(str, Enum):
    """Queue-side state of a job."""

    WAITING = "waiting"
    DELAYED = "delayed"  # waiting out a retry backoff
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class EnqueueOutcome(str, Enum):
    """
    What the queue did with an enqueue call.

    Job identity is the plan id, so idempotency is only as strong as the
    queue's memory of that id.
    """

    ENQUEUED_NEW = "enqueued_new"
    DUPLICATE_IN_FLIGHT = "duplicate_in_flight"
    ENQUEUED_AFTER_COMPLETION = "enqueued_after_completion"

    @property
    def created_execution(self) -> bool:
        return self is not EnqueueOutcome.DUPLICATE_IN_FLIGHT


class EnqueueResult(BaseModel):
    """Result of JobQueue.enqueue."""

    job_id: str
    outcome: EnqueueOutcome
    state: JobState


class QueuedJob(BaseModel):
    """What a processor receives for one delivery attempt."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    data: GenerationJob
    attempts_made: int = Field(0, ge=0, description="Failed attempts before this one")
    options: JobOptions

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts_made + 1 >= self.options.attempts


class JobSnapshot(BaseModel):
    """Point-in-time view of a job known to the queue."""

    job_id: str
    state: JobState
    attempts_made: int = 0
    failed_reason: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    options: JobOptions


# ===== READ MODELS =====


class SubmissionResult(BaseModel):
    """Returned to the submitter as soon as the job is enqueued."""

    plan_id: str
    status: PlanStatus = PlanStatus.PENDING
    outcome: EnqueueOutcome


class PlanStatusView(BaseModel):
    """Answer to a status poll."""

    plan_id: str
    status: PlanStatus


class PlanSummary(BaseModel):
    """One row of a user's plan listing."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    start_date: date
    duration_weeks: int
    status: PlanStatus
    created_at: datetime
    updated_at: datetime


class SessionDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    day_of_week: int
    session_type: SessionType
    target_distance: Optional[float] = None
    target_duration: Optional[int] = None
    description: Optional[str] = None


class WeekDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    week_number: int
    phase: TrainingPhase
    volume_distance: float
    volume_duration: int
    sessions: List[SessionDetail] = Field(default_factory=list)


class PlanDetail(PlanSummary):
    """Plan joined with its ordered weeks, each with its ordered sessions."""

    owner_id: str
    weeks: List[WeekDetail] = Field(default_factory=list)
