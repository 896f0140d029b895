"""
Error taxonomy for plan generation.

- PlanValidationError: request rejected before any record is created
- EngineError: periodization could not build a plan from the request
- QueueError: the generation job could not be enqueued
- PersistenceError: the generated plan could not be written
- PlanNotFoundError: unknown plan id, or the plan belongs to someone else
- UnrecoverableJobError: tells the job queue not to retry a failed job
"""

from typing import Any, Optional


class PlanGenerationError(Exception):
    """Base class for all plan generation errors."""


class PlanValidationError(PlanGenerationError):
    """Malformed or out-of-range plan request."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.details = details


class EngineError(PlanGenerationError, ValueError):
    """Periodization engine failure (invalid duration or broken invariant)."""


class QueueError(PlanGenerationError):
    """Enqueueing a generation job failed."""


class PersistenceError(PlanGenerationError):
    """Transactional write of a generated plan failed."""


class PlanNotFoundError(PlanGenerationError):
    """Plan id is unknown or not owned by the caller."""

    def __init__(self, plan_id: str):
        super().__init__(f"Plan not found: {plan_id}")
        self.plan_id = plan_id


class UnrecoverableJobError(PlanGenerationError):
    """Raised by a job processor when the job must not be attempted again."""
