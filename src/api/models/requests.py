"""
API Request Models

Pydantic models for API request validation.
"""

from pydantic import ConfigDict

from src.plan_schemas import PlanRequest


class PlanGenerationRequest(PlanRequest):
    """Request body for POST /api/me/training-plans/generate."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "objective": "marathon",
                "level": "intermediate",
                "durationWeeks": 12,
                "sessionsPerWeek": 4,
                "startDate": "2025-06-01",
            }
        },
    )
