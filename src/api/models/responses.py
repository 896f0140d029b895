"""
API Response Models

Pydantic models for API responses. Field names are camelCase on the wire.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.plan_schemas import PlanStatus


class PlanGenerationResponse(BaseModel):
    """Response for POST /api/me/training-plans/generate (202)."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(True, description="Whether the job was accepted")
    plan_id: str = Field(..., alias="planId", description="Id of the pending plan")
    status: PlanStatus = Field(PlanStatus.PENDING, description="Plan status")
    message: str = Field("Plan generation started", description="Human-readable message")


class PlanStatusResponse(BaseModel):
    """Response for GET /api/me/training-plans/{plan_id}/status."""

    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(..., alias="planId", description="Plan id")
    status: PlanStatus = Field(..., description="pending | generated | failed")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: Optional[str] = Field(None, description="Error message")
    details: Optional[Any] = Field(None, description="Additional details")
