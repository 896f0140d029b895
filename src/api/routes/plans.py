"""
Training Plans API Routes

Endpoints for asynchronous plan generation and plan status.
"""

import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from src.api.models.requests import PlanGenerationRequest
from src.api.models.responses import ErrorResponse, PlanGenerationResponse, PlanStatusResponse
from src.errors import PlanNotFoundError, PlanValidationError
from src.schemas import PlanDetail, PlanSummary
from src.service import PlanGenerationService

router = APIRouter()


def get_service(request: Request) -> PlanGenerationService:
    """Service from the runtime opened by the app lifespan."""
    return request.app.state.runtime.service


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Caller identity, as established by the upstream auth layer.

    Raises:
        HTTPException: 401 if no user id was forwarded
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id


@router.post(
    "/me/training-plans/generate",
    response_model=PlanGenerationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def generate_plan(
    payload: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    service: PlanGenerationService = Depends(get_service),
) -> PlanGenerationResponse:
    """
    Start asynchronous generation of a training plan.

    Workflow:
    1. Validate the request (rejected requests create nothing)
    2. Create the pending plan record
    3. Enqueue the generation job keyed by the plan id

    Poll the status endpoint to learn when the plan is generated or failed.

    Raises:
        PlanValidationError: If the request is malformed or out of range
        QueueError: If the generation job could not be enqueued
    """
    try:
        plan_request = PlanGenerationRequest.model_validate(payload)
    except ValidationError as e:
        raise PlanValidationError(
            "Invalid plan request", details=json.loads(e.json(include_url=False))
        ) from e

    result = service.submit(user_id, plan_request)
    return PlanGenerationResponse(plan_id=result.plan_id, status=result.status)


@router.get(
    "/me/training-plans/{plan_id}/status",
    response_model=PlanStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_plan_status(
    plan_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PlanGenerationService = Depends(get_service),
) -> PlanStatusResponse:
    """Check generation status: pending, generated or failed."""
    try:
        view = service.get_status(user_id, plan_id)
    except PlanNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return PlanStatusResponse(plan_id=view.plan_id, status=view.status)


@router.get(
    "/me/training-plans/{plan_id}",
    response_model=PlanDetail,
    responses={404: {"model": ErrorResponse}},
)
def get_plan(
    plan_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PlanGenerationService = Depends(get_service),
) -> PlanDetail:
    """Full plan with its weeks and sessions, in order."""
    try:
        return service.get_plan(user_id, plan_id)
    except PlanNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")


@router.get("/me/training-plans", response_model=List[PlanSummary])
def list_plans(
    user_id: str = Depends(get_current_user_id),
    service: PlanGenerationService = Depends(get_service),
) -> List[PlanSummary]:
    """The caller's plans, newest first."""
    return service.list_plans(user_id)
