"""
Plan record store.

Holds each plan's generation status keyed by plan id and serves the read
models (status, listing, full plan). Status only ever moves out of
'pending'; every status write is conditional on the current value.
"""

import logging
import uuid
from typing import List

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from src.database import PlannedWeek, TrainingPlanRecord, session_scope, utcnow
from src.errors import PersistenceError, PlanNotFoundError
from src.plan_schemas import PlanRequest, PlanStatus
from src.schemas import PlanDetail, PlanStatusView, PlanSummary

logger = logging.getLogger(__name__)

MAX_FAILURE_MESSAGE_LENGTH = 200


def failure_description(message: str) -> str:
    """Short diagnostic stored in the plan description of a failed plan."""
    text = f"Error: {message}"
    if len(text) > MAX_FAILURE_MESSAGE_LENGTH:
        text = text[: MAX_FAILURE_MESSAGE_LENGTH - 3] + "..."
    return text


class PlanStore:
    """
    Reads and writes plan records.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the plan database
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_pending(self, owner_id: str, request: PlanRequest) -> str:
        """Create the pending plan record and return its new id."""
        plan_id = str(uuid.uuid4())
        objective = getattr(request.objective, "value", request.objective)
        with session_scope(self.session_factory) as session:
            session.add(
                TrainingPlanRecord(
                    id=plan_id,
                    owner_id=owner_id,
                    name=f"Pending {objective} Plan",
                    start_date=request.start_date,
                    duration_weeks=request.duration_weeks,
                    status=PlanStatus.PENDING.value,
                )
            )
        logger.info("Created pending plan %s for owner %s", plan_id, owner_id)
        return plan_id

    def get_status(self, plan_id: str, owner_id: str) -> PlanStatusView:
        with session_scope(self.session_factory) as session:
            plan = self._get_owned(session, plan_id, owner_id)
            return PlanStatusView(plan_id=plan.id, status=PlanStatus(plan.status))

    def mark_failed(self, plan_id: str, message: str) -> bool:
        """
        Move a pending plan to 'failed' with a diagnostic description.

        Returns:
            True if the status changed, False if the plan was missing or
            already terminal.
        """
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(
                    update(TrainingPlanRecord)
                    .where(
                        TrainingPlanRecord.id == plan_id,
                        TrainingPlanRecord.status == PlanStatus.PENDING.value,
                    )
                    .values(
                        status=PlanStatus.FAILED.value,
                        description=failure_description(message),
                        updated_at=utcnow(),
                    )
                )
                changed = result.rowcount == 1
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not mark plan {plan_id} as failed: {e}") from e

        if not changed:
            logger.warning("Plan %s was not pending; failure status not written", plan_id)
        return changed

    def get_plan(self, plan_id: str, owner_id: str) -> PlanDetail:
        """Plan joined with its ordered weeks and sessions."""
        with session_scope(self.session_factory) as session:
            plan = self._get_owned(
                session,
                plan_id,
                owner_id,
                options=[selectinload(TrainingPlanRecord.weeks).selectinload(PlannedWeek.sessions)],
            )
            return PlanDetail.model_validate(plan)

    def list_plans(self, owner_id: str) -> List[PlanSummary]:
        with session_scope(self.session_factory) as session:
            plans = session.scalars(
                select(TrainingPlanRecord)
                .where(TrainingPlanRecord.owner_id == owner_id)
                .order_by(TrainingPlanRecord.created_at.desc())
            ).all()
            return [PlanSummary.model_validate(plan) for plan in plans]

    def delete_plan(self, plan_id: str) -> bool:
        """Delete a plan; its weeks and sessions go with it."""
        with session_scope(self.session_factory) as session:
            plan = session.get(TrainingPlanRecord, plan_id)
            if plan is None:
                return False
            session.delete(plan)
        logger.info("Deleted plan %s", plan_id)
        return True

    @staticmethod
    def _get_owned(session, plan_id: str, owner_id: str, options=None) -> TrainingPlanRecord:
        plan = session.get(TrainingPlanRecord, plan_id, options=options or [])
        if plan is None or plan.owner_id != owner_id:
            raise PlanNotFoundError(plan_id)
        return plan
