"""
Plan persistence writer.

Materializes a generated plan in a single transaction:
1. Insert all weeks, flushing to learn their ids
2. Attach each week's sessions to its id and insert them
3. Flip the plan to 'generated' and refresh name/description

If any step fails nothing is committed, so readers never see a plan with a
partial set of weeks or sessions.
"""

import logging
from typing import List

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.database import (
    PlannedSession,
    PlannedWeek,
    TrainingPlanRecord,
    session_scope,
    utcnow,
)
from src.errors import PersistenceError
from src.plan_schemas import GeneratedPlan, PlanStatus

logger = logging.getLogger(__name__)


class PlanPersistenceWriter:
    """
    Writes generated plans to the database.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the plan database
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def persist(self, plan_id: str, plan: GeneratedPlan) -> None:
        """
        Persist weeks and sessions and mark the plan generated.

        Args:
            plan_id: Id of the pending plan record
            plan: Output of the periodization engine

        Raises:
            PersistenceError: If any step fails, or the plan is missing or
                no longer pending. Nothing is committed in that case.
        """
        try:
            with session_scope(self.session_factory) as session:
                weeks = self._insert_weeks(session, plan_id, plan)
                self._insert_sessions(session, weeks, plan)
                self._mark_generated(session, plan_id, plan)
        except PersistenceError:
            raise
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist plan {plan_id}: {e}") from e

        logger.info(
            "Persisted plan %s: %d weeks, %d sessions",
            plan_id,
            len(plan.weeks),
            plan.session_count,
        )

    def _insert_weeks(
        self, session: Session, plan_id: str, plan: GeneratedPlan
    ) -> List[PlannedWeek]:
        rows = [
            PlannedWeek(
                plan_id=plan_id,
                week_number=week.week_number,
                phase=week.phase.value,
                volume_distance=week.volume_distance,
                volume_duration=week.volume_duration,
            )
            for week in plan.weeks
        ]
        session.add_all(rows)
        # Sessions need the week ids
        session.flush()
        return rows

    def _insert_sessions(
        self, session: Session, weeks: List[PlannedWeek], plan: GeneratedPlan
    ) -> None:
        week_ids = {row.week_number: row.id for row in weeks}
        rows = []
        for week in plan.weeks:
            week_id = week_ids.get(week.week_number)
            if week_id is None:
                raise PersistenceError(f"No inserted row for week {week.week_number}")
            for planned in week.sessions:
                rows.append(
                    PlannedSession(
                        week_id=week_id,
                        day_of_week=planned.day_of_week,
                        session_type=planned.session_type.value,
                        target_distance=planned.target_distance,
                        target_duration=planned.target_duration,
                        description=planned.description,
                    )
                )
        if rows:
            session.add_all(rows)
            session.flush()

    def _mark_generated(self, session: Session, plan_id: str, plan: GeneratedPlan) -> None:
        result = session.execute(
            update(TrainingPlanRecord)
            .where(
                TrainingPlanRecord.id == plan_id,
                TrainingPlanRecord.status == PlanStatus.PENDING.value,
            )
            .values(
                status=PlanStatus.GENERATED.value,
                name=plan.name,
                description=plan.description,
                updated_at=utcnow(),
            )
        )
        if result.rowcount != 1:
            raise PersistenceError(f"Plan {plan_id} is missing or no longer pending")
