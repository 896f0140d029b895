"""
SQLAlchemy Database Models for Training Planner

Provides persistent storage for:
- Training plan records and their generation status
- Planned weeks (phase and volume) per plan
- Planned sessions per week

Also owns engine/session creation and the transactional session scope used
by every writer.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from src.plan_schemas import PlanStatus

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///training_planner.db"


def utcnow() -> datetime:
    """Naive UTC timestamp (stored without tz info)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TrainingPlanRecord(Base):
    """
    A user's training plan and its generation status.

    Created as 'pending' when generation is requested; moved once to
    'generated' or 'failed' by the worker.

    Attributes:
        id: Plan identifier (UUID string)
        owner_id: Identifier of the requesting user
        name: Plan name (placeholder until generated)
        description: Plan description, or the failure diagnostic
        start_date: When the plan begins
        duration_weeks: Total plan length
        status: pending | generated | failed
        created_at: When the plan was requested
        updated_at: Last status change
    """

    __tablename__ = "training_plans"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    start_date = Column(Date, nullable=False)
    duration_weeks = Column(Integer, nullable=False)
    status = Column(String, default=PlanStatus.PENDING.value, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    weeks = relationship(
        "PlannedWeek",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlannedWeek.week_number",
    )

    def __repr__(self):
        return f"<TrainingPlanRecord(id='{self.id}', status='{self.status}', weeks={self.duration_weeks})>"


class PlannedWeek(Base):
    """
    One week of a generated plan.

    Attributes:
        id: Primary key
        plan_id: Foreign key to training_plans
        week_number: Week number within the plan (1-indexed)
        phase: Base | Build | Peak | Taper
        volume_distance: Weekly distance (km)
        volume_duration: Estimated weekly duration (minutes)
    """

    __tablename__ = "planned_weeks"
    __table_args__ = (UniqueConstraint("plan_id", "week_number", name="uq_planned_weeks_plan_week"),)

    id = Column(Integer, primary_key=True)
    plan_id = Column(
        String(36), ForeignKey("training_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    week_number = Column(Integer, nullable=False)
    phase = Column(String, nullable=False)
    volume_distance = Column(Float, nullable=False, default=0)
    volume_duration = Column(Integer, nullable=False, default=0)

    # Relationships
    plan = relationship("TrainingPlanRecord", back_populates="weeks")
    sessions = relationship(
        "PlannedSession",
        back_populates="week",
        cascade="all, delete-orphan",
        order_by=lambda: [PlannedSession.day_of_week, PlannedSession.id],
    )

    def __repr__(self):
        return f"<PlannedWeek(plan_id='{self.plan_id}', week={self.week_number}, phase='{self.phase}')>"


class PlannedSession(Base):
    """
    Individual planned workout session.

    Attributes:
        id: Primary key
        week_id: Foreign key to planned_weeks
        day_of_week: 1=Monday ... 7=Sunday
        session_type: run | strength | rest | cross_training
        target_distance: Planned distance (km), optional
        target_duration: Planned duration (minutes), optional
        description: Workout description
    """

    __tablename__ = "planned_sessions"

    id = Column(Integer, primary_key=True)
    week_id = Column(
        Integer, ForeignKey("planned_weeks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = Column(Integer, nullable=False)
    session_type = Column(String, nullable=False)
    target_distance = Column(Float, nullable=True)
    target_duration = Column(Integer, nullable=True)
    description = Column(String, nullable=True)

    # Relationships
    week = relationship("PlannedWeek", back_populates="sessions")

    def __repr__(self):
        return f"<PlannedSession(week_id={self.week_id}, day={self.day_of_week}, type='{self.session_type}')>"


# Database connection and session management


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine(database_url: str = DEFAULT_DATABASE_URL) -> Engine:
    """
    Create SQLAlchemy engine.

    Args:
        database_url: Database connection string (default: SQLite file)

    Returns:
        SQLAlchemy Engine instance
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Worker threads share the engine
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=False, connect_args=connect_args)


def get_session_factory(engine: Engine) -> sessionmaker:
    """
    Create session factory.

    Args:
        engine: SQLAlchemy Engine instance

    Returns:
        Session factory (sessionmaker)
    """
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_database(database_url: str = DEFAULT_DATABASE_URL) -> sessionmaker:
    """
    Initialize database and create all tables.

    Args:
        database_url: Database connection string

    Returns:
        Session factory bound to the new engine
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    return get_session_factory(engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope around a series of operations.

    Commits only when the block finishes normally; any exception rolls back
    everything written inside the block and is re-raised.

    Usage:
        with session_scope(factory) as session:
            session.add(...)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
