"""
Data schemas for training plan generation.

This module contains Pydantic models for the plan generation request,
the structured plan produced by the periodization engine (weeks, sessions,
decisions), and the lifecycle status tracked for persisted plans.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Objective(str, Enum):
    """Target race distance for the plan."""

    FIVE_K = "5k"
    TEN_K = "10k"
    HALF_MARATHON = "half-marathon"
    MARATHON = "marathon"


class TrainingLevel(str, Enum):
    """Runner experience level, drives starting weekly volume."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SessionType(str, Enum):
    """Types of training sessions."""

    RUN = "run"
    STRENGTH = "strength"
    REST = "rest"
    CROSS_TRAINING = "cross_training"


class TrainingPhase(str, Enum):
    """Training plan phases."""

    BASE = "Base"  # Build aerobic foundation
    BUILD = "Build"  # Increase volume
    PEAK = "Peak"  # Hold volume, add intensity
    TAPER = "Taper"  # Recovery before race


class PlanStatus(str, Enum):
    """Lifecycle status of a persisted plan, driven by the generation queue."""

    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PlanStatus.PENDING


class PlanState(str, Enum):
    """State carried by a freshly generated plan. Not a lifecycle status."""

    ACTIVE = "active"


def parse_date(value) -> date:
    """Parse YYYY-MM-DD or an ISO datetime string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if "T" in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


class PlanRequest(BaseModel):
    """
    Parameters for generating a training plan.

    Immutable once accepted. Accepts camelCase keys from external callers.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    objective: Objective = Field(..., description="Target race distance")
    level: TrainingLevel = Field(..., description="Runner experience level")
    duration_weeks: int = Field(
        ..., alias="durationWeeks", ge=4, le=52, description="Plan length in weeks"
    )
    sessions_per_week: int = Field(
        ..., alias="sessionsPerWeek", ge=2, le=7, description="Sessions per week"
    )
    start_date: date = Field(..., alias="startDate", description="First day of the plan")

    @field_validator("start_date", mode="before")
    @classmethod
    def parse_start_date(cls, v):
        """Accept YYYY-MM-DD or a full ISO datetime (date part is kept)."""
        if isinstance(v, str) and "T" in v:
            return parse_date(v)
        if isinstance(v, datetime):
            return v.date()
        return v


class PhaseSplit(BaseModel):
    """Number of weeks allocated to each phase."""

    base: int = Field(..., ge=1)
    build: int = Field(..., ge=1)
    peak: int = Field(..., ge=1)
    taper: int = Field(..., ge=1)

    @property
    def total(self) -> int:
        return self.base + self.build + self.peak + self.taper

    def as_dict(self) -> dict:
        return {"base": self.base, "build": self.build, "peak": self.peak, "taper": self.taper}


class GeneratedSession(BaseModel):
    """Individual training session within a week."""

    day_of_week: int = Field(..., ge=1, le=7, description="1=Monday ... 7=Sunday")
    session_type: SessionType = Field(..., description="Type of workout")
    target_distance: Optional[float] = Field(None, ge=0, description="Distance (km)")
    target_duration: Optional[int] = Field(None, ge=0, description="Duration (minutes)")
    description: Optional[str] = Field(None, description="Human-readable workout description")


class GeneratedWeek(BaseModel):
    """
    Single week of training within a plan.

    Contains all sessions for one week, along with volume and phase metadata.
    """

    week_number: int = Field(..., ge=1, description="Week number in the plan (1-based)")
    phase: TrainingPhase = Field(..., description="Training phase for this week")
    volume_distance: float = Field(0, ge=0, description="Weekly distance (km)")
    volume_duration: int = Field(0, ge=0, description="Estimated weekly duration (minutes)")
    sessions: List[GeneratedSession] = Field(default_factory=list)

    @property
    def long_run(self) -> Optional[GeneratedSession]:
        return next((s for s in self.sessions if s.day_of_week == 7), None)


class PlanDecision(BaseModel):
    """
    Documents a specific decision made during plan generation.

    Used for reasoning trace to explain why certain choices were made.
    """

    decision_point: str = Field(
        ..., min_length=5, description="The decision that was made"
    )
    input_factors: List[str] = Field(
        ..., min_length=1, description="Factors that influenced this decision"
    )
    reasoning: str = Field(
        ..., min_length=20, description="Explanation of why this decision was made"
    )
    outcome: str = Field(
        ..., min_length=10, description="The resulting choice or action taken"
    )


class GeneratedPlan(BaseModel):
    """
    Complete multi-week training plan produced by the periodization engine.

    `status` is the plan's own state (always "active" when generated) and is
    unrelated to the pending/generated/failed lifecycle of the stored record.
    """

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: PlanState = Field(PlanState.ACTIVE)
    start_date: date
    duration_weeks: int = Field(..., ge=1)
    weeks: List[GeneratedWeek] = Field(..., min_length=1)
    plan_decisions: List[PlanDecision] = Field(
        default_factory=list,
        description="Key decisions made during plan generation (for reasoning trace)",
    )

    @field_validator("weeks")
    @classmethod
    def validate_weeks_count(cls, v: List[GeneratedWeek], info) -> List[GeneratedWeek]:
        """Ensure weeks count matches duration_weeks and numbering has no gaps."""
        if "duration_weeks" in info.data:
            expected_weeks = info.data["duration_weeks"]
            if len(v) != expected_weeks:
                raise ValueError(
                    f"Expected {expected_weeks} weeks but got {len(v)} weeks"
                )

        for i, week in enumerate(v, start=1):
            if week.week_number != i:
                raise ValueError(
                    f"Week numbering must be sequential. Expected week {i}, got week {week.week_number}"
                )

        return v

    @property
    def session_count(self) -> int:
        return sum(len(week.sessions) for week in self.weeks)

    def get_phase_breakdown(self) -> dict:
        """
        Get the number of weeks in each training phase.

        Returns:
            Dictionary mapping phase names to week counts.
        """
        phase_counts = {}
        for week in self.weeks:
            phase_name = week.phase.value
            phase_counts[phase_name] = phase_counts.get(phase_name, 0) + 1
        return phase_counts

    def get_total_distance(self) -> float:
        """Sum of weekly distance across the plan."""
        return sum(week.volume_distance for week in self.weeks)
