"""
Periodization engine for multi-week running plans.

This module turns a PlanRequest into a structured GeneratedPlan:
- Splits the plan into Base/Build/Peak/Taper phases
- Progresses weekly volume with periodic deload weeks
- Distributes each week's volume over its sessions (long run on day 7)

The engine is a pure function of its input: no I/O, no clock, no randomness.
"""

import math
from typing import Dict, List

from src.errors import EngineError
from src.plan_schemas import (
    GeneratedPlan,
    GeneratedSession,
    GeneratedWeek,
    PhaseSplit,
    PlanDecision,
    PlanRequest,
    PlanState,
    SessionType,
    TrainingLevel,
    TrainingPhase,
)

MIN_DURATION_WEEKS = 4

TAPER_FRACTION = 0.15
PEAK_FRACTION = 0.20
BUILD_FRACTION = 0.30

STARTING_VOLUME: Dict[TrainingLevel, float] = {
    TrainingLevel.BEGINNER: 20.0,
    TrainingLevel.INTERMEDIATE: 35.0,
    TrainingLevel.ADVANCED: 50.0,
}

PROGRESSION_FACTOR = 1.1
DELOAD_EVERY_WEEKS = 4
DELOAD_FACTOR = 0.7
TAPER_REPORTED_FACTOR = 0.6
TAPER_DECAY_FACTOR = 0.7

MINUTES_PER_UNIT = 6  # fixed pace-equivalent, not per-user yet
LONG_RUN_MINUTES_PER_UNIT = 6.5
LONG_RUN_SHARE = 0.35
LONG_RUN_DAY = 7
LAST_EASY_DAY = 6

LONG_RUN_DESCRIPTION = "Long Run - Easy conversational pace"
EASY_RUN_DESCRIPTION = "Easy Run"
INTERVALS_DESCRIPTION = "Intervals - Hard effort"

# Phases that progress volume (and deload every 4th week)
_PROGRESSIVE_PHASES = (TrainingPhase.BASE, TrainingPhase.BUILD)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def split_phases(duration_weeks: int) -> PhaseSplit:
    """
    Allocate the plan's weeks across the four phases.

    Taper and peak are floored with a minimum of one week; base absorbs the
    remainder so the four counts always sum to duration_weeks.

    Args:
        duration_weeks: Total plan length

    Returns:
        PhaseSplit with week counts per phase

    Raises:
        EngineError: If duration_weeks is below the 4-week floor
    """
    if duration_weeks < MIN_DURATION_WEEKS:
        raise EngineError(f"Minimum plan duration is {MIN_DURATION_WEEKS} weeks")

    taper = max(1, math.floor(duration_weeks * TAPER_FRACTION))
    peak = max(1, math.floor(duration_weeks * PEAK_FRACTION))
    build = math.floor(duration_weeks * BUILD_FRACTION)
    base = duration_weeks - build - peak - taper

    return PhaseSplit(base=base, build=build, peak=peak, taper=taper)


def build_weeks(request: PlanRequest) -> List[GeneratedWeek]:
    """
    Generate the weeks of the plan with volume progression (no sessions yet).

    Base/Build: every 4th week (absolute counter) is a deload at 70% of the
    running volume; other weeks record the running volume, then raise it 10%.
    Peak holds the running volume. Taper records 60% of the running volume
    and decays the running volume by 30% for the next week.
    """
    phases = split_phases(request.duration_weeks)
    current = STARTING_VOLUME[TrainingLevel(request.level)]

    weeks: List[GeneratedWeek] = []
    week_counter = 1
    for phase, count in (
        (TrainingPhase.BASE, phases.base),
        (TrainingPhase.BUILD, phases.build),
        (TrainingPhase.PEAK, phases.peak),
        (TrainingPhase.TAPER, phases.taper),
    ):
        for _ in range(count):
            if phase in _PROGRESSIVE_PHASES:
                if week_counter % DELOAD_EVERY_WEEKS == 0:
                    volume = current * DELOAD_FACTOR
                else:
                    volume = current
                    current *= PROGRESSION_FACTOR
            elif phase == TrainingPhase.TAPER:
                volume = current * TAPER_REPORTED_FACTOR
                current *= TAPER_DECAY_FACTOR
            else:
                volume = current

            distance = round_half_up(volume)
            weeks.append(
                GeneratedWeek(
                    week_number=week_counter,
                    phase=phase,
                    volume_distance=distance,
                    volume_duration=round_half_up(volume * MINUTES_PER_UNIT),
                )
            )
            week_counter += 1

    return weeks


def easy_session_days(count: int) -> List[int]:
    """
    Days for the non-long-run sessions: Mon, Wed, Fri, then clamped to Sat.

    With 5+ sessions per week several sessions land on day 6.
    """
    return [min(1 + 2 * i, LAST_EASY_DAY) for i in range(count)]


def build_sessions(weeks: List[GeneratedWeek], request: PlanRequest) -> List[GeneratedWeek]:
    """
    Distribute each week's volume across its sessions.

    One long run on day 7 takes 35% of the week; the remainder is split evenly
    over the other sessions. In Peak weeks the first of those is an interval
    session.
    """
    count = request.sessions_per_week
    if count < 2:
        raise EngineError(f"At least 2 sessions per week are required, got {count}")

    result = []
    for week in weeks:
        long_run_distance = round_half_up(week.volume_distance * LONG_RUN_SHARE)
        remaining = week.volume_distance - long_run_distance
        easy_distance = round_half_up(remaining / (count - 1))

        sessions = [
            GeneratedSession(
                day_of_week=LONG_RUN_DAY,
                session_type=SessionType.RUN,
                target_distance=long_run_distance,
                target_duration=round_half_up(long_run_distance * LONG_RUN_MINUTES_PER_UNIT),
                description=LONG_RUN_DESCRIPTION,
            )
        ]

        for i, day in enumerate(easy_session_days(count - 1)):
            description = EASY_RUN_DESCRIPTION
            if week.phase == TrainingPhase.PEAK and i == 0:
                description = INTERVALS_DESCRIPTION
            sessions.append(
                GeneratedSession(
                    day_of_week=day,
                    session_type=SessionType.RUN,
                    target_distance=easy_distance,
                    target_duration=round_half_up(easy_distance * MINUTES_PER_UNIT),
                    description=description,
                )
            )

        sessions.sort(key=lambda s: s.day_of_week)
        result.append(week.model_copy(update={"sessions": sessions}))

    return result


class TrainingPlanGenerator:
    """
    Generates structured training plans from a PlanRequest.

    The generator:
    1. Splits the duration into Base/Build/Peak/Taper phases
    2. Progresses weekly volume from the level's starting point
    3. Distributes each week's volume across sessions
    4. Documents the decisions for the reasoning trace
    """

    def __init__(self):
        self.plan_decisions: List[PlanDecision] = []

    def generate(self, request: PlanRequest) -> GeneratedPlan:
        """
        Generate a complete training plan.

        Args:
            request: Accepted plan request

        Returns:
            GeneratedPlan with all weeks and sessions

        Raises:
            EngineError: If the duration is below 4 weeks or the generated
                structure breaks a plan invariant
        """
        self.plan_decisions = []

        phases = split_phases(request.duration_weeks)
        self._document_phases(request, phases)

        weeks = build_sessions(build_weeks(request), request)
        self._document_volume(request, weeks)
        self._check_invariants(request, phases, weeks)

        objective = getattr(request.objective, "value", request.objective)
        level = getattr(request.level, "value", request.level)

        try:
            return GeneratedPlan(
                name=f"{objective.upper()} Plan ({level})",
                description=f"Generated {request.duration_weeks}-week plan for {objective}.",
                status=PlanState.ACTIVE,
                start_date=request.start_date,
                duration_weeks=request.duration_weeks,
                weeks=weeks,
                plan_decisions=list(self.plan_decisions),
            )
        except ValueError as e:
            raise EngineError(f"Generated plan failed validation: {e}") from e

    def _check_invariants(
        self, request: PlanRequest, phases: PhaseSplit, weeks: List[GeneratedWeek]
    ) -> None:
        if phases.total != request.duration_weeks:
            raise EngineError(
                f"Phase split sums to {phases.total}, expected {request.duration_weeks}"
            )
        for week in weeks:
            if len(week.sessions) != request.sessions_per_week:
                raise EngineError(
                    f"Week {week.week_number} has {len(week.sessions)} sessions, "
                    f"expected {request.sessions_per_week}"
                )
            long_runs = sum(1 for s in week.sessions if s.day_of_week == LONG_RUN_DAY)
            if long_runs != 1:
                raise EngineError(
                    f"Week {week.week_number} has {long_runs} long runs, expected 1"
                )

    def _document_phases(self, request: PlanRequest, phases: PhaseSplit) -> None:
        self.plan_decisions.append(
            PlanDecision(
                decision_point="Training Phase Distribution",
                input_factors=[f"duration_weeks={request.duration_weeks}"],
                reasoning=f"Allocated {request.duration_weeks} weeks as "
                f"{int(TAPER_FRACTION * 100)}% taper and {int(PEAK_FRACTION * 100)}% peak "
                f"(at least one week each), {int(BUILD_FRACTION * 100)}% build, "
                "remainder to base.",
                outcome=f"{phases.base}wk base, {phases.build}wk build, "
                f"{phases.peak}wk peak, {phases.taper}wk taper",
            )
        )

    def _document_volume(self, request: PlanRequest, weeks: List[GeneratedWeek]) -> None:
        level = TrainingLevel(request.level)
        deloads = [
            w.week_number
            for w in weeks
            if w.phase in _PROGRESSIVE_PHASES and w.week_number % DELOAD_EVERY_WEEKS == 0
        ]
        peak_volume = max(w.volume_distance for w in weeks)
        self.plan_decisions.append(
            PlanDecision(
                decision_point="Weekly Volume Progression",
                input_factors=[
                    f"level={level.value}",
                    f"starting_volume={STARTING_VOLUME[level]:g}",
                    f"progression_factor={PROGRESSION_FACTOR}",
                ],
                reasoning=f"Started at {STARTING_VOLUME[level]:g} km for a {level.value} runner "
                f"and progressed {round((PROGRESSION_FACTOR - 1) * 100)}% per loading week, "
                f"deloading to {int(DELOAD_FACTOR * 100)}% every {DELOAD_EVERY_WEEKS}th week.",
                outcome=f"Peak weekly volume {peak_volume:g} km; deload weeks: "
                + (", ".join(str(n) for n in deloads) if deloads else "none"),
            )
        )
