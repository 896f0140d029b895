"""
Tests for the periodization engine.

Covers:
- Phase split for every supported plan length
- Volume progression (deloads, peak hold, taper decay)
- Session distribution (long run on day 7, day-6 clamping)
- Plan metadata and reasoning trace
- Determinism and the 4-week floor
"""

from datetime import date

import pytest

from src.errors import EngineError
from src.plan_schemas import (
    Objective,
    PlanRequest,
    PlanState,
    SessionType,
    TrainingLevel,
    TrainingPhase,
)
from src.planner import (
    TrainingPlanGenerator,
    build_sessions,
    build_weeks,
    easy_session_days,
    round_half_up,
    split_phases,
)


def make_request(**overrides) -> PlanRequest:
    data = {
        "objective": Objective.HALF_MARATHON,
        "level": TrainingLevel.INTERMEDIATE,
        "duration_weeks": 12,
        "sessions_per_week": 4,
        "start_date": date(2025, 1, 1),
    }
    data.update(overrides)
    return PlanRequest(**data)


# ===== PHASE SPLIT =====


def test_split_phases_12_weeks():
    """15% taper = 1.8 -> 1, 20% peak = 2.4 -> 2, 30% build = 3.6 -> 3, base = rest."""
    assert split_phases(12).as_dict() == {"base": 6, "build": 3, "peak": 2, "taper": 1}


def test_split_phases_minimum_duration():
    assert split_phases(4).as_dict() == {"base": 1, "build": 1, "peak": 1, "taper": 1}


def test_split_phases_52_weeks():
    assert split_phases(52).as_dict() == {"base": 20, "build": 15, "peak": 10, "taper": 7}


@pytest.mark.parametrize("weeks", range(4, 53))
def test_split_phases_sums_to_duration(weeks):
    split = split_phases(weeks)

    assert split.base + split.build + split.peak + split.taper == weeks
    assert split.peak >= 1
    assert split.taper >= 1
    assert split.build >= 1
    assert split.base >= 1


@pytest.mark.parametrize("weeks", [0, 1, 3])
def test_split_phases_rejects_short_plans(weeks):
    with pytest.raises(EngineError, match="Minimum plan duration is 4 weeks"):
        split_phases(weeks)


# ===== VOLUME PROGRESSION =====


def test_weekly_volume_progression_intermediate_12_weeks():
    """Base/Build progress 10% with a deload every 4th week, Peak holds, Taper drops."""
    weeks = build_weeks(make_request())

    assert [w.volume_distance for w in weeks] == [35, 39, 42, 33, 47, 51, 56, 43, 62, 68, 68, 41]
    assert [w.phase for w in weeks] == (
        [TrainingPhase.BASE] * 6
        + [TrainingPhase.BUILD] * 3
        + [TrainingPhase.PEAK] * 2
        + [TrainingPhase.TAPER]
    )


@pytest.mark.parametrize(
    "level,start",
    [
        (TrainingLevel.BEGINNER, 20),
        (TrainingLevel.INTERMEDIATE, 35),
        (TrainingLevel.ADVANCED, 50),
    ],
)
def test_starting_volume_by_level(level, start):
    weeks = build_weeks(make_request(level=level))
    assert weeks[0].volume_distance == start


def test_minimum_plan_volumes():
    """4 weeks: one week per phase, no deload week reached inside Base/Build."""
    weeks = build_weeks(make_request(level=TrainingLevel.BEGINNER, duration_weeks=4))

    assert [w.volume_distance for w in weeks] == [20, 22, 24, 15]
    assert [w.phase for w in weeks] == [
        TrainingPhase.BASE,
        TrainingPhase.BUILD,
        TrainingPhase.PEAK,
        TrainingPhase.TAPER,
    ]


def test_deload_weeks_drop_volume():
    weeks = build_weeks(make_request(duration_weeks=20))

    for week in weeks:
        if week.phase in (TrainingPhase.BASE, TrainingPhase.BUILD) and week.week_number % 4 == 0:
            previous = weeks[week.week_number - 2]
            assert week.volume_distance < previous.volume_distance


def test_peak_holds_and_taper_decays():
    weeks = build_weeks(make_request(duration_weeks=20))
    peak = [w.volume_distance for w in weeks if w.phase == TrainingPhase.PEAK]
    taper = [w.volume_distance for w in weeks if w.phase == TrainingPhase.TAPER]

    assert len(set(peak)) == 1
    assert len(taper) == 3
    assert taper == sorted(taper, reverse=True)
    assert taper[0] < peak[0]


def test_volume_duration_uses_six_minutes_per_unrounded_volume():
    weeks = build_weeks(make_request(objective=Objective.MARATHON))

    # week 2 volume is 35 * 1.1 = 38.5 km; 38.5 * 6 = 231, not 39 * 6 = 234
    assert weeks[0].volume_distance == 35
    assert weeks[0].volume_duration == 210
    assert weeks[1].volume_distance == 39
    assert weeks[1].volume_duration == 231


def test_round_half_up_matches_away_from_zero_for_halves():
    assert round_half_up(38.5) == 39
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2


# ===== SESSIONS =====


def test_session_distribution_first_week():
    request = make_request()
    week = build_sessions(build_weeks(request), request)[0]

    assert [s.day_of_week for s in week.sessions] == [1, 3, 5, 7]
    long_run = week.long_run
    assert long_run.target_distance == 12  # 35% of 35
    assert long_run.target_duration == 78  # 12 * 6.5
    assert "Long Run" in long_run.description
    easy = [s for s in week.sessions if s.day_of_week != 7]
    assert all(s.target_distance == 8 for s in easy)  # (35 - 12) / 3
    assert all(s.target_duration == 48 for s in easy)
    assert all(s.description == "Easy Run" for s in easy)


def test_all_sessions_are_runs():
    request = make_request(sessions_per_week=6)
    weeks = build_sessions(build_weeks(request), request)

    assert {s.session_type for w in weeks for s in w.sessions} == {SessionType.RUN}


def test_peak_weeks_start_with_intervals():
    request = make_request()
    weeks = build_sessions(build_weeks(request), request)

    for week in weeks:
        first_easy = week.sessions[0]
        if week.phase == TrainingPhase.PEAK:
            assert first_easy.description == "Intervals - Hard effort"
            assert first_easy.session_type == SessionType.RUN
        else:
            assert first_easy.description == "Easy Run"


def test_easy_session_days_clamp_to_saturday():
    assert easy_session_days(3) == [1, 3, 5]
    assert easy_session_days(6) == [1, 3, 5, 6, 6, 6]


def test_seven_sessions_collide_on_day_six():
    """Known edge case: clamping stacks several sessions on Saturday."""
    request = make_request(sessions_per_week=7)
    week = build_sessions(build_weeks(request), request)[0]

    assert [s.day_of_week for s in week.sessions] == [1, 3, 5, 6, 6, 6, 7]
    assert sum(1 for s in week.sessions if s.day_of_week == 7) == 1


def test_two_sessions_per_week():
    request = make_request(sessions_per_week=2)
    week = build_sessions(build_weeks(request), request)[0]

    assert [s.day_of_week for s in week.sessions] == [1, 7]
    assert week.sessions[0].target_distance == 23  # 35 - 12


# ===== FULL PLAN =====


def test_generate_full_plan():
    request = make_request(objective=Objective.MARATHON, level=TrainingLevel.ADVANCED, duration_weeks=16)
    plan = TrainingPlanGenerator().generate(request)

    assert plan.name == "MARATHON Plan (advanced)"
    assert plan.description == "Generated 16-week plan for marathon."
    assert plan.status == PlanState.ACTIVE
    assert plan.start_date == date(2025, 1, 1)
    assert plan.duration_weeks == 16
    assert len(plan.weeks) == 16
    assert plan.weeks[0].phase == TrainingPhase.BASE
    assert plan.weeks[-1].phase == TrainingPhase.TAPER


def test_total_distance_sums_weekly_volumes():
    plan = TrainingPlanGenerator().generate(make_request(objective=Objective.MARATHON))

    assert plan.get_total_distance() == 585


def test_half_marathon_name_is_upper_cased():
    plan = TrainingPlanGenerator().generate(make_request(level=TrainingLevel.BEGINNER))
    assert plan.name == "HALF-MARATHON Plan (beginner)"


@pytest.mark.parametrize("weeks", [4, 9, 12, 26, 52])
@pytest.mark.parametrize("sessions", [2, 4, 7])
def test_plan_structure_invariants(weeks, sessions):
    plan = TrainingPlanGenerator().generate(
        make_request(duration_weeks=weeks, sessions_per_week=sessions)
    )

    assert [w.week_number for w in plan.weeks] == list(range(1, weeks + 1))
    assert sum(plan.get_phase_breakdown().values()) == weeks
    for week in plan.weeks:
        assert len(week.sessions) == sessions
        assert sum(1 for s in week.sessions if s.day_of_week == 7) == 1
        days = [s.day_of_week for s in week.sessions]
        assert days == sorted(days)
        assert week.volume_distance >= 0
        assert week.volume_duration >= 0


def test_generation_is_deterministic():
    request = make_request(duration_weeks=18, sessions_per_week=5)

    first = TrainingPlanGenerator().generate(request)
    second = TrainingPlanGenerator().generate(request)

    assert first.model_dump() == second.model_dump()


def test_plan_decisions_are_recorded():
    plan = TrainingPlanGenerator().generate(make_request())
    points = [d.decision_point for d in plan.plan_decisions]

    assert points == ["Training Phase Distribution", "Weekly Volume Progression"]
    assert plan.plan_decisions[0].outcome == "6wk base, 3wk build, 2wk peak, 1wk taper"
    assert "4, 8" in plan.plan_decisions[1].outcome


def test_generator_rejects_short_plan(too_short_request):
    with pytest.raises(EngineError):
        TrainingPlanGenerator().generate(too_short_request)


def test_generator_resets_decisions_between_runs():
    generator = TrainingPlanGenerator()
    generator.generate(make_request())
    plan = generator.generate(make_request(duration_weeks=8))

    assert len(plan.plan_decisions) == 2
