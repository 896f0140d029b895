"""
Command-line interface for the training planner.

Provides commands for:
- Inspecting the phase split for a plan length
- Previewing a generated plan without touching the database
- Running the full asynchronous pipeline against the configured database
- Serving the HTTP API
- Running the Celery worker that executes generation jobs
"""

from datetime import date
from typing import Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from src.config import get_settings
from src.errors import EngineError
from src.logging_config import configure_logging
from src.plan_schemas import GeneratedPlan, Objective, PlanRequest, TrainingLevel
from src.planner import TrainingPlanGenerator, split_phases
from src.schemas import GENERATE_PLAN_QUEUE_NAME
from src.service import planner_runtime
from src.tasks import celery_app, configure_celery

# Initialize Typer app and Rich console
app = typer.Typer(help="Training Planner - periodized running plans, generated asynchronously")
console = Console()

_STATUS_COLORS = {"pending": "yellow", "generated": "green", "failed": "red"}


# ===== DISPLAY HELPER FUNCTIONS =====


def _display_plan_summary(plan: GeneratedPlan, show_sessions: bool = False):
    """
    Display training plan summary with phases and weekly volume.

    Args:
        plan: GeneratedPlan object
        show_sessions: If True, list every session under its week
    """
    console.print(f"\n✓ Generated [green]{plan.name}[/green]")
    console.print(f"  Start: {plan.start_date}")
    console.print(f"  Weeks: {plan.duration_weeks}, sessions: {plan.session_count}")
    console.print(f"  Total distance: {plan.get_total_distance():g} km")

    console.print("\n[bold]Phase Distribution:[/bold]")
    for phase, weeks in plan.get_phase_breakdown().items():
        console.print(f"  {phase}: {weeks} weeks")

    table = Table(title="Weekly Volume", box=box.ROUNDED)
    table.add_column("Week", justify="right", style="cyan")
    table.add_column("Phase")
    table.add_column("Distance (km)", justify="right", style="yellow")
    table.add_column("Duration (min)", justify="right")
    if show_sessions:
        table.add_column("Sessions")

    for week in plan.weeks:
        row = [
            str(week.week_number),
            week.phase.value,
            f"{week.volume_distance:g}",
            str(week.volume_duration),
        ]
        if show_sessions:
            row.append(
                "\n".join(
                    f"D{s.day_of_week} {s.target_distance:g}km {s.description}"
                    for s in week.sessions
                )
            )
        table.add_row(*row)

    console.print(table)

    if plan.plan_decisions:
        console.print("\n[bold]Plan Decisions:[/bold]")
        for decision in plan.plan_decisions:
            console.print(f"  • {decision.decision_point}: {decision.outcome}")


def _build_request(
    objective: Objective,
    level: TrainingLevel,
    weeks: int,
    sessions: int,
    start: Optional[str],
) -> PlanRequest:
    try:
        return PlanRequest(
            objective=objective,
            level=level,
            duration_weeks=weeks,
            sessions_per_week=sessions,
            start_date=start or date.today().isoformat(),
        )
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            console.print(f"[red]✗ {field}: {error['msg']}[/red]")
        raise typer.Exit(code=1)


# ===== COMMANDS =====


@app.command()
def phases(weeks: int = typer.Argument(..., help="Plan length in weeks")):
    """Show how a plan of WEEKS weeks is split into phases."""
    try:
        split = split_phases(weeks)
    except EngineError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"{weeks}-week plan", box=box.ROUNDED)
    table.add_column("Phase", style="cyan")
    table.add_column("Weeks", justify="right", style="yellow")
    for phase, count in split.as_dict().items():
        table.add_row(phase.title(), str(count))
    console.print(table)


@app.command()
def preview(
    objective: Objective = typer.Option(Objective.TEN_K, help="Target race"),
    level: TrainingLevel = typer.Option(TrainingLevel.BEGINNER, help="Runner level"),
    weeks: int = typer.Option(12, help="Plan length in weeks (4-52)"),
    sessions: int = typer.Option(4, help="Sessions per week (2-7)"),
    start: Optional[str] = typer.Option(None, help="Start date (YYYY-MM-DD), default today"),
    show_sessions: bool = typer.Option(False, "--sessions", help="List every session"),
):
    """Generate a plan locally and print it (nothing is stored)."""
    request = _build_request(objective, level, weeks, sessions, start)
    plan = TrainingPlanGenerator().generate(request)
    _display_plan_summary(plan, show_sessions=show_sessions)


@app.command()
def generate(
    objective: Objective = typer.Option(Objective.TEN_K, help="Target race"),
    level: TrainingLevel = typer.Option(TrainingLevel.BEGINNER, help="Runner level"),
    weeks: int = typer.Option(12, help="Plan length in weeks (4-52)"),
    sessions: int = typer.Option(4, help="Sessions per week (2-7)"),
    start: Optional[str] = typer.Option(None, help="Start date (YYYY-MM-DD), default today"),
    owner: str = typer.Option("cli-user", help="Owner id recorded on the plan"),
):
    """Submit a plan through the queue, wait for the worker and report the result."""
    settings = get_settings()
    configure_logging(settings.log_level)
    request = _build_request(objective, level, weeks, sessions, start)

    with planner_runtime(settings) as runtime:
        submission = runtime.service.submit(owner, request)
        console.print(f"Submitted plan [cyan]{submission.plan_id}[/cyan] ({submission.status.value})")

        view = runtime.service.wait_for_status(
            owner,
            submission.plan_id,
            attempts=settings.status_poll_attempts,
            interval=settings.status_poll_interval_seconds,
        )
        color = _STATUS_COLORS.get(view.status.value, "white")
        console.print(f"Status: [{color}]{view.status.value}[/{color}]")

        detail = runtime.service.get_plan(owner, submission.plan_id)
        if detail.weeks:
            console.print(
                f"  {len(detail.weeks)} weeks, "
                f"{sum(len(w.sessions) for w in detail.weeks)} sessions stored"
            )
        elif detail.description:
            console.print(f"  {detail.description}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
):
    """Run the HTTP API. Jobs are executed by `worker`."""
    import uvicorn

    from src.api.main import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def worker(
    concurrency: Optional[int] = typer.Option(None, help="Jobs processed simultaneously"),
    pool: str = typer.Option("prefork", help="Celery pool (prefork, threads, solo)"),
):
    """Run a Celery worker consuming generate-plan jobs."""
    settings = get_settings()
    configure_logging(settings.log_level)
    configure_celery(settings)

    celery_app.worker_main(
        [
            "worker",
            f"--loglevel={settings.log_level}",
            f"--concurrency={concurrency or settings.worker_concurrency}",
            f"--queues={GENERATE_PLAN_QUEUE_NAME}",
            f"--pool={pool}",
        ]
    )


if __name__ == "__main__":
    app()
