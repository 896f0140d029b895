#!/usr/bin/env python3
"""
Quick start script to demonstrate asynchronous plan generation.

This script shows the complete workflow:
1. Inspect the phase split for a plan length
2. Preview a generated plan in memory
3. Submit a valid request and wait for the generation task
4. Submit a request the engine rejects and watch it fail

Jobs run inline (Celery eager mode), so no worker is needed, but the job
registry needs Redis at PLANNER_REDIS_URL (default redis://localhost:6379/0).
"""

from datetime import date
from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import Settings
from src.logging_config import configure_logging
from src.plan_schemas import Objective, PlanRequest, TrainingLevel
from src.planner import TrainingPlanGenerator, split_phases
from src.service import planner_runtime

console = Console()

DEMO_OWNER = "demo-user"


def print_header(title: str):
    """Print a formatted header."""
    console.print(f"\n[bold cyan]{title}[/bold cyan]")
    console.print("=" * len(title))


def main():
    """Run the complete demonstration workflow."""
    console.print("\n[bold magenta]🏃 Training Plan Generation Pipeline[/bold magenta]")
    console.print("[dim]Demonstration of complete workflow[/dim]\n")

    configure_logging("WARNING")

    request = PlanRequest(
        objective=Objective.MARATHON,
        level=TrainingLevel.INTERMEDIATE,
        duration_weeks=12,
        sessions_per_week=4,
        start_date=date(2025, 6, 1),
    )

    # ===== STEP 1: Phase Split =====
    print_header("Step 1: Phase Split")

    split = split_phases(request.duration_weeks)
    for phase, weeks in split.as_dict().items():
        console.print(f"  {phase.title()}: {weeks} weeks")

    # ===== STEP 2: Preview Plan =====
    print_header("Step 2: Preview Plan")

    plan = TrainingPlanGenerator().generate(request)
    console.print(f"✓ Generated [green]{plan.name}[/green]")
    console.print(f"  {plan.description}")

    table = Table(title="Weekly Volume", box=box.ROUNDED)
    table.add_column("Week", justify="right", style="cyan")
    table.add_column("Phase")
    table.add_column("Distance (km)", justify="right", style="yellow")
    table.add_column("Long Run (km)", justify="right")
    for week in plan.weeks:
        long_run = week.long_run
        table.add_row(
            str(week.week_number),
            week.phase.value,
            f"{week.volume_distance:g}",
            f"{long_run.target_distance:g}" if long_run else "-",
        )
    console.print(table)

    for decision in plan.plan_decisions:
        console.print(f"  • {decision.decision_point}: {decision.outcome}")

    # ===== STEP 3 & 4: Run The Pipeline =====
    database_path = Path("quickstart.db")
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite:///{database_path}",
        task_always_eager=True,
        status_poll_interval_seconds=0.1,
    )

    bad_request = PlanRequest.model_construct(
        objective=Objective.FIVE_K,
        level=TrainingLevel.BEGINNER,
        duration_weeks=3,
        sessions_per_week=3,
        start_date=date(2025, 6, 1),
    )

    with planner_runtime(settings) as runtime:
        service = runtime.service

        print_header("Step 3: Submit Valid Request")
        submission = service.submit(DEMO_OWNER, request)
        console.print(f"  Plan id: [cyan]{submission.plan_id}[/cyan] ({submission.status.value})")
        view = service.wait_for_status(DEMO_OWNER, submission.plan_id, attempts=50, interval=0.1)
        console.print(f"  Final status: [green]{view.status.value}[/green]")

        detail = service.get_plan(DEMO_OWNER, submission.plan_id)
        console.print(
            f"  Stored: {len(detail.weeks)} weeks, "
            f"{sum(len(w.sessions) for w in detail.weeks)} sessions"
        )

        print_header("Step 4: Submit Request The Engine Rejects")
        submission = service.submit(DEMO_OWNER, bad_request)
        view = service.wait_for_status(DEMO_OWNER, submission.plan_id, attempts=50, interval=0.1)
        detail = service.get_plan(DEMO_OWNER, submission.plan_id)
        console.print(f"  Final status: [red]{view.status.value}[/red]")
        console.print(f"  Description: {detail.description}")
        console.print(f"  Stored weeks: {len(detail.weeks)}")

    # ===== COMPLETION =====
    console.print("\n")
    panel = Panel(
        "[green]✓[/green] Demonstration complete!\n\n"
        "The pipeline successfully:\n"
        "  1. Created pending plans and enqueued their jobs\n"
        "  2. Generated and persisted a valid plan atomically\n"
        "  3. Marked a rejected plan failed with nothing persisted\n\n"
        f"Plans are stored in {database_path}.",
        title="[bold green]Success[/bold green]",
        border_style="green",
    )
    console.print(panel)

    console.print("\n[bold cyan]Next Steps:[/bold cyan]")
    console.print("  • Run CLI: python3 -m src.cli preview --objective marathon --weeks 16")
    console.print("  • Start the API: python3 -m src.cli serve")
    console.print("  • Start a worker: python3 -m src.cli worker")
    console.print("  • Run tests: python3 -m pytest\n")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        console.print("[dim]Install dependencies with: pip install -e .[/dim]")
        raise
