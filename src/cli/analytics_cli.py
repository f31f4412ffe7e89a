"""
Learning Analytics CLI.

A Rich terminal interface over the scheduling core.

Commands:
- learning-analytics record   - Record a graded attempt
- learning-analytics item     - Show one item's scheduling state
- learning-analytics due      - Show the due-review queue
- learning-analytics risks    - Show forgetting-curve risk for every item
- learning-analytics profile  - Show the latest learner profile
- learning-analytics analyze  - Rebuild a learner profile
- learning-analytics dashboard - Show profile, queue and headline metrics
- learning-analytics init-db  - Create database tables
- learning-analytics serve    - Run the HTTP API
"""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from src.analytics.engine import LearningAnalyticsEngine
from src.core.errors import LearningAnalyticsError
from src.core.logging_setup import configure_logging
from src.core.models import LearnerProfile, ReviewItemState

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="learning-analytics",
    help="Adaptive review scheduling: record attempts, inspect queues and profiles",
    no_args_is_help=True,
)
console = Console()


def build_engine() -> LearningAnalyticsEngine:
    """Engine backed by the configured database."""
    return LearningAnalyticsEngine.from_settings()


def _parse_time(value: str | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"Not an ISO-8601 timestamp: {value}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _fail(exc: LearningAnalyticsError) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    raise typer.Exit(1)


def _retention_style(retention: float) -> str:
    if retention < 0.35:
        return "red"
    if retention < 0.7:
        return "yellow"
    return "green"


# =============================================================================
# Display Helpers
# =============================================================================


def display_item_state(state: ReviewItemState) -> None:
    """Display an item's scheduling state."""
    due = state.next_due_at.strftime("%Y-%m-%d %H:%M") if state.next_due_at else "-"
    content = (
        f"Repetitions: {state.repetition_count}   Lapses: {state.lapse_count}   Reviews: {state.review_count}\n"
        f"Ease: {state.ease_factor:.2f}   Interval: {state.interval_days:.1f}d   "
        f"Stability: {state.stability_days:.1f}d\n"
        f"Next due: {due}"
    )
    console.print(
        Panel(
            content,
            title=f"{state.learner_id} / {state.content_id}  (v{state.version})",
            title_align="left",
            border_style="cyan",
        )
    )


def display_profile(profile: LearnerProfile) -> None:
    """Display a learner profile."""
    if profile.is_placeholder:
        console.print(f"[yellow]No profile built yet for {profile.learner_id}.[/yellow]")
        console.print("[dim]Run 'learning-analytics analyze' to build one.[/dim]")
        return

    table = Table(title=f"Profile: {profile.learner_id} (v{profile.version})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Stage", profile.stage.value)
    if profile.baseline_accuracy is not None:
        table.add_row("Baseline accuracy", f"{profile.baseline_accuracy:.0%}")
    if profile.baseline_response_ms is not None:
        table.add_row("Baseline response", f"{profile.baseline_response_ms / 1000:.1f}s")
    table.add_row("Sessions", str(profile.session_count))
    table.add_row("Active days", str(profile.days_active))
    table.add_row("Records", str(profile.record_count))
    table.add_row("Optimal hours", ", ".join(f"{h:02d}:00" for h in profile.optimal_hours) or "-")
    table.add_row("Strengths", ", ".join(profile.strengths) or "-")
    table.add_row("Weaknesses", ", ".join(profile.weaknesses) or "-")
    table.add_row("Session length", f"{profile.optimal_session_minutes} min")
    table.add_row("Load / tolerance", f"{profile.current_load_level:.1f} / {profile.load_tolerance:.1f}")
    table.add_row("Fatigue after", f"{profile.fatigue_threshold_minutes:.0f} min")
    table.add_row("Study streak", f"{profile.study_streak_days}d")
    console.print(table)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def record(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    content_id: str = typer.Argument(..., help="Content unit identifier"),
    correct: bool = typer.Option(True, "--correct/--incorrect", help="Pass/fail outcome"),
    score: Optional[float] = typer.Option(None, "--score", "-s", help="Partial score in [0, 1] (overrides pass/fail)"),
    response_ms: int = typer.Option(..., "--response-ms", "-r", help="Response time in milliseconds"),
    at: Optional[str] = typer.Option(None, "--at", help="Attempt time, ISO-8601 (now if omitted)"),
    content_type: str = typer.Option("quiz_question", "--type", "-t", help="Content type"),
    session_id: Optional[str] = typer.Option(None, "--session", help="Learning session identifier"),
    topic: Optional[str] = typer.Option(None, "--topic", help="Topic tag"),
) -> None:
    """Record a graded attempt and show the updated state."""
    engine = build_engine()
    try:
        state = engine.record_outcome(
            learner_id,
            content_id,
            content_type,
            score if score is not None else correct,
            response_ms,
            _parse_time(at),
            session_id=session_id,
            topic=topic,
        )
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    display_item_state(state)


@app.command()
def item(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    content_id: str = typer.Argument(..., help="Content unit identifier"),
) -> None:
    """Show one item's scheduling state."""
    engine = build_engine()
    try:
        state = engine.get_item_state(learner_id, content_id)
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    display_item_state(state)


@app.command()
def due(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum number of items"),
) -> None:
    """Show items due for review, most at risk first."""
    engine = build_engine()
    try:
        reviews = engine.get_due_reviews(learner_id, limit)
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    if not reviews:
        console.print("[green]Nothing due. All caught up![/green]")
        return

    table = Table(title=f"Due reviews: {learner_id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Content")
    table.add_column("Retention", justify="right")
    table.add_column("Due")

    for index, review in enumerate(reviews, 1):
        style = _retention_style(review.retention_probability)
        due_at = review.next_due_at.strftime("%Y-%m-%d %H:%M") if review.next_due_at else "-"
        table.add_row(str(index), review.content_id, f"[{style}]{review.retention_probability:.0%}[/{style}]", due_at)

    console.print(table)


@app.command()
def risks(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
) -> None:
    """Show forgetting-curve risk for every item."""
    engine = build_engine()
    try:
        summary = engine.get_forgetting_curve_summary(learner_id)
        entries = engine.get_forgetting_curve_recommendations(learner_id)
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    console.print(
        f"\n[bold]Retention:[/bold] {summary.personal_retention_rate:.0%}   "
        f"[bold]Items:[/bold] {summary.total_items}   "
        f"[bold]To review:[/bold] {summary.total_items_to_review}\n"
    )
    if not entries:
        return

    table = Table()
    table.add_column("Content")
    table.add_column("Risk", justify="right")
    table.add_column("Retention", justify="right")

    for entry in entries:
        style = _retention_style(entry.retention_probability)
        table.add_row(entry.content_id, f"[{style}]{entry.risk_score:.0%}[/{style}]", f"{entry.retention_probability:.0%}")

    console.print(table)


@app.command()
def profile(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
) -> None:
    """Show the latest committed learner profile."""
    engine = build_engine()
    try:
        current = engine.get_user_learning_profile(learner_id)
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    display_profile(current)


@app.command()
def analyze(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
) -> None:
    """Rebuild a learner profile from the performance log."""
    engine = build_engine()
    try:
        rebuilt = engine.analyze_personal_learning_patterns(learner_id)
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    console.print(f"[green]Profile rebuilt (v{rebuilt.version}).[/green]")
    display_profile(rebuilt)


@app.command()
def dashboard(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum due reviews"),
) -> None:
    """Show the learner's stage, headline metrics and due reviews."""
    engine = build_engine()
    try:
        board = engine.get_learning_dashboard(learner_id, limit)
    except LearningAnalyticsError as exc:
        _fail(exc)
    finally:
        engine.close()

    stage = board.learning_stage
    metrics = board.metrics
    accuracy = f"{metrics.average_accuracy:.0%}" if metrics.average_accuracy is not None else "-"
    console.print(
        Panel(
            f"Stage: {stage['stage']} ({stage['data_quality']} data)\n"
            f"Sessions: {metrics.total_sessions}   Accuracy: {accuracy}   "
            f"Streak: {metrics.study_streak_days}d\n"
            f"Reviews due: {metrics.reviews_due}   Velocity: {metrics.learning_velocity:.1f}/day",
            title=f"Dashboard: {learner_id}",
            title_align="left",
            border_style="cyan",
        )
    )
    for review in board.due_reviews:
        style = _retention_style(review.retention_probability)
        console.print(f"  {review.content_id}  [{style}]{review.retention_probability:.0%}[/{style}]")


@app.command("init-db")
def init_db_command() -> None:
    """Create database tables."""
    from src.db.database import init_db

    init_db()
    console.print(f"[green]Tables ready[/green] [dim]({get_settings().database_url})[/dim]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    configure_logging(level="WARNING")
    app()


if __name__ == "__main__":
    main()
