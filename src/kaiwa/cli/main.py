"""
Main CLI entry point for the kaiwa conversation engine.

Usage:
    kaiwa init-db
    kaiwa task create "At the station" --category travel --objective "Buy a ticket"
    kaiwa learner create "Aiko" --level N4
    kaiwa attempt start <learner-id> <task-id>
    kaiwa attempt say <attempt-id> "すみません、切符はどこで買えますか？"
    kaiwa recommend tasks <learner-id>
    kaiwa recommend daily <learner-id>
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kaiwa.errors import KaiwaError
from kaiwa.models import EvaluationResult, JLPTLevel, TaskCreate

# Main app
app = typer.Typer(name="kaiwa", help="Task-based Japanese conversation practice")
console = Console()


# ============================================================================
# Helpers
# ============================================================================


def configure_logging(level: str | None = None) -> None:
    from kaiwa.settings import get_settings

    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def get_async_session():
    """Get async database session. The engine lives only as long as the command."""
    from kaiwa.db.connection import close_engine, get_session_factory

    try:
        async with get_session_factory()() as session:
            yield session
    finally:
        await close_engine()


def run_async(coro):
    """
    Run an async command body.

    Engine and input validation errors are printed in red and exit with status 1.
    """
    try:
        return asyncio.run(coro)
    except (KaiwaError, PydanticValidationError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override KAIWA_LOG_LEVEL"),
):
    configure_logging(log_level)


@app.command("init-db")
def init_db():
    """Create all tables."""
    from kaiwa.db.connection import close_engine, create_all

    async def _init():
        await create_all()
        await close_engine()

    run_async(_init())
    console.print("[green]Database initialized.[/green]")


# ============================================================================
# Task Commands
# ============================================================================

task_app = typer.Typer(help="Task catalogue")
app.add_typer(task_app, name="task")


@task_app.command("create")
def task_create(
    title: str = typer.Argument(..., help="Task title"),
    category: str = typer.Option(..., "--category", "-c", help="Task category"),
    difficulty: JLPTLevel = typer.Option(JLPTLevel.N5, "--difficulty", "-d"),
    scenario: str = typer.Option("", "--scenario", "-s", help="Roleplay scenario"),
    objective: list[str] = typer.Option(None, "--objective", "-o", help="Learning objective"),
    duration: int = typer.Option(10, "--duration", help="Estimated minutes"),
    character_id: str = typer.Option(None, "--character", help="Character ID"),
):
    """Create a task."""
    from kaiwa.services.task_service import create_task

    async def _create():
        async with get_async_session() as session:
            return await create_task(
                session,
                TaskCreate(
                    title=title,
                    category=category,
                    difficulty=difficulty,
                    scenario=scenario,
                    learning_objectives=objective or [],
                    estimated_duration=duration,
                    character_id=character_id,
                ),
            )

    task = run_async(_create())
    console.print(f"Created task: [bold]{task.id}[/bold]")
    console.print(f"  Objectives: {len(task.learning_objectives)}")


@task_app.command("import")
def task_import(file: Path = typer.Argument(..., help="JSON file with a list of tasks")):
    """Create tasks from a JSON file."""
    from kaiwa.services.task_service import create_task

    if not file.exists():
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)

    payload = json.loads(file.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("tasks", [])

    async def _import():
        async with get_async_session() as session:
            return [await create_task(session, TaskCreate.model_validate(t)) for t in payload]

    tasks = run_async(_import())
    console.print(f"Imported {len(tasks)} tasks.")


@task_app.command("list")
def task_list(
    category: str = typer.Option(None, "--category", "-c"),
    difficulty: JLPTLevel = typer.Option(None, "--difficulty", "-d"),
    include_inactive: bool = typer.Option(False, "--all", help="Include inactive tasks"),
):
    """List tasks."""
    from kaiwa.services.task_service import list_tasks

    async def _list():
        async with get_async_session() as session:
            return await list_tasks(
                session, category=category, difficulty=difficulty, active_only=not include_inactive
            )

    tasks = run_async(_list())
    if not tasks:
        console.print("No tasks found.")
        return

    table = Table(title="Tasks")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Level")
    table.add_column("Minutes", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Avg score", justify="right")
    for t in tasks:
        table.add_row(
            t.id,
            t.title,
            t.category,
            t.difficulty.value,
            str(t.estimated_duration),
            str(t.usage_count),
            f"{t.average_score:.1f}" if t.average_score is not None else "-",
        )
    console.print(table)


@task_app.command("deactivate")
def task_deactivate(task_id: str = typer.Argument(..., help="Task ID")):
    """Deactivate a task so it can no longer be started or retried."""
    from kaiwa.services.task_service import set_task_active

    async def _deactivate():
        async with get_async_session() as session:
            return await set_task_active(session, task_id, False)

    run_async(_deactivate())
    console.print(f"Task {task_id} deactivated.")


@task_app.command("recompute")
def task_recompute(task_id: str = typer.Argument(..., help="Task ID")):
    """Recompute a task's average score from its completed attempts."""
    from kaiwa.services.attempt_service import recompute_task_average_score

    async def _recompute():
        async with get_async_session() as session:
            return await recompute_task_average_score(session, task_id)

    average = run_async(_recompute())
    console.print(f"Average score: {average:.1f}" if average is not None else "No scored attempts.")


# ============================================================================
# Learner Commands
# ============================================================================

learner_app = typer.Typer(help="Learner profiles")
app.add_typer(learner_app, name="learner")


@learner_app.command("create")
def learner_create(
    name: str = typer.Argument(..., help="Learner name"),
    level: JLPTLevel = typer.Option(JLPTLevel.N5, "--level", "-l", help="JLPT level"),
    category: list[str] = typer.Option(None, "--category", "-c", help="Preferred category"),
):
    """Create a learner."""
    from kaiwa.models import LearnerCreate
    from kaiwa.services.learner_service import create_learner

    async def _create():
        async with get_async_session() as session:
            return await create_learner(
                session,
                LearnerCreate(name=name, proficiency=level, preferred_categories=category or []),
            )

    learner = run_async(_create())
    console.print(f"Created learner: [bold]{learner.id}[/bold] ({learner.proficiency.value})")


# ============================================================================
# Attempt Commands
# ============================================================================

attempt_app = typer.Typer(help="Task attempts")
app.add_typer(attempt_app, name="attempt")


@attempt_app.command("start")
def attempt_start(
    learner_id: str = typer.Argument(..., help="Learner ID"),
    task_id: str = typer.Argument(..., help="Task ID"),
):
    """Start a task, or resume the open attempt."""
    from kaiwa.services.attempt_service import start_or_resume_attempt

    async def _start():
        async with get_async_session() as session:
            return await start_or_resume_attempt(session, learner_id, task_id)

    started = run_async(_start())
    verb = "Resumed" if started.is_existing else "Started"
    console.print(f"{verb} attempt [bold]{started.attempt.id}[/bold]")


@attempt_app.command("say")
def attempt_say(
    attempt_id: str = typer.Argument(..., help="Attempt ID"),
    message: str = typer.Argument(..., help="What the learner says"),
):
    """Send a learner message and print the character's reply."""
    from kaiwa.llm.evaluator import AnthropicEvaluator
    from kaiwa.services.attempt_service import post_message

    async def _say():
        async with get_async_session() as session:
            return await post_message(session, attempt_id, message, AnthropicEvaluator())

    result = run_async(_say())
    console.print(f"[blue]{result.reply}[/blue]")
    if result.hint:
        console.print(f"[yellow]Hint: {result.hint}[/yellow]")
    if result.completed_objective:
        console.print(f"[green]Objective completed: {result.completed_objective}[/green]")
    console.print(f"Progress: {result.progress}%")


@attempt_app.command("readiness")
def attempt_readiness(attempt_id: str = typer.Argument(..., help="Attempt ID")):
    """Check whether an attempt can be completed."""
    from kaiwa.services.attempt_service import check_readiness

    async def _check():
        async with get_async_session() as session:
            return await check_readiness(session, attempt_id)

    report = run_async(_check())

    def mark(ok: bool) -> str:
        return "[green]yes[/green]" if ok else "[red]no[/red]"

    console.print(f"Ready: {mark(report.is_ready)}")
    console.print(
        f"  Messages: {report.message_count}/{report.required_messages} {mark(report.has_messages)}"
    )
    console.print(
        f"  Objectives: {report.completed_objectives}/{report.total_objectives} "
        f"{mark(report.objectives_complete)}"
    )
    console.print(
        f"  Minutes: {report.elapsed_minutes}/{report.minimum_minutes} "
        f"{mark(report.has_minimum_duration)}"
    )


@attempt_app.command("complete")
def attempt_complete(
    attempt_id: str = typer.Argument(..., help="Attempt ID"),
    scores: str = typer.Option(
        None,
        "--scores",
        help="Comma-separated task,fluency,vocab-grammar,politeness scores (skips the evaluator)",
    ),
    fallback: bool = typer.Option(
        False, "--fallback", help="Use heuristic scores if the evaluator fails"
    ),
):
    """Complete an attempt and print its assessment."""
    from kaiwa.services import attempt_service

    evaluation = None
    if scores:
        parts = [p.strip() for p in scores.split(",")]
        if len(parts) != 4 or not all(p.lstrip("-").isdigit() for p in parts):
            console.print("[red]--scores needs four integers[/red]")
            raise typer.Exit(1)
        ta, fl, vg, po = (int(p) for p in parts)
        evaluation = EvaluationResult(
            task_achievement=ta, fluency=fl, vocabulary_grammar_accuracy=vg, politeness=po
        )

    async def _complete():
        async with get_async_session() as session:
            if evaluation is not None:
                return await attempt_service.complete_attempt(session, attempt_id, evaluation)

            from kaiwa.llm.evaluator import AnthropicEvaluator

            return await attempt_service.assess_and_complete(
                session, attempt_id, AnthropicEvaluator(), fallback_on_error=fallback
            )

    result = run_async(_complete())
    assessment = result.assessment

    table = Table(title=f"Assessment for {attempt_id}")
    table.add_column("Axis")
    table.add_column("Score", justify="right")
    table.add_row("Task Achievement", str(assessment.task_achievement))
    table.add_row("Fluency", str(assessment.fluency))
    table.add_row("Vocabulary & Grammar", str(assessment.vocabulary_grammar_accuracy))
    table.add_row("Politeness", str(assessment.politeness))
    table.add_row("[bold]Overall[/bold]", f"[bold]{assessment.overall_score:.1f}[/bold]")
    console.print(table)
    console.print(assessment.overall_feedback)
    console.print(f"Retry: {assessment.retry_reasoning}")


@attempt_app.command("retry")
def attempt_retry(attempt_id: str = typer.Argument(..., help="Completed attempt ID")):
    """Start a retry of a completed attempt."""
    from kaiwa.services.attempt_service import retry_attempt

    async def _retry():
        async with get_async_session() as session:
            return await retry_attempt(session, attempt_id)

    result = run_async(_retry())
    ctx = result.retry_context
    console.print(f"Starting retry attempt #{ctx.attempt_number}: [bold]{result.attempt.id}[/bold]")
    if ctx.improvement_target is not None:
        console.print(
            f"  Previous score: {ctx.previous_score:.1f}, target: {ctx.improvement_target:.1f}"
        )
    for area in ctx.improvement_areas:
        console.print(f"  Focus: {area}")


@attempt_app.command("stats")
def attempt_stats(attempt_id: str = typer.Argument(..., help="Completed attempt ID")):
    """Show the learner's history on this attempt's task."""
    from kaiwa.services.attempt_service import get_retry_statistics

    async def _stats():
        async with get_async_session() as session:
            return await get_retry_statistics(session, attempt_id)

    stats = run_async(_stats())
    console.print(f"Attempts: {stats.total_attempts} ({stats.completed_attempts} completed)")
    if stats.best_score is not None:
        console.print(f"  Best: {stats.best_score:.1f}, average: {stats.average_score:.1f}")
    console.print(f"  Trend: {stats.progress_trend}")
    progress = stats.progress
    if stats.completed_attempts:
        console.print(
            f"  Averages: task {progress.average_task_achievement:.1f}, "
            f"fluency {progress.average_fluency:.1f}, "
            f"vocabulary {progress.average_vocabulary_grammar_accuracy:.1f}, "
            f"politeness {progress.average_politeness:.1f}"
        )
    console.print(f"  {stats.recommendation.reasoning}")
    for item in stats.alternatives:
        console.print(f"  Try instead: {item.task.id} {item.task.title}")


# ============================================================================
# Recommendation Commands
# ============================================================================

recommend_app = typer.Typer(help="Task recommendations")
app.add_typer(recommend_app, name="recommend")


def print_scored_tasks(title: str, items, reasons: bool = False) -> None:
    if not items:
        console.print("No tasks to recommend.")
        return

    table = Table(title=title)
    table.add_column("Score", justify="right")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Level")
    if reasons:
        table.add_column("Why")
    for item in items:
        row = [str(item.score), item.task.id, item.task.title, item.task.difficulty.value]
        if reasons:
            row.append("; ".join(item.reasons))
        table.add_row(*row)
    console.print(table)


@recommend_app.command("tasks")
def recommend_tasks(
    learner_id: str = typer.Argument(..., help="Learner ID"),
    limit: int = typer.Option(None, "--limit", "-n", help="Maximum recommendations"),
    category: str = typer.Option(None, "--category", "-c"),
    reasons: bool = typer.Option(False, "--reasons", help="Show why each task was picked"),
):
    """Recommend tasks for a learner."""
    from kaiwa.services.recommendation_service import get_recommendations

    async def _recommend():
        async with get_async_session() as session:
            return await get_recommendations(session, learner_id, limit=limit, category=category)

    result = run_async(_recommend())
    print_scored_tasks(f"Recommended for {learner_id}", result.recommendations, reasons)

    console.print(result.insights.progress_suggestion)
    console.print(f"Completion trend: {result.insights.completion_trend}")


@recommend_app.command("similar")
def recommend_similar(
    task_id: str = typer.Argument(..., help="Task ID"),
    limit: int = typer.Option(3, "--limit", "-n"),
):
    """Tasks in the same category and level as a task."""
    from kaiwa.services.recommendation_service import get_similar_tasks

    async def _similar():
        async with get_async_session() as session:
            return await get_similar_tasks(session, task_id, limit=limit)

    print_scored_tasks(f"Similar to {task_id}", run_async(_similar()))


@recommend_app.command("next")
def recommend_next(
    learner_id: str = typer.Argument(..., help="Learner ID"),
    limit: int = typer.Option(3, "--limit", "-n"),
):
    """Next-level tasks for a learner."""
    from kaiwa.services.recommendation_service import get_progressive_tasks

    async def _next():
        async with get_async_session() as session:
            return await get_progressive_tasks(session, learner_id, limit=limit)

    print_scored_tasks(f"Next level for {learner_id}", run_async(_next()))


@recommend_app.command("focus")
def recommend_focus(
    learner_id: str = typer.Argument(..., help="Learner ID"),
    skill: str = typer.Argument(..., help='Axis to practise, e.g. "politeness"'),
    limit: int = typer.Option(5, "--limit", "-n"),
):
    """Tasks that train one assessment axis."""
    from kaiwa.services.recommendation_service import get_tasks_by_skill_focus

    async def _focus():
        async with get_async_session() as session:
            return await get_tasks_by_skill_focus(session, learner_id, skill, limit=limit)

    print_scored_tasks(f"Practice {skill} for {learner_id}", run_async(_focus()))


@recommend_app.command("daily")
def recommend_daily(learner_id: str = typer.Argument(..., help="Learner ID")):
    """Today's task for a learner."""
    from kaiwa.services.recommendation_service import get_daily_recommendation

    async def _daily():
        async with get_async_session() as session:
            return await get_daily_recommendation(session, learner_id)

    item = run_async(_daily())
    if item is None:
        console.print("No task for today.")
        return
    console.print(f"Today's task: [bold]{item.task.id}[/bold] {item.task.title}")
    console.print(f"  {item.reasons[0]}")


if __name__ == "__main__":
    app()
