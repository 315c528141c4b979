"""
Typer CLI for the practice session engine.

Commands:
    practice db init                         - Initialize database tables
    practice db migrate FILE                 - Apply a SQL migration file
    practice curriculum                      - Show the curriculum tree with question counts
    practice limit STUDENT_ID                - Show tier and today's session allowance
    practice start STUDENT_ID SUB_TOPIC_ID   - Run an interactive practice session
    practice resume STUDENT_ID SESSION_ID    - Continue an unfinished session
    practice history STUDENT_ID              - List past sessions

Usage:
    practice --help
    practice start 6f1c... 9a2e... --count 5
    practice history 6f1c... --range last7days
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from practice_engine.bootstrap import SqlRuntime, build_sql_engine
from practice_engine.errors import PracticeError
from practice_engine.evaluation import AnswerSelection
from practice_engine.models import Identity, PracticeSession, Question, QuestionType, UserRole
from practice_engine.session import DateRangeFilter, PracticeSessionEngine, SessionContext
from practice_engine.storage.memory import StaticIdentity

app = typer.Typer(help="Practice session engine CLI", no_args_is_help=True)
db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")

console = Console()

QUIT = "q"


def _fail(error: PracticeError) -> None:
    rprint(f"[red]✗[/red] {error.user_message}")
    logger.debug("{}: {}", error.kind.value, error.message)
    raise typer.Exit(code=1)


def _runtime(student_id: str | None = None) -> SqlRuntime:
    user = Identity(id=student_id, role=UserRole.STUDENT) if student_id else None
    return build_sql_engine(StaticIdentity(user))


async def _open(runtime: SqlRuntime) -> SessionContext:
    opened = await runtime.engine.open_context()
    if not opened.ok:
        _fail(opened.error)
    return opened.value


# ========================================
# Interactive session
# ========================================


def _show_question(session: PracticeSession, question: Question) -> None:
    body = question.prompt
    for option in question.display_options():
        label = option.text or f"[image: {option.image_path}]"
        body += f"\n  [bold]{option.id}[/bold]) {label}"
    if question.type is QuestionType.MULTI_CHOICE:
        body += "\n[dim]Select all that apply, separated by commas.[/dim]"
    console.print(
        Panel(
            body,
            title=f"Question {session.current_question_number}/{session.total_questions}",
            subtitle=f"{session.topic_name} / {session.sub_topic_name}",
        )
    )


def _read_selection(question: Question) -> AnswerSelection | None:
    raw = typer.prompt("Your answer ('q' to stop)").strip()
    if raw.lower() == QUIT:
        return None
    if question.type is QuestionType.SHORT_ANSWER:
        return AnswerSelection.free_text(raw)
    ids = [part.strip().lower() for part in raw.split(",") if part.strip()]
    return AnswerSelection.choice(*ids)


async def _play(engine: PracticeSessionEngine, ctx: SessionContext) -> None:
    """Ask every unanswered question, then complete the session."""
    while True:
        session = ctx.current
        question = ctx.current_question
        if question is None:
            break

        if not ctx.is_current_question_answered and not question.is_deleted:
            _show_question(session, question)
            started = time.monotonic()
            selection = _read_selection(question)
            if selection is None:
                rprint(f"[yellow]Paused.[/yellow] Resume later with session id [bold]{session.id}[/bold]")
                engine.end_session(ctx)
                return

            submitted = await engine.submit_answer(
                ctx, selection, time_spent_seconds=int(time.monotonic() - started)
            )
            if not submitted.ok:
                rprint(f"[red]✗[/red] {submitted.error.user_message}")
                continue
            if submitted.value.is_correct:
                rprint("[green]✓ Correct![/green]")
            else:
                rprint("[red]✗ Incorrect[/red]")
            if question.explanation:
                rprint(f"[dim]{question.explanation}[/dim]")

        if not await engine.next_question(ctx):
            break

    completed = await engine.complete_session(ctx)
    if not completed.ok:
        _fail(completed.error)
    _show_results(completed.value)


def _show_results(session: PracticeSession) -> None:
    results = session.results()
    table = Table(title="Session Complete", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Score", f"{results.correct}/{results.total} ({results.score}%)")
    table.add_row("Time", f"{session.total_time_seconds}s")
    table.add_row("XP earned", f"+{session.xp_earned or 0}")
    table.add_row("Coins earned", f"+{session.coins_earned or 0}")
    console.print(table)


# ========================================
# Commands
# ========================================


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from practice_engine.storage.sql import dispose_engine, init_db

    async def _run() -> None:
        try:
            await init_db()
        finally:
            await dispose_engine()

    logger.info("Initializing database tables...")
    asyncio.run(_run())
    rprint("[green]✓[/green] Database initialized!")


@db_app.command("migrate")
def db_migrate(
    migration_file: Path = typer.Argument(..., help="SQL file to apply"),
) -> None:
    """Apply a SQL migration file."""
    from practice_engine.storage.sql import dispose_engine, run_migration

    async def _run() -> None:
        try:
            await run_migration(migration_file)
        finally:
            await dispose_engine()

    try:
        asyncio.run(_run())
    except FileNotFoundError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Applied {migration_file.name}")


@app.command("curriculum")
def curriculum() -> None:
    """Show grade levels, subjects, topics and sub-topics."""

    async def _run() -> None:
        runtime = _runtime()
        try:
            grade_levels = await runtime.engine.curriculum.grade_levels()
        finally:
            await runtime.aclose()

        table = Table(title="Curriculum")
        table.add_column("Grade")
        table.add_column("Subject")
        table.add_column("Topic")
        table.add_column("Sub-topic")
        table.add_column("Questions", justify="right")
        table.add_column("Sub-topic ID", style="dim")
        for grade in grade_levels:
            for subject in grade.subjects:
                for topic in subject.topics:
                    for sub_topic in topic.sub_topics:
                        table.add_row(
                            grade.name,
                            subject.name,
                            topic.name,
                            sub_topic.name,
                            str(sub_topic.question_count),
                            sub_topic.id,
                        )
        console.print(table)

    asyncio.run(_run())


@app.command("limit")
def limit(student_id: str = typer.Argument(..., help="Student profile id")) -> None:
    """Show the student's tier and remaining sessions today."""

    async def _run() -> None:
        runtime = _runtime(student_id)
        try:
            ctx = await _open(runtime)
            status = await runtime.engine.gate.get_subscription_status(ctx.student_id)
            limit_status = await runtime.engine.check_session_limit(ctx)
        finally:
            await runtime.aclose()

        rprint(f"Tier: [bold]{status.tier.value}[/bold]")
        rprint(f"Sessions today: {limit_status.sessions_today}/{limit_status.session_limit}")
        if limit_status.can_start_session:
            rprint(f"[green]{limit_status.remaining_sessions} session(s) remaining[/green]")
        else:
            rprint("[red]Daily limit reached[/red]")

    asyncio.run(_run())


@app.command("start")
def start(
    student_id: str = typer.Argument(..., help="Student profile id"),
    sub_topic_id: str = typer.Argument(..., help="Sub-topic to practice"),
    count: int = typer.Option(None, "--count", "-n", help="Number of questions"),
) -> None:
    """Start and play a practice session."""

    async def _run() -> None:
        runtime = _runtime(student_id)
        try:
            ctx = await _open(runtime)
            started = await runtime.engine.start_session(ctx, sub_topic_id, count)
            if not started.ok:
                _fail(started.error)
            session = started.value
            rprint(
                f"[bold]{session.subject_name} / {session.topic_name} / {session.sub_topic_name}[/bold]"
                f" - {session.total_questions} questions"
            )
            await _play(runtime.engine, ctx)
        finally:
            await runtime.aclose()

    asyncio.run(_run())


@app.command("resume")
def resume(
    student_id: str = typer.Argument(..., help="Student profile id"),
    session_id: str = typer.Argument(..., help="Unfinished session id"),
) -> None:
    """Continue an unfinished session where it was left."""

    async def _run() -> None:
        runtime = _runtime(student_id)
        try:
            ctx = await _open(runtime)
            resumed = await runtime.engine.resume_session(ctx, session_id)
            if not resumed.ok:
                _fail(resumed.error)
            session = resumed.value
            rprint(
                f"Resuming at question {session.current_question_number}/{session.total_questions}"
                f" ({session.answered_count} answered)"
            )
            await _play(runtime.engine, ctx)
        finally:
            await runtime.aclose()

    asyncio.run(_run())


@app.command("history")
def history(
    student_id: str = typer.Argument(..., help="Student profile id"),
    date_range: DateRangeFilter = typer.Option(DateRangeFilter.ALL_TIME, "--range", "-r"),
    subject: str = typer.Option(None, "--subject", "-s", help="Filter by subject name"),
    topic: str = typer.Option(None, "--topic", "-t", help="Filter by topic name"),
) -> None:
    """List the student's sessions, newest first."""

    async def _run() -> None:
        runtime = _runtime(student_id)
        try:
            ctx = await _open(runtime)
            fetched = await runtime.engine.fetch_session_history(ctx)
        finally:
            await runtime.aclose()
        if not fetched.ok:
            _fail(fetched.error)

        sessions = ctx.history.filtered(subject_name=subject, topic_name=topic, date_range=date_range)
        table = Table(title=f"Practice History ({len(sessions)})")
        table.add_column("Date")
        table.add_column("Subject")
        table.add_column("Topic")
        table.add_column("Score", justify="right")
        table.add_column("XP", justify="right")
        table.add_column("Session ID", style="dim")
        total_xp = 0
        for session in sessions:
            created = session.created_at.astimezone().strftime("%Y-%m-%d %H:%M") if session.created_at else "-"
            if session.is_completed:
                score = f"{session.correct_count}/{session.total_questions}"
            else:
                score = "[yellow]in progress[/yellow]"
            total_xp += session.xp_earned or 0
            table.add_row(
                created,
                session.subject_name,
                f"{session.topic_name} / {session.sub_topic_name}",
                score,
                str(session.xp_earned or 0),
                session.id,
            )
        console.print(table)
        rprint(f"Total XP in view: {total_xp}")

    asyncio.run(_run())


def main() -> None:
    """Entry point for the CLI."""
    logger.remove()
    logger.add(sys.stderr, level=get_settings().log_level)
    app()


if __name__ == "__main__":
    main()
