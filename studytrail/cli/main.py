"""
Typer CLI for the study-trail engine.

Commands:
    studytrail db init                      - Create tables
    studytrail week show [--week DATE]      - Show a week's trail with progress
    studytrail trail add DAY TOPIC -d DISC  - Append topics to a day
    studytrail trail move FROM TARGET       - Move an entry (card id or drop zone)
    studytrail trail remove ID              - Remove an entry
    studytrail trail toggle DAY TOPIC       - Flip a completion flag
    studytrail session save TOPIC -d DISC   - Save a study session
    studytrail revisions schedule TOPIC     - Schedule SRS revisions
    studytrail revisions list               - List revisions
    studytrail revisions overdue            - Mark overdue revisions late
    studytrail revisions complete ID        - Close a revision
    studytrail revisions reschedule ID DAYS - Move a revision
    studytrail plan generate DISC:TOPIC...  - Generate a weekly plan

Usage:
    studytrail --help
    studytrail trail move mon__0 droppable-tue
    studytrail session save topic-42 -d law --revisions --offset 1 --offset 7
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from typing import Optional, TypeVar

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from studytrail.config import Settings, get_settings
from studytrail.trail.engine import TrailEngine, build_engine
from studytrail.trail.models import DAYS, DayId, PersistentTopicRef, RevisionOutcome, RevisionStatus
from studytrail.trail.planner import (
    AIPlannerClient,
    PlanConfig,
    PlanConfigError,
    PlanningService,
    RoundRobinPlanner,
)
from studytrail.trail.revisions import RevisionNotFoundError
from studytrail.trail.study_service import StudySession
from studytrail.trail.week_keys import canonical_week_key, current_week_key, shift_week

T = TypeVar("T")

app = typer.Typer(
    help="study-trail CLI: weekly study plan, completion tracking and SRS revisions",
    no_args_is_help=True,
)
db_app = typer.Typer(help="Database operations", no_args_is_help=True)
week_app = typer.Typer(help="Weekly trail views", no_args_is_help=True)
trail_app = typer.Typer(help="Trail editing", no_args_is_help=True)
session_app = typer.Typer(help="Study sessions", no_args_is_help=True)
revisions_app = typer.Typer(help="Spaced-repetition revisions", no_args_is_help=True)
plan_app = typer.Typer(help="Weekly plan generation", no_args_is_help=True)

app.add_typer(db_app, name="db")
app.add_typer(week_app, name="week")
app.add_typer(trail_app, name="trail")
app.add_typer(session_app, name="session")
app.add_typer(revisions_app, name="revisions")
app.add_typer(plan_app, name="plan")

console = Console()


def configure_logging(settings: Settings) -> None:
    """Route loguru to stderr at the configured level, plus an optional file."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention=5)


@app.callback()
def main_callback() -> None:
    """Weekly study-trail planner."""
    configure_logging(get_settings())


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Lazily builds the SQL-backed engine; every command loads the stored
    weeks, applies its change and flushes the outbox before exiting.
    """

    def __init__(self, week: Optional[str] = None):
        self.settings = get_settings()
        self.week_key = canonical_week_key(_parse_datetime(week, "--week")) if week else current_week_key()
        self._engine: TrailEngine | None = None

    @property
    def engine(self) -> TrailEngine:
        if self._engine is None:
            from studytrail.db.database import build_session_factory, init_db
            from studytrail.db.repositories import SqlRevisionRepository, SqlTrailPersistence

            init_db()
            factory = build_session_factory()
            self._engine = build_engine(
                persistence=SqlTrailPersistence(factory),
                revisions=SqlRevisionRepository(factory),
                active_week_key=self.week_key,
            )
        return self._engine

    def run(self, action: Callable[[TrailEngine], Awaitable[T]]) -> T:
        """Load stored weeks, run ``action`` and flush pending writes."""

        async def runner() -> T:
            engine = self.engine
            await engine.reconciler.load_all()
            try:
                return await action(engine)
            finally:
                await engine.flush()

        return asyncio.run(runner())


def _parse_day(value: str) -> DayId:
    day = DayId.parse(value)
    if day is None:
        console.print(f"[red]Unknown day '{value}'. Use one of: {', '.join(d.value for d in DAYS)}[/red]")
        raise typer.Exit(code=1)
    return day


def _parse_datetime(value: str, option: str) -> datetime:
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        console.print(f"[red]Invalid {option} '{value}'. Use an ISO date such as 2024-01-01[/red]")
        raise typer.Exit(code=1)


def _topic_label(ref) -> str:
    if isinstance(ref, PersistentTopicRef):
        return f"{ref.topic_id} [dim]({ref.discipline_id})[/dim]"
    return f"{ref.title} [dim]({ref.discipline_name or 'AI'})[/dim]"


# ========================================
# DB COMMANDS
# ========================================


@db_app.command("init")
def db_init() -> None:
    """Create database tables."""
    from studytrail.db.database import init_db

    init_db()
    console.print("[green]Database tables initialized[/green]")


# ========================================
# WEEK COMMANDS
# ========================================


@week_app.command("show")
def week_show(
    week: Optional[str] = typer.Option(None, "--week", "-w", help="Any date inside the week"),
    offset: int = typer.Option(0, "--offset", help="Weeks relative to --week (e.g. -1 for previous)"),
) -> None:
    """Show a week's trail, incomplete topics first."""
    ctx = CLIContext(week)
    key = shift_week(ctx.week_key, offset) if offset else ctx.week_key

    async def action(engine: TrailEngine):
        return [(day, engine.tracker.ordered_day(key, day)) for day in DAYS], engine.tracker.week_stats(key)

    days, stats = ctx.run(action)

    table = Table(title=f"Study trail - week of {key}")
    table.add_column("Day", style="cyan")
    table.add_column("Id", style="dim")
    table.add_column("Topic")
    table.add_column("Done", justify="center")

    for day, cards in days:
        if not cards:
            table.add_row(day.value, "", "[dim]-[/dim]", "")
        for card in cards:
            table.add_row(day.value, card.instance_id, _topic_label(card.ref), "[green]x[/green]" if card.done else "")

    console.print(table)
    console.print(
        f"Progress: [green]{stats.completed}[/green]/{stats.total} done, "
        f"{stats.pending} pending ({stats.progress}%)"
    )


# ========================================
# TRAIL COMMANDS
# ========================================


@trail_app.command("add")
def trail_add(
    day: str = typer.Argument(..., help="Day (mon..sun)"),
    topic_ids: list[str] = typer.Argument(..., help="Topic ids to append"),
    discipline: str = typer.Option(..., "--discipline", "-d", help="Discipline id of the topics"),
    week: Optional[str] = typer.Option(None, "--week", "-w"),
) -> None:
    """Append topics to the end of a day."""
    ctx = CLIContext(week)
    day_id = _parse_day(day)
    refs = [PersistentTopicRef(topic_id=t, discipline_id=discipline) for t in topic_ids]

    async def action(engine: TrailEngine) -> int:
        return engine.store.add_entries(ctx.week_key, day_id, refs)

    added = ctx.run(action)
    console.print(f"[green]{added} topic(s) added to {day_id.value}[/green]")


@trail_app.command("move")
def trail_move(
    source: str = typer.Argument(..., help="Instance id of the entry (e.g. mon__0)"),
    target: str = typer.Argument(..., help="Card instance id or drop zone (droppable-tue)"),
    week: Optional[str] = typer.Option(None, "--week", "-w"),
) -> None:
    """Move an entry; card targets insert before that card."""
    ctx = CLIContext(week)

    async def action(engine: TrailEngine) -> bool:
        return engine.store.move_entry(source, target, ctx.week_key)

    if ctx.run(action):
        console.print("[green]Moved[/green]")
    else:
        console.print("[yellow]Nothing moved[/yellow]")


@trail_app.command("remove")
def trail_remove(
    instance_id: str = typer.Argument(..., help="Instance id of the entry"),
    week: Optional[str] = typer.Option(None, "--week", "-w"),
) -> None:
    """Remove an entry from the trail."""
    ctx = CLIContext(week)

    async def action(engine: TrailEngine):
        return engine.store.remove_entry(instance_id, ctx.week_key)

    removed = ctx.run(action)
    if removed is None:
        console.print("[yellow]Nothing removed[/yellow]")
    else:
        console.print(f"[green]Removed {removed.topic_key}[/green]")


@trail_app.command("toggle")
def trail_toggle(
    day: str = typer.Argument(..., help="Day (mon..sun)"),
    topic_key: str = typer.Argument(..., help="Topic id"),
    week: Optional[str] = typer.Option(None, "--week", "-w"),
) -> None:
    """Flip the completion flag of a topic on a day."""
    ctx = CLIContext(week)
    day_id = _parse_day(day)

    async def action(engine: TrailEngine) -> bool:
        return engine.tracker.toggle(ctx.week_key, day_id, topic_key)

    state = ctx.run(action)
    console.print(f"{topic_key} on {day_id.value}: {'[green]done[/green]' if state else 'pending'}")


# ========================================
# SESSION COMMANDS
# ========================================


@session_app.command("save")
def session_save(
    topic_id: str = typer.Argument(..., help="Studied topic id"),
    discipline: str = typer.Option(..., "--discipline", "-d"),
    label: str = typer.Option("", "--label", "-l", help="Revision label (defaults to topic id)"),
    count: bool = typer.Option(True, "--count/--no-count", help="Mark the topic done on the trail"),
    revisions: bool = typer.Option(False, "--revisions/--no-revisions", help="Schedule SRS revisions"),
    offsets: Optional[list[int]] = typer.Option(None, "--offset", "-o", help="Revision day offsets"),
    week: Optional[str] = typer.Option(None, "--week", "-w"),
) -> None:
    """Save a study session: mark it on the trail and schedule revisions."""
    ctx = CLIContext(week)
    session = StudySession(
        topic_id=topic_id,
        discipline_id=discipline,
        label=label or topic_id,
        count_towards_plan=count,
        schedule_revisions=revisions,
        revision_offsets=offsets or None,
        week_key=ctx.week_key,
    )

    async def action(engine: TrailEngine):
        return await engine.study.record_session(session)

    result = ctx.run(action)

    if count:
        if result.completion is None:
            console.print("[yellow]Topic is not on any trail; nothing marked[/yellow]")
        else:
            console.print(
                f"[green]Marked done on {result.completion.day.value} "
                f"(week of {result.completion.week_key})[/green]"
            )
    if result.revisions is not None:
        for record in result.revisions.created:
            console.print(f"  revision {record.id} on {record.scheduled_date:%Y-%m-%d}")
        for failure in result.revisions.failures:
            console.print(f"  [red]D+{failure.offset} failed: {failure.error}[/red]")


# ========================================
# REVISION COMMANDS
# ========================================


@revisions_app.command("schedule")
def revisions_schedule(
    topic_id: str = typer.Argument(...),
    discipline: str = typer.Option(..., "--discipline", "-d"),
    label: str = typer.Option("", "--label", "-l"),
    base: Optional[str] = typer.Option(None, "--base", help="Base date (ISO); now when omitted"),
    offsets: Optional[list[int]] = typer.Option(None, "--offset", "-o"),
) -> None:
    """Schedule revisions not already covered by pending ones."""
    ctx = CLIContext()
    base_date = _parse_datetime(base, "--base") if base else None

    async def action(engine: TrailEngine):
        return await engine.scheduler.schedule_revisions(
            topic_id, discipline, label or topic_id, base_date=base_date, offsets=offsets or None
        )

    result = ctx.run(action)
    console.print(
        f"[green]{len(result.created)} created[/green], "
        f"{len(result.skipped_offsets)} already covered, "
        f"[red]{len(result.failures)} failed[/red]"
    )
    for record in result.created:
        console.print(f"  {record.id}  {record.scheduled_date:%Y-%m-%d}")


@revisions_app.command("list")
def revisions_list(
    status: Optional[RevisionStatus] = typer.Option(None, "--status", "-s"),
) -> None:
    """List revisions, soonest first."""
    ctx = CLIContext()

    async def action(engine: TrailEngine):
        return await engine.scheduler.repository.list_revisions(status)

    records = ctx.run(action)
    table = Table(title="Revisions")
    for column in ("Id", "Date", "Topic", "Label", "Status", "Origin", "Difficulty"):
        table.add_column(column)
    for record in records:
        table.add_row(
            record.id or "",
            f"{record.scheduled_date:%Y-%m-%d}",
            record.topic_id,
            record.label,
            record.status.value,
            record.origin.value,
            record.difficulty.value,
        )
    console.print(table)


@revisions_app.command("overdue")
def revisions_overdue() -> None:
    """Mark pending revisions dated before today as late."""
    ctx = CLIContext()

    async def action(engine: TrailEngine):
        return await engine.scheduler.mark_overdue(date.today())

    updated = ctx.run(action)
    console.print(f"{len(updated)} revision(s) marked late")


@revisions_app.command("complete")
def revisions_complete(
    revision_id: str = typer.Argument(...),
    outcome: RevisionOutcome = typer.Option(RevisionOutcome.CORRECT, "--outcome"),
) -> None:
    """Close a revision (wrong answers re-queue it for tomorrow)."""
    ctx = CLIContext()

    async def action(engine: TrailEngine):
        return await engine.scheduler.complete_revision(revision_id, outcome)

    try:
        completion = ctx.run(action)
    except RevisionNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Revision {completion.revision.id}: {completion.revision.status.value}")
    if completion.follow_up is not None:
        console.print(f"Follow-up {completion.follow_up.id} on {completion.follow_up.scheduled_date:%Y-%m-%d}")


@revisions_app.command("reschedule")
def revisions_reschedule(
    revision_id: str = typer.Argument(...),
    days: int = typer.Argument(..., help="Days from now"),
) -> None:
    """Move a revision and make it pending again."""
    ctx = CLIContext()

    async def action(engine: TrailEngine):
        return await engine.scheduler.reschedule_revision(revision_id, days)

    try:
        record = ctx.run(action)
    except RevisionNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    if record.id != revision_id:
        console.print(
            f"Revision {revision_id} merged into pending revision {record.id} "
            f"on {record.scheduled_date:%Y-%m-%d}"
        )
    else:
        console.print(f"Revision {record.id} moved to {record.scheduled_date:%Y-%m-%d}")


# ========================================
# PLAN COMMANDS
# ========================================


@plan_app.command("generate")
def plan_generate(
    topics: list[str] = typer.Argument(..., help="Topics as DISCIPLINE:TOPIC"),
    days: Optional[list[str]] = typer.Option(None, "--day", help="Days to plan (repeatable)"),
    per_day: Optional[int] = typer.Option(None, "--per-day", help="Maximum topics per day"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Shuffle seed"),
    use_ai: bool = typer.Option(False, "--ai", help="Use the remote AI planner"),
    week: Optional[str] = typer.Option(None, "--week", "-w"),
) -> None:
    """Generate a weekly plan and replace the week's trail with it."""
    ctx = CLIContext(week)

    refs = []
    for item in topics:
        discipline, sep, topic_id = item.partition(":")
        if not sep or not discipline or not topic_id:
            console.print(f"[red]Expected DISCIPLINE:TOPIC, got '{item}'[/red]")
            raise typer.Exit(code=1)
        refs.append(PersistentTopicRef(topic_id=topic_id, discipline_id=discipline))

    config = PlanConfig(
        topics=refs,
        days=[_parse_day(d) for d in days or []],
        max_topics_per_day=per_day,
    )

    async def action(engine: TrailEngine):
        generator = AIPlannerClient.from_settings() if use_ai else RoundRobinPlanner(seed)
        try:
            return await PlanningService(engine.store, generator).apply_plan(config, ctx.week_key)
        finally:
            if isinstance(generator, AIPlannerClient):
                await generator.close()

    try:
        outcome = ctx.run(action)
    except PlanConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    style = "green" if outcome.applied else "red"
    console.print(f"[{style}]{outcome.notice}[/{style}]")
    if not outcome.applied:
        raise typer.Exit(code=1)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
