"""
studyflow CLI.

Thin presentation layer over StudyService. Every command loads the local
state, performs one operation, and shuts the service down, which flushes
the snapshot and gives queued remote writes a final delivery attempt.

Commands:
- studyflow subject add|list|delete
- studyflow topic add|done|delete
- studyflow log add|list|delete
- studyflow revision show|done|undo
- studyflow sequence set|show|reset|save|load|delete-saved
- studyflow pomodoro run
- studyflow sync flush|status
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from config import get_settings
from studyflow import __version__
from studyflow.errors import ValidationError
from studyflow.logging_config import configure_logging
from studyflow.study.models import ItemType, StudyData
from studyflow.study.pomodoro_engine import PomodoroState, PomodoroStatus
from studyflow.study.revision import (
    StepStatus,
    effective_revision_progress,
    relevant_sequence,
    revision_steps,
)
from studyflow.study.study_service import StudyService

console = Console()

app = typer.Typer(help="studyflow: study log, revision cadence and Pomodoro timer", no_args_is_help=True)

subject_app = typer.Typer(help="Manage subjects", no_args_is_help=True)
topic_app = typer.Typer(help="Manage topics of a subject", no_args_is_help=True)
log_app = typer.Typer(help="Study log entries", no_args_is_help=True)
revision_app = typer.Typer(help="Spaced revision of completed topics", no_args_is_help=True)
sequence_app = typer.Typer(help="Subject rotation plan", no_args_is_help=True)
pomodoro_app = typer.Typer(help="Pomodoro timer", no_args_is_help=True)
sync_app = typer.Typer(help="Remote sync queue", no_args_is_help=True)

app.add_typer(subject_app, name="subject")
app.add_typer(topic_app, name="topic")
app.add_typer(log_app, name="log")
app.add_typer(revision_app, name="revision")
app.add_typer(sequence_app, name="sequence")
app.add_typer(pomodoro_app, name="pomodoro")
app.add_typer(sync_app, name="sync")


@app.callback()
def main_callback() -> None:
    """Configure logging before any command runs."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]studyflow[/bold] v{__version__}")


def _run(operation: Callable[[StudyService], Any], background: bool = False) -> Any:
    """Run one operation against a started service, always shutting it down."""

    async def runner() -> Any:
        service = StudyService()
        await service.start(background=background)
        try:
            result = operation(service)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            await service.shutdown()

    try:
        return asyncio.run(runner())
    except ValidationError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)


def _format_seconds(seconds: int) -> str:
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


# ========================================
# Subjects
# ========================================


@subject_app.command("add")
def subject_add(
    name: str = typer.Argument(..., help="Subject name"),
    color: str = typer.Option("#3b82f6", "--color", "-c", help="Display color"),
    duration: Optional[int] = typer.Option(
        None, "--duration", "-d", help="Minutes of study per plan slot"
    ),
) -> None:
    """Add a subject."""
    subject = _run(lambda s: s.add_subject(name, color, study_duration=duration))
    rprint(f"[green]✓[/green] Added subject [bold]{subject.name}[/bold] ({subject.id})")


@subject_app.command("list")
def subject_list() -> None:
    """List subjects with topic and revision progress."""
    state = _run(lambda s: s.state)
    if not state.subjects:
        rprint("[yellow]No subjects yet[/yellow]")
        return

    table = Table(title="Subjects", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Topics", justify="right")
    table.add_column("Revision", justify="right")
    table.add_column("Goal (min)", justify="right")

    for subject in state.subjects:
        done = sum(1 for t in subject.topics if t.is_completed)
        table.add_row(
            subject.id,
            subject.name,
            f"{done}/{len(subject.topics)}",
            f"{effective_revision_progress(subject)}/{len(relevant_sequence(subject))}",
            str(subject.study_duration) if subject.study_duration else "-",
        )
    console.print(table)


@subject_app.command("delete")
def subject_delete(subject_id: str = typer.Argument(..., help="Subject id")) -> None:
    """Delete a subject and its topics."""
    _run(lambda s: s.delete_subject(subject_id))
    rprint(f"[green]✓[/green] Deleted subject {subject_id}")


# ========================================
# Topics
# ========================================


@topic_app.command("add")
def topic_add(
    subject_id: str = typer.Argument(..., help="Subject id"),
    name: str = typer.Argument(..., help="Topic name"),
) -> None:
    """Append a topic to a subject."""
    topic = _run(lambda s: s.add_topic(subject_id, name))
    rprint(f"[green]✓[/green] Added topic #{topic.order} [bold]{topic.name}[/bold] ({topic.id})")


@topic_app.command("done")
def topic_done(
    subject_id: str = typer.Argument(..., help="Subject id"),
    topic_id: str = typer.Argument(..., help="Topic id"),
) -> None:
    """Toggle a topic's completed flag."""
    topic = _run(lambda s: s.toggle_topic(subject_id, topic_id))
    mark = "[green]completed[/green]" if topic.is_completed else "[yellow]not completed[/yellow]"
    rprint(f"[bold]{topic.name}[/bold] is now {mark}")


@topic_app.command("delete")
def topic_delete(
    subject_id: str = typer.Argument(..., help="Subject id"),
    topic_id: str = typer.Argument(..., help="Topic id"),
) -> None:
    """Delete a topic; remaining topics are renumbered."""
    _run(lambda s: s.delete_topic(subject_id, topic_id))
    rprint(f"[green]✓[/green] Deleted topic {topic_id}")


# ========================================
# Study log
# ========================================


@log_app.command("add")
def log_add(
    subject_id: str = typer.Argument(..., help="Subject id"),
    topic_id: str = typer.Argument(..., help="Topic id"),
    minutes: int = typer.Argument(..., help="Minutes studied"),
    date: Optional[str] = typer.Option(None, "--date", help="ISO-8601 date (default: now)"),
    questions: int = typer.Option(0, "--questions", "-q", help="Questions answered"),
    correct: int = typer.Option(0, "--correct", help="Questions answered correctly"),
    start_page: int = typer.Option(0, "--start-page"),
    end_page: int = typer.Option(0, "--end-page"),
) -> None:
    """Record a study session."""

    def add(service: StudyService):
        log = service.add_log(
            subject_id,
            topic_id,
            minutes,
            date=date,
            start_page=start_page,
            end_page=end_page,
            questions_total=questions,
            questions_correct=correct,
        )
        return log, service.state

    log, state = _run(add)
    rprint(f"[green]✓[/green] Logged {log.duration} min ({log.id})")
    rprint(f"  Streak: [bold]{state.streak}[/bold] day(s)")
    if log.sequence_item_index is not None:
        rprint(f"  Credited to plan slot {log.sequence_item_index + 1}")


@log_app.command("list")
def log_list(limit: int = typer.Option(20, "--limit", "-n", help="Entries to show")) -> None:
    """Show the most recent study log entries."""
    state = _run(lambda s: s.state)
    names = {s.id: s.name for s in state.subjects}
    topics = {t.id: t.name for s in state.subjects for t in s.topics}

    table = Table(title="Study Log", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Subject", style="cyan")
    table.add_column("Topic")
    table.add_column("Min", justify="right")
    table.add_column("Source", style="dim")

    for log in state.study_log[:limit]:
        table.add_row(
            log.id,
            log.date[:16].replace("T", " "),
            names.get(log.subject_id, "?"),
            topics.get(log.topic_id, "?"),
            str(log.duration),
            log.source,
        )
    console.print(table)


@log_app.command("delete")
def log_delete(log_id: str = typer.Argument(..., help="Log id")) -> None:
    """Delete a study log entry."""
    _run(lambda s: s.delete_log(log_id))
    rprint(f"[green]✓[/green] Deleted log {log_id}")


# ========================================
# Revision
# ========================================


@revision_app.command("show")
def revision_show(subject_id: str = typer.Argument(..., help="Subject id")) -> None:
    """Show the revision schedule of a subject."""
    subject = _run(lambda s: s.require_subject(subject_id))
    steps = revision_steps(subject)
    if not steps:
        rprint("[yellow]Complete some topics to build a revision schedule[/yellow]")
        return

    styles = {StepStatus.COMPLETED: "dim", StepStatus.CURRENT: "bold green", StepStatus.PENDING: ""}
    table = Table(title=f"Revision: {subject.name}", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Topic")
    table.add_column("Status")
    for step in steps:
        style = styles[step.status]
        table.add_row(str(step.index + 1), step.topic.name, step.status.value, style=style)
    console.print(table)


@revision_app.command("done")
def revision_done(subject_id: str = typer.Argument(..., help="Subject id")) -> None:
    """Mark the current revision step as done."""

    def advance(service: StudyService):
        subject = service.require_subject(subject_id)
        return service.toggle_revision_step(subject_id, effective_revision_progress(subject))

    progress = _run(advance)
    if progress is None:
        rprint("[yellow]Revision schedule already complete[/yellow]")
    else:
        rprint(f"[green]✓[/green] Revision progress: {progress}")


@revision_app.command("undo")
def revision_undo(subject_id: str = typer.Argument(..., help="Subject id")) -> None:
    """Undo the last completed revision step."""

    def undo(service: StudyService):
        subject = service.require_subject(subject_id)
        return service.toggle_revision_step(subject_id, effective_revision_progress(subject) - 1)

    progress = _run(undo)
    if progress is None:
        rprint("[yellow]Nothing to undo[/yellow]")
    else:
        rprint(f"[green]✓[/green] Revision progress: {progress}")


# ========================================
# Study sequence
# ========================================


@sequence_app.command("set")
def sequence_set(
    subject_ids: list[str] = typer.Argument(..., help="Subject ids in rotation order"),
    name: str = typer.Option("Ciclo de estudos", "--name", help="Plan name"),
    edit: bool = typer.Option(
        False, "--edit", help="Edit the current plan, keeping time already studied"
    ),
) -> None:
    """Install a subject rotation plan."""
    sequence = _run(lambda s: s.save_sequence(subject_ids, name=name, edit_current=edit))
    rprint(f"[green]✓[/green] Plan [bold]{sequence.name}[/bold] with {len(sequence.sequence)} slots")


def _print_saved_sequences(state: StudyData) -> None:
    if not state.saved_study_sequences:
        return
    rprint("[bold]Saved plans:[/bold]")
    for saved in state.saved_study_sequences:
        rprint(f"  {saved.name} [dim]({saved.id}, {len(saved.sequence)} slots)[/dim]")


@sequence_app.command("show")
def sequence_show() -> None:
    """Show the current plan and cursor."""
    state = _run(lambda s: s.state)
    _print_saved_sequences(state)
    sequence = state.study_sequence
    if sequence is None:
        rprint("[yellow]No study plan is active[/yellow]")
        return

    subjects = {s.id: s for s in state.subjects}
    table = Table(title=f"{sequence.name} (resets: {state.cycle_reset_count})", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Subject", style="cyan")
    table.add_column("Studied", justify="right")
    table.add_column("Goal", justify="right")
    table.add_column("")

    for index, item in enumerate(sequence.sequence):
        subject = subjects.get(item.subject_id)
        goal = subject.study_duration if subject and subject.study_duration else None
        marker = "[bold green]◀ current[/bold green]" if index == state.sequence_index else ""
        table.add_row(
            str(index + 1),
            subject.name if subject else "(deleted)",
            f"{item.total_time_studied} min",
            f"{goal} min" if goal else "-",
            marker,
        )
    console.print(table)
    if state.sequence_index >= len(sequence.sequence):
        rprint("[green]Plan complete.[/green] Run [bold]studyflow sequence reset[/bold] to start over.")


@sequence_app.command("reset")
def sequence_reset() -> None:
    """Zero the plan's studied time and move the cursor to the start."""
    _run(lambda s: s.reset_sequence())
    rprint("[green]✓[/green] Plan reset")


@sequence_app.command("save")
def sequence_save(
    name: str = typer.Argument(..., help="Name of the saved plan"),
    subject_ids: Optional[list[str]] = typer.Argument(
        None, help="Subject ids in rotation order; defaults to the active plan"
    ),
) -> None:
    """Save a plan to the library without changing the active one."""
    sequence = _run(lambda s: s.save_sequence_as(name, subject_ids or None))
    rprint(f"[green]✓[/green] Saved plan [bold]{sequence.name}[/bold] ({sequence.id})")


@sequence_app.command("load")
def sequence_load(sequence_id: str = typer.Argument(..., help="Saved plan id")) -> None:
    """Make a saved plan the active one, from its first slot."""
    sequence = _run(lambda s: s.load_saved_sequence(sequence_id))
    rprint(f"[green]✓[/green] Loaded plan [bold]{sequence.name}[/bold]")


@sequence_app.command("delete-saved")
def sequence_delete_saved(sequence_id: str = typer.Argument(..., help="Saved plan id")) -> None:
    """Remove a plan from the library."""
    _run(lambda s: s.delete_saved_sequence(sequence_id))
    rprint(f"[green]✓[/green] Deleted saved plan {sequence_id}")


# ========================================
# Pomodoro
# ========================================


def _render_pomodoro(state: PomodoroState, task_name: str | None) -> Panel:
    colors = {
        PomodoroStatus.FOCUS: "red",
        PomodoroStatus.SHORT_BREAK: "green",
        PomodoroStatus.LONG_BREAK: "blue",
        PomodoroStatus.PAUSED: "yellow",
        PomodoroStatus.IDLE: "dim",
    }
    content = Text()
    content.append(f"{_format_seconds(state.time_remaining)}\n", style="bold")
    content.append(f"{state.status.value.replace('_', ' ')}", style=colors[state.status])
    if task_name and state.status == PomodoroStatus.FOCUS:
        content.append(f" · {task_name}")
    content.append(f"\ncycle {state.current_cycle} · done today {state.pomodoros_completed_today}")
    return Panel(content, title="Pomodoro", border_style=colors[state.status])


@pomodoro_app.command("run")
def pomodoro_run(
    item_id: str = typer.Argument(..., help="Topic id to focus on"),
    minutes: Optional[int] = typer.Option(
        None, "--minutes", "-m", help="Single custom focus period instead of the task list"
    ),
    revision: bool = typer.Option(False, "--revision", help="Session is a revision step"),
    cycles: int = typer.Option(1, "--cycles", help="Focus blocks to run before exiting"),
    manual: bool = typer.Option(
        False, "--manual", help="Do not log the first block automatically"
    ),
) -> None:
    """
    Run the Pomodoro timer in the terminal.

    Exits after the requested number of focus blocks and their breaks,
    or on Ctrl+C (nothing is logged for an interrupted block).
    """

    async def run(service: StudyService) -> PomodoroState:
        item_type = ItemType.REVISION if revision else ItemType.TOPIC
        custom = minutes * 60 if minutes else None
        if not service.start_pomodoro(item_id, item_type, custom_duration_sec=custom):
            raise ValidationError("Could not start the timer (unknown topic or no focus tasks)")
        if manual:
            service.engine.expect_manual_registration()

        def task_name(state: PomodoroState) -> str | None:
            tasks = service.state.pomodoro_settings.tasks
            index = state.current_task_index
            return tasks[index].name if index is not None and index < len(tasks) else None

        with Live(_render_pomodoro(service.pomodoro, task_name(service.pomodoro)), console=console) as live:
            service.timer.on_tick = lambda state: live.update(_render_pomodoro(state, task_name(state)))
            service.timer.start()
            try:
                while True:
                    await asyncio.sleep(0.2)
                    state = service.pomodoro
                    if state.status == PomodoroStatus.IDLE:
                        break
                    if state.pomodoros_completed_today >= cycles and state.status == PomodoroStatus.FOCUS:
                        service.engine.stop()
                        break
            finally:
                await service.timer.stop()
        return service.pomodoro

    try:
        state = _run(run, background=True)
    except KeyboardInterrupt:
        rprint("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=130)
    rprint(f"[green]✓[/green] {state.pomodoros_completed_today} focus block(s) completed")


# ========================================
# Sync
# ========================================


@sync_app.command("flush")
def sync_flush() -> None:
    """Deliver every queued remote write that is due now."""
    stats = _run(lambda s: s.flush_sync())
    if stats is None:
        rprint("[yellow]No remote configured[/yellow] (set STUDYFLOW_REMOTE_URL)")
        return

    table = Table(title="Sync Results", show_header=True)
    table.add_column("Delivered", justify="right", style="green")
    table.add_column("Retrying", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(str(stats.delivered), str(stats.retried), str(stats.failed))
    console.print(table)
    for detail in stats.error_details[:10]:
        rprint(f"  [dim]{detail}[/dim]")


@sync_app.command("status")
def sync_status(
    retry_failed: bool = typer.Option(
        False, "--retry-failed", help="Give permanently failed writes another round of retries"
    ),
) -> None:
    """Show pending and failed remote writes."""

    async def status(service: StudyService):
        if service.queue is None:
            return None
        if retry_failed:
            service.queue.requeue_failed()
        healthy = await service.remote_healthy()
        return healthy, service.queue.pending_count(), service.queue.get_failed()

    result = _run(status)
    if result is None:
        rprint("[yellow]No remote configured[/yellow] (set STUDYFLOW_REMOTE_URL)")
        return
    healthy, pending, failed = result
    reachable = "[green]reachable[/green]" if healthy else "[red]unreachable[/red]"
    rprint(f"  Remote:         {reachable}")
    rprint(f"  Pending writes: [bold]{pending}[/bold]")
    rprint(f"  Failed writes:  [bold red]{len(failed)}[/bold red]")
    for item in failed[:10]:
        rprint(f"    {item.write.operation.value} {item.write.collection}/{item.write.doc_id}: {item.error_message}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
