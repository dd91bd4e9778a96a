"""turnq command line interface."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from turnq import __version__
from turnq.config import Settings, get_settings
from turnq.echo import EchoExecutor
from turnq.errors import RunValidationError
from turnq.events import StreamEvent
from turnq.scheduler import Run, SessionRunScheduler

app = typer.Typer(name="turnq", help="Per-session turn scheduling for chat agents", add_completion=False)
console = Console()


def _printer(label: str, *, show_meta: bool) -> Callable[[StreamEvent], None]:
    parts: list[str] = []

    def on_event(event: StreamEvent) -> None:
        if event.t == "d" and event.text:
            parts.append(event.text)
        elif event.t == "r":
            parts[:] = [event.text or ""]
        elif event.t == "md" and show_meta:
            console.print(f"[dim]{label} md {escape(event.text or '')}[/dim]")
        elif event.t == "err":
            console.print(f"[red]{label} error: {escape(event.text or '')}[/red]")
        elif event.t == "done":
            text = "".join(parts)
            console.print(f"[bold]{label}[/bold] {escape(text)}" if text else f"[bold]{label}[/bold] (no output)")

    return on_event


def _runs_table(runs: list[Run]) -> Table:
    table = Table(title="runs")
    for column in ("id", "mode", "source", "status", "message", "error"):
        table.add_column(column)
    for run in reversed(runs):
        table.add_row(
            run.id, run.mode, escape(run.source), run.status, escape(run.message_preview), escape(run.error or "")
        )
    return table


async def _submit(
    messages: list[str],
    *,
    session_id: str,
    mode: str | None,
    source: str,
    internal: bool,
    dedupe_key: str | None,
    delay: float,
    show_meta: bool,
    settings: Settings,
) -> list[Run]:
    async with SessionRunScheduler(EchoExecutor(delay_seconds=delay), settings=settings) as scheduler:
        completions = []
        for index, message in enumerate(messages, start=1):
            result = await scheduler.enqueue(
                session_id=session_id,
                message=message,
                mode=mode,
                source=source,
                internal=internal,
                dedupe_key=dedupe_key,
                on_event=_printer(f"#{index}", show_meta=show_meta),
            )
            flags = [name for name in ("deduped", "coalesced") if getattr(result, name)]
            console.print(
                f"[cyan]#{index}[/cyan] run={result.run_id} position={result.position}"
                + (f" ({', '.join(flags)})" if flags else "")
            )
            completions.append(result.completion)
        await asyncio.gather(*completions)
        return scheduler.list_runs(session_id=session_id)


@app.command()
def run(
    messages: list[str] = typer.Argument(..., help="Messages to submit, in order"),  # noqa: B008
    session_id: str = typer.Option("cli", "--session", "-s", help="Session id"),
    mode: str | None = typer.Option(None, "--mode", "-m", help="steer, collect or followup"),
    source: str = typer.Option("chat", "--source", help="Origin tag recorded on each run"),
    internal: bool = typer.Option(False, "--internal", help="Mark runs as system generated"),
    dedupe_key: str | None = typer.Option(None, "--dedupe-key", help="Collapse duplicate queued requests"),
    delay: float | None = typer.Option(None, "--delay", help="Seconds between echoed chunks"),
    show_meta: bool = typer.Option(False, "--meta", help="Print run metadata events"),
) -> None:
    """Submit messages to one session through the echo executor."""

    settings = get_settings(log_profile="cli")
    if delay is None:
        delay = settings.echo_delay_seconds
    try:
        runs = asyncio.run(
            _submit(
                messages,
                session_id=session_id,
                mode=mode,
                source=source,
                internal=internal,
                dedupe_key=dedupe_key,
                delay=delay,
                show_meta=show_meta,
                settings=settings,
            )
        )
    except RunValidationError as exc:
        console.print(f"[red]rejected: {escape(str(exc))}[/red]")
        raise typer.Exit(code=2) from exc
    console.print(_runs_table(runs))


@app.command()
def version() -> None:
    """Print the turnq version."""
    typer.echo(__version__)
