# src/hpcpanel/observers/console.py
import typer

from .events import BaseEvent, DeployStarted, DeploySummary, StageFailed, StageStarted, StageSucceeded


class ConsoleObserver:
    """Short, colored progress lines for an interactive deploy."""

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, DeployStarted):
            typer.echo(f"deploying {event.cluster}: {', '.join(event.nodes)} (primary {event.primary})")
        elif isinstance(event, StageStarted):
            typer.echo(f"[{event.index}/{event.total}] {event.stage}")
        elif isinstance(event, StageSucceeded):
            typer.secho(f"      ok {event.stage} ({event.duration_ms} ms)", fg=typer.colors.GREEN)
        elif isinstance(event, StageFailed):
            typer.secho(f"      FAILED {event.stage}: {event.error}", fg=typer.colors.RED)
        elif isinstance(event, DeploySummary):
            color = typer.colors.GREEN if event.status == "finished" else typer.colors.RED
            typer.secho(f"{event.status}: {event.completed} stage(s) completed", fg=color, bold=True)
        else:
            typer.echo(f"[{event.ts}] {event.__class__.__name__}")
