# src/hpcpanel/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml

from hpcpanel.config.loader import load_settings
from hpcpanel.config.models import PanelSettings
from hpcpanel.errors import DeploymentError
from hpcpanel.logging.log import init_logging
from hpcpanel.observers.console import ConsoleObserver
from hpcpanel.observers.dispatcher import EventBus
from hpcpanel.observers.jsonfile import JsonFileObserver
from hpcpanel.observers.logger import LoggerObserver
from hpcpanel.service import SCHEDULER_ACTIONS, DeploymentService
from hpcpanel.slurm.config import synthesize
from hpcpanel.status.board import FINISHED
from hpcpanel.topology.models import HardwareFacts, NodeFacts, NodeSpec
from hpcpanel.topology.registry import TopologyRegistry

app = typer.Typer(help="hpcpanel Slurm cluster bootstrap CLI")
topology_app = typer.Typer(help="Inspect and edit the node topology")
app.add_typer(topology_app, name="topology")


def _settings(ctx: typer.Context) -> PanelSettings:
    return ctx.obj["settings"]


def _registry(ctx: typer.Context) -> TopologyRegistry:
    return TopologyRegistry(_settings(ctx).paths.topology_file)


def _fail(err: Exception) -> None:
    typer.secho(f"Error: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings YAML (default: $HPCPANEL_CONFIG)"),
    topology_file: Optional[Path] = typer.Option(None, "--topology", help="Override the topology file"),
):
    settings = load_settings(config)
    if topology_file is not None:
        settings.paths.topology_file = topology_file
    ctx.obj = {"settings": settings}


# ------------------------------------------------------------------------------
# Topology
# ------------------------------------------------------------------------------
@topology_app.command("show")
def topology_show(ctx: typer.Context):
    topo = _registry(ctx).load()
    for node in topo.nodes:
        role = "primary" if node.name == topo.primary else "worker"
        address = node.address or "-"
        typer.echo(f"{node.name:<12} {address:<16} {node.effective_hostname:<16} {role}")


@topology_app.command("set-node")
def topology_set_node(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Node identifier"),
    ip: str = typer.Option(..., "--ip"),
    password: str = typer.Option("", "--password", help="Initial root password, used once for key push"),
    hostname: str = typer.Option("", "--hostname"),
    primary: bool = typer.Option(False, "--primary", help="Make this node the control node"),
):
    registry = _registry(ctx)
    try:
        topo = registry.load().with_node(
            NodeSpec(name=name, address=ip, credential=password, hostname=hostname),
            make_primary=primary,
        )
        registry.save(topo)
    except (DeploymentError, OSError) as e:
        _fail(e)
    typer.echo(f"saved {name} to {registry.path}")


@topology_app.command("remove-node")
def topology_remove_node(ctx: typer.Context, name: str = typer.Argument(...)):
    registry = _registry(ctx)
    try:
        registry.save(registry.load().without_node(name))
    except (DeploymentError, OSError) as e:
        _fail(e)
    typer.echo(f"removed {name}")


# ------------------------------------------------------------------------------
# Offline rendering
# ------------------------------------------------------------------------------
@app.command("render-config")
def render_config(
    ctx: typer.Context,
    facts: Path = typer.Option(
        ..., "--facts", exists=True, dir_okay=False, help="YAML mapping: node -> {cpu_count, memory_mib}"
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o"),
):
    """Render slurm.conf from the topology and a facts file, without touching any node."""
    try:
        raw = yaml.safe_load(facts.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{facts} must map node names to {{cpu_count, memory_mib}}")
        hw = HardwareFacts(
            {name: NodeFacts(cpu_count=int(v["cpu_count"]), memory_mib=int(v["memory_mib"])) for name, v in raw.items()}
        )
        text = synthesize(_registry(ctx).load(), hw, _settings(ctx).scheduler)
    except (KeyError, TypeError, ValueError, AttributeError, yaml.YAMLError, OSError, DeploymentError) as e:
        _fail(e)

    if output:
        output.write_text(text)
        typer.echo(f"wrote {output}")
    else:
        typer.echo(text, nl=False)


# ------------------------------------------------------------------------------
# Deployment
# ------------------------------------------------------------------------------
@app.command()
def deploy(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug"),
    events: bool = typer.Option(False, "--events", help="Echo lifecycle events to the console"),
):
    settings = _settings(ctx)
    logger, run_id, log_path = init_logging(base_dir=settings.paths.log_dir, verbose=debug)

    typer.echo("")
    typer.secho("hpcpanel Deployment Started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(Path(settings.paths.log_dir).expanduser() / f"{run_id}.jsonl"),
    ]
    if events:
        observers.append(ConsoleObserver())

    service = DeploymentService(settings, bus=EventBus(observers=observers), run_id=run_id)
    try:
        service.start_deploy()
    except DeploymentError as e:
        _fail(e)

    state = service.wait()
    if state.phase != FINISHED:
        typer.secho(f"Deployment failed: {state.error_message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.secho("Deployment completed", fg=typer.colors.GREEN)


# ------------------------------------------------------------------------------
# Scheduler control
# ------------------------------------------------------------------------------
@app.command("scheduler-status")
def scheduler_status(ctx: typer.Context):
    try:
        typer.echo(DeploymentService(_settings(ctx)).scheduler_status())
    except DeploymentError as e:
        _fail(e)


@app.command("scheduler")
def scheduler(
    ctx: typer.Context,
    action: str = typer.Argument(..., help=" | ".join(SCHEDULER_ACTIONS)),
):
    try:
        DeploymentService(_settings(ctx)).control_scheduler(action)
    except DeploymentError as e:
        _fail(e)
    typer.echo(f"{action}: ok")


@app.command()
def jobs(ctx: typer.Context):
    try:
        records = DeploymentService(_settings(ctx)).list_jobs()
    except DeploymentError as e:
        _fail(e)
    for j in records:
        typer.echo(f"{j.job_id:<8} {j.name:<20} {j.user:<10} {j.state:<10} {j.elapsed}")


if __name__ == "__main__":
    app()
