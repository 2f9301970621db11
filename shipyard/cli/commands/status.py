"""``shipyard status ENV`` and ``shipyard environments``."""

from __future__ import annotations

import typer

from shipyard.cli._runtime import ExitCode, console, err_console, open_pipeline
from shipyard.monitor.renderer import StatusRenderer


def status_cmd(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Environment to show."),
) -> None:
    """Show current and desired artifact, health and the last attempt."""
    pipeline = open_pipeline(ctx)
    try:
        env = pipeline.registry.get(environment)
        if env is None:
            err_console.print(f"[bold red]Unknown environment:[/bold red] {environment}")
            known = [e.name for e in pipeline.registry.list()]
            if known:
                err_console.print(f"[dim]Known: {', '.join(known)}[/dim]")
            raise typer.Exit(code=ExitCode.USAGE)
        renderer = StatusRenderer(console=console)
        console.print(renderer.render_environment(env, pipeline.audit.latest(environment)))
    finally:
        pipeline.close()


def environments_cmd(ctx: typer.Context) -> None:
    """List every registered environment."""
    pipeline = open_pipeline(ctx)
    try:
        envs = pipeline.registry.list()
        if not envs:
            console.print("[dim]No environments registered.[/dim]")
            return
        console.print(StatusRenderer(console=console).render_environments(envs))
    finally:
        pipeline.close()
