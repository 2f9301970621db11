"""``shipyard history ENV [--limit N]`` — the audit log, newest first."""

from __future__ import annotations

import typer

from shipyard.cli._runtime import ExitCode, console, err_console, open_pipeline
from shipyard.core.errors import AuditIntegrityError
from shipyard.monitor.renderer import StatusRenderer


def history_cmd(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Environment to show."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum records to show."),
    verify_chain: bool = typer.Option(
        False, "--verify-chain", "-V", help="Verify the audit hash chain first."
    ),
) -> None:
    """Show completed rollout attempts for ENVIRONMENT."""
    pipeline = open_pipeline(ctx)
    try:
        if verify_chain:
            try:
                pipeline.audit.verify_chain(environment)
                console.print("[green]Audit chain intact.[/green]")
            except AuditIntegrityError as exc:
                err_console.print(f"[bold red]Audit chain broken:[/bold red] {exc}")
                raise typer.Exit(code=ExitCode.BROKEN)

        records = pipeline.audit.history(environment, limit=limit)
        if not records:
            console.print(f"[dim]No rollout history for {environment}.[/dim]")
            return
        console.print(StatusRenderer(console=console).render_history(environment, records))
    finally:
        pipeline.close()
