"""Main Typer application — imports and registers all CLI commands.

Entry point: ``shipyard`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from shipyard.cli._runtime import configure_logging
from shipyard.cli.commands.demo import demo_cmd
from shipyard.cli.commands.deploy import cancel_cmd, deploy_cmd
from shipyard.cli.commands.history import history_cmd
from shipyard.cli.commands.listen import listen_cmd
from shipyard.cli.commands.maintenance import gc_cmd, init_cmd
from shipyard.cli.commands.status import environments_cmd, status_cmd
from shipyard.config import ShipyardSettings

app = typer.Typer(
    name="shipyard",
    help="Shipyard: build, deploy, verify and roll back.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Pipeline descriptor (default: SHIPYARD_DESCRIPTOR_PATH or shipyard.toml).",
    ),
    state_dir: Optional[Path] = typer.Option(
        None,
        "--state-dir",
        help="Directory for the registry, audit log and artifacts.",
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: SHIPYARD_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Load settings once for every subcommand."""
    overrides = {}
    if config is not None:
        overrides["descriptor_path"] = config
    if state_dir is not None:
        overrides["state_dir"] = state_dir
    if log_level is not None:
        overrides["log_level"] = log_level
    settings = ShipyardSettings(**overrides)
    configure_logging(settings.log_level)
    ctx.obj = {"settings": settings}


# Register subcommands
app.command(name="deploy", help="Build a revision and roll it out to an environment.")(deploy_cmd)
app.command(name="status", help="Show one environment's state.")(status_cmd)
app.command(name="history", help="Show an environment's rollout history.")(history_cmd)
app.command(name="environments", help="List all environments.")(environments_cmd)
app.command(name="cancel", help="Cancel the in-flight rollout of an environment.")(cancel_cmd)
app.command(name="gc", help="Delete unreferenced artifacts.")(gc_cmd)
app.command(name="init", help="Register the descriptor's environments.")(init_cmd)
app.command(name="listen", help="Watch the source repository and deploy new revisions.")(listen_cmd)
app.command(name="demo", help="Run an end-to-end demo against an in-memory host.")(demo_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
