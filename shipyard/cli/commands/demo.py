"""``shipyard demo`` — run the two canonical rollouts against an in-memory host.

1. ``prod`` is running revision A; revision B is deployed and passes
   three health checks -> succeeded.
2. Revision C is deployed but fails two health checks -> rolled back to B.

Uses a throwaway state directory, an in-memory repository and a
``RecordingHost``, so it touches nothing outside ``--state-dir``.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel

from shipyard.cli._runtime import console
from shipyard.config import EnvironmentSpec, PipelineDescriptor, ShipyardSettings
from shipyard.core.hosts import RecordingHost
from shipyard.core.pipeline import Pipeline
from shipyard.models.pipeline import HealthPolicy, Recipe
from shipyard.monitor.renderer import StatusRenderer
from shipyard.triggers.sources import StaticRepository

_PAGE = "<html><body><h1>Hello from revision {rev}</h1></body></html>\n"


def demo_cmd(
    state_dir: Optional[Path] = typer.Option(
        None, "--state-dir", help="Where to keep demo state (default: a temp dir)."
    ),
) -> None:
    """Deploy A, then B (healthy), then C (unhealthy, rolled back)."""
    with tempfile.TemporaryDirectory(prefix="shipyard-demo-") as tmp:
        root = state_dir or Path(tmp)
        repo = StaticRepository()
        for rev in ("A", "B", "C"):
            repo.push(rev, {"index.html": _PAGE.format(rev=rev)})
        host = RecordingHost()
        descriptor = PipelineDescriptor(
            recipe=Recipe(steps=["mkdir -p dist", "cp index.html dist/"], output="dist"),
            health=HealthPolicy(interval=0.05, initial_backoff=0.05, deadline=30.0),
            environments=[EnvironmentSpec(name="prod")],
        )
        pipeline = Pipeline(
            ShipyardSettings(state_dir=root), descriptor, source=repo, host=host
        )
        renderer = StatusRenderer(console=console)
        try:
            console.print(Panel("[bold]Shipyard demo[/bold]", border_style="cyan"))
            for rev, script in (("A", []), ("B", [True, True, True]), ("C", [False, False])):
                host.script_health("prod", script)
                attempt = pipeline.controller.run_once("prod", rev)
                renderer.print_attempt(attempt)

            console.print(renderer.render_history("prod", pipeline.audit.history("prod")))
            console.print(
                renderer.render_environment(
                    pipeline.registry.require("prod"), pipeline.audit.latest("prod")
                )
            )
        finally:
            pipeline.close()
