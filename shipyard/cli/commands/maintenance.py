"""``shipyard gc`` and ``shipyard init``."""

from __future__ import annotations

import typer

from shipyard.cli._runtime import console, open_pipeline


def gc_cmd(ctx: typer.Context) -> None:
    """Delete artifacts no environment references and outside retention."""
    pipeline = open_pipeline(ctx)
    try:
        freed = pipeline.collect_garbage()
        kept = len(pipeline.store.list_all())
        console.print(f"[bold]Freed[/bold] {freed} artifact(s); {kept} remain.")
    finally:
        pipeline.close()


def init_cmd(ctx: typer.Context) -> None:
    """Reconcile the descriptor's environments into the registry."""
    pipeline = open_pipeline(ctx)
    try:
        names = [e.name for e in pipeline.registry.list()]
        console.print(f"[green]Registry ready:[/green] {', '.join(names) or 'no environments'}")
    finally:
        pipeline.close()
