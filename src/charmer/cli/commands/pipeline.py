"""``charmer status`` and ``charmer watch``.

``status`` runs every producer once and prints the result; ``watch`` keeps
the monitor running and redraws a live view until interrupted.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.live import Live

from charmer.core.config import CharmerConfig
from charmer.monitor.service import MonitorService
from charmer.state.models import PipelineState

from ..helpers import prepare
from ..output import console, render_dashboard, state_to_json

SCHEDULER_CHOICES = ("auto", "slurm", "lsf", "none")


def _check_scheduler(value: str | None) -> str | None:
    if value is not None and value not in SCHEDULER_CHOICES:
        raise typer.BadParameter(f"must be one of: {', '.join(SCHEDULER_CHOICES)}")
    return value


async def _status_once(config: CharmerConfig) -> tuple[PipelineState, MonitorService]:
    service = MonitorService(config)
    state = await service.refresh_once()
    return state, service


def status(
    directory: Path | None = typer.Argument(
        None,
        help="Workflow working directory (default: config or current directory)",
    ),
    scheduler: str | None = typer.Option(
        None,
        "--scheduler",
        "-s",
        callback=_check_scheduler,
        help="Scheduler to query: auto, slurm, lsf or none",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the pipeline state as JSON",
    ),
    all_jobs: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Show every job instead of the first 50",
    ),
) -> None:
    """Show a one-shot snapshot of a Snakemake pipeline."""
    config = prepare(console, directory=directory, scheduler=scheduler)
    state, service = asyncio.run(_status_once(config))

    if json_output:
        console.print_json(json.dumps(state_to_json(state)))
        return
    console.print(render_dashboard(state, service.health(), job_limit=None if all_jobs else 50))


async def _watch_loop(config: CharmerConfig, refresh: float) -> None:
    service = MonitorService(config)
    await service.start()
    try:
        state = await service.snapshot()
        with Live(
            render_dashboard(state, service.health()),
            console=console,
            refresh_per_second=4,
        ) as live:
            while True:
                await asyncio.sleep(refresh)
                state = await service.snapshot()
                live.update(render_dashboard(state, service.health()))
    finally:
        await service.stop()


def watch(
    directory: Path | None = typer.Argument(
        None,
        help="Workflow working directory (default: config or current directory)",
    ),
    scheduler: str | None = typer.Option(
        None,
        "--scheduler",
        "-s",
        callback=_check_scheduler,
        help="Scheduler to query: auto, slurm, lsf or none",
    ),
    refresh: float = typer.Option(
        1.0,
        "--refresh",
        "-r",
        min=0.1,
        help="Seconds between screen redraws",
    ),
) -> None:
    """Monitor a Snakemake pipeline live until interrupted."""
    config = prepare(console, directory=directory, scheduler=scheduler)
    try:
        asyncio.run(_watch_loop(config, refresh))
    except KeyboardInterrupt:
        raise typer.Exit(0) from None


__all__ = ["status", "watch"]
