"""``charmer explain``: failure analysis for one scheduler job."""

from __future__ import annotations

import asyncio
import json

import typer

from charmer.core.exceptions import (
    FailureAnalysisError,
    JobNotFoundError,
    SchedulerQueryError,
)
from charmer.failure.analyze import analyze_failure
from charmer.failure.models import FailureAnalysis
from charmer.monitor.service import resolve_scheduler

from ..helpers import ErrorMessages, prepare
from ..output import console, create_failure_panel, output_error


async def _explain(scheduler_setting: str, job_id: str, timeout: float) -> FailureAnalysis:
    scheduler = await resolve_scheduler(scheduler_setting)
    if scheduler is None:
        raise SchedulerQueryError("scheduler", ErrorMessages.NO_SCHEDULER)
    return await analyze_failure(scheduler, job_id, timeout=timeout)


def explain(
    job_id: str = typer.Argument(..., help="Scheduler job ID (SLURM or LSF)"),
    scheduler: str | None = typer.Option(
        None,
        "--scheduler",
        "-s",
        help="slurm or lsf (default: config value, probing when auto)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the analysis as JSON",
    ),
) -> None:
    """Explain why a scheduler job failed and suggest a fix."""
    if scheduler is not None and scheduler not in ("slurm", "lsf"):
        raise typer.BadParameter("must be slurm or lsf", param_hint="--scheduler")
    config = prepare(console)
    setting = scheduler or config.scheduler

    try:
        analysis = asyncio.run(
            _explain(setting, job_id, config.polling.command_timeout_seconds)
        )
    except JobNotFoundError as e:
        output_error(
            f"{ErrorMessages.JOB_NOT_FOUND}: {e.job_id}",
            hints=["Accounting records may have expired; check the job ID and scheduler."],
            json_output=json_output,
        )
        raise typer.Exit(1) from None
    except (SchedulerQueryError, FailureAnalysisError) as e:
        output_error(str(e), json_output=json_output)
        raise typer.Exit(1) from None

    if json_output:
        console.print_json(json.dumps(analysis.model_dump(mode="json")))
        return
    console.print(create_failure_panel(analysis))


__all__ = ["explain"]
