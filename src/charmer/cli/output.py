"""Rich output formatting for the charmer CLI.

Everything here turns a ``PipelineState`` snapshot (or a ``FailureAnalysis``)
into a rich renderable or a JSON-ready dict:
- color scheme for job status
- summary panel, per-rule table, job table, pipeline error table
- failure analysis panel
- error output with hints
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from charmer.failure.models import FailureAnalysis
from charmer.state.models import JobStatus, PipelineState
from charmer.utils.time import format_duration, utc_now

if TYPE_CHECKING:
    from charmer.monitor.service import MonitorHealth

console = Console()


# =============================================================================
# Color schemes
# =============================================================================


class StatusColors:
    """Color mappings for job status."""

    JOB_STATUS: dict[JobStatus, str] = {
        JobStatus.PENDING: "yellow",
        JobStatus.QUEUED: "cyan",
        JobStatus.RUNNING: "blue",
        JobStatus.COMPLETED: "green",
        JobStatus.FAILED: "red",
        JobStatus.CANCELLED: "dim",
        JobStatus.UNKNOWN: "magenta",
    }

    @classmethod
    def get_job_color(cls, status: JobStatus) -> str:
        return cls.JOB_STATUS.get(status, "white")


def format_status(status: JobStatus) -> str:
    color = StatusColors.get_job_color(status)
    return f"[{color}]{status.value}[/{color}]"


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# Pipeline renderables
# =============================================================================


def create_summary_panel(state: PipelineState, health: MonitorHealth | None = None) -> Panel:
    """Counts, progress and ETA for the whole pipeline."""
    counts = state.job_counts()
    total = state.total_jobs if state.total_jobs is not None else counts.total
    percent = 100.0 * counts.completed / total if total else 0.0

    lines = Text()
    lines.append(f"{state.working_directory}\n", style="bold")
    lines.append(f"Progress: {counts.completed}/{total} ({percent:.1f}%)\n")
    parts = [
        f"[{StatusColors.get_job_color(status)}]{status.value}: {getattr(counts, status.value)}"
        f"[/{StatusColors.get_job_color(status)}]"
        for status in JobStatus
        if getattr(counts, status.value)
    ]
    lines.append_text(Text.from_markup("  ".join(parts) or "[dim]no jobs yet[/dim]"))
    lines.append("\n")

    eta = state.estimate_eta()
    if state.finished:
        lines.append("Finished", style="green")
    elif eta is not None:
        marker = "" if eta.reliable else "~"
        lines.append(f"ETA: {marker}{format_duration(eta.seconds)}")
    else:
        lines.append("ETA: -", style="dim")

    details: list[str] = []
    if state.host:
        details.append(f"host {state.host}")
    if state.cores:
        details.append(f"{state.cores} cores")
    if state.run_uuid:
        details.append(f"run {state.run_uuid}")
    if health is not None:
        details.append(f"scheduler {health.scheduler.value if health.scheduler else 'none'}")
        if not health.watching:
            details.append("rescan-only")
    details.append(f"updated {format_timestamp(state.last_updated)}")
    lines.append(f"\n{' · '.join(details)}", style="dim")

    if health is not None:
        for label, error in (("live", health.active_error), ("history", health.history_error)):
            if error:
                lines.append(f"\n{label} query failing: {error}", style="yellow")

    return Panel(lines, title="[bold]charmer[/bold]", border_style="blue")


def create_rules_table(state: PipelineState) -> Table:
    """Per-rule breakdown, with main-log totals where known."""
    table = Table(title="Rules", show_header=True, header_style="bold")
    table.add_column("Rule", style="cyan")
    table.add_column("Done", justify="right")
    table.add_column("Running", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Total", justify="right")

    for rule in sorted(set(state.rules()) | set(state.rule_totals)):
        jobs = state.jobs_for_rule(rule)
        by_status = {s: sum(1 for j in jobs if j.status is s) for s in JobStatus}
        waiting = by_status[JobStatus.PENDING] + by_status[JobStatus.QUEUED]
        total = state.rule_totals.get(rule, len(jobs))
        failed = by_status[JobStatus.FAILED]
        table.add_row(
            rule,
            str(by_status[JobStatus.COMPLETED]),
            str(by_status[JobStatus.RUNNING]),
            str(waiting),
            f"[red]{failed}[/red]" if failed else "0",
            str(total),
        )
    return table


def create_jobs_table(state: PipelineState, *, limit: int | None = 50) -> Table:
    """Jobs ordered active first, then by id."""
    order = {
        JobStatus.RUNNING: 0,
        JobStatus.FAILED: 1,
        JobStatus.QUEUED: 2,
        JobStatus.PENDING: 3,
        JobStatus.UNKNOWN: 4,
        JobStatus.CANCELLED: 5,
        JobStatus.COMPLETED: 6,
    }
    jobs = sorted(state.jobs.values(), key=lambda j: (order[j.status], j.id))
    table = Table(title="Jobs", show_header=True, header_style="bold")
    table.add_column("Rule", style="cyan")
    table.add_column("Wildcards")
    table.add_column("Status")
    table.add_column("Scheduler ID", style="dim")
    table.add_column("Runtime", justify="right")
    table.add_column("Env", style="dim")

    now = utc_now()
    shown = jobs if limit is None else jobs[:limit]
    for job in shown:
        runtime = job.runtime_seconds(now)
        table.add_row(
            job.rule,
            job.wildcards or "",
            format_status(job.status),
            job.scheduler_job_id or "-",
            format_duration(runtime) if runtime is not None else "-",
            job.environment().label(),
        )
    if len(shown) < len(jobs):
        table.caption = f"{len(jobs) - len(shown)} more not shown"
    return table


def create_errors_table(state: PipelineState) -> Table | None:
    if not state.pipeline_errors:
        return None
    table = Table(title="Pipeline errors", show_header=True, header_style="bold red")
    table.add_column("Kind")
    table.add_column("Rule", style="cyan")
    table.add_column("Message", overflow="fold")
    for error in state.pipeline_errors:
        table.add_row(error.kind.value, error.rule or "-", error.message)
    return table


def create_failure_panel(analysis: FailureAnalysis, title: str | None = None) -> Panel:
    """Explanation and suggestion for one failed job."""
    body = Text()
    body.append(f"{analysis.explanation}\n\n")
    body.append("Suggestion: ", style="bold")
    body.append(analysis.suggestion)
    if analysis.raw_state:
        body.append(f"\n\nScheduler state: {analysis.raw_state}", style="dim")
    return Panel(
        body,
        title=title or f"[bold red]Job {analysis.job_id}[/bold red] ({analysis.mode.kind})",
        border_style="red",
    )


def render_dashboard(
    state: PipelineState,
    health: MonitorHealth | None = None,
    *,
    job_limit: int | None = 50,
) -> Group:
    parts: list[Any] = [create_summary_panel(state, health)]
    if state.jobs or state.rule_totals:
        parts.append(create_rules_table(state))
    if state.jobs:
        parts.append(create_jobs_table(state, limit=job_limit))
    errors = create_errors_table(state)
    if errors is not None:
        parts.append(errors)
    for job in state.jobs.values():
        if job.failure_analysis is not None:
            parts.append(create_failure_panel(job.failure_analysis, title=f"[red]{job.id}[/red]"))
    return Group(*parts)


def state_to_json(state: PipelineState) -> dict[str, Any]:
    """JSON-ready view of a snapshot, with derived counts and ETA."""
    data = state.model_dump(mode="json")
    data["counts"] = state.job_counts().as_dict()
    eta = state.estimate_eta()
    data["eta"] = None if eta is None else {"seconds": eta.seconds, "reliable": eta.reliable}
    return data


# =============================================================================
# Errors
# =============================================================================


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Print an error or warning with optional hints, or as JSON."""
    out = console_instance or console
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        out.print(json.dumps(result, indent=2))
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    out.print(f"[{color}]{label}:[/{color}] {message}")
    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}")


__all__ = [
    "StatusColors",
    "console",
    "create_errors_table",
    "create_failure_panel",
    "create_jobs_table",
    "create_rules_table",
    "create_summary_panel",
    "format_status",
    "format_timestamp",
    "output_error",
    "render_dashboard",
    "state_to_json",
]
