"""LSF failure diagnostics from ``bhist -l``."""

from __future__ import annotations

import re

from charmer.core.exceptions import JobNotFoundError
from charmer.failure.classifier import FailureDiagnostics, FailureMarker, build_analysis
from charmer.failure.models import FailureAnalysis
from charmer.schedulers.base import run_command
from charmer.schedulers.parsers import MemoryFormat, parse_duration_seconds, parse_memory_mb

EXIT_CODE_RE = re.compile(r"[Ee]xit code (\d+)")
HOST_RE = re.compile(r"(?:Started on|on Host\(s\)) <([^>]+)>")
CLOCK_RE = re.compile(r"\b\d+:\d{2}:\d{2}\b")
SECONDS_RE = re.compile(r"(\d+)\s+seconds")

_TERM_MARKERS = (
    ("TERM_MEMLIMIT", FailureMarker.MEMORY_LIMIT, None),
    ("TERM_RUNLIMIT", FailureMarker.TIME_LIMIT, None),
    ("TERM_OWNER", FailureMarker.CANCELLED, "owner"),
    ("TERM_ADMIN", FailureMarker.CANCELLED, "admin"),
    ("TERM_HOST", FailureMarker.NODE_FAILURE, None),
    ("TERM_LOAD", FailureMarker.NODE_FAILURE, None),
)


def _columns(header: str, values: str) -> dict[str, str]:
    """Slice a fixed-width bhist values line by its header's column offsets."""
    starts = [(m.start(), m.group()) for m in re.finditer(r"\S+", header)]
    columns: dict[str, str] = {}
    for i, (start, name) in enumerate(starts):
        end = starts[i + 1][0] if i + 1 < len(starts) else len(values)
        columns[name] = values[start:end].strip()
    return columns


def _limit_seconds(value: str) -> int | None:
    """``60.0 min`` (RUNLIMIT) to seconds."""
    parts = value.split()
    try:
        amount = float(parts[0])
    except (IndexError, ValueError):
        return None
    if len(parts) > 1 and parts[1].startswith("min"):
        return int(amount * 60)
    return int(amount)


def _run_time(line: str) -> int | None:
    clock = CLOCK_RE.search(line)
    if clock:
        return parse_duration_seconds(clock.group())
    seconds = SECONDS_RE.search(line)
    return int(seconds.group(1)) if seconds else None


def extract_diagnostics(job_id: str, output: str) -> FailureDiagnostics:
    """Reduce ``bhist -l`` output to diagnostics.

    Raises:
        JobNotFoundError: If bhist printed nothing or "No matching job found".
    """
    if not output.strip() or "No matching job found" in output:
        raise JobNotFoundError(job_id)

    term_reason = ""
    exit_code: int | None = None
    max_mem: int | None = None
    mem_limit: int | None = None
    run_time: int | None = None
    run_limit: int | None = None
    host: str | None = None

    lines = output.splitlines()
    for i, raw in enumerate(lines):
        line = raw.strip()
        following = lines[i + 1] if i + 1 < len(lines) else ""

        if "Exited with exit code" in line or "exit code" in line.lower():
            code = EXIT_CODE_RE.search(line)
            if code:
                exit_code = int(code.group(1))
            term_reason = term_reason or line
        if "TERM_" in line:
            term_reason = line

        match = HOST_RE.search(line)
        if match:
            host = match.group(1)

        if "MAX MEM:" in line:
            mem = line.split("MAX MEM:", 1)[1].split(";", 1)[0]
            max_mem = parse_memory_mb(mem, MemoryFormat.LSF)
        if "MEM LIMIT:" in line:
            mem_limit = parse_memory_mb(line.split("MEM LIMIT:", 1)[1], MemoryFormat.LSF)
        if "Run time:" in line or "RUN_TIME:" in line:
            run_time = _run_time(line)

        # Fixed-width tables: a header row followed by a values row
        if "RUNLIMIT" in line or "MEMLIMIT" in line:
            cols = _columns(raw, following)
            if cols.get("RUNLIMIT"):
                run_limit = _limit_seconds(cols["RUNLIMIT"])
            if cols.get("MEMLIMIT"):
                mem_limit = parse_memory_mb(cols["MEMLIMIT"], MemoryFormat.LSF)
        if line.startswith("PEND") and "RUN" in line.split() and run_time is None:
            summary = dict(zip(line.split(), following.split(), strict=False))
            if summary.get("RUN", "").isdigit():
                run_time = int(summary["RUN"])

    markers: set[FailureMarker] = set()
    cancelled_by = None
    for token, marker, by in _TERM_MARKERS:
        if token in term_reason:
            markers.add(marker)
            cancelled_by = cancelled_by or by
    if exit_code is not None:
        markers.add(FailureMarker.GENERIC_FAILURE)

    return FailureDiagnostics(
        job_id=job_id,
        scheduler="lsf",
        raw_state=term_reason,
        markers=frozenset(markers),
        exit_code=exit_code,
        max_rss_mb=max_mem,
        memory_limit_mb=mem_limit,
        elapsed_seconds=run_time,
        time_limit_seconds=run_limit,
        node=host,
        cancelled_by=cancelled_by,
    )


async def analyze_failure(job_id: str, *, timeout: float = 30.0) -> FailureAnalysis:
    """Query bhist for one job and classify its failure.

    Raises:
        SchedulerQueryError: If bhist cannot be run.
        JobNotFoundError: If bhist has no record of the job.
    """
    output = await run_command("bhist", "-l", job_id, timeout=timeout, allow_failure=True)
    return build_analysis(extract_diagnostics(job_id, output))


__all__ = ["analyze_failure", "extract_diagnostics"]
