"""SLURM producers: live queue (``squeue``), accounting (``sacct``) and per-job usage."""

from __future__ import annotations

import getpass
from collections.abc import Callable
from datetime import datetime, timedelta

from charmer.core.exceptions import RecordParseError
from charmer.core.logging import get_logger
from charmer.schedulers.base import run_command
from charmer.schedulers.parsers import (
    FIELD_DELIMITER,
    MemoryFormat,
    non_empty,
    parse_duration_seconds,
    parse_exit_code,
    parse_int,
    parse_memory_mb,
    parse_slurm_timestamp,
    split_fields,
)
from charmer.state.models import ResourceUsage
from charmer.state.records import RecordSource, SchedulerRecord, SlurmState, SlurmStateKind
from charmer.utils.time import utc_now

_logger = get_logger("schedulers.slurm")

# jobid|name|state|partition|submit|start|end|nodes|cpus|memory|timelimit|comment
SQUEUE_FORMAT = "%A|%j|%T|%P|%V|%S|%e|%N|%C|%m|%l|%k"
SQUEUE_FIELDS = 12

SACCT_FORMAT = (
    "JobIDRaw,JobName,State,Partition,Submit,Start,End,NodeList,"
    "AllocCPUS,ReqMem,Timelimit,Comment,ExitCode"
)
SACCT_FIELDS = 13

# jobid|maxrss|elapsed|totalcpu
USAGE_FORMAT = "JobIDRaw,MaxRSS,Elapsed,TotalCPU"
USAGE_FIELDS = 4

_TERMINAL = frozenset({
    SlurmStateKind.COMPLETED,
    SlurmStateKind.FAILED,
    SlurmStateKind.CANCELLED,
    SlurmStateKind.TIMEOUT,
    SlurmStateKind.OUT_OF_MEMORY,
    SlurmStateKind.NODE_FAIL,
})


def parse_squeue_line(line: str) -> SchedulerRecord:
    """Parse one ``squeue -o SQUEUE_FORMAT`` line.

    squeue reports *expected* start and end times for jobs that have not
    reached them; those are dropped so timing only holds observed values.
    """
    f = split_fields(line, SQUEUE_FIELDS)
    job_id = f[0].strip()
    if not job_id:
        raise RecordParseError(f"Missing job id: {line!r}")
    state = SlurmState.parse(f[2])
    start = None if state.kind is SlurmStateKind.PENDING else parse_slurm_timestamp(f[5])
    end = parse_slurm_timestamp(f[6]) if state.kind in _TERMINAL else None
    return SchedulerRecord(
        job_id=job_id,
        name=f[1].strip(),
        state=state,
        source=RecordSource.SLURM_SQUEUE,
        queue=non_empty(f[3]),
        submit_time=parse_slurm_timestamp(f[4]),
        start_time=start,
        end_time=end,
        exec_host=non_empty(f[7]),
        cpu_count=parse_int(f[8]),
        memory_limit_mb=parse_memory_mb(f[9], MemoryFormat.SLURM),
        time_limit_seconds=parse_duration_seconds(f[10]),
        comment=non_empty(f[11]),
    )


def parse_sacct_line(line: str) -> SchedulerRecord:
    """Parse one ``sacct --parsable2 --format SACCT_FORMAT`` line."""
    f = split_fields(line, SACCT_FIELDS)
    job_id = f[0].strip()
    if not job_id:
        raise RecordParseError(f"Missing job id: {line!r}")
    exit_code, _signal = parse_exit_code(f[12])
    return SchedulerRecord(
        job_id=job_id,
        name=f[1].strip(),
        state=SlurmState.parse(f[2], exit_code=exit_code),
        source=RecordSource.SLURM_SACCT,
        queue=non_empty(f[3]),
        submit_time=parse_slurm_timestamp(f[4]),
        start_time=parse_slurm_timestamp(f[5]),
        end_time=parse_slurm_timestamp(f[6]),
        exec_host=non_empty(f[7]),
        cpu_count=parse_int(f[8]),
        memory_limit_mb=parse_memory_mb(f[9], MemoryFormat.SLURM_SACCT),
        time_limit_seconds=parse_duration_seconds(f[10]),
        comment=non_empty(f[11]),
    )


def _parse_lines(
    output: str,
    parse: Callable[[str], SchedulerRecord],
    tool: str,
) -> list[SchedulerRecord]:
    records: list[SchedulerRecord] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            records.append(parse(line))
        except RecordParseError as e:
            _logger.warning("slurm.record_dropped", tool=tool, error=str(e))
    return records


def parse_squeue_output(output: str) -> list[SchedulerRecord]:
    return _parse_lines(output, parse_squeue_line, "squeue")


def parse_sacct_output(output: str) -> list[SchedulerRecord]:
    return _parse_lines(output, parse_sacct_line, "sacct")


def usage_command(job_id: str) -> list[str]:
    # No -X: MaxRSS is only reported on the job's steps, not the allocation
    return [
        "sacct",
        "-j",
        job_id,
        "--parsable2",
        "--noheader",
        "--format",
        USAGE_FORMAT,
    ]


def parse_usage_output(output: str) -> ResourceUsage | None:
    """Reduce ``sacct -j USAGE_FORMAT`` output to one ``ResourceUsage``.

    Elapsed and CPU time come from the allocation line, which sacct prints
    first; peak memory is the maximum MaxRSS over every line.  Returns None
    when there is no usable allocation line.
    """
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        return None
    fields = lines[0].split(FIELD_DELIMITER)
    if len(fields) < USAGE_FIELDS:
        _logger.warning("slurm.usage_malformed", line=lines[0])
        return None

    peak = None
    for line in lines:
        parts = line.split(FIELD_DELIMITER)
        if len(parts) < USAGE_FIELDS:
            continue
        rss = parse_memory_mb(parts[1], MemoryFormat.SLURM_SACCT)
        if rss is not None and (peak is None or rss > peak):
            peak = rss
    return ResourceUsage(
        max_rss_mb=peak,
        elapsed_seconds=parse_duration_seconds(fields[2]),
        cpu_time_seconds=parse_duration_seconds(fields[3]),
    )


def squeue_command(run_uuid: str | None = None, user: str | None = None) -> list[str]:
    cmd = ["squeue", "-u", user or getpass.getuser(), "-h", "-o", SQUEUE_FORMAT]
    if run_uuid:
        cmd.extend(["--name", run_uuid])
    return cmd


def sacct_command(
    history_hours: int,
    run_uuid: str | None = None,
    now: datetime | None = None,
) -> list[str]:
    since = (now or utc_now()) - timedelta(hours=history_hours)
    cmd = [
        "sacct",
        "-X",
        "--parsable2",
        "--noheader",
        "--format",
        SACCT_FORMAT,
        "--starttime",
        since.strftime("%Y-%m-%dT%H:%M:%S"),
    ]
    if run_uuid:
        cmd.extend(["--name", run_uuid])
    return cmd


async def query_squeue(
    run_uuid: str | None = None,
    *,
    timeout: float = 30.0,
) -> list[SchedulerRecord]:
    """Current queue for this user.  Raises ``SchedulerQueryError``."""
    output = await run_command(*squeue_command(run_uuid), timeout=timeout)
    return parse_squeue_output(output)


async def query_sacct(
    history_hours: int = 24,
    run_uuid: str | None = None,
    *,
    timeout: float = 30.0,
) -> list[SchedulerRecord]:
    """Accounting records over the trailing window.  Raises ``SchedulerQueryError``."""
    output = await run_command(*sacct_command(history_hours, run_uuid), timeout=timeout)
    return parse_sacct_output(output)


async def query_resource_usage(job_id: str, *, timeout: float = 30.0) -> ResourceUsage | None:
    """Peak memory, elapsed and CPU time for one finished job.

    Raises ``SchedulerQueryError`` if sacct fails.
    """
    output = await run_command(*usage_command(job_id), timeout=timeout)
    return parse_usage_output(output)


__all__ = [
    "SACCT_FORMAT",
    "SQUEUE_FORMAT",
    "USAGE_FORMAT",
    "parse_sacct_line",
    "parse_sacct_output",
    "parse_squeue_line",
    "parse_squeue_output",
    "parse_usage_output",
    "query_resource_usage",
    "query_sacct",
    "query_squeue",
    "sacct_command",
    "squeue_command",
    "usage_command",
]
