"""LSF producers: live queue (``bjobs``) and history (``bhist -l``)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from charmer.core.exceptions import RecordParseError
from charmer.core.logging import get_logger
from charmer.schedulers.base import run_command
from charmer.schedulers.parsers import (
    FIELD_DELIMITER,
    MemoryFormat,
    non_empty,
    parse_int,
    parse_lsf_timestamp,
    parse_memory_mb,
    split_fields,
)
from charmer.state.records import LsfState, LsfStateKind, RecordSource, SchedulerRecord
from charmer.utils.time import utc_now

_logger = get_logger("schedulers.lsf")

BJOBS_COLUMNS = (
    "jobid job_name stat queue submit_time start_time finish_time "
    "exec_host nprocs memlimit max_mem exit_code job_description"
)
BJOBS_FORMAT = f"{BJOBS_COLUMNS} delimiter='|'"
BJOBS_FIELDS = 13

# ─── bjobs ───────────────────────────────────────────────────────────


def parse_bjobs_line(line: str) -> SchedulerRecord:
    f = split_fields(line, BJOBS_FIELDS)
    job_id = f[0].strip()
    if not job_id:
        raise RecordParseError(f"Missing job id: {line!r}")
    return SchedulerRecord(
        job_id=job_id,
        name=f[1].strip(),
        state=LsfState.parse(f[2], exit_code=parse_int(f[11])),
        source=RecordSource.LSF_BJOBS,
        queue=non_empty(f[3]),
        submit_time=parse_lsf_timestamp(f[4]),
        start_time=parse_lsf_timestamp(f[5]),
        end_time=parse_lsf_timestamp(f[6]),
        exec_host=non_empty(f[7]),
        cpu_count=parse_int(f[8]),
        memory_limit_mb=parse_memory_mb(f[9], MemoryFormat.LSF),
        memory_used_mb=parse_memory_mb(f[10], MemoryFormat.LSF),
        comment=non_empty(FIELD_DELIMITER.join(f[12:])),
    )


def parse_bjobs_output(output: str) -> list[SchedulerRecord]:
    records: list[SchedulerRecord] = []
    for line in output.splitlines():
        line = line.strip()
        # "No unfinished job found" and friends
        if not line or line.startswith("No "):
            continue
        try:
            records.append(parse_bjobs_line(line))
        except RecordParseError as e:
            _logger.warning("lsf.record_dropped", tool="bjobs", error=str(e))
    return records


def bjobs_command(run_uuid: str | None = None) -> list[str]:
    cmd = ["bjobs", "-o", BJOBS_FORMAT, "-noheader"]
    if run_uuid:
        cmd.extend(["-J", run_uuid])
    return cmd


async def query_bjobs(
    run_uuid: str | None = None,
    *,
    timeout: float = 30.0,
) -> list[SchedulerRecord]:
    """Unfinished (and recently finished) jobs.  Raises ``SchedulerQueryError``."""
    output = await run_command(*bjobs_command(run_uuid), timeout=timeout, allow_failure=True)
    return parse_bjobs_output(output)


# ─── bhist -l ────────────────────────────────────────────────────────

JOB_ID_RE = re.compile(r"^Job <([^>]+)>")
JOB_NAME_RE = re.compile(r"Job Name <([^>]*)>")
DESCRIPTION_RE = re.compile(r"Job Description <([^>]*)>")
QUEUE_RE = re.compile(r"Queue <([^>]*)>")
HOST_RE = re.compile(r"(?:Started on|on Host\(s\)) <([^>]+)>")
EXIT_CODE_RE = re.compile(r"exit code (\d+)")
EVENT_RE = re.compile(
    r"^(?:\w{3}\s+)?(\w{3}\s+\d{1,2}\s+\d{1,2}:\d{2}(?::\d{2})?(?:\s+\d{4})?):\s*(.*)$"
)
SEPARATOR_RE = re.compile(r"^-{10,}$")

# bhist wraps long lines; continuations are indented this far
CONTINUATION_INDENT = " " * 20


@dataclass
class _BhistBlock:
    job_id: str
    header: list[str] = field(default_factory=list)
    events: list[tuple[datetime | None, str]] = field(default_factory=list)
    max_mem_mb: int | None = None

    def to_record(self) -> SchedulerRecord:
        header = "".join(self.header)
        name = JOB_NAME_RE.search(header)
        description = DESCRIPTION_RE.search(header)
        queue = QUEUE_RE.search(header)

        submit_time = start_time = end_time = None
        exec_host = None
        state = LsfState.parse("PEND")
        for when, text in self.events:
            if queue is None:
                queue = QUEUE_RE.search(text)
            host = HOST_RE.search(text)
            if host:
                exec_host = host.group(1)
            if text.startswith("Submitted from"):
                submit_time = when
            elif text.startswith(("Started on", "Starting", "Dispatched")):
                start_time = start_time or when
                if state.kind is LsfStateKind.PEND:
                    state = LsfState.parse("RUN")
            elif text.startswith("Done successfully"):
                end_time = when
                state = LsfState.parse("DONE", exit_code=0)
            elif text.startswith("Exited"):
                end_time = when
                code = EXIT_CODE_RE.search(text)
                state = LsfState.parse("EXIT", exit_code=int(code.group(1)) if code else 1)

        return SchedulerRecord(
            job_id=self.job_id,
            name=name.group(1) if name else "",
            state=state,
            source=RecordSource.LSF_BHIST,
            queue=queue.group(1) if queue else None,
            submit_time=submit_time,
            start_time=start_time,
            end_time=end_time,
            exec_host=exec_host,
            memory_used_mb=self.max_mem_mb,
            comment=non_empty(description.group(1)) if description else None,
        )


def _unwrap(output: str) -> list[str]:
    lines: list[str] = []
    for raw in output.splitlines():
        if raw.startswith(CONTINUATION_INDENT) and lines and raw.strip():
            lines[-1] += raw.strip()
        else:
            lines.append(raw.rstrip())
    return lines


def parse_bhist_output(output: str, since: datetime | None = None) -> list[SchedulerRecord]:
    """Parse ``bhist -l`` output into records.

    Jobs submitted before ``since`` are dropped; jobs with no known submit
    time are kept.
    """
    blocks: list[_BhistBlock] = []
    current: _BhistBlock | None = None
    in_header = False

    for raw in _unwrap(output):
        line = raw.strip()
        if SEPARATOR_RE.match(line):
            current = None
            continue
        job = JOB_ID_RE.match(line)
        if job:
            current = _BhistBlock(job_id=job.group(1))
            current.header.append(line)
            blocks.append(current)
            in_header = True
            continue
        if current is None or not line:
            in_header = False
            continue
        if "MAX MEM:" in line:
            mem = line.split("MAX MEM:", 1)[1].split(";", 1)[0]
            current.max_mem_mb = parse_memory_mb(mem, MemoryFormat.LSF)
            continue
        event = EVENT_RE.match(line)
        if event:
            in_header = False
            current.events.append((parse_lsf_timestamp(event.group(1)), event.group(2)))
        elif in_header:
            current.header.append(line)

    records: list[SchedulerRecord] = []
    for block in blocks:
        record = block.to_record()
        if since is not None and record.submit_time is not None and record.submit_time < since:
            continue
        records.append(record)
    return records


def bhist_command(run_uuid: str | None = None) -> list[str]:
    cmd = ["bhist", "-a", "-l"]
    if run_uuid:
        cmd.extend(["-J", run_uuid])
    return cmd


async def query_bhist(
    history_hours: int = 24,
    run_uuid: str | None = None,
    *,
    timeout: float = 30.0,
) -> list[SchedulerRecord]:
    """Job history over the trailing window.  Raises ``SchedulerQueryError``."""
    output = await run_command(*bhist_command(run_uuid), timeout=timeout, allow_failure=True)
    since = utc_now() - timedelta(hours=history_hours)
    return parse_bhist_output(output, since=since)


__all__ = [
    "BJOBS_FORMAT",
    "bhist_command",
    "bjobs_command",
    "parse_bhist_output",
    "parse_bjobs_line",
    "parse_bjobs_output",
    "query_bhist",
    "query_bjobs",
]
