"""Progress parser for the main Snakemake log (``.snakemake/log/*.snakemake.log``).

The parser is an explicit finite-state machine over log lines:

    OUTSIDE_BLOCK --"rule X:"/"localrule X:"--> IN_BLOCK(X)
    IN_BLOCK(X)   --"rule Y:"-----------------> IN_BLOCK(Y)         (flush X)
    IN_BLOCK(X)   --timestamp/"Select jobs"/blank--> OUTSIDE_BLOCK  (flush X)
    any           --"Job stats:"--------------> IN_JOB_STATS_TABLE  (flush open block)
    IN_JOB_STATS_TABLE --blank/"Select jobs"--> OUTSIDE_BLOCK
    end of input  --> flush open block

Flushing a block records its rule as seen, and as having output if an
``output:`` line appeared inside it.  Target rules are the seen rules that
never had output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from charmer.core.logging import get_logger

_logger = get_logger("main_log")

LOG_SUBDIR = Path(".snakemake") / "log"
LOG_SUFFIX = ".snakemake.log"

# Error lines longer than this are cut before being kept for display
MAX_ERROR_LENGTH = 200

RULE_START_RE = re.compile(r"^(?:local)?rule (\w+):")
PROGRESS_RE = re.compile(r"(\d+) of (\d+) steps \((\d+(?:\.\d+)?)%\) done")
TIMESTAMP_RE = re.compile(r"^\[[^\]]+\]$")


class ParserState(Enum):
    OUTSIDE_BLOCK = "outside_block"
    IN_BLOCK = "in_block"
    IN_JOB_STATS_TABLE = "in_job_stats_table"


@dataclass
class LogInfo:
    """Aggregate progress derived from one main log."""

    total_jobs: int | None = None
    completed_jobs: int = 0
    jobs_by_rule: dict[str, int] = field(default_factory=dict)
    cores: int | None = None
    host: str | None = None
    finished: bool = False
    has_errors: bool = False
    errors: list[str] = field(default_factory=list)
    target_rules: set[str] = field(default_factory=set)

    def progress(self) -> float:
        if not self.total_jobs:
            return 0.0
        return self.completed_jobs / self.total_jobs


class MainLogParser:
    """Single-pass line scanner.  Feed lines, then call ``finish()``."""

    def __init__(self) -> None:
        self.state = ParserState.OUTSIDE_BLOCK
        self.current_rule: str | None = None
        self.current_rule_has_output = False
        self.all_seen_rules: set[str] = set()
        self.rules_with_outputs: set[str] = set()
        self._table_total: int | None = None
        self._progress_total: int | None = None
        self.info = LogInfo()

    # ─── Block bookkeeping ───────────────────────────────────────────

    def _open_block(self, rule: str) -> None:
        self._flush_block()
        self.current_rule = rule
        self.current_rule_has_output = False
        self.state = ParserState.IN_BLOCK

    def _flush_block(self) -> None:
        if self.current_rule is not None:
            self.all_seen_rules.add(self.current_rule)
            if self.current_rule_has_output:
                self.rules_with_outputs.add(self.current_rule)
        self.current_rule = None
        self.current_rule_has_output = False
        if self.state is ParserState.IN_BLOCK:
            self.state = ParserState.OUTSIDE_BLOCK

    # ─── Line handlers ───────────────────────────────────────────────

    def _table_row(self, line: str) -> None:
        if not line or line.startswith("Select jobs"):
            self.state = ParserState.OUTSIDE_BLOCK
            return
        if line.startswith("job") or line.startswith("---"):
            return
        parts = line.split()
        if len(parts) < 2 or not parts[-1].isdigit():
            return
        count = int(parts[-1])
        if parts[0] == "total":
            self._table_total = count
        else:
            self.info.jobs_by_rule[parts[0]] = count

    def _record_error(self, line: str) -> None:
        self.info.has_errors = True
        self.info.errors.append(line[:MAX_ERROR_LENGTH])

    def feed(self, raw_line: str) -> None:
        line = raw_line.strip()

        if self.state is ParserState.IN_JOB_STATS_TABLE:
            self._table_row(line)
            return

        if line == "Job stats:":
            self._flush_block()
            self.state = ParserState.IN_JOB_STATS_TABLE
            return

        if not line or line.startswith("Select jobs") or TIMESTAMP_RE.match(line):
            self._flush_block()
            return

        rule_match = RULE_START_RE.match(line)
        if rule_match:
            self._open_block(rule_match.group(1))
            return

        if self.state is ParserState.IN_BLOCK and line.startswith("output:"):
            self.current_rule_has_output = True
            return

        if line.startswith("host:"):
            self.info.host = line[len("host:"):].strip() or None
            return

        if line.startswith("Provided cores:"):
            value = line[len("Provided cores:"):].strip()
            self.info.cores = int(value) if value.isdigit() else None
            return

        progress = PROGRESS_RE.search(line)
        if progress:
            self.info.completed_jobs = int(progress.group(1))
            self._progress_total = int(progress.group(2))

        if "steps (100%) done" in line or "Nothing to be done" in line:
            self.info.finished = True

        if line.startswith("Error") or "error:" in line or "Exception" in line:
            self._record_error(line)
        elif "Exiting because a job execution failed" in line:
            self._record_error(line)

    def finish(self) -> LogInfo:
        self._flush_block()
        info = self.info
        info.total_jobs = (
            self._table_total if self._table_total is not None else self._progress_total
        )
        info.target_rules = self.all_seen_rules - self.rules_with_outputs
        return info


def parse_log_content(content: str) -> LogInfo:
    """Parse main log text into a ``LogInfo``."""
    parser = MainLogParser()
    for line in content.splitlines():
        parser.feed(line)
    return parser.finish()


def parse_log_file(path: Path) -> LogInfo:
    """Read and parse a log file.  Raises ``OSError`` if it cannot be read."""
    return parse_log_content(path.read_text(encoding="utf-8", errors="replace"))


def find_latest_log(working_dir: Path) -> Path | None:
    """Return the most recently modified main log, or None if there is none."""
    log_dir = working_dir / LOG_SUBDIR
    if not log_dir.is_dir():
        return None
    latest: tuple[float, Path] | None = None
    for path in log_dir.iterdir():
        if not path.name.endswith(LOG_SUFFIX):
            continue
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        if latest is None or mtime > latest[0]:
            latest = (mtime, path)
    return latest[1] if latest else None


def read_latest_log(working_dir: Path) -> LogInfo | None:
    """Parse the newest main log, or return None when none can be read."""
    path = find_latest_log(working_dir)
    if path is None:
        return None
    try:
        return parse_log_file(path)
    except OSError as e:
        _logger.warning("main_log.read_failed", path=str(path), error=str(e))
        return None


__all__ = [
    "LogInfo",
    "MainLogParser",
    "ParserState",
    "find_latest_log",
    "parse_log_content",
    "parse_log_file",
    "read_latest_log",
]
