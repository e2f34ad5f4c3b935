"""Field-level parsers for scheduler tool output.

Small, total functions: unparseable or placeholder values become None
rather than raising, because accounting output is full of ``N/A``,
``Unknown`` and ``-``.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum

from charmer.core.exceptions import RecordParseError
from charmer.utils.time import utc_now

FIELD_DELIMITER = "|"

_PLACEHOLDERS = frozenset({"", "-", "N/A", "Unknown", "None", "(null)"})


class MemoryFormat(Enum):
    SLURM = "slurm"  # 4G, 1000M, 4096K, 4096
    SLURM_SACCT = "slurm_sacct"  # 4Gn, 1000Mc (per node / per core)
    LSF = "lsf"  # 4 GB, 1000 MB, 4.5 Gbytes


def non_empty(value: str) -> str | None:
    value = value.strip()
    return None if value in _PLACEHOLDERS else value


def split_fields(line: str, minimum: int) -> list[str]:
    """Split a delimited output line, requiring at least ``minimum`` fields.

    Raises:
        RecordParseError: If the line has too few fields.
    """
    fields = line.split(FIELD_DELIMITER)
    if len(fields) < minimum:
        raise RecordParseError(f"Expected {minimum} fields, got {len(fields)}: {line!r}")
    return fields


def parse_int(value: str) -> int | None:
    value = value.strip()
    try:
        return int(value)
    except ValueError:
        return None


def _slurm_memory(value: str) -> int | None:
    units = {"T": 1024 * 1024, "G": 1024, "M": 1}
    suffix = value[-1:].upper()
    try:
        if suffix in units:
            return int(float(value[:-1]) * units[suffix])
        if suffix == "K":
            return int(float(value[:-1]) / 1024)
        return int(float(value))
    except ValueError:
        return None


def _lsf_memory(value: str) -> int | None:
    parts = value.split()
    try:
        amount = float(parts[0])
    except (IndexError, ValueError):
        return None
    unit = parts[1].upper() if len(parts) > 1 else ""
    if unit.startswith("G"):
        return int(amount * 1024)
    if unit.startswith("K"):
        return int(amount / 1024)
    if unit.startswith("T"):
        return int(amount * 1024 * 1024)
    return int(amount)


def parse_memory_mb(value: str, fmt: MemoryFormat) -> int | None:
    """Parse a memory amount into megabytes."""
    value = value.strip()
    if value in ("", "-"):
        return None
    if fmt is MemoryFormat.LSF:
        return _lsf_memory(value)
    if fmt is MemoryFormat.SLURM_SACCT:
        value = value.rstrip("nc")
    return _slurm_memory(value)


def parse_duration_seconds(value: str) -> int | None:
    """Parse ``D-HH:MM:SS``, ``HH:MM:SS``, ``MM:SS`` or plain seconds."""
    value = value.strip()
    if value in ("", "-", "UNLIMITED", "INVALID", "Partition_Limit"):
        return None
    days = 0
    if "-" in value:
        day_part, _, value = value.partition("-")
        try:
            days = int(day_part)
        except ValueError:
            return None
    parts = value.split(":")
    try:
        numbers = [int(float(p)) for p in parts]
    except ValueError:
        return None
    if len(numbers) == 3:
        seconds = numbers[0] * 3600 + numbers[1] * 60 + numbers[2]
    elif len(numbers) == 2:
        seconds = numbers[0] * 60 + numbers[1]
    elif len(numbers) == 1:
        seconds = numbers[0]
    else:
        return None
    return days * 86400 + seconds


def parse_slurm_timestamp(value: str) -> datetime | None:
    value = value.strip()
    if value in _PLACEHOLDERS:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S").replace(tzinfo=UTC)
    except ValueError:
        return None


def parse_lsf_timestamp(value: str, now: datetime | None = None) -> datetime | None:
    """Parse ``Mon DD HH:MM[:SS] [YYYY]``; without a year the current year is assumed.

    bjobs appends ``E`` (estimated) or ``L`` (actual, after the job ended)
    to some times; the marker is ignored.
    """
    value = value.strip().rstrip("EL").strip()
    if value in _PLACEHOLDERS:
        return None
    value = " ".join(value.split())
    for fmt in ("%b %d %H:%M %Y", "%b %d %H:%M:%S %Y"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError:
            pass
    year = (now or utc_now()).year
    for fmt in ("%b %d %H:%M %Y", "%b %d %H:%M:%S %Y"):
        try:
            return datetime.strptime(f"{value} {year}", fmt).replace(tzinfo=UTC)
        except ValueError:
            pass
    return None


def parse_exit_code(value: str) -> tuple[int, int | None]:
    """Parse SLURM ``code:signal``; a zero or missing signal is None."""
    code_part, _, signal_part = value.strip().partition(":")
    code = parse_int(code_part) or 0
    signal = parse_int(signal_part) if signal_part else None
    return code, (signal or None)


def suggest_memory_mb(used_mb: int, limit_mb: int) -> int:
    """Half again the peak usage, rounded up to a whole GB, and at least limit + 1 GB."""
    rounded = math.ceil(used_mb * 1.5 / 1024) * 1024
    return max(rounded, limit_mb + 1024)


def suggest_time_seconds(elapsed_seconds: int, limit_seconds: int) -> int:
    """Half again the elapsed time, and at least limit + 1 hour."""
    return max(int(elapsed_seconds * 1.5), limit_seconds + 3600)


__all__ = [
    "FIELD_DELIMITER",
    "MemoryFormat",
    "non_empty",
    "parse_duration_seconds",
    "parse_exit_code",
    "parse_int",
    "parse_lsf_timestamp",
    "parse_memory_mb",
    "parse_slurm_timestamp",
    "split_fields",
    "suggest_memory_mb",
    "suggest_time_seconds",
]
