"""Time utilities for charmer.

Timezone-aware "now" plus the duration renderings used in failure
explanations and Snakefile resource suggestions.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def format_duration(seconds: int) -> str:
    """Render a duration for humans, e.g. ``2h 5m``, ``4m 10s``, ``12s``."""
    seconds = max(0, int(seconds))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_runtime_slurm(seconds: int) -> str:
    """Render a duration in SLURM ``[D-]HH:MM:SS`` form."""
    seconds = max(0, int(seconds))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}-{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_runtime_lsf(seconds: int) -> str:
    """Render a duration in LSF ``-W`` form (``H:MM``), rounding minutes up."""
    minutes = -(-max(0, int(seconds)) // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}"
