"""Shared utilities for charmer."""

from charmer.utils.time import format_duration, format_runtime_lsf, format_runtime_slurm, utc_now

__all__ = ["format_duration", "format_runtime_lsf", "format_runtime_slurm", "utc_now"]
