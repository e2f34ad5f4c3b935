"""CLI command implementations."""

from .failure import explain
from .pipeline import status, watch

__all__ = ["explain", "status", "watch"]
