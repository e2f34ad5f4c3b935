"""Failure analysis: turn scheduler diagnostics into an explanation and a fix."""

from charmer.failure.classifier import FailureDiagnostics, FailureMarker, classify_failure
from charmer.failure.models import (
    Cancelled,
    ExitCode,
    FailureAnalysis,
    FailureMode,
    NodeFailure,
    OutOfMemory,
    Timeout,
    UnknownFailure,
)

__all__ = [
    "Cancelled",
    "ExitCode",
    "FailureAnalysis",
    "FailureDiagnostics",
    "FailureMarker",
    "FailureMode",
    "NodeFailure",
    "OutOfMemory",
    "Timeout",
    "UnknownFailure",
    "classify_failure",
]
