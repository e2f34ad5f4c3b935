"""Classify pipeline-level error lines from the main Snakemake log."""

from __future__ import annotations

import re

from charmer.state.models import PipelineError, PipelineErrorKind

ERROR_RULE_RE = re.compile(r"(?i)(?:error in rule|for rule|rule:?)\s+(\w+)")
EXIT_CODE_RE = re.compile(
    r"(?i)(?:exit\s*code|exitcode|return\s*code)[:\s]+(\d+)|returned\s+(\d+)"
)

# Words the rule regex catches in prose ("for rule the ...")
_NOT_RULES = frozenset({"the", "a", "an"})


def extract_rule(message: str) -> str | None:
    match = ERROR_RULE_RE.search(message)
    if match is None or match.group(1) in _NOT_RULES:
        return None
    return match.group(1)


def extract_exit_code(message: str) -> int | None:
    match = EXIT_CODE_RE.search(message)
    if match is None:
        return None
    return int(match.group(1) or match.group(2))


def _path_details(message: str) -> list[str]:
    details = []
    for line in message.splitlines():
        stripped = line.strip()
        if stripped.startswith("/") or "results/" in stripped or "data/" in stripped:
            details.append(stripped)
    return details


def classify_pipeline_error(message: str) -> PipelineError:
    """Classify one error message from the main log.

    Checks run in a fixed order; the first matching category wins and
    anything unrecognized is GENERIC.
    """
    lower = message.lower()

    if "missinginputexception" in lower or "missing input" in lower:
        return PipelineError(
            kind=PipelineErrorKind.MISSING_INPUT,
            message=message,
            rule=extract_rule(message),
            details=_path_details(message),
        )

    if (
        "calledprocesserror" in lower
        or "error executing rule" in lower
        or "error in rule" in lower
    ):
        return PipelineError(
            kind=PipelineErrorKind.COMMAND_FAILED,
            message=message,
            rule=extract_rule(message),
            exit_code=extract_exit_code(message),
        )

    if "lockexception" in lower or "directory cannot be locked" in lower:
        return PipelineError(kind=PipelineErrorKind.LOCKED, message=message)

    if "incompletefilesexception" in lower or "incomplete" in lower:
        return PipelineError(
            kind=PipelineErrorKind.INCOMPLETE_FILES,
            message=message,
            details=_path_details(message),
        )

    if "syntaxerror" in lower or "syntax error" in lower:
        return PipelineError(kind=PipelineErrorKind.SYNTAX_ERROR, message=message)

    if "workflowerror" in lower or "workflow error" in lower:
        return PipelineError(kind=PipelineErrorKind.WORKFLOW_ERROR, message=message)

    if "ruleexception" in lower:
        return PipelineError(
            kind=PipelineErrorKind.RULE_ERROR,
            message=message,
            rule=extract_rule(message),
        )

    return PipelineError(
        kind=PipelineErrorKind.GENERIC,
        message=message,
        rule=extract_rule(message),
    )


__all__ = ["classify_pipeline_error", "extract_exit_code", "extract_rule"]
