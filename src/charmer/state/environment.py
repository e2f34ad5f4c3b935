"""Detect how a job's command was executed (container, pixi, conda, direct)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

PIXI_ENV_RE = re.compile(r"pixi\s+run\s+(?:-e|--environment)\s+(\S+)")
CONDA_ENV_RE = re.compile(
    r"(?:conda|mamba|micromamba)\s+(?:run\s+(?:-n|--name)|activate)\s+(\S+)"
)
CONTAINER_RE = re.compile(
    r"(?:singularity|apptainer)\s+exec\s+(\S+)|docker\s+run\s+(?:[^/]+\s+)*(\S+/\S+)"
)


class EnvironmentKind(str, Enum):
    DIRECT = "direct"
    CONDA = "conda"
    PIXI = "pixi"
    CONTAINER = "container"


@dataclass(frozen=True)
class ExecutionEnvironment:
    """Execution environment of a job; ``name`` is an env name or image URL."""

    kind: EnvironmentKind
    name: str | None = None

    @classmethod
    def detect(
        cls,
        shell_command: str,
        conda_env: str | None = None,
        container_image: str | None = None,
    ) -> ExecutionEnvironment:
        """Detect the environment.

        Priority: container image from metadata, container in the shell
        command, pixi, conda env from metadata, conda in the shell command,
        then direct.
        """
        if container_image:
            return cls(EnvironmentKind.CONTAINER, container_image)
        match = CONTAINER_RE.search(shell_command)
        if match:
            return cls(EnvironmentKind.CONTAINER, match.group(1) or match.group(2))
        match = PIXI_ENV_RE.search(shell_command)
        if match:
            return cls(EnvironmentKind.PIXI, match.group(1))
        if conda_env:
            return cls(EnvironmentKind.CONDA, conda_env)
        match = CONDA_ENV_RE.search(shell_command)
        if match:
            return cls(EnvironmentKind.CONDA, match.group(1))
        return cls(EnvironmentKind.DIRECT)

    def label(self) -> str:
        if self.name is None:
            return self.kind.value
        return f"{self.kind.value}:{self.name}"


__all__ = ["EnvironmentKind", "ExecutionEnvironment"]
