"""charmer CLI.

Built with Typer.  Global options are handled by the app callback and stored
in ``helpers``; each command module loads the effective config through
``helpers.prepare``.

Package structure:
    cli/
    ├── __init__.py       # app assembly and global options
    ├── helpers.py        # option state, config loading, logging setup
    ├── output.py         # rich renderables
    └── commands/
        ├── pipeline.py   # status, watch
        └── failure.py    # explain
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from charmer import __version__

from . import helpers as helpers
from .commands import explain, status, watch
from .output import console

app = typer.Typer(
    name="charmer",
    help="Live monitor for Snakemake pipelines on SLURM and LSF",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"charmer v{__version__}")
        raise typer.Exit()


def _upper(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.upper()
    if value not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise typer.BadParameter("must be DEBUG, INFO, WARNING or ERROR")
    return value


def _log_format(value: str | None) -> str | None:
    if value is not None and value not in ("json", "console", "both"):
        raise typer.BadParameter("must be json, console or both")
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML configuration file",
            envvar="CHARMER_CONFIG",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=_upper,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="CHARMER_LOG_LEVEL",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=_log_format,
            help="Log format: json, console, or both",
            envvar="CHARMER_LOG_FORMAT",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            help="Path for log file output",
            envvar="CHARMER_LOG_FILE",
        ),
    ] = None,
) -> None:
    """charmer - live monitor for Snakemake pipelines."""
    options = helpers.get_options()
    options.config_path = config
    options.log_level = log_level  # type: ignore[assignment]
    options.log_format = log_format  # type: ignore[assignment]
    options.log_file = log_file


app.command()(status)
app.command()(watch)
app.command()(explain)


__all__ = ["app", "helpers"]
