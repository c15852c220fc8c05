"""
wsmigrate — CLI entrypoint.

Usage:
    wsmigrate --help
    wsmigrate probe
    wsmigrate capture --out snapshot/
    wsmigrate normalize snapshot/ --out model/
    wsmigrate reconcile model/ --dry-run
    wsmigrate verify model/
"""

from __future__ import annotations

import os
from pathlib import Path

import click

from wsmigrate import __version__
from wsmigrate.core.observability.logging_config import resolve_level, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="wsmigrate")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to wsmigrate.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """wsmigrate — move a workstation's state to a new machine."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug, verbose, quiet, os.environ.get("WSM_LOG_LEVEL")),
        log_file=os.environ.get("WSM_LOG_FILE"),
        log_file_level=os.environ.get("WSM_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


# ── Register command modules ────────────────────────────────────

from wsmigrate.ui.cli.inspect import probe, roles  # noqa: E402
from wsmigrate.ui.cli.pipeline import (  # noqa: E402
    capture,
    manual_steps,
    normalize,
    reconcile,
    verify,
)

cli.add_command(probe)
cli.add_command(roles)
cli.add_command(capture)
cli.add_command(normalize)
cli.add_command(reconcile)
cli.add_command(verify)
cli.add_command(manual_steps)


if __name__ == "__main__":
    cli()
