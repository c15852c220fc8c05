"""
Shared CLI helpers — settings and execution context from the click context.

Tests inject ``exec_context``, ``registry`` and ``reprobe`` through
``obj`` so commands run against a fake machine.
"""

from __future__ import annotations

import json
import sys

import click

from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.probe import probe as probe_caps
from wsmigrate.core.errors import EXIT_VALIDATION, ConfigError
from wsmigrate.core.models.settings import Settings

STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


def load_settings(ctx: click.Context) -> Settings:
    """Settings for this invocation; exits with the validation code on a bad file."""
    if "settings" in ctx.obj:
        return ctx.obj["settings"]
    from wsmigrate.core.config.loader import load_settings as _load

    try:
        settings = _load(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_VALIDATION)
    ctx.obj["settings"] = settings
    return settings


def exec_context(ctx: click.Context) -> ExecutionContext:
    if "exec_context" not in ctx.obj:
        ctx.obj["exec_context"] = ExecutionContext.from_environment()
    return ctx.obj["exec_context"]


def reprobe(ctx: click.Context):
    return ctx.obj.get("reprobe", probe_caps)


def echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))
