"""
CLI commands that only look: capability probe and role listing.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from wsmigrate.ui.cli.common import echo_json, exec_context


@click.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def probe(ctx: click.Context, as_json: bool) -> None:
    """Show the capabilities detected on this machine."""
    from wsmigrate.core.engine.probe import probe as probe_caps

    caps = probe_caps(exec_context(ctx))

    if as_json:
        echo_json(caps.model_dump(mode="json"))
        return

    click.secho(f"\n🔍 {caps.hostname}", fg="cyan", bold=True)
    click.echo(f"   OS: {caps.os_version}  kernel {caps.kernel} ({caps.arch})")
    click.echo(f"   Package manager: {caps.package_manager}")
    flags = {
        "flatpak": caps.flatpak,
        "snap": caps.snap,
        "systemd": caps.systemd,
        "firewalld": caps.firewalld,
    }
    for name, present in flags.items():
        mark, color = ("✓", "green") if present else ("⊘", "yellow")
        click.secho(f"   {mark} {name}", fg=color)
    desktop = caps.desktop_shell or "none"
    if caps.desktop_shell_version:
        desktop += f" {caps.desktop_shell_version}"
    click.echo(f"   Desktop: {desktop} ({caps.display_server})")
    click.echo(f"   Audio: {caps.audio_stack or 'none'}")
    click.echo(f"   Version managers: {', '.join(caps.version_managers) or 'none'}")
    click.echo(f"   Tools: {', '.join(caps.tools) or 'none'}")
    if caps.is_root:
        click.echo("   Privilege: root")
    else:
        click.echo(f"   Privilege: {'passwordless sudo' if caps.can_escalate else 'none'}")
    click.echo()


@click.command()
@click.argument("model_dir", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def roles(model_dir: Path | None, as_json: bool) -> None:
    """List roles in execution order (with action counts for MODEL_DIR)."""
    from wsmigrate.core.engine.dag import role_order
    from wsmigrate.core.errors import EXIT_VALIDATION, ValidationError
    from wsmigrate.core.models.target import DEFAULT_ROLE_DEPENDENCIES
    from wsmigrate.core.persistence.model_store import load_model

    model = None
    if model_dir is not None:
        try:
            model = load_model(model_dir)
        except ValidationError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(EXIT_VALIDATION)

    dependencies = model.dependencies if model else DEFAULT_ROLE_DEPENDENCIES
    rows = []
    for role in role_order(dependencies):
        spec = model.role(role) if model else None
        rows.append({
            "role": role.value,
            "depends_on": [d.value for d in dependencies.get(role, [])],
            "actions": len(spec.actions) if spec else 0,
        })

    if as_json:
        echo_json(rows)
        return

    click.secho("\n📋 Roles (execution order)", fg="cyan", bold=True)
    for row in rows:
        deps = f"  ← {', '.join(row['depends_on'])}" if row["depends_on"] else ""
        count = f"  [{row['actions']} actions]" if model else ""
        click.echo(f"   • {row['role']}{count}{deps}")
    click.echo()
