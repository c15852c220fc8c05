"""
CLI commands for the pipeline — capture, normalize, reconcile, verify, manual-steps.

Thin wrappers over ``wsmigrate.core.use_cases``.

Usage::

    wsmigrate capture --out snapshot/
    wsmigrate normalize snapshot/ --out model/
    wsmigrate reconcile model/ --role repos --role packages --dry-run
    wsmigrate verify model/ --json
    wsmigrate manual-steps model/ --format yaml
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from wsmigrate.core.models.report import Outcome
from wsmigrate.ui.cli.common import STATUS_COLORS, echo_json, exec_context, load_settings, reprobe

_OUTCOME_STYLE = {
    Outcome.APPLIED: ("✓", "green"),
    Outcome.WOULD_CHANGE: ("~", "cyan"),
    Outcome.UNCHANGED: ("·", None),
    Outcome.SKIPPED: ("⊘", "yellow"),
    Outcome.DEFERRED: ("✋", "yellow"),
    Outcome.BLOCKED: ("⛔", "yellow"),
    Outcome.FAILED: ("✗", "red"),
}


# ── Capture ─────────────────────────────────────────────────────


@click.command()
@click.option("--unit", "-u", "units", multiple=True, help="Capture only these units.")
@click.option(
    "--out", "-o", "out_dir", default="snapshot",
    type=click.Path(file_okay=False, path_type=Path), help="Snapshot directory.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def capture(ctx: click.Context, units: tuple[str, ...], out_dir: Path, as_json: bool) -> None:
    """Capture this machine into a snapshot directory."""
    from wsmigrate.core.use_cases.capture import run_capture

    result = run_capture(
        exec_context(ctx), out_dir,
        units=list(units) or None,
        settings=load_settings(ctx),
    )

    if as_json:
        echo_json(result.to_dict())
        sys.exit(result.exit_code)

    snapshot = result.snapshot
    if snapshot is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    click.secho(f"\n📸 Captured {snapshot.manifest.hostname} → {result.path}", fg="cyan", bold=True)
    for unit, status in snapshot.manifest.units.items():
        record = snapshot.records[unit]
        detail = f"{len(record.files)} files, {len(record.facts)} facts, {len(record.findings)} findings"
        if status.value == "ok":
            click.secho(f"   ✓ {unit.value}", fg="green", nl=False)
        else:
            click.secho(f"   ✗ {unit.value} ({status.value})", fg="red", nl=False)
        click.echo(f"  {detail}")
    click.echo()


# ── Normalize ───────────────────────────────────────────────────


@click.command()
@click.argument("snapshot_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--out", "-o", "out_dir", required=True,
    type=click.Path(file_okay=False, path_type=Path), help="Model directory.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def normalize(ctx: click.Context, snapshot_dir: Path, out_dir: Path, as_json: bool) -> None:
    """Compile SNAPSHOT_DIR into a target-state model."""
    from wsmigrate.core.use_cases.normalize import run_normalize

    result = run_normalize(snapshot_dir, out_dir, settings=load_settings(ctx))

    if as_json:
        echo_json(result.to_dict())
        sys.exit(result.exit_code)

    model = result.model
    if model is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    click.secho(f"\n🧭 Model written to {result.path}", fg="cyan", bold=True)
    for role, spec in model.roles.items():
        manual = sum(1 for a in spec.actions if a.is_manual)
        extra = f" ({manual} manual)" if manual else ""
        click.echo(f"   • {role.value}: {len(spec.actions)} actions{extra}")
    click.echo(f"   Blobs: {len(model.blobs)}")
    click.echo()


# ── Reconcile ───────────────────────────────────────────────────


@click.command()
@click.argument("model_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option("--role", "-r", "roles", multiple=True, help="Reconcile only these roles.")
@click.option("--dry-run", is_flag=True, help="Report what would change without changing it.")
@click.option(
    "--save-report", "report_path", default=None,
    type=click.Path(dir_okay=False, path_type=Path), help="Also write the JSON report here.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def reconcile(
    ctx: click.Context,
    model_dir: Path,
    roles: tuple[str, ...],
    dry_run: bool,
    report_path: Path | None,
    as_json: bool,
) -> None:
    """Converge this machine onto the model in MODEL_DIR.

    Examples:

        wsmigrate reconcile model/

        wsmigrate reconcile model/ --role repos --role packages --dry-run
    """
    from wsmigrate.core.use_cases.reconcile import run_reconcile

    result = run_reconcile(
        model_dir, exec_context(ctx),
        roles=list(roles) or None,
        dry_run=dry_run,
        settings=load_settings(ctx),
        registry=ctx.obj.get("registry"),
        reprobe=reprobe(ctx),
    )

    if report_path is not None and result.report is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(result.to_dict(), indent=2) + "\n", encoding="utf-8")

    if as_json:
        echo_json(result.to_dict())
        sys.exit(result.exit_code)

    report = result.report
    if report is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    label = "[dry-run] " if dry_run else ""
    click.secho(f"\n⚡ {label}reconcile — {report.operation_id}", fg="cyan", bold=True)

    current = None
    for r in report.results:
        if r.role != current:
            current = r.role
            click.secho(f"   {current.value}", bold=True)
        if r.outcome == Outcome.UNCHANGED and not ctx.obj.get("verbose"):
            continue
        mark, color = _OUTCOME_STYLE[r.outcome]
        click.secho(f"     {mark} {r.action_id}", fg=color, nl=False)
        click.echo(f"  {r.outcome.value}")
        if r.error:
            click.echo(f"       │ {r.error}")

    click.echo()
    summary = ", ".join(f"{n} {k}" for k, n in report.summary().items()) or "nothing to do"
    click.secho(f"   Result: {summary}", fg=STATUS_COLORS.get(report.status, "white"), bold=True)
    if report.manual_steps:
        click.secho(f"   ✋ {len(report.manual_steps)} manual steps", fg="yellow")
        click.echo(f"      See: wsmigrate manual-steps {model_dir}")
    click.echo()
    sys.exit(result.exit_code)


# ── Verify ──────────────────────────────────────────────────────


@click.command()
@click.argument("model_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option("--role", "-r", "roles", multiple=True, help="Verify only these roles.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(ctx: click.Context, model_dir: Path, roles: tuple[str, ...], as_json: bool) -> None:
    """Check this machine against the model in MODEL_DIR (read-only)."""
    from wsmigrate.core.models.report import CheckStatus
    from wsmigrate.core.use_cases.verify import run_verify

    result = run_verify(
        model_dir, exec_context(ctx),
        roles=list(roles) or None,
        settings=load_settings(ctx),
        registry=ctx.obj.get("registry"),
        reprobe=reprobe(ctx),
    )

    if as_json:
        echo_json(result.to_dict())
        sys.exit(result.exit_code)

    report = result.report
    if report is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    click.secho(f"\n🔎 verify — {report.operation_id}", fg="cyan", bold=True)
    for check in report.checks:
        if check.status == CheckStatus.FAIL:
            click.secho(f"   ✗ {check.action_id}", fg="red", nl=False)
            click.echo(f"  {check.detail}")
        elif check.status == CheckStatus.ERROR:
            click.secho(f"   ✗ {check.action_id}  error: {check.detail}", fg="red")

    human = report.requires_human_check
    if human:
        click.echo()
        click.secho(f"   Requires human check ({len(human)}):", fg="yellow", bold=True)
        for check in human:
            click.echo(f"     • {check.detail or check.action_id}")

    click.echo()
    summary = ", ".join(f"{n} {k}" for k, n in report.summary().items()) or "nothing to check"
    color = "green" if report.agreed else "red"
    click.secho(f"   Result: {summary}", fg=color, bold=True)
    click.echo()
    sys.exit(result.exit_code)


# ── Manual steps ────────────────────────────────────────────────


@click.command("manual-steps")
@click.argument("model_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--report", "report_path", default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Reconcile report (from --save-report) to include blocked actions.",
)
@click.option(
    "--format", "fmt", type=click.Choice(["json", "yaml"]), default="json",
    help="Export format.",
)
def manual_steps(model_dir: Path, report_path: Path | None, fmt: str) -> None:
    """Export the steps a human has to perform on the target."""
    from wsmigrate.core.engine.escalate import export
    from wsmigrate.core.engine.escalate import manual_steps as steps_from_report
    from wsmigrate.core.engine.escalate import steps_from_model
    from wsmigrate.core.errors import EXIT_VALIDATION, ValidationError
    from wsmigrate.core.models.report import ReconciliationReport
    from wsmigrate.core.persistence.model_store import load_model

    if report_path is not None:
        try:
            report = ReconciliationReport.model_validate_json(report_path.read_text(encoding="utf-8"))
        except ValueError as e:
            click.secho(f"❌ Invalid report {report_path}: {e}", fg="red", err=True)
            sys.exit(EXIT_VALIDATION)
        steps = steps_from_report(report)
    else:
        try:
            steps = steps_from_model(load_model(model_dir))
        except ValidationError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(EXIT_VALIDATION)

    click.echo(export(steps, fmt), nl=False)
