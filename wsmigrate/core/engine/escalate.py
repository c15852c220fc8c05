"""
Manual-step escalator — what a human still has to do.

Turns deferred (manual-only) and blocked outcomes into ManualStep
records.  The list follows report order, which is role order then
action index, so unchanged input gives an identical export.
"""

from __future__ import annotations

import json

import yaml

from wsmigrate.core.models.report import ManualStep, Outcome, ReconciliationReport
from wsmigrate.core.models.target import TargetStateModel


def manual_steps(report: ReconciliationReport) -> list[ManualStep]:
    """Manual steps for every deferred or blocked result of a report."""
    steps: list[ManualStep] = []
    for r in report.results:
        if r.outcome == Outcome.DEFERRED:
            steps.append(ManualStep(
                unit_or_role=r.source_unit.value if r.source_unit else r.role.value,
                description=r.detail,
                suggested_command=r.suggested_command,
                finding_id=r.finding_id,
            ))
        elif r.outcome == Outcome.BLOCKED:
            steps.append(ManualStep(
                unit_or_role=r.role.value,
                description=f"{r.target}: {r.detail}",
                suggested_command=r.suggested_command,
                finding_id=r.finding_id,
            ))
    return steps


def steps_from_model(model: TargetStateModel) -> list[ManualStep]:
    """Manual steps straight from a model's manual-only actions (no reconcile run)."""
    steps = []
    for role, _index, action in model.all_actions():
        if not action.is_manual:
            continue
        steps.append(ManualStep(
            unit_or_role=action.source_unit.value if action.source_unit else role.value,
            description=action.description,
            suggested_command=action.desired.get("suggested_command"),
            finding_id=action.finding_id,
        ))
    return steps


def export(steps: list[ManualStep], fmt: str = "json") -> str:
    """Serialize steps as JSON or YAML (``unit_or_role``, ``description``, ``suggested_command``)."""
    data = [s.model_dump(mode="json") for s in steps]
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)
    if fmt != "json":
        raise ValueError(f"Unknown export format: {fmt}")
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
