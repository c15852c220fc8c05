"""
Tests for the manual-step escalator.
"""

import json

import pytest
import yaml
from conftest import FakeHost, make_context, make_snapshot

from wsmigrate.core.engine.escalate import export, manual_steps, steps_from_model
from wsmigrate.core.engine.normalize import normalize
from wsmigrate.core.engine.reconcile import reconcile
from wsmigrate.core.models.report import ManualStep, ReconciliationReport
from wsmigrate.core.models.snapshot import CaptureRecord, CaptureUnit, Finding


@pytest.fixture
def sudoers_model(sudoers_finding):
    return normalize(make_snapshot(CaptureRecord(unit=CaptureUnit.SYSTEM, findings=[sudoers_finding])))


class TestSudoersFinding:
    """A permission-denied file surfaces verbatim, end to end."""

    def test_deferred_result_becomes_step(self, sudoers_model, sudoers_finding, ctx):
        report = reconcile(sudoers_model, ctx, reprobe=None)
        assert manual_steps(report) == [ManualStep(
            unit_or_role="system",
            description="/etc/sudoers.d/custom: permission denied",
            suggested_command=None,
            finding_id=sudoers_finding.id,
        )]

    def test_report_carries_the_same_steps(self, sudoers_model, ctx):
        report = reconcile(sudoers_model, ctx, reprobe=None)
        assert report.manual_steps == manual_steps(report)

    def test_json_export(self, sudoers_model, sudoers_finding, ctx):
        steps = manual_steps(reconcile(sudoers_model, ctx, reprobe=None))
        assert json.loads(export(steps, "json")) == [{
            "unit_or_role": "system",
            "description": "/etc/sudoers.d/custom: permission denied",
            "suggested_command": None,
            "finding_id": sudoers_finding.id,
        }]

    def test_yaml_export(self, sudoers_model, ctx):
        steps = manual_steps(reconcile(sudoers_model, ctx, reprobe=None))
        [step] = yaml.safe_load(export(steps, "yaml"))
        assert step["unit_or_role"] == "system"
        assert step["description"] == "/etc/sudoers.d/custom: permission denied"

    def test_from_model_matches_from_report(self, sudoers_model, ctx):
        report = reconcile(sudoers_model, ctx, reprobe=None)
        assert steps_from_model(sudoers_model) == manual_steps(report)


class TestManualSteps:
    def test_blocked_results_become_steps(self, git_zsh_snapshot, tmp_path):
        ctx = make_context(tmp_path, FakeHost(sudo_ok=False), package_manager="dnf", can_escalate=False)
        steps = manual_steps(reconcile(normalize(git_zsh_snapshot), ctx, reprobe=None))
        assert [(s.unit_or_role, s.suggested_command) for s in steps] == [
            ("packages", "sudo dnf install -y git"),
            ("packages", "sudo dnf install -y zsh"),
        ]

    def test_nothing_to_do(self, git_zsh_snapshot, ctx):
        assert manual_steps(reconcile(normalize(git_zsh_snapshot), ctx, reprobe=None)) == []

    def test_suggested_command_kept(self, ctx):
        finding = Finding.make(
            CaptureUnit.HARDWARE, "nvidia", "proprietary driver in use",
            "sudo dnf install akmod-nvidia",
        )
        model = normalize(make_snapshot(CaptureRecord(unit=CaptureUnit.HARDWARE, findings=[finding])))
        [step] = steps_from_model(model)
        assert step.unit_or_role == "hardware"
        assert step.suggested_command == "sudo dnf install akmod-nvidia"

    def test_order_is_stable(self, sudoers_finding, ctx):
        other = Finding.make(CaptureUnit.SHELL, "~/.zshrc.local", "symlink outside home")
        model = normalize(make_snapshot(
            CaptureRecord(unit=CaptureUnit.SYSTEM, findings=[sudoers_finding]),
            CaptureRecord(unit=CaptureUnit.SHELL, findings=[other]),
        ))
        first = export(manual_steps(reconcile(model, ctx, reprobe=None)))
        second = export(manual_steps(reconcile(model, ctx, reprobe=None)))
        assert first == second
        # shell role runs before system
        assert [s["unit_or_role"] for s in json.loads(first)] == ["shell", "system"]

    def test_from_saved_report(self, sudoers_model, ctx):
        report = reconcile(sudoers_model, ctx, reprobe=None)
        restored = ReconciliationReport.model_validate_json(json.dumps(report.to_dict()))
        assert manual_steps(restored) == manual_steps(report)


class TestExport:
    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown export format"):
            export([], "toml")

    def test_empty(self):
        assert export([], "json") == "[]\n"
        assert yaml.safe_load(export([], "yaml")) == []
