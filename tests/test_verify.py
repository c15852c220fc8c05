"""
Tests for verification — read-only comparison of machine and model.
"""

from pathlib import Path

from conftest import FakeHost, make_context, make_snapshot

from wsmigrate.adapters.mock import MockAdapter
from wsmigrate.adapters.registry import AdapterRegistry
from wsmigrate.core.engine.normalize import normalize
from wsmigrate.core.engine.reconcile import reconcile
from wsmigrate.core.engine.verify import verify
from wsmigrate.core.errors import EXIT_FAILED, EXIT_OK, EXIT_VALIDATION
from wsmigrate.core.models.action import ActionKind
from wsmigrate.core.models.report import CheckStatus
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.models.snapshot import CaptureRecord, CaptureUnit
from wsmigrate.core.persistence.audit import AuditWriter
from wsmigrate.core.persistence.model_store import save_model
from wsmigrate.core.use_cases.verify import run_verify


def _statuses(report) -> dict[str, CheckStatus]:
    return {c.action_id: c.status for c in report.checks}


class TestVerify:
    def test_drift_before_apply(self, git_zsh_snapshot, ctx):
        report = verify(normalize(git_zsh_snapshot), ctx, reprobe=None)
        assert set(_statuses(report).values()) == {CheckStatus.FAIL}
        assert report.agreed is False
        assert report.exit_code == EXIT_FAILED
        assert report.summary() == {"fail": 2}

    def test_pass_after_apply(self, git_zsh_snapshot, ctx):
        model = normalize(git_zsh_snapshot)
        reconcile(model, ctx, reprobe=None)

        report = verify(model, ctx, reprobe=None)
        assert set(_statuses(report).values()) == {CheckStatus.PASS}
        assert report.agreed is True
        assert report.exit_code == EXIT_OK

    def test_partial_drift_is_reported_per_action(self, git_zsh_snapshot, ctx, host):
        host.rpms.add("git")
        report = verify(normalize(git_zsh_snapshot), ctx, reprobe=None)
        assert _statuses(report) == {
            "ensure-package-set:git": CheckStatus.PASS,
            "ensure-package-set:zsh": CheckStatus.FAIL,
        }

    def test_never_mutates(self, git_zsh_snapshot, tmp_path: Path):
        host = FakeHost()
        ctx = make_context(tmp_path, host, package_manager="dnf", can_escalate=True)
        verify(normalize(git_zsh_snapshot), ctx, reprobe=None)
        assert host.privileged_calls == []
        assert host.rpms == set()

    def test_manual_actions_need_a_human(self, sudoers_finding, ctx):
        model = normalize(make_snapshot(CaptureRecord(unit=CaptureUnit.SYSTEM, findings=[sudoers_finding])))
        report = verify(model, ctx, reprobe=None)

        [check] = report.requires_human_check
        assert check.status == CheckStatus.HUMAN
        assert check.detail == "/etc/sudoers.d/custom: permission denied"
        # a person still has to look, but nothing disagrees
        assert report.agreed is True

    def test_unreadable_check_needs_a_human(self, git_zsh_snapshot, ctx):
        registry = AdapterRegistry()
        mock = MockAdapter(kind=ActionKind.ENSURE_PACKAGE_SET)
        mock.set_raises("git", PermissionError(13, "Permission denied", "/var/lib/rpm"))
        registry.register(mock)

        report = verify(normalize(git_zsh_snapshot), ctx, registry=registry, reprobe=None)
        assert report.checks[0].status == CheckStatus.HUMAN
        assert "/var/lib/rpm" in report.checks[0].detail

    def test_check_error(self, git_zsh_snapshot, ctx):
        registry = AdapterRegistry()
        mock = MockAdapter(kind=ActionKind.ENSURE_PACKAGE_SET, converged={"git", "zsh"})
        mock.set_raises("zsh", RuntimeError("rpmdb locked"))
        registry.register(mock)

        report = verify(normalize(git_zsh_snapshot), ctx, registry=registry, reprobe=None)
        assert _statuses(report)["ensure-package-set:zsh"] == CheckStatus.ERROR
        assert report.agreed is False

    def test_precondition_absent_skips(self, git_zsh_snapshot, tmp_path: Path):
        ctx = make_context(tmp_path, FakeHost(), package_manager="none")
        report = verify(normalize(git_zsh_snapshot), ctx, reprobe=None)
        assert set(_statuses(report).values()) == {CheckStatus.SKIPPED}
        assert report.agreed is True

    def test_role_selection(self, git_zsh_snapshot, ctx):
        report = verify(normalize(git_zsh_snapshot), ctx, roles=["shell"], reprobe=None)
        assert report.checks == []

    def test_to_dict(self, git_zsh_snapshot, ctx):
        data = verify(normalize(git_zsh_snapshot), ctx, reprobe=None).to_dict()
        assert data["agreed"] is False
        assert data["summary"] == {"fail": 2}
        assert data["checks"][0]["status"] == "fail"


class TestRunVerify:
    def test_audit_entry(self, tmp_path: Path, git_zsh_snapshot, ctx, tmp_state_dir):
        model_dir = tmp_path / "model"
        save_model(normalize(git_zsh_snapshot), model_dir)

        result = run_verify(model_dir, ctx, settings=Settings(state_dir=str(tmp_state_dir)), reprobe=None)
        assert result.exit_code == EXIT_FAILED

        [entry] = AuditWriter(tmp_state_dir).read_all()
        assert entry.operation_type == "verify"
        assert entry.status == "failed"
        assert entry.summary == {"fail": 2}

    def test_missing_model(self, tmp_path: Path, ctx, tmp_state_dir):
        result = run_verify(tmp_path / "nope", ctx, settings=Settings(state_dir=str(tmp_state_dir)), reprobe=None)
        assert result.exit_code == EXIT_VALIDATION
        assert result.to_dict()["error"].startswith("Validation error")
        assert AuditWriter(tmp_state_dir).read_all() == []
