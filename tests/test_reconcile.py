"""
Tests for the reconciliation engine and the reconcile use case.
"""

import json
import os
from pathlib import Path

import pytest
from conftest import FakeHost, make_context, make_snapshot

from wsmigrate.adapters.mock import MockAdapter
from wsmigrate.adapters.registry import AdapterRegistry
from wsmigrate.adapters.shell.command import CommandResult
from wsmigrate.core.engine.capture import capture
from wsmigrate.core.engine.normalize import normalize
from wsmigrate.core.engine.reconcile import reconcile, select_roles
from wsmigrate.core.errors import EXIT_LOCKED, EXIT_OK, EXIT_VALIDATION, ValidationError
from wsmigrate.core.models.action import ActionKind
from wsmigrate.core.models.report import Outcome
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.models.snapshot import CaptureRecord, CaptureUnit
from wsmigrate.core.models.target import Role
from wsmigrate.core.persistence.audit import AuditWriter
from wsmigrate.core.persistence.lock import LOCK_FILE
from wsmigrate.core.persistence.model_store import save_model
from wsmigrate.core.persistence.snapshot_store import load_snapshot, save_snapshot
from wsmigrate.core.use_cases.reconcile import run_reconcile


def _outcomes(report) -> dict[str, Outcome]:
    return {r.action_id: r.outcome for r in report.results}


@pytest.fixture
def repo_and_packages_model():
    return normalize(make_snapshot(
        CaptureRecord(unit=CaptureUnit.REPO, facts={"enabled": ["updates-testing"]}),
        CaptureRecord(unit=CaptureUnit.PACKAGE, facts={"user_installed": ["git", "zsh"]}),
    ))


# ── Scenario ────────────────────────────────────────────────────


class TestGitZshScenario:
    def test_applied_then_unchanged(self, git_zsh_snapshot, ctx, host):
        model = normalize(git_zsh_snapshot)

        first = reconcile(model, ctx, reprobe=None)
        assert _outcomes(first) == {
            "ensure-package-set:git": Outcome.APPLIED,
            "ensure-package-set:zsh": Outcome.APPLIED,
        }
        assert host.rpms == {"git", "zsh"}
        assert ["dnf", "install", "-y", "git"] in host.privileged_calls

        second = reconcile(model, ctx, reprobe=None)
        assert set(_outcomes(second).values()) == {Outcome.UNCHANGED}


class TestIdempotence:
    def test_second_apply_changes_nothing(self, repo_and_packages_model, ctx, host):
        reconcile(repo_and_packages_model, ctx, reprobe=None)
        calls_before = len(host.privileged_calls)

        second = reconcile(repo_and_packages_model, ctx, reprobe=None)
        assert all(r.outcome == Outcome.UNCHANGED for r in second.results)
        assert len(host.privileged_calls) == calls_before

    def test_captured_machine_round_trip(self, tmp_path: Path):
        source = FakeHost()
        source.tools |= {"git", "zsh"}
        source.repos.add("updates-testing")
        source.user_installed = {"git": "@fedora", "zsh": "updates"}
        source.responses["getent passwd alice"] = CommandResult(
            argv=[], returncode=0, stdout="alice:x:1000:1000::/home/alice:/bin/zsh\n",
        )
        source_ctx = make_context(tmp_path / "source", source)
        (source_ctx.home / ".zshrc").write_text("source ~/.local/share/zinit/zinit.git/zinit.zsh\n")
        (source_ctx.home / ".local" / "share" / "zinit" / "zinit.git").mkdir(parents=True)

        snapshot_dir = tmp_path / "snapshot"
        save_snapshot(capture(source_ctx, units=["repo", "package", "shell"]), snapshot_dir)
        model = normalize(load_snapshot(snapshot_dir))

        target = FakeHost()
        ctx = make_context(tmp_path / "target", target)
        first = reconcile(model, ctx)
        outcomes = _outcomes(first)
        assert Outcome.FAILED not in outcomes.values()
        assert {
            "ensure-repo-enabled:updates-testing",
            "ensure-package-set:git",
            "ensure-package-set:zsh",
            "run-idempotent-command:zinit",
        } <= {k for k, v in outcomes.items() if v == Outcome.APPLIED}
        assert (ctx.home / ".zshrc").read_text() == "source ~/.local/share/zinit/zinit.git/zinit.zsh\n"

        second = reconcile(model, ctx)
        assert Outcome.APPLIED not in _outcomes(second).values()
        assert Outcome.FAILED not in _outcomes(second).values()


class TestDryRun:
    def test_dry_run_mutates_nothing(self, repo_and_packages_model, ctx, host):
        report = reconcile(repo_and_packages_model, ctx, dry_run=True, reprobe=None)
        assert report.mode == "dry-run"
        assert set(_outcomes(report).values()) == {Outcome.WOULD_CHANGE}
        assert host.rpms == set()
        assert "updates-testing" not in host.repos
        assert host.privileged_calls == []

    def test_dry_run_predicts_apply(self, repo_and_packages_model, ctx):
        predicted = reconcile(repo_and_packages_model, ctx, dry_run=True, reprobe=None)
        applied = reconcile(repo_and_packages_model, ctx, reprobe=None)

        expected = {
            k: Outcome.APPLIED if v == Outcome.WOULD_CHANGE else v
            for k, v in _outcomes(predicted).items()
        }
        assert _outcomes(applied) == expected

    def test_dry_run_matches_apply_across_roles(self, ctx, host):
        # zinit needs git, which the packages role installs first
        model = normalize(make_snapshot(
            CaptureRecord(unit=CaptureUnit.PACKAGE, facts={"user_installed": ["git"]}),
            CaptureRecord(unit=CaptureUnit.SHELL, facts={"plugin_manager": "zinit"}),
        ))

        predicted = reconcile(model, ctx, dry_run=True)
        assert host.rpms == set()
        applied = reconcile(model, ctx)

        would = {k for k, v in _outcomes(predicted).items() if v == Outcome.WOULD_CHANGE}
        done = {k for k, v in _outcomes(applied).items() if v == Outcome.APPLIED}
        assert would == done == {"ensure-package-set:git", "run-idempotent-command:zinit"}

    def test_provided_capability_counts_inside_a_role(self, tmp_path: Path):
        model = normalize(make_snapshot(CaptureRecord(unit=CaptureUnit.DEVTOOL, facts={
            "version_managers": ["rustup"], "rustup_toolchains": ["stable"],
        })))
        ctx = make_context(tmp_path, FakeHost(), tools=["curl"])

        report = reconcile(model, ctx, dry_run=True, reprobe=None)
        assert _outcomes(report) == {
            "run-idempotent-command:version-manager:rustup": Outcome.WOULD_CHANGE,
            "run-idempotent-command:rustup-toolchain:stable": Outcome.WOULD_CHANGE,
        }

    def test_dry_run_reports_blocked_too(self, git_zsh_snapshot, tmp_path: Path):
        ctx = make_context(tmp_path, FakeHost(sudo_ok=False), package_manager="dnf", can_escalate=False)
        report = reconcile(normalize(git_zsh_snapshot), ctx, dry_run=True, reprobe=None)
        assert set(_outcomes(report).values()) == {Outcome.BLOCKED}


class TestOrdering:
    @pytest.mark.parametrize("selection", [["packages", "repos"], ["repos", "packages"]])
    def test_repos_before_packages(self, repo_and_packages_model, ctx, selection):
        report = reconcile(repo_and_packages_model, ctx, roles=selection, dry_run=True, reprobe=None)
        assert report.roles == [Role.REPOS, Role.PACKAGES]
        roles = [r.role for r in report.results]
        assert roles == sorted(roles, key=[Role.REPOS, Role.PACKAGES].index)
        assert roles[0] == Role.REPOS

    def test_results_keep_action_index(self, repo_and_packages_model, ctx):
        report = reconcile(repo_and_packages_model, ctx, roles=["packages"], dry_run=True, reprobe=None)
        assert [(r.target, r.index) for r in report.results] == [("git", 0), ("zsh", 1)]

    def test_select_roles(self, repo_and_packages_model):
        assert select_roles(repo_and_packages_model, ["hardware", "repos"]) == [Role.REPOS, Role.HARDWARE]
        with pytest.raises(ValidationError, match="unknown role"):
            select_roles(repo_and_packages_model, ["browsers"])

    def test_reprobe_before_each_role_with_actions(self, repo_and_packages_model, ctx):
        calls = []

        def reprobe(c):
            calls.append(1)
            return c.capabilities

        reconcile(repo_and_packages_model, ctx, dry_run=True, reprobe=reprobe)
        assert len(calls) == 2


class TestOutcomes:
    def test_blocked_without_privilege(self, git_zsh_snapshot, tmp_path: Path):
        ctx = make_context(tmp_path, FakeHost(sudo_ok=False), package_manager="dnf", can_escalate=False)
        report = reconcile(normalize(git_zsh_snapshot), ctx, reprobe=None)

        [git, _] = report.results
        assert git.outcome == Outcome.BLOCKED
        assert git.suggested_command == "sudo dnf install -y git"
        assert report.exit_code == EXIT_OK
        assert [s.description for s in report.manual_steps] == [
            "git: requires elevated privilege",
            "zsh: requires elevated privilege",
        ]

    def test_sudo_refusal_at_apply_is_blocked(self, git_zsh_snapshot, tmp_path: Path):
        # probe said sudo works, but it asks for a password at apply time
        ctx = make_context(tmp_path, FakeHost(sudo_ok=False), package_manager="dnf", can_escalate=True)
        report = reconcile(normalize(git_zsh_snapshot), ctx, reprobe=None)
        assert set(_outcomes(report).values()) == {Outcome.BLOCKED}

    def test_precondition_absent_skips(self, git_zsh_snapshot, tmp_path: Path):
        ctx = make_context(tmp_path, FakeHost(), package_manager="none")
        report = reconcile(normalize(git_zsh_snapshot), ctx, reprobe=None)
        assert set(_outcomes(report).values()) == {Outcome.SKIPPED}
        assert "pm:dnf" in report.results[0].detail

    def test_manual_only_deferred(self, sudoers_finding, ctx, host):
        model = normalize(make_snapshot(CaptureRecord(unit=CaptureUnit.SYSTEM, findings=[sudoers_finding])))
        report = reconcile(model, ctx, reprobe=None)
        [result] = report.results
        assert result.outcome == Outcome.DEFERRED
        assert result.finding_id == sudoers_finding.id
        assert host.calls == []

    def test_failure_isolation(self, git_zsh_snapshot, ctx):
        registry = AdapterRegistry()
        mock = MockAdapter(kind=ActionKind.ENSURE_PACKAGE_SET)
        mock.set_failure("git", "No match for argument: git")
        registry.register(mock)

        report = reconcile(normalize(git_zsh_snapshot), ctx, registry=registry, reprobe=None)
        assert _outcomes(report) == {
            "ensure-package-set:git": Outcome.FAILED,
            "ensure-package-set:zsh": Outcome.APPLIED,
        }
        assert report.results[0].error == "No match for argument: git"
        assert report.status == "partial"
        assert report.exit_code == 1

    def test_raising_check_is_contained(self, git_zsh_snapshot, ctx):
        registry = AdapterRegistry()
        mock = MockAdapter(kind=ActionKind.ENSURE_PACKAGE_SET)
        mock.set_raises("git", RuntimeError("rpmdb locked"))
        registry.register(mock)

        report = reconcile(normalize(git_zsh_snapshot), ctx, registry=registry, reprobe=None)
        assert report.results[0].outcome == Outcome.FAILED
        assert "rpmdb locked" in report.results[0].error
        assert report.results[1].outcome == Outcome.APPLIED

    def test_missing_adapter_fails_action(self, git_zsh_snapshot, ctx):
        report = reconcile(normalize(git_zsh_snapshot), ctx, registry=AdapterRegistry(), reprobe=None)
        assert all("No adapter registered" in r.error for r in report.results)


# ── Use case ────────────────────────────────────────────────────


class TestRunReconcile:
    def _model_dir(self, tmp_path: Path, model) -> Path:
        model_dir = tmp_path / "model"
        save_model(model, model_dir)
        return model_dir

    def test_apply_writes_audit(self, tmp_path, git_zsh_snapshot, ctx, tmp_state_dir):
        model_dir = self._model_dir(tmp_path, normalize(git_zsh_snapshot))
        settings = Settings(state_dir=str(tmp_state_dir))

        result = run_reconcile(model_dir, ctx, settings=settings, reprobe=None)
        assert result.exit_code == EXIT_OK
        assert result.report.summary() == {"applied": 2}

        [entry] = AuditWriter(tmp_state_dir).read_all()
        assert entry.operation_type == "reconcile"
        assert entry.operation_id == result.operation_id
        assert entry.mode == "apply"
        assert not (tmp_state_dir / LOCK_FILE).exists()

    def test_lock_held(self, tmp_path, git_zsh_snapshot, ctx, tmp_state_dir, host):
        model_dir = self._model_dir(tmp_path, normalize(git_zsh_snapshot))
        (tmp_state_dir / LOCK_FILE).write_text(f"{os.getpid()}\n")
        settings = Settings(state_dir=str(tmp_state_dir))

        result = run_reconcile(model_dir, ctx, settings=settings, reprobe=None)
        assert result.exit_code == EXIT_LOCKED
        assert "holds" in result.error
        assert host.calls == []
        # someone else's lock is left alone
        assert (tmp_state_dir / LOCK_FILE).exists()

    def test_dry_run_ignores_lock(self, tmp_path, git_zsh_snapshot, ctx, tmp_state_dir):
        model_dir = self._model_dir(tmp_path, normalize(git_zsh_snapshot))
        (tmp_state_dir / LOCK_FILE).write_text(f"{os.getpid()}\n")
        settings = Settings(state_dir=str(tmp_state_dir))

        result = run_reconcile(model_dir, ctx, dry_run=True, settings=settings, reprobe=None)
        assert result.exit_code == EXIT_OK
        assert result.report.mode == "dry-run"

    def test_invalid_model(self, tmp_path: Path, ctx, tmp_state_dir):
        model_dir = tmp_path / "model"
        model_dir.mkdir()
        (model_dir / "vars.yml").write_text("roles: [not, a, mapping]\n")
        result = run_reconcile(model_dir, ctx, settings=Settings(state_dir=str(tmp_state_dir)))
        assert result.exit_code == EXIT_VALIDATION
        assert json.loads(json.dumps(result.to_dict()))["error"].startswith("Validation error")

    def test_unknown_role(self, tmp_path, git_zsh_snapshot, ctx, tmp_state_dir):
        model_dir = self._model_dir(tmp_path, normalize(git_zsh_snapshot))
        result = run_reconcile(
            model_dir, ctx, roles=["browsers"],
            settings=Settings(state_dir=str(tmp_state_dir)), reprobe=None,
        )
        assert result.exit_code == EXIT_VALIDATION
        assert not (tmp_state_dir / LOCK_FILE).exists()

    def test_settings_role_selection(self, tmp_path, git_zsh_snapshot, ctx, tmp_state_dir):
        model_dir = self._model_dir(tmp_path, normalize(git_zsh_snapshot))
        settings = Settings(state_dir=str(tmp_state_dir), reconcile={"roles": ["shell"]})
        result = run_reconcile(model_dir, ctx, settings=settings, reprobe=None)
        assert result.report.roles == [Role.SHELL]
        assert result.report.results == []
