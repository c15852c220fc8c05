"""
Shared test fixtures and configuration.

``FakeHost`` is a scripted CommandRunner: it keeps a tiny in-memory
machine (installed rpms, enabled repos, units, sysctl values) and
answers the commands the probe, capture units and adapters issue.
Anything it does not know falls through to ``responses``.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from wsmigrate.adapters.shell.command import CommandResult, CommandRunner
from wsmigrate.adapters.system.repos import copr_repo_id
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.models.capability import CapabilitySet
from wsmigrate.core.models.snapshot import (
    CaptureRecord,
    CaptureUnit,
    FilePayload,
    Finding,
    Manifest,
    Snapshot,
    UnitStatus,
)


class FakeHost(CommandRunner):
    """In-memory machine behind the CommandRunner interface."""

    def __init__(self, is_root: bool = False, sudo_ok: bool = True):
        super().__init__(is_root=is_root)
        self.sudo_ok = sudo_ok
        self.tools: set[str] = {"dnf", "sudo", "rpm", "systemctl", "sysctl", "getent", "uname"}
        self.rpms: set[str] = set()
        self.user_installed: dict[str, str] = {}     # name → from_repo
        self.repos: set[str] = {"fedora", "updates"}
        self.flatpak_remotes: dict[str, str] = {}
        self.flatpak_apps: set[str] = set()
        self.units: set[str] = set()
        self.user_units: set[str] = set()
        self.sysctl: dict[str, str] = {}
        self.responses: dict[str, CommandResult] = {}
        self.calls: list[list[str]] = []
        self.privileged_calls: list[list[str]] = []

    # ── CommandRunner interface ─────────────────────────────────

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.tools else None

    def run(self, argv, timeout=None, privileged=False, input_text=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        if privileged and not self.is_root:
            if not self.sudo_ok:
                return CommandResult(
                    argv=argv, returncode=1,
                    stderr="sudo: a password is required", privileged=True,
                )
            self.privileged_calls.append(argv)

        key = " ".join(argv)
        if key in self.responses:
            return self.responses[key]

        out = self._dispatch(argv)
        if out is None:
            return CommandResult(argv=argv, returncode=1, stderr=f"unscripted: {key}")
        code, stdout = out
        return CommandResult(argv=argv, returncode=code, stdout=stdout, privileged=privileged)

    # ── Scripted behavior ───────────────────────────────────────

    def _dispatch(self, argv: list[str]) -> tuple[int, str] | None:
        head = argv[:3]
        if argv == ["sudo", "-n", "true"]:
            return (0 if self.sudo_ok else 1), ""
        if argv[:1] == ["uname"]:
            return 0, "6.8.9-300.fc40.x86_64 x86_64\n"
        if head == ["rpm", "-q", "--quiet"]:
            return (0 if argv[3] in self.rpms else 1), ""
        if argv[:2] == ["rpm", "-qa"]:
            return 0, "".join(f"{p}\n" for p in sorted(self.rpms) if p.startswith("rpmfusion-"))
        if head == ["dnf", "install", "-y"]:
            self.rpms.add(argv[3])
            self.tools.add(argv[3])
            return 0, ""
        if argv[:2] == ["git", "clone"] and "git" in self.tools:
            Path(argv[-1]).mkdir(parents=True, exist_ok=True)
            return 0, ""
        if head == ["dnf", "repoquery", "--userinstalled"]:
            return 0, "".join(f"{n} {r}\n" for n, r in sorted(self.user_installed.items()))
        if head == ["dnf", "group", "list"]:
            return 0, ""
        if head == ["dnf", "repolist", "--enabled"]:
            return 0, "repo id  repo name\n" + "".join(f"{r}  {r}\n" for r in sorted(self.repos))
        if head == ["dnf", "config-manager", "--set-enabled"]:
            self.repos.add(argv[3])
            return 0, ""
        if head == ["dnf", "config-manager", "setopt"]:
            self.repos.add(argv[3].rsplit(".enabled=", 1)[0])
            return 0, ""
        if head == ["dnf", "copr", "enable"]:
            self.repos.add(copr_repo_id(argv[-1]))
            return 0, ""
        if head == ["flatpak", "remotes", "--columns=name"]:
            return 0, "".join(f"{n}\n" for n in sorted(self.flatpak_remotes))
        if head == ["flatpak", "remote-add", "--if-not-exists"]:
            self.flatpak_remotes[argv[3]] = argv[4]
            return 0, ""
        if argv[:2] == ["flatpak", "info"]:
            return (0 if argv[2] in self.flatpak_apps else 1), ""
        if argv[:2] == ["flatpak", "install"]:
            self.flatpak_apps.add(argv[-1])
            return 0, ""
        if argv[:1] == ["systemctl"]:
            return self._systemctl(argv[1:])
        if argv[:2] == ["sysctl", "-n"]:
            return (0, self.sysctl[argv[2]] + "\n") if argv[2] in self.sysctl else (255, "")
        if argv[:2] == ["sysctl", "-w"]:
            key, _, value = argv[2].partition("=")
            self.sysctl[key] = value
            return 0, ""
        return None

    def _systemctl(self, args: list[str]) -> tuple[int, str]:
        units = self.units
        if args[:1] == ["--user"]:
            units, args = self.user_units, args[1:]
        if args[:1] == ["is-enabled"]:
            return (0, "enabled\n") if args[1] in units else (1, "disabled\n")
        if args[:1] == ["enable"]:
            units.add(args[1])
            return 0, ""
        return 0, ""


def make_context(tmp_path: Path, host: FakeHost, **caps) -> ExecutionContext:
    home = tmp_path / "home" / "alice"
    root = tmp_path / "root"
    home.mkdir(parents=True, exist_ok=True)
    (root / "etc").mkdir(parents=True, exist_ok=True)
    (root / "run" / "systemd" / "system").mkdir(parents=True, exist_ok=True)
    (root / "etc" / "os-release").write_text('NAME="Fedora Linux"\nVERSION_ID=40\n')
    (root / "etc" / "hostname").write_text("workstation\n")
    return ExecutionContext(
        home=home,
        user="alice",
        runner=host,
        root=root,
        env={"SHELL": "/bin/zsh", "XDG_SESSION_TYPE": "wayland"},
        capabilities=CapabilitySet(**caps),
    )


def make_snapshot(*records: CaptureRecord, hostname: str = "workstation") -> Snapshot:
    return Snapshot(
        manifest=Manifest(
            hostname=hostname,
            date="2026-01-01T00:00:00Z",
            units={r.unit: UnitStatus.OK for r in records},
        ),
        records={r.unit: r for r in records},
    )


def file_payload(dest: str, data: bytes, mode: int = 0o644) -> tuple[str, FilePayload]:
    from wsmigrate.core.capture_units.base import relpath_for

    return relpath_for(dest), FilePayload(dest=dest, mode=mode, data=data)


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def ctx(tmp_path: Path, host: FakeHost) -> ExecutionContext:
    """Context for a dnf machine with passwordless sudo."""
    return make_context(
        tmp_path, host,
        package_manager="dnf5", systemd=True, can_escalate=True,
        hostname="workstation", os_version="40",
    )


@pytest.fixture
def git_zsh_snapshot() -> Snapshot:
    """Two user-installed packages, no enabled repositories."""
    return make_snapshot(
        CaptureRecord(unit=CaptureUnit.REPO, facts={"enabled": []}),
        CaptureRecord(unit=CaptureUnit.PACKAGE, facts={"user_installed": ["git", "zsh"]}),
    )


@pytest.fixture
def sudoers_finding() -> Finding:
    return Finding.make(CaptureUnit.SYSTEM, "/etc/sudoers.d/custom", "permission denied")


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir
