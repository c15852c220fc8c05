"""
Normalize rule table — one entry per capturable fact.

``FACT_RULES[(unit, key)]`` says which role a fact belongs to, how its
value must look (a pydantic-validatable type) and how it expands into
ConvergenceActions.  A rule without ``expand`` is a reference fact:
kept for humans, never applied.  Supporting a new fact means adding an
entry here; the normalize engine has no per-fact branches.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel

from wsmigrate.core.capture_units import shell_plugins
from wsmigrate.core.models.action import ActionKind, ConvergenceAction
from wsmigrate.core.models.snapshot import CaptureUnit, content_digest
from wsmigrate.core.models.target import Role

Blobs = dict[str, bytes]
Expander = Callable[[Any, Blobs], list[ConvergenceAction]]

# ── Stages: order of actions inside a role ──────────────────────

STAGE_BOOTSTRAP = 10      # dnf packages, version managers
STAGE_PLUGINS = 20
STAGE_SECONDARY = 30      # flatpak apps, rustup toolchains
STAGE_TOOLS = 40          # rpmfusion, language packages
STAGE_FILES = 50
STAGE_SOURCES = 60        # copr, flatpak remotes, sysctl
STAGE_ENABLE = 70         # repo enablement, services
STAGE_SETTINGS = 80       # timezone, crontab, firewall, groups, gpg
STAGE_LOGIN = 90
STAGE_MANUAL = 99


@dataclass(frozen=True)
class FactRule:
    role: Role
    kind: ActionKind | None = None
    schema: Any = Any
    expand: Expander | None = None
    stage: int = STAGE_SETTINGS
    requires: tuple[str, ...] = ()       # sibling facts that must also be present

    def __post_init__(self) -> None:
        if self.expand is not None and self.kind is None:
            raise ValueError(f"rule for role {self.role.value} expands but declares no kind")

    @property
    def is_reference(self) -> bool:
        return self.expand is None


def add_blob(blobs: Blobs, data: bytes) -> str:
    digest = content_digest(data)
    blobs.setdefault(digest, data)
    return digest


def _cmd(
    target: str,
    command: list[str],
    *,
    check: list[str] | None = None,
    creates: str | None = None,
    precondition: str | None = None,
    description: str = "",
    **extra: Any,
) -> ConvergenceAction:
    desired: dict[str, Any] = {"command": command}
    if check:
        desired["check"] = check
    if creates:
        desired["creates"] = creates
    desired.update({k: v for k, v in extra.items() if v is not None})
    return ConvergenceAction(
        kind=ActionKind.RUN_IDEMPOTENT_COMMAND,
        target=target,
        desired=desired,
        precondition=precondition,
        description=description,
    )


def _grep_check(listing: str, pattern: str, flags: str = "-qx") -> list[str]:
    return ["sh", "-c", f"{listing} | grep {flags} -- {shlex.quote(pattern)}"]


# ── Repos ────────────────────────────────────────────────────────


class FlatpakRemote(BaseModel):
    name: str
    url: str


def _repos_enabled(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_REPO_ENABLED, target=repo_id, desired={"type": "dnf"},
            precondition="pm:dnf", description=f"Enable repository {repo_id}",
        )
        for repo_id in value
    ]


def _copr(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_REPO_ENABLED, target=project, desired={"type": "copr"},
            precondition="pm:dnf", description=f"Enable COPR {project}",
        )
        for project in value
    ]


def _rpmfusion(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_REPO_ENABLED, target=flavor, desired={"type": "rpmfusion"},
            precondition="pm:dnf", description=f"Install RPM Fusion {flavor}",
        )
        for flavor in value
    ]


def _flatpak_remotes(value: list[FlatpakRemote], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_REPO_ENABLED, target=remote.name,
            desired={"type": "flatpak-remote", "url": remote.url},
            precondition="flatpak", description=f"Add Flatpak remote {remote.name}",
        )
        for remote in value
    ]


# ── Packages ─────────────────────────────────────────────────────


class FlatpakApp(BaseModel):
    app: str
    remote: str = "flathub"


def _dnf_packages(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_PACKAGE_SET, target=name, desired={"manager": "dnf"},
            precondition="pm:dnf", description=f"Install {name}",
        )
        for name in value
    ]


def _flatpak_apps(value: list[FlatpakApp], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_PACKAGE_SET, target=app.app,
            desired={"manager": "flatpak", "remote": app.remote},
            precondition="flatpak", description=f"Install Flatpak {app.app}",
        )
        for app in value
    ]


# ── Shell ────────────────────────────────────────────────────────

PluginManagerName = Literal["oh-my-zsh", "zinit", "antigen", "antidote", "none"]


def _plugin_manager(value: str, blobs: Blobs) -> list[ConvergenceAction]:
    pm = shell_plugins.BY_NAME[value]
    desired = pm.install_action()
    if desired is None:
        return []
    return [_cmd(
        pm.name, desired["command"], creates=desired["creates"],
        precondition=f"tool:{pm.requires_tool}" if pm.requires_tool else None,
        description=f"Install zsh plugin manager {pm.name}",
    )]


def _login_shell(value: str, blobs: Blobs) -> list[ConvergenceAction]:
    return [_cmd(
        "login-shell", ["chsh", "-s", value, "{user}"],
        check=["sh", "-c", "getent passwd {user} | cut -d: -f7"],
        expect=value, privileged=True, precondition="tool:chsh",
        description=f"Set login shell to {value}",
    )]


class GpgKeyring(BaseModel):
    armor: str
    fingerprints: list[str]


def _gpg_keyring(value: GpgKeyring, blobs: Blobs) -> list[ConvergenceAction]:
    if not value.fingerprints:
        return []
    return [_cmd(
        "gpg-public-keyring", ["gpg", "--batch", "--import"],
        check=["gpg", "--batch", "--list-keys", *value.fingerprints],
        stdin_blob=add_blob(blobs, value.armor.encode()), precondition="tool:gpg",
        description=f"Import {len(value.fingerprints)} public GPG keys",
    )]


# ── System ───────────────────────────────────────────────────────


def _sysctl(value: dict[str, str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        ConvergenceAction(
            kind=ActionKind.ENSURE_SYSCTL_VALUE, target=key, desired={"value": val},
            description=f"Set {key} = {val}",
        )
        for key, val in sorted(value.items())
    ]


def _services(scope: str) -> Expander:
    def expand(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
        return [
            ConvergenceAction(
                kind=ActionKind.ENSURE_SERVICE_STATE, target=unit,
                desired={"enabled": True, "scope": scope},
                precondition="systemd", description=f"Enable {scope} unit {unit}",
            )
            for unit in value
        ]
    return expand


def _firewall(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        _cmd(
            f"firewall:{service}",
            ["firewall-cmd", "--permanent", f"--add-service={service}"],
            check=["firewall-cmd", "--permanent", f"--query-service={service}"],
            privileged=True, check_privileged=True, precondition="firewalld",
            description=f"Allow {service} through the firewall",
        )
        for service in value
    ]


def _timezone(value: str, blobs: Blobs) -> list[ConvergenceAction]:
    return [_cmd(
        "timezone", ["timedatectl", "set-timezone", value],
        check=["timedatectl", "show", "-p", "Timezone", "--value"],
        expect=value, privileged=True, precondition="tool:timedatectl",
        description=f"Set timezone to {value}",
    )]


def _crontab(value: str, blobs: Blobs) -> list[ConvergenceAction]:
    return [_cmd(
        "crontab", ["crontab", "-"],
        check=["crontab", "-l"],
        stdin_blob=add_blob(blobs, value.encode()),
        expect_blob=add_blob(blobs, value.strip().encode()),
        precondition="tool:crontab", description="Install user crontab",
    )]


def _power_manager(value: str, blobs: Blobs) -> list[ConvergenceAction]:
    return _services("system")([f"{value}.service"], blobs)


# ── Devtools ─────────────────────────────────────────────────────

VersionManagerName = Literal["asdf", "nvm", "pyenv", "rustup", "sdkman"]

RUSTUP = "{home}/.cargo/bin/rustup"
CARGO = "{home}/.cargo/bin/cargo"

# name → (install argv, path it creates, required tool)
VERSION_MANAGER_INSTALLS: dict[str, tuple[list[str], str, str]] = {
    "asdf": (
        ["git", "clone", "--depth=1", "https://github.com/asdf-vm/asdf.git", "{home}/.asdf"],
        "~/.asdf", "git",
    ),
    "nvm": (
        ["sh", "-c", "curl -fsSL https://raw.githubusercontent.com/nvm-sh/nvm/master/install.sh"
                     " | PROFILE=/dev/null bash"],
        "~/.nvm", "curl",
    ),
    "pyenv": (["sh", "-c", "curl -fsSL https://pyenv.run | bash"], "~/.pyenv", "curl"),
    "rustup": (
        ["sh", "-c", "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs"
                     " | sh -s -- -y --no-modify-path"],
        "~/.cargo/bin/rustup", "curl",
    ),
    "sdkman": (
        ["sh", "-c", "curl -fsSL 'https://get.sdkman.io?rcupdate=false' | bash"],
        "~/.sdkman", "curl",
    ),
}


def _version_managers(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    actions = []
    for name in value:
        command, creates, tool = VERSION_MANAGER_INSTALLS[name]
        actions.append(_cmd(
            f"version-manager:{name}", command, creates=creates, precondition=f"tool:{tool}",
            description=f"Install {name}", provides=[f"vm:{name}"],
        ))
    return actions


def _per_item(
    prefix: str,
    command: Callable[[str], list[str]],
    precondition: str,
    check: Callable[[str], list[str]] | None = None,
    creates: Callable[[str], str] | None = None,
) -> Expander:
    def expand(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
        return [
            _cmd(
                f"{prefix}:{item}", command(item),
                check=check(item) if check else None,
                creates=creates(item) if creates else None,
                precondition=precondition, description=f"Install {prefix} {item}",
            )
            for item in value
        ]
    return expand


class ContainerImage(BaseModel):
    engine: Literal["podman", "docker"]
    image: str


def _container_images(value: list[ContainerImage], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        _cmd(
            f"{img.engine}:{img.image}", [img.engine, "pull", img.image],
            check=[img.engine, "image", "inspect", img.image],
            precondition=f"tool:{img.engine}", description=f"Pull {img.image}",
        )
        for img in value
    ]


# ── Audio ────────────────────────────────────────────────────────


def _groups(value: list[str], blobs: Blobs) -> list[ConvergenceAction]:
    return [
        _cmd(
            f"group:{group}", ["usermod", "-aG", group, "{user}"],
            check=_grep_check("id -nG {user} | tr ' ' '\\n'", group),
            privileged=True, precondition="tool:usermod",
            description=f"Add user to group {group}",
        )
        for group in value
    ]


# ── The table ────────────────────────────────────────────────────

P = CaptureUnit

FACT_RULES: dict[tuple[CaptureUnit, str], FactRule] = {
    # repo
    (P.REPO, "enabled"): FactRule(Role.REPOS, ActionKind.ENSURE_REPO_ENABLED, list[str],
                                  _repos_enabled, STAGE_ENABLE),
    (P.REPO, "copr"): FactRule(Role.REPOS, ActionKind.ENSURE_REPO_ENABLED, list[str],
                               _copr, STAGE_SOURCES),
    (P.REPO, "rpmfusion"): FactRule(Role.REPOS, ActionKind.ENSURE_REPO_ENABLED,
                                    list[Literal["free", "nonfree"]], _rpmfusion, STAGE_TOOLS),
    (P.REPO, "flatpak_remotes"): FactRule(Role.REPOS, ActionKind.ENSURE_REPO_ENABLED,
                                          list[FlatpakRemote], _flatpak_remotes, STAGE_SOURCES),
    # package
    (P.PACKAGE, "user_installed"): FactRule(Role.PACKAGES, ActionKind.ENSURE_PACKAGE_SET,
                                            list[str], _dnf_packages, STAGE_BOOTSTRAP),
    (P.PACKAGE, "origins"): FactRule(Role.PACKAGES, schema=dict[str, str],
                                     requires=("user_installed",)),
    (P.PACKAGE, "flatpak_apps"): FactRule(Role.PACKAGES, ActionKind.ENSURE_PACKAGE_SET,
                                          list[FlatpakApp], _flatpak_apps, STAGE_SECONDARY),
    # shell
    (P.SHELL, "plugin_manager"): FactRule(Role.SHELL, ActionKind.RUN_IDEMPOTENT_COMMAND,
                                          PluginManagerName, _plugin_manager, STAGE_PLUGINS),
    (P.SHELL, "omz_active"): FactRule(Role.SHELL, schema=dict[str, Any],
                                      requires=("plugin_manager",)),
    (P.SHELL, "login_shell"): FactRule(Role.SHELL, ActionKind.RUN_IDEMPOTENT_COMMAND, str,
                                       _login_shell, STAGE_LOGIN),
    # dotfile
    (P.DOTFILE, "gpg_public_keyring"): FactRule(Role.SHELL, ActionKind.RUN_IDEMPOTENT_COMMAND,
                                                GpgKeyring, _gpg_keyring, STAGE_SETTINGS),
    # desktop
    (P.DESKTOP, "plasma_version"): FactRule(Role.DESKTOP, schema=str),
    (P.DESKTOP, "color_scheme"): FactRule(Role.DESKTOP, schema=str),
    (P.DESKTOP, "cursor_theme"): FactRule(Role.DESKTOP, schema=str),
    # system
    (P.SYSTEM, "sysctl"): FactRule(Role.SYSTEM, ActionKind.ENSURE_SYSCTL_VALUE, dict[str, str],
                                   _sysctl, STAGE_SOURCES),
    (P.SYSTEM, "services_enabled"): FactRule(Role.SYSTEM, ActionKind.ENSURE_SERVICE_STATE,
                                             list[str], _services("system"), STAGE_ENABLE),
    (P.SYSTEM, "user_services_enabled"): FactRule(Role.SYSTEM, ActionKind.ENSURE_SERVICE_STATE,
                                                  list[str], _services("user"), STAGE_ENABLE),
    (P.SYSTEM, "user_timers_enabled"): FactRule(Role.SYSTEM, ActionKind.ENSURE_SERVICE_STATE,
                                                list[str], _services("user"), STAGE_ENABLE),
    (P.SYSTEM, "firewall_services"): FactRule(Role.SYSTEM, ActionKind.RUN_IDEMPOTENT_COMMAND,
                                              list[str], _firewall, STAGE_SETTINGS),
    (P.SYSTEM, "timezone"): FactRule(Role.SYSTEM, ActionKind.RUN_IDEMPOTENT_COMMAND, str,
                                     _timezone, STAGE_SETTINGS),
    (P.SYSTEM, "locale"): FactRule(Role.SYSTEM, schema=str),
    (P.SYSTEM, "crontab"): FactRule(Role.SYSTEM, ActionKind.RUN_IDEMPOTENT_COMMAND, str,
                                    _crontab, STAGE_SETTINGS),
    # devtool
    (P.DEVTOOL, "version_managers"): FactRule(Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND,
                                              list[VersionManagerName], _version_managers,
                                              STAGE_BOOTSTRAP),
    (P.DEVTOOL, "rustup_toolchains"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item(
            "rustup-toolchain", lambda t: [RUSTUP, "toolchain", "install", t], "vm:rustup",
            check=lambda t: _grep_check(f"{RUSTUP} toolchain list", t, "-q"),
        ),
        STAGE_SECONDARY,
    ),
    (P.DEVTOOL, "pip_user"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item("pip", lambda p: ["pip", "install", "--user", p], "tool:pip",
                  check=lambda p: ["pip", "show", "--quiet", p]),
        STAGE_TOOLS,
    ),
    (P.DEVTOOL, "pipx"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item("pipx", lambda p: ["pipx", "install", p], "tool:pipx",
                  creates=lambda p: f"~/.local/share/pipx/venvs/{p}"),
        STAGE_TOOLS,
    ),
    (P.DEVTOOL, "npm_globals"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item("npm", lambda p: ["npm", "install", "-g", p], "tool:npm",
                  check=lambda p: ["npm", "list", "-g", "--depth=0", p]),
        STAGE_TOOLS,
    ),
    (P.DEVTOOL, "cargo_crates"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item("cargo", lambda c: [CARGO, "install", c], "vm:rustup",
                  check=lambda c: _grep_check(f"{CARGO} install --list", f"^{c} v", "-q")),
        STAGE_TOOLS,
    ),
    (P.DEVTOOL, "gems"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item("gem", lambda g: ["gem", "install", "--user-install", g], "tool:gem",
                  check=lambda g: ["gem", "list", "-i", f"^{g}$"]),
        STAGE_TOOLS,
    ),
    (P.DEVTOOL, "vscode_extensions"): FactRule(
        Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
        _per_item("vscode", lambda e: ["code", "--install-extension", e], "tool:code",
                  check=lambda e: _grep_check("code --list-extensions", e, "-qix")),
        STAGE_TOOLS,
    ),
    (P.DEVTOOL, "container_images"): FactRule(Role.DEVTOOLS, ActionKind.RUN_IDEMPOTENT_COMMAND,
                                              list[ContainerImage], _container_images,
                                              STAGE_TOOLS),
    # audio
    (P.AUDIO, "audio_stack"): FactRule(Role.AUDIO, schema=str),
    (P.AUDIO, "groups"): FactRule(Role.AUDIO, ActionKind.RUN_IDEMPOTENT_COMMAND, list[str],
                                  _groups, STAGE_SETTINGS),
    # hardware
    (P.HARDWARE, "cpu_model"): FactRule(Role.HARDWARE, schema=str),
    (P.HARDWARE, "pci_devices"): FactRule(Role.HARDWARE, schema=list[str]),
    (P.HARDWARE, "usb_devices"): FactRule(Role.HARDWARE, schema=list[str]),
    (P.HARDWARE, "modules"): FactRule(Role.HARDWARE, schema=list[str]),
    (P.HARDWARE, "kernel_cmdline"): FactRule(Role.HARDWARE, schema=str),
    (P.HARDWARE, "gpu_vendor"): FactRule(Role.HARDWARE, schema=str),
    (P.HARDWARE, "power_manager"): FactRule(Role.HARDWARE, ActionKind.ENSURE_SERVICE_STATE,
                                            Literal["tlp", "power-profiles-daemon"],
                                            _power_manager, STAGE_ENABLE),
}

# precondition for every ensure-file-present action of a unit
FILE_PRECONDITIONS: dict[CaptureUnit, str] = {
    CaptureUnit.DESKTOP: "desktop_shell",
    CaptureUnit.AUDIO: "audio_stack",
}
