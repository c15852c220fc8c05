"""
Capability probe — what optional subsystems does this machine have?

Pure read.  Every individual probe is guarded: a probe that cannot
answer leaves the capability at its "absent" default, it never fails
the run.  Absence is a normal value.
"""

from __future__ import annotations

import logging
import re

from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.models.capability import CapabilitySet

logger = logging.getLogger(__name__)

# CLIs whose presence drives action preconditions (``tool:<name>``)
KNOWN_TOOLS = (
    "chsh",
    "code",
    "crontab",
    "curl",
    "docker",
    "firewall-cmd",
    "gem",
    "git",
    "go",
    "gpg",
    "localectl",
    "npm",
    "pip",
    "pipx",
    "podman",
    "timedatectl",
    "usermod",
    "zsh",
)

# name → (binary on PATH, marker directory under home)
VERSION_MANAGERS: dict[str, tuple[str | None, str | None]] = {
    "asdf": ("asdf", "~/.asdf"),
    "nvm": (None, "~/.nvm"),
    "pyenv": ("pyenv", "~/.pyenv"),
    "rustup": ("rustup", "~/.cargo/bin/rustup"),
    "sdkman": (None, "~/.sdkman"),
}

_VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


def probe(ctx: ExecutionContext) -> CapabilitySet:
    """Detect capabilities of the machine ``ctx`` points at."""
    caps: dict = {}
    for step in (_packaging, _init, _desktop, _audio, _devtools, _privilege, _identity):
        try:
            caps.update(step(ctx))
        except Exception as e:
            logger.warning("Capability probe %s failed: %s", step.__name__.lstrip("_"), e)

    result = CapabilitySet(**caps)
    logger.debug(
        "Probed: pm=%s desktop=%s audio=%s root=%s escalate=%s",
        result.package_manager, result.desktop_shell, result.audio_stack,
        result.is_root, result.can_escalate,
    )
    return result


# ── Individual probes ───────────────────────────────────────────


def _packaging(ctx: ExecutionContext) -> dict:
    runner = ctx.runner
    if runner.which("dnf5"):
        pm = "dnf5"
    elif runner.which("dnf"):
        # On Fedora 41+ plain ``dnf`` is dnf5
        version = runner.run(["dnf", "--version"], timeout=15)
        pm = "dnf5" if "dnf5" in version.stdout.lower() else "dnf"
    else:
        pm = "none"
    return {
        "package_manager": pm,
        "flatpak": runner.which("flatpak") is not None,
        "snap": runner.which("snap") is not None,
    }


def _init(ctx: ExecutionContext) -> dict:
    return {
        "systemd": ctx.host_path("/run/systemd/system").is_dir(),
        "firewalld": ctx.runner.which("firewall-cmd") is not None,
    }


def _desktop(ctx: ExecutionContext) -> dict:
    out: dict = {}
    session = ctx.env.get("XDG_SESSION_TYPE", "").lower()
    out["display_server"] = session if session in ("wayland", "x11") else "unknown"

    current = ctx.env.get("XDG_CURRENT_DESKTOP", "")
    if "KDE" in current.upper() or ctx.runner.which("plasmashell"):
        out["desktop_shell"] = "plasma"
        result = ctx.runner.run(["plasmashell", "--version"], timeout=15)
        match = _VERSION_RE.search(result.stdout)
        if match:
            out["desktop_shell_version"] = match.group(1)
            out["desktop_shell_major"] = int(match.group(1).split(".")[0])
    return out


def _audio(ctx: ExecutionContext) -> dict:
    if ctx.runner.which("pipewire"):
        return {"audio_stack": "pipewire"}
    if ctx.runner.which("pulseaudio"):
        return {"audio_stack": "pulseaudio"}
    return {}


def _devtools(ctx: ExecutionContext) -> dict:
    managers = []
    for name, (binary, marker) in sorted(VERSION_MANAGERS.items()):
        if (binary and ctx.runner.which(binary)) or (marker and ctx.host_path(marker).exists()):
            managers.append(name)
    tools = [t for t in KNOWN_TOOLS if ctx.runner.which(t)]
    return {"version_managers": managers, "tools": tools}


def _privilege(ctx: ExecutionContext) -> dict:
    is_root = ctx.runner.is_root
    can_escalate = is_root
    if not is_root and ctx.runner.which("sudo"):
        can_escalate = ctx.runner.run(["sudo", "-n", "true"], timeout=10).ok
    return {"is_root": is_root, "can_escalate": can_escalate}


def _identity(ctx: ExecutionContext) -> dict:
    out: dict = {}
    os_release = ctx.host_path("/etc/os-release")
    if os_release.is_file():
        fields = parse_os_release(os_release.read_text(encoding="utf-8", errors="replace"))
        if fields.get("VERSION_ID"):
            out["os_version"] = fields["VERSION_ID"]

    uname = ctx.runner.run(["uname", "-r", "-m"], timeout=10)
    if uname.ok and len(uname.output.split()) == 2:
        out["kernel"], out["arch"] = uname.output.split()

    hostname = ctx.env.get("HOSTNAME", "")
    hostname_file = ctx.host_path("/etc/hostname")
    if not hostname and hostname_file.is_file():
        hostname = hostname_file.read_text(encoding="utf-8", errors="replace").strip()
    if not hostname:
        hostname = ctx.runner.run(["hostname"], timeout=10).output
    if hostname:
        out["hostname"] = hostname
    return out


def parse_os_release(text: str) -> dict[str, str]:
    """KEY=value lines of /etc/os-release, quotes stripped."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() and not key.startswith("#"):
            fields[key.strip()] = value.strip().strip('"').strip("'")
    return fields
