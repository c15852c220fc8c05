"""
CapabilitySet — what optional subsystems the running machine has.

Produced by the capability probe and threaded through capture and
reconciliation via the ExecutionContext.  Absence of a capability is a
normal value, never an error.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal

from pydantic import BaseModel, Field


class CapabilitySet(BaseModel):
    """Facts about the host that drive skip logic downstream."""

    # ── Packaging ────────────────────────────────────────────────
    package_manager: Literal["dnf5", "dnf", "none"] = "none"
    flatpak: bool = False
    snap: bool = False

    # ── Init / services ──────────────────────────────────────────
    systemd: bool = False
    firewalld: bool = False

    # ── Desktop ──────────────────────────────────────────────────
    desktop_shell: str | None = None          # "plasma" or None
    desktop_shell_version: str | None = None
    desktop_shell_major: int | None = None
    display_server: str = "unknown"           # wayland, x11, unknown

    # ── Audio / developer tooling ────────────────────────────────
    audio_stack: str | None = None            # pipewire, pulseaudio, None
    version_managers: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)

    # ── Privilege ────────────────────────────────────────────────
    is_root: bool = False
    can_escalate: bool = False

    # ── Identity ─────────────────────────────────────────────────
    hostname: str = "unknown"
    os_version: str = "unknown"
    kernel: str = "unknown"
    arch: str = "unknown"

    def has(self, name: str) -> bool:
        """Resolve a precondition name against this capability set.

        Recognised names: ``audio_stack``, ``desktop_shell``, ``systemd``,
        ``firewalld``, ``flatpak``, ``snap``, ``pm:dnf`` (any dnf variant),
        ``pm:<variant>``, ``tool:<cli>`` and ``vm:<manager>``.  Unknown
        names resolve to False.
        """
        if name.startswith("tool:"):
            return name[5:] in self.tools
        if name.startswith("vm:"):
            return name[3:] in self.version_managers
        if name.startswith("pm:"):
            variant = name[3:]
            if variant == "dnf":
                return self.package_manager in ("dnf", "dnf5")
            return self.package_manager == variant
        if name == "audio_stack":
            return self.audio_stack is not None
        if name == "desktop_shell":
            return self.desktop_shell is not None
        if name in ("systemd", "firewalld", "flatpak", "snap"):
            return bool(getattr(self, name))
        return False

    def with_provided(self, names: Iterable[str]) -> CapabilitySet:
        """Copy that also has the capabilities named in ``names``.

        Names use the precondition vocabulary of ``has``.  ``pm:`` and
        unknown names are ignored: no action installs a package manager.
        """
        tools = set(self.tools)
        managers = set(self.version_managers)
        flags: dict[str, bool] = {}
        for name in names:
            if name.startswith("tool:"):
                tools.add(name[5:])
            elif name.startswith("vm:"):
                managers.add(name[3:])
            elif name in ("systemd", "firewalld", "flatpak", "snap"):
                flags[name] = True
        if tools == set(self.tools) and managers == set(self.version_managers) and not flags:
            return self
        return self.model_copy(
            update={"tools": sorted(tools), "version_managers": sorted(managers), **flags}
        )
