"""
Package adapter — ensure-package-set.

One action per package.  ``manager`` selects the backend:

    dnf      rpm -q --quiet NAME        → sudo dnf install -y NAME
    flatpak  flatpak info APP           → flatpak install -y REMOTE APP
"""

from __future__ import annotations

import logging

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.core.models.action import ActionKind, Receipt

logger = logging.getLogger(__name__)

MANAGERS = ("dnf", "flatpak")

# rpm → capabilities it brings, where the rpm name is not the command name
RPM_PROVIDES: dict[str, tuple[str, ...]] = {
    "cronie": ("tool:crontab",),
    "firewalld": ("firewalld", "tool:firewall-cmd"),
    "flatpak": ("flatpak", "tool:flatpak"),
    "gnupg2": ("tool:gpg",),
    "nodejs-npm": ("tool:npm",),
    "python3-pip": ("tool:pip",),
    "rubygems": ("tool:gem",),
    "shadow-utils": ("tool:usermod",),
    "util-linux-user": ("tool:chsh",),
}


class PackageAdapter(Adapter):
    """Install packages through dnf or Flatpak.

    Desired value:
        manager (str): ``dnf`` (default) or ``flatpak``.
        remote (str):  Flatpak remote to install from (default flathub).
    """

    @property
    def name(self) -> str:
        return "package"

    @property
    def kind(self) -> ActionKind:
        return ActionKind.ENSURE_PACKAGE_SET

    def _manager(self, actx: ActionContext) -> str:
        return actx.desired.get("manager", "dnf")

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        manager = self._manager(actx)
        if manager not in MANAGERS:
            return False, f"Unknown package manager '{manager}'. Valid: {', '.join(MANAGERS)}"
        if not actx.action.target or actx.action.target.startswith("-"):
            return False, f"Invalid package name: {actx.action.target!r}"
        return True, ""

    def check(self, actx: ActionContext) -> Decision:
        runner = actx.ctx.runner
        name = actx.action.target
        if self._manager(actx) == "flatpak":
            result = runner.run(["flatpak", "info", name])
        else:
            result = runner.run(["rpm", "-q", "--quiet", name])
        if result.ok:
            return Decision.satisfied("installed")
        return Decision.drift("not installed")

    def _install_argv(self, actx: ActionContext) -> list[str]:
        name = actx.action.target
        if self._manager(actx) == "flatpak":
            remote = actx.desired.get("remote") or "flathub"
            return ["flatpak", "install", "-y", "--noninteractive", remote, name]
        return ["dnf", "install", "-y", name]

    def needs_privilege(self, actx: ActionContext) -> bool:
        return self._manager(actx) == "dnf" and not actx.ctx.capabilities.is_root

    def suggested_command(self, actx: ActionContext) -> str | None:
        return self._sudo(self._install_argv(actx), privileged=self._manager(actx) == "dnf")

    def provides(self, actx: ActionContext) -> list[str]:
        if self._manager(actx) != "dnf":
            return []
        name = actx.action.target
        return list(RPM_PROVIDES.get(name, (f"tool:{name}",)))

    def apply(self, actx: ActionContext) -> Receipt:
        logger.info("Installing %s via %s", actx.action.target, self._manager(actx))
        result = actx.ctx.runner.run(
            self._install_argv(actx),
            privileged=self._manager(actx) == "dnf",
            timeout=1800,
        )
        return self._receipt(actx, result, output=f"installed {actx.action.target}")
