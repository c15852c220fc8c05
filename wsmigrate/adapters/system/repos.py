"""
Repository adapter — ensure-repo-enabled.

Four repository types, each with its own read and enable path:

    dnf             dnf repolist --enabled       → config-manager (dnf5 / dnf4 syntax)
    copr            dnf repolist --enabled       → dnf copr enable -y OWNER/PROJECT
    rpmfusion       rpm -q rpmfusion-X-release   → dnf install -y <release rpm url>
    flatpak-remote  flatpak remotes              → flatpak remote-add --if-not-exists
"""

from __future__ import annotations

import logging

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.adapters.shell.command import CommandResult
from wsmigrate.core.models.action import ActionKind, Receipt

logger = logging.getLogger(__name__)

REPO_TYPES = ("dnf", "copr", "rpmfusion", "flatpak-remote")

COPR_HUB = "copr.fedorainfracloud.org"

RPMFUSION_URL = (
    "https://mirrors.rpmfusion.org/{flavor}/fedora/"
    "rpmfusion-{flavor}-release-{release}.noarch.rpm"
)


def copr_repo_id(project: str) -> str:
    """``owner/project`` → the repo id dnf gives the enabled COPR."""
    owner, _, name = project.partition("/")
    return f"copr:{COPR_HUB}:{owner.replace('@', 'group_')}:{name}"


def parse_repolist(output: str) -> set[str]:
    """Repo ids from ``dnf repolist`` output (header line skipped)."""
    ids: set[str] = set()
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] == "repo":
            continue
        ids.add(parts[0])
    return ids


class RepoAdapter(Adapter):
    """Enable package repositories and Flatpak remotes.

    Desired value:
        type (str): one of dnf, copr, rpmfusion, flatpak-remote.
        url (str):  remote URL (flatpak-remote only).
    """

    @property
    def name(self) -> str:
        return "repo"

    @property
    def kind(self) -> ActionKind:
        return ActionKind.ENSURE_REPO_ENABLED

    def _type(self, actx: ActionContext) -> str:
        return actx.desired.get("type", "dnf")

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        repo_type = self._type(actx)
        if repo_type not in REPO_TYPES:
            return False, f"Unknown repo type '{repo_type}'. Valid: {', '.join(REPO_TYPES)}"
        if repo_type == "flatpak-remote" and not actx.desired.get("url"):
            return False, "Missing required desired value: 'url' for flatpak-remote"
        if repo_type == "copr" and "/" not in actx.action.target:
            return False, f"COPR project must be 'owner/project': {actx.action.target}"
        if repo_type == "rpmfusion" and actx.action.target not in ("free", "nonfree"):
            return False, f"RPM Fusion flavor must be free or nonfree: {actx.action.target}"
        return True, ""

    # ── Read ─────────────────────────────────────────────────────

    def check(self, actx: ActionContext) -> Decision:
        runner = actx.ctx.runner
        repo_type = self._type(actx)
        target = actx.action.target

        if repo_type == "rpmfusion":
            result = runner.run(["rpm", "-q", "--quiet", f"rpmfusion-{target}-release"])
            return Decision.satisfied() if result.ok else Decision.drift("release package missing")

        if repo_type == "flatpak-remote":
            result = runner.run(["flatpak", "remotes", "--columns=name"])
            if not result.ok:
                return Decision.drift(result.describe())
            names = {line.split()[0] for line in result.lines}
            return Decision.satisfied() if target in names else Decision.drift("remote missing")

        result = runner.run(["dnf", "repolist", "--enabled"])
        if not result.ok:
            return Decision.drift(result.describe())
        repo_id = copr_repo_id(target) if repo_type == "copr" else target
        if repo_id in parse_repolist(result.stdout):
            return Decision.satisfied()
        return Decision.drift("not enabled")

    # ── Enable ───────────────────────────────────────────────────

    def _enable_argv(self, actx: ActionContext) -> list[str] | None:
        repo_type = self._type(actx)
        target = actx.action.target
        caps = actx.ctx.capabilities

        if repo_type == "copr":
            return ["dnf", "copr", "enable", "-y", target]
        if repo_type == "flatpak-remote":
            return ["flatpak", "remote-add", "--if-not-exists", target, actx.desired["url"]]
        if repo_type == "rpmfusion":
            release = caps.os_version
            if not release.isdigit():
                return None
            url = RPMFUSION_URL.format(flavor=target, release=release)
            return ["dnf", "install", "-y", url]
        if caps.package_manager == "dnf5":
            return ["dnf", "config-manager", "setopt", f"{target}.enabled=1"]
        return ["dnf", "config-manager", "--set-enabled", target]

    def needs_privilege(self, actx: ActionContext) -> bool:
        return not actx.ctx.capabilities.is_root

    def suggested_command(self, actx: ActionContext) -> str | None:
        argv = self._enable_argv(actx)
        return self._sudo(argv) if argv else None

    def apply(self, actx: ActionContext) -> Receipt:
        argv = self._enable_argv(actx)
        if argv is None:
            return Receipt.failure(
                adapter=self.name,
                action_id=actx.action.id,
                error=f"Cannot build RPM Fusion URL for OS release '{actx.ctx.capabilities.os_version}'",
            )
        result: CommandResult = actx.ctx.runner.run(argv, privileged=True, timeout=600)
        return self._receipt(actx, result, output=f"enabled {actx.action.target}")
