"""
Repository unit — enabled dnf repos, COPR projects, RPM Fusion, Flatpak remotes.
"""

from __future__ import annotations

import fnmatch
import re

from wsmigrate.adapters.system.repos import parse_repolist
from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

REPO_DIR = "/etc/yum.repos.d"

# .repo files that are recreated by other actions or ship with the OS
_SKIP_REPO_FILES = ("_copr*", "rpmfusion-*", "fedora*.repo")

_COPR_ID = re.compile(r"^copr:copr\.fedorainfracloud\.org:([^:]+):(.+)$")
_RPMFUSION_PKG = re.compile(r"^rpmfusion-(free|nonfree)-release")


def copr_project(repo_id: str) -> str | None:
    """``copr:copr.fedorainfracloud.org:owner:project`` → ``owner/project``."""
    match = _COPR_ID.match(repo_id)
    if not match:
        return None
    owner = match.group(1)
    if owner.startswith("group_"):
        owner = "@" + owner[len("group_"):]
    return f"{owner}/{match.group(2)}"


class RepoCapturer(UnitCapturer):
    unit = CaptureUnit.REPO
    sources = (REPO_DIR,)

    def capture(self, reader: UnitReader) -> None:
        if reader.caps.package_manager != "none":
            self._dnf(reader)
        if reader.caps.flatpak:
            self._flatpak(reader)

        reader.read_tree(
            REPO_DIR,
            keep=lambda rel: rel.endswith(".repo") and "/" not in rel
            and not any(fnmatch.fnmatch(rel, p) for p in _SKIP_REPO_FILES),
        )

    def _dnf(self, reader: UnitReader) -> None:
        result = reader.command(["dnf", "repolist", "--enabled"])
        if result is not None and not result.ok:
            reader.finding("dnf repolist", f"could not list enabled repos: {result.describe()}")
        repo_ids = sorted(parse_repolist(result.stdout)) if result is not None and result.ok else []

        enabled, copr = [], []
        for repo_id in repo_ids:
            project = copr_project(repo_id)
            if project:
                copr.append(project)
            elif not repo_id.startswith("rpmfusion-"):
                enabled.append(repo_id)
        reader.fact("enabled", enabled)
        reader.fact("copr", sorted(copr))

        flavors = set()
        for line in reader.lines(["rpm", "-qa", "--qf", "%{NAME}\\n", "rpmfusion-*-release"]):
            match = _RPMFUSION_PKG.match(line)
            if match:
                flavors.add(match.group(1))
        reader.fact("rpmfusion", sorted(flavors))

    def _flatpak(self, reader: UnitReader) -> None:
        remotes = []
        for line in reader.lines(["flatpak", "remotes", "--columns=name,url"]):
            parts = line.split()
            if len(parts) >= 2:
                remotes.append({"name": parts[0], "url": parts[1]})
        reader.fact("flatpak_remotes", sorted(remotes, key=lambda r: r["name"]))