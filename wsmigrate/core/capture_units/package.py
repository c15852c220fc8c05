"""
Package unit — user-installed packages, Flatpak apps, and the oddities.

Local RPMs, Snap packages and removed default packages cannot be
reproduced from a repository name alone, so each becomes a Finding.
Removed-default detection compares installed group membership with
the installed set; group contents drift between OS releases, so this
is best effort and never more than a Finding.
"""

from __future__ import annotations

import logging
import re

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

logger = logging.getLogger(__name__)

FLATPAK_OVERRIDES = "~/.local/share/flatpak/overrides"

# from_repo values that mean "not from any repository"
LOCAL_ORIGINS = frozenset({"@commandline", "commandline", "<unknown>", "@System", ""})

_GROUP_PKG_HEADER = re.compile(r"^(Mandatory|Default) [Pp]ackages\s*:\s*(.*)$")
_GROUP_PKG_CONT = re.compile(r"^\s+:\s*(.*)$")
_NOT_INSTALLED = re.compile(r"^package (\S+) is not installed$")


class PackageCapturer(UnitCapturer):
    unit = CaptureUnit.PACKAGE
    sources = (FLATPAK_OVERRIDES,)

    def capture(self, reader: UnitReader) -> None:
        if reader.caps.package_manager != "none":
            self._user_installed(reader)
            self._removed_defaults(reader)
        if reader.caps.flatpak:
            self._flatpak(reader)
        if reader.caps.snap:
            self._snaps(reader)

    def _user_installed(self, reader: UnitReader) -> None:
        result = reader.command([
            "dnf", "repoquery", "--userinstalled", "--queryformat", "%{name} %{from_repo}\\n",
        ])
        if result is None:
            return
        if not result.ok:
            reader.finding("dnf repoquery --userinstalled", f"could not list packages: {result.describe()}")
            return

        origins: dict[str, str] = {}
        for line in result.lines:
            name, _, raw = line.partition(" ")
            raw = raw.strip()
            if raw in LOCAL_ORIGINS:
                reader.finding(
                    name,
                    "installed from a local RPM file; no repository provides it",
                    f"sudo dnf install ./{name}-*.rpm",
                )
                continue
            origin = raw.lstrip("@")
            # packages from the installer media are plain Fedora packages
            origins[name] = "fedora" if origin == "anaconda" else origin

        logger.debug("Found %d user-installed packages", len(origins))
        reader.fact("user_installed", sorted(origins))
        reader.fact("origins", dict(sorted(origins.items())))

    def _removed_defaults(self, reader: UnitReader) -> None:
        groups = [line.split()[0] for line in reader.lines(
            ["dnf", "group", "list", "--installed", "--hidden"]
        )[1:]]
        if not groups:
            return
        info = reader.command(["dnf", "group", "info", *groups])
        if info is None or not info.ok:
            return

        wanted: set[str] = set()
        in_list = False
        for line in info.stdout.splitlines():
            header = _GROUP_PKG_HEADER.match(line)
            if header:
                in_list = True
                if header.group(2).strip():
                    wanted.add(header.group(2).split()[0])
                continue
            cont = _GROUP_PKG_CONT.match(line) if in_list else None
            if cont:
                if cont.group(1).strip():
                    wanted.add(cont.group(1).split()[0])
                continue
            in_list = False

        if not wanted:
            return
        check = reader.command(["rpm", "-q", *sorted(wanted)])
        if check is None:
            return
        for line in check.lines:
            missing = _NOT_INSTALLED.match(line)
            if missing:
                reader.finding(
                    missing.group(1),
                    "default package removed on the source machine",
                    f"sudo dnf remove {missing.group(1)}",
                )

    def _flatpak(self, reader: UnitReader) -> None:
        apps = []
        for line in reader.lines(["flatpak", "list", "--app", "--columns=application,origin"]):
            parts = line.split()
            if parts:
                apps.append({"app": parts[0], "remote": parts[1] if len(parts) > 1 else "flathub"})
        reader.fact("flatpak_apps", sorted(apps, key=lambda a: (a["app"], a["remote"])))
        reader.read_tree(FLATPAK_OVERRIDES)

    def _snaps(self, reader: UnitReader) -> None:
        for line in reader.lines(["snap", "list"])[1:]:
            name = line.split()[0]
            if name in ("core", "core18", "core20", "core22", "core24", "snapd", "bare"):
                continue
            reader.finding(name, "Snap package; no automated install path", f"sudo snap install {name}")
