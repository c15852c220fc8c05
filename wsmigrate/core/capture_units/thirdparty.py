"""
Third-party unit — software installed outside any package manager.

User-owned locations are captured verbatim.  System-wide locations
(/usr/local/bin, /opt) are listed as Findings: their provenance is
unknown and they need a human to reinstall them properly.
"""

from __future__ import annotations

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

SYSTEM_LOCATIONS = ("/usr/local/bin", "/opt")
USER_BIN = "~/.local/bin"
USER_TREES = ("~/opt", "~/Applications")
DESKTOP_FILES = "~/.local/share/applications"


class ThirdpartyCapturer(UnitCapturer):
    unit = CaptureUnit.THIRDPARTY
    sources = SYSTEM_LOCATIONS + (USER_BIN, DESKTOP_FILES) + USER_TREES

    def capture(self, reader: UnitReader) -> None:
        for base in SYSTEM_LOCATIONS:
            for name in reader.list_dir(base):
                reader.finding(
                    f"{base}/{name}",
                    "installed outside the package manager; reinstall from its vendor",
                )

        # scripts (shebang) are owned by the shell unit
        for name in reader.list_dir(USER_BIN):
            dest = f"{USER_BIN}/{name}"
            if reader.peek(dest) != b"#!":
                reader.read_file(dest)

        for tree in USER_TREES:
            reader.read_tree(tree)
        self._desktop_files(reader)

    def _desktop_files(self, reader: UnitReader) -> None:
        for name in reader.list_dir(DESKTOP_FILES):
            if not name.endswith(".desktop"):
                continue
            dest = f"{DESKTOP_FILES}/{name}"
            owner = reader.command(["rpm", "-qf", str(reader.ctx.host_path(dest))])
            if owner is None or not owner.ok:
                reader.read_file(dest)
