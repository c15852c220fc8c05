"""
Devtool unit — language package managers, editor extensions, container images.
"""

from __future__ import annotations

import re

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

GO_BIN = "~/go/bin"
CONFIG_FILES = (
    "~/.cargo/config.toml",
    "~/.tool-versions",
    "~/.gemrc",
    "~/.pyenv/version",
)

_CARGO_CRATE = re.compile(r"^(\S+) v[^\s:]+.*:$")


def npm_package(path: str) -> str | None:
    """Package name from one ``npm list --parseable`` path, scoped names kept."""
    _, sep, name = path.rpartition("node_modules/")
    return name if sep and name else None


class DevtoolCapturer(UnitCapturer):
    unit = CaptureUnit.DEVTOOL
    sources = (GO_BIN,) + CONFIG_FILES

    def capture(self, reader: UnitReader) -> None:
        for dest in CONFIG_FILES:
            reader.read_file(dest)
        if reader.caps.version_managers:
            reader.fact("version_managers", sorted(reader.caps.version_managers))

        self._python(reader)
        self._node(reader)
        self._rust(reader)
        self._misc(reader)
        self._containers(reader)
        self._go(reader)

    def _python(self, reader: UnitReader) -> None:
        freeze = reader.command(["pip", "list", "--user", "--format=freeze"])
        if freeze is not None and freeze.ok:
            reader.fact("pip_user", sorted(line.split("==")[0] for line in freeze.lines))
        pipx = reader.command(["pipx", "list", "--short"])
        if pipx is not None and pipx.ok:
            reader.fact("pipx", sorted(line.split()[0] for line in pipx.lines))

    def _node(self, reader: UnitReader) -> None:
        result = reader.command(["npm", "list", "-g", "--depth=0", "--parseable"])
        if result is None or not result.ok:
            return
        # first line is the global prefix itself
        names = [npm_package(line) for line in result.lines[1:]]
        reader.fact("npm_globals", sorted({n for n in names if n and n != "npm"}))

    def _rust(self, reader: UnitReader) -> None:
        installed = reader.command(["cargo", "install", "--list"])
        if installed is not None and installed.ok:
            crates = [m.group(1) for m in map(_CARGO_CRATE.match, installed.lines) if m]
            reader.fact("cargo_crates", sorted(crates))
        toolchains = reader.command(["rustup", "toolchain", "list"])
        if toolchains is not None and toolchains.ok:
            reader.fact("rustup_toolchains", sorted(line.split()[0] for line in toolchains.lines))

    def _misc(self, reader: UnitReader) -> None:
        gems = reader.command(["gem", "list", "--local", "--no-versions"])
        if gems is not None and gems.ok:
            reader.fact("gems", sorted(line for line in gems.lines if not line.startswith("*")))
        code = reader.command(["code", "--list-extensions"])
        if code is not None and code.ok:
            reader.fact("vscode_extensions", sorted(code.lines))

    def _containers(self, reader: UnitReader) -> None:
        images = []
        for engine in ("podman", "docker"):
            for line in reader.lines([engine, "images", "--format", "{{.Repository}}:{{.Tag}}"]):
                if "<none>" not in line:
                    images.append({"engine": engine, "image": line})
        if images:
            reader.fact("container_images", sorted(images, key=lambda i: (i["engine"], i["image"])))

    def _go(self, reader: UnitReader) -> None:
        for name in reader.list_dir(GO_BIN):
            reader.finding(
                f"{GO_BIN}/{name}",
                "Go binary; the source module path is not recorded",
                f"go install <module>/{name}@latest",
            )
