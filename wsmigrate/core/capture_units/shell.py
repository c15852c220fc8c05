"""
Shell unit — zsh configuration, plugin manager, prompt, user scripts.
"""

from __future__ import annotations

import logging

from wsmigrate.core.capture_units import shell_plugins
from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

logger = logging.getLogger(__name__)

RC_FILES = (
    "~/.zshrc",
    "~/.zprofile",
    "~/.zshenv",
    "~/.zlogin",
    "~/.zlogout",
    "~/.zsh_aliases",
    "~/.zsh_functions",
    "~/.p10k.zsh",
    "~/.config/starship.toml",
)

RC_DIRS = ("~/.zsh", "~/.zfunc", "~/.zsh.d")

SCRIPT_DIRS = ("~/bin", "~/.local/bin")


def _plugin_sources() -> tuple[str, ...]:
    paths: list[str] = []
    for pm in shell_plugins.PLUGIN_MANAGERS:
        paths.extend(pm.markers)
        paths.extend(pm.extra_trees)
        paths.extend(pm.extra_files)
    return tuple(dict.fromkeys(paths))


class ShellCapturer(UnitCapturer):
    unit = CaptureUnit.SHELL
    sources = RC_FILES + RC_DIRS + SCRIPT_DIRS + _plugin_sources()

    def capture(self, reader: UnitReader) -> None:
        for dest in RC_FILES:
            reader.read_file(dest)
        for dest in RC_DIRS:
            reader.read_tree(dest)
        self._scripts(reader)
        self._plugins(reader)
        self._login_shell(reader)

    def _scripts(self, reader: UnitReader) -> None:
        """Top-level files starting with a shebang; binaries belong to thirdparty."""
        for base in SCRIPT_DIRS:
            for name in reader.list_dir(base):
                dest = f"{base}/{name}"
                if reader.peek(dest) == b"#!":
                    reader.read_file(dest)

    def _plugins(self, reader: UnitReader) -> None:
        pm = shell_plugins.detect(reader.exists)
        reader.fact("plugin_manager", pm.name)
        for tree in pm.extra_trees:
            reader.read_tree(tree, excludes=pm.tree_excludes)
        for dest in pm.extra_files:
            reader.read_file(dest)

        if pm.name == "oh-my-zsh":
            zshrc = reader.read_text("~/.zshrc")
            if zshrc:
                reader.fact("omz_active", shell_plugins.omz_active(zshrc))
        logger.debug("Plugin manager: %s", pm.name)

    def _login_shell(self, reader: UnitReader) -> None:
        entry = reader.lines(["getent", "passwd", reader.ctx.user])
        fields = entry[0].split(":") if entry else []
        if len(fields) >= 7 and fields[6]:
            reader.fact("login_shell", fields[6])
        elif reader.ctx.env.get("SHELL"):
            reader.fact("login_shell", reader.ctx.env["SHELL"])
