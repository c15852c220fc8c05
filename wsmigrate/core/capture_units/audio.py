"""
Audio unit — PipeWire/WirePlumber config, JACK, realtime limits, groups.
"""

from __future__ import annotations

import re

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

CONFIG_TREES = (
    "~/.config/pipewire",
    "~/.config/wireplumber",
    "/etc/pipewire",
    "/etc/wireplumber",
)

LIMITS_DIR = "/etc/security/limits.d"
UDEV_RULES = "/etc/udev/rules.d"

AUDIO_GROUPS = frozenset({"audio", "realtime", "pipewire", "jackuser"})

PLUGIN_PATH_VARS = ("LADSPA_PATH", "LV2_PATH", "VST_PATH", "VST3_PATH", "CLAP_PATH", "DSSI_PATH")

_AUDIO_RULE = re.compile(r"audio|sound|midi", re.IGNORECASE)
_LIMITS_RULE = re.compile(r"realtime|audio|rtprio|memlock", re.IGNORECASE)


def is_audio_rule(name: str) -> bool:
    """udev rule files owned by this unit rather than the system unit."""
    return bool(_AUDIO_RULE.search(name))


class AudioCapturer(UnitCapturer):
    unit = CaptureUnit.AUDIO
    sources = CONFIG_TREES + ("~/.jackdrc", LIMITS_DIR, UDEV_RULES)

    def capture(self, reader: UnitReader) -> None:
        if reader.caps.audio_stack:
            reader.fact("audio_stack", reader.caps.audio_stack)

        for tree in CONFIG_TREES:
            reader.read_tree(tree)
        reader.read_file("~/.jackdrc")

        for name in reader.list_dir(LIMITS_DIR):
            text = reader.read_text(f"{LIMITS_DIR}/{name}") or ""
            if _LIMITS_RULE.search(name) or _LIMITS_RULE.search(text):
                reader.read_file(f"{LIMITS_DIR}/{name}")
        for name in reader.list_dir(UDEV_RULES):
            if name.endswith(".rules") and is_audio_rule(name):
                reader.read_file(f"{UDEV_RULES}/{name}")

        self._groups(reader)
        self._plugin_paths(reader)

    def _groups(self, reader: UnitReader) -> None:
        result = reader.command(["id", "-nG", reader.ctx.user])
        if result is None or not result.ok:
            return
        reader.fact("groups", sorted(AUDIO_GROUPS.intersection(result.output.split())))

    def _plugin_paths(self, reader: UnitReader) -> None:
        for var in PLUGIN_PATH_VARS:
            value = reader.ctx.env.get(var)
            if value:
                reader.finding(
                    var,
                    "audio plugin search path set in the session environment",
                    f"export {var}={value}",
                )
