"""
Desktop unit — KDE Plasma configuration, themes, fonts, wallpapers, SDDM.

Only runs its Plasma-specific parts when the probe found a desktop shell;
GTK settings and fonts are captured regardless.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import unquote

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader, is_under
from wsmigrate.core.models.snapshot import CaptureUnit

logger = logging.getLogger(__name__)

KDE_CONFIG_FILES = (
    "kdeglobals",
    "kwinrc",
    "kwinrulesrc",
    "plasmarc",
    "plasmashellrc",
    "plasma-org.kde.plasma.desktop-appletsrc",
    "plasma-localerc",
    "plasmanotifyrc",
    "khotkeysrc",
    "kglobalshortcutsrc",
    "kxkbrc",
    "kscreenlockerrc",
    "ksplashrc",
    "klaunchrc",
    "krunnerrc",
    "ksmserverrc",
    "kded5rc",
    "kded6rc",
    "kcminputrc",
    "kaccessrc",
    "kactivitymanagerdrc",
    "baloofilerc",
    "breezerc",
    "dolphinrc",
    "konsolerc",
    "katerc",
    "kwalletrc",
    "powermanagementprofilesrc",
    "powerdevilrc",
    "systemsettingsrc",
    "spectaclerc",
    "gtkrc",
    "gtkrc-2.0",
    "Trolltech.conf",
)

KDE_CONFIG_DIRS = (
    "~/.config/plasma-workspace",
    "~/.config/kwinrc.d",
    "~/.config/autostart",
    "~/.config/fontconfig",
)

GTK_FILES = (
    "~/.config/gtk-3.0/settings.ini",
    "~/.config/gtk-4.0/settings.ini",
    "~/.gtkrc-2.0",
)

SHARE_DIRS = (
    "~/.local/share/color-schemes",
    "~/.local/share/aurorae",
    "~/.local/share/plasma",
    "~/.local/share/icons",
    "~/.local/share/fonts",
    "~/.local/share/konsole",
    "~/.local/share/wallpapers",
    "~/.local/share/kscreen",
    "~/.local/share/kwin",
    "~/.icons",
    "~/.fonts",
)

SDDM = ("/etc/sddm.conf", "/etc/sddm.conf.d")

WALLPAPER_ROOTS = ("~/Pictures",)

# wallpapers under these prefixes ship with the OS
_SYSTEM_WALLPAPERS = ("/usr/share",)

# files in ~/.config this unit owns; the dotfile unit excludes them
OWNED_CONFIG_FILES = KDE_CONFIG_FILES + ("plasma-workspace", "kwinrc.d", "autostart", "fontconfig",
                                         "gtk-3.0", "gtk-4.0")

_IMAGE_RE = re.compile(r"^Image=(?:file://)?(/[^\s]+)$", re.MULTILINE)
_KEY_RE = r"^{key}=(.+)$"


def _kde_files() -> tuple[str, ...]:
    return tuple(f"~/.config/{name}" for name in KDE_CONFIG_FILES)


def wallpaper_paths(appletsrc: str) -> list[str]:
    """Absolute image paths referenced by the desktop applet config."""
    return sorted({unquote(m.group(1)) for m in _IMAGE_RE.finditer(appletsrc)})


def ini_value(text: str, key: str) -> str | None:
    match = re.search(_KEY_RE.format(key=re.escape(key)), text, re.MULTILINE)
    return match.group(1).strip() if match else None


class DesktopCapturer(UnitCapturer):
    unit = CaptureUnit.DESKTOP
    sources = _kde_files() + KDE_CONFIG_DIRS + GTK_FILES + SHARE_DIRS + SDDM + WALLPAPER_ROOTS

    def capture(self, reader: UnitReader) -> None:
        for dest in GTK_FILES:
            reader.read_file(dest)
        reader.read_tree("~/.config/fontconfig")
        reader.read_tree("~/.local/share/fonts")
        reader.read_tree("~/.fonts")

        if reader.caps.desktop_shell is None:
            logger.debug("No desktop shell; skipping Plasma capture")
            return

        for dest in _kde_files():
            reader.read_file(dest)
        for dest in KDE_CONFIG_DIRS:
            reader.read_tree(dest)
        for dest in SHARE_DIRS:
            reader.read_tree(dest, excludes=("*.cache", "cache"))
        reader.read_file(SDDM[0])
        reader.read_tree(SDDM[1])

        if reader.caps.desktop_shell_version:
            reader.fact("plasma_version", reader.caps.desktop_shell_version)
        self._themes(reader)
        self._wallpapers(reader)

    def _themes(self, reader: UnitReader) -> None:
        kdeglobals = reader.read_text("~/.config/kdeglobals") or ""
        color = ini_value(kdeglobals, "ColorScheme")
        if color:
            reader.fact("color_scheme", color)
        kcminput = reader.read_text("~/.config/kcminputrc") or ""
        cursor = ini_value(kcminput, "cursorTheme")
        if cursor:
            reader.fact("cursor_theme", cursor)

    def _wallpapers(self, reader: UnitReader) -> None:
        appletsrc = reader.read_text("~/.config/plasma-org.kde.plasma.desktop-appletsrc")
        if not appletsrc:
            return
        home = str(reader.ctx.home).rstrip("/") + "/"
        for path in wallpaper_paths(appletsrc):
            dest = "~/" + path[len(home):] if path.startswith(home) else path
            if any(is_under(dest, root) for root in self.sources):
                reader.read_file(dest)
            elif not any(is_under(path, prefix) for prefix in _SYSTEM_WALLPAPERS):
                reader.finding(dest, "wallpaper outside captured locations; copy it manually")
