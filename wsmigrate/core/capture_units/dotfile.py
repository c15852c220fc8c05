"""
Dotfile unit — ~/.config, top-level dotfiles, git, SSH and GPG public material.

Private keys are never read: only the SSH files listed in SSH_FILES and
the GPG public keyring (exported through gpg) leave the machine.
"""

from __future__ import annotations

import logging

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.capture_units.desktop import OWNED_CONFIG_FILES
from wsmigrate.core.models.snapshot import CaptureUnit

logger = logging.getLogger(__name__)

CONFIG_DIR = "~/.config"

# caches, browser profiles, session state, and areas owned by other units
CONFIG_EXCLUDES = (
    "*cache*",
    "*Cache*",
    "google-chrome",
    "chromium",
    "BraveSoftware",
    "mozilla",
    "Code",
    "VSCodium",
    "discord",
    "Slack",
    "pulse",
    "pipewire",
    "wireplumber",
    "systemd",
    "session",
    "sessions",
    "*.log",
    "*.sock",
    "*.lock",
    "crash*",
    "akonadi*",
    "baloo*",
    "kdeconnect",
    "starship.toml",
    *OWNED_CONFIG_FILES,
)

VSCODE_USER = "~/.config/Code/User"
VSCODE_FILES = ("settings.json", "keybindings.json", "locale.json")

LOCAL_SHARE_DIRS = (
    "~/.local/share/mime",
    "~/.local/share/kservices5",
    "~/.local/share/kservices6",
    "~/.local/share/kxmlgui5",
)

HOME_DOTFILES = (
    "~/.gitconfig",
    "~/.gitignore_global",
    "~/.editorconfig",
    "~/.inputrc",
    "~/.dir_colors",
    "~/.tmux.conf",
    "~/.wgetrc",
    "~/.curlrc",
    "~/.bashrc",
    "~/.bash_profile",
    "~/.profile",
    "~/.vimrc",
)

SSH_FILES = ("~/.ssh/config", "~/.ssh/known_hosts", "~/.ssh/authorized_keys")
GPG_FILES = ("~/.gnupg/gpg.conf", "~/.gnupg/gpg-agent.conf")


def parse_fingerprints(colons: str) -> list[str]:
    """Primary-key fingerprints from ``gpg --with-colons`` output."""
    fingerprints: list[str] = []
    want = False
    for line in colons.splitlines():
        fields = line.split(":")
        if fields[0] == "pub":
            want = True
        elif fields[0] == "fpr" and want and len(fields) > 9:
            fingerprints.append(fields[9])
            want = False
    return sorted(fingerprints)


class DotfileCapturer(UnitCapturer):
    unit = CaptureUnit.DOTFILE
    sources = (CONFIG_DIR,) + LOCAL_SHARE_DIRS + HOME_DOTFILES + SSH_FILES + GPG_FILES

    def capture(self, reader: UnitReader) -> None:
        excludes = CONFIG_EXCLUDES + tuple(reader.settings.extra_excludes)
        count = reader.read_tree(CONFIG_DIR, excludes=excludes)
        logger.debug("Captured %d files from %s", count, CONFIG_DIR)

        for name in VSCODE_FILES:
            reader.read_file(f"{VSCODE_USER}/{name}")
        reader.read_tree(f"{VSCODE_USER}/snippets")

        for dest in LOCAL_SHARE_DIRS:
            reader.read_tree(dest)
        for dest in HOME_DOTFILES + SSH_FILES + GPG_FILES:
            reader.read_file(dest)

        self._gpg(reader)

    def _gpg(self, reader: UnitReader) -> None:
        listing = reader.command(["gpg", "--batch", "--list-keys", "--with-colons"])
        if listing is None or not listing.ok:
            return
        fingerprints = parse_fingerprints(listing.stdout)
        if not fingerprints:
            return
        export = reader.command(["gpg", "--batch", "--armor", "--export", *fingerprints])
        if export is None or not export.ok:
            reader.finding("gpg public keyring", "export failed", "gpg --armor --export > pubkeys.asc")
            return
        reader.fact("gpg_public_keyring", {"armor": export.stdout, "fingerprints": fingerprints})
