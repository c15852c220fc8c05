"""
Zsh plugin managers — a closed set of tagged variants.

Each variant carries its own detection markers, the extra files it
wants captured, and the idempotent command that installs it on the
target.  Detection walks PLUGIN_MANAGERS in order and takes the first
match; adding a manager means adding one entry here, nothing else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

OMZ_INSTALL_URL = "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
ANTIGEN_URL = "https://git.io/antigen"


@dataclass(frozen=True)
class PluginManager:
    """One zsh plugin-manager variant."""

    name: str
    markers: tuple[str, ...] = ()            # home paths; any present → detected
    extra_trees: tuple[str, ...] = ()        # directories captured verbatim
    extra_files: tuple[str, ...] = ()        # single files captured verbatim
    tree_excludes: tuple[str, ...] = ()
    install: list[str] = field(default_factory=list)
    creates: str | None = None
    requires_tool: str | None = None

    def install_action(self) -> dict | None:
        """Desired value of the run-idempotent-command installing this manager."""
        if not self.install:
            return None
        return {"command": list(self.install), "creates": self.creates}


PLUGIN_MANAGERS: tuple[PluginManager, ...] = (
    PluginManager(
        name="oh-my-zsh",
        markers=("~/.oh-my-zsh",),
        extra_trees=("~/.oh-my-zsh/custom",),
        tree_excludes=(".git", "example*"),
        install=[
            "sh", "-c",
            f'RUNZSH=no KEEP_ZSHRC=yes CHSH=no sh -c "$(curl -fsSL {OMZ_INSTALL_URL})"',
        ],
        creates="~/.oh-my-zsh",
        requires_tool="curl",
    ),
    PluginManager(
        name="zinit",
        markers=("~/.local/share/zinit", "~/.zinit"),
        install=[
            "git", "clone", "--depth=1", "https://github.com/zdharma-continuum/zinit.git",
            "{home}/.local/share/zinit/zinit.git",
        ],
        creates="~/.local/share/zinit/zinit.git",
        requires_tool="git",
    ),
    PluginManager(
        name="antigen",
        markers=("~/.antigen",),
        extra_trees=("~/.antigen",),
        tree_excludes=(".git",),
        install=[
            "sh", "-c",
            f"mkdir -p {{home}}/.antigen && curl -fsSL {ANTIGEN_URL} -o {{home}}/.antigen/antigen.zsh",
        ],
        creates="~/.antigen/antigen.zsh",
        requires_tool="curl",
    ),
    PluginManager(
        name="antidote",
        markers=("~/.antidote",),
        extra_files=("~/.zsh_plugins.txt",),
        install=[
            "git", "clone", "--depth=1", "https://github.com/mattmc3/antidote.git",
            "{home}/.antidote",
        ],
        creates="~/.antidote",
        requires_tool="git",
    ),
)

NONE = PluginManager(name="none")

BY_NAME: dict[str, PluginManager] = {pm.name: pm for pm in (*PLUGIN_MANAGERS, NONE)}


def detect(exists) -> PluginManager:
    """First variant whose marker exists; ``exists`` maps a home path to bool."""
    for pm in PLUGIN_MANAGERS:
        if any(exists(marker) for marker in pm.markers):
            return pm
    return NONE


_OMZ_PLUGINS_RE = re.compile(r"^\s*plugins=\(([^)]*)\)", re.MULTILINE)
_OMZ_THEME_RE = re.compile(r"""^\s*ZSH_THEME=["']?([^"'\s]*)""", re.MULTILINE)


def omz_active(zshrc: str) -> dict:
    """Active oh-my-zsh plugins and theme as declared in .zshrc."""
    plugins: list[str] = []
    match = _OMZ_PLUGINS_RE.search(zshrc)
    if match:
        plugins = match.group(1).split()
    theme = _OMZ_THEME_RE.search(zshrc)
    return {"plugins": plugins, "theme": theme.group(1) if theme else ""}
