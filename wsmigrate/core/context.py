"""
Execution context — everything the pipeline knows about "where am I".

The context is built ONCE by the CLI entrypoint and passed explicitly
to every component:

    - CLI:    main.py   → ExecutionContext.from_environment()
    - Tests:  conftest  → ExecutionContext(home=tmp/home, root=tmp/root, ...)

Core logic never reads ``os.environ`` or the current user itself; it
asks the context.  ``root`` prefixes every absolute system path so a
whole machine can be faked under a temporary directory.
"""

from __future__ import annotations

import getpass
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from wsmigrate.adapters.shell.command import CommandRunner
from wsmigrate.core.models.capability import CapabilitySet

# Session variables capture is allowed to see
ENV_KEYS = (
    "XDG_SESSION_TYPE",
    "XDG_CURRENT_DESKTOP",
    "SHELL",
    "HOSTNAME",
    "LADSPA_PATH",
    "LV2_PATH",
    "VST_PATH",
    "VST3_PATH",
    "CLAP_PATH",
    "DSSI_PATH",
)


@dataclass(frozen=True)
class ExecutionContext:
    """Explicit replacement for ambient process state."""

    home: Path
    user: str
    runner: CommandRunner = field(default_factory=CommandRunner)
    root: Path = Path("/")
    env: Mapping[str, str] = field(default_factory=dict)
    capabilities: CapabilitySet = field(default_factory=CapabilitySet)

    @classmethod
    def from_environment(cls, runner: CommandRunner | None = None) -> ExecutionContext:
        """Snapshot the current process environment into a context."""
        env = {k: os.environ[k] for k in ENV_KEYS if k in os.environ}
        return cls(
            home=Path(os.path.expanduser("~")),
            user=getpass.getuser(),
            runner=runner or CommandRunner(),
            env=env,
        )

    def with_capabilities(self, capabilities: CapabilitySet) -> ExecutionContext:
        return replace(self, capabilities=capabilities)

    # ── Path mapping ─────────────────────────────────────────────

    @staticmethod
    def is_home(dest: str) -> bool:
        return dest == "~" or dest.startswith("~/")

    def host_path(self, dest: str) -> Path:
        """Map ``~/x`` or ``/x`` onto this context's home and root."""
        if self.is_home(dest):
            return self.home / dest[2:]
        if not dest.startswith("/"):
            raise ValueError(f"Destination must be '~/...' or absolute: {dest!r}")
        return self.root / dest.lstrip("/")

    def dest_for(self, path: Path) -> str:
        """Inverse of host_path: a host path back to its destination string."""
        try:
            rel = path.relative_to(self.home)
            return "~/" + rel.as_posix() if rel.parts else "~"
        except ValueError:
            pass
        return "/" + path.relative_to(self.root).as_posix()

    def expand(self, text: str) -> str:
        """Fill ``{user}`` and ``{home}`` placeholders."""
        return text.replace("{user}", self.user).replace("{home}", str(self.home))
