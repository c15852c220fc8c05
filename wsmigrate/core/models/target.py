"""
Target-State Model — what the target machine ought to look like.

Derived from a Snapshot by the normalize engine.  A mapping from role
name to RoleSpec plus a side-table of content-addressed blobs.  The
role graph is declared here; normalize and model loading both reject
cycles and dangling blob references.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wsmigrate.core.models.action import ConvergenceAction
from wsmigrate.core.models.snapshot import CaptureUnit


class Role(str, Enum):
    """The nine reconciled domains, in canonical order."""

    REPOS = "repos"
    PACKAGES = "packages"
    SHELL = "shell"
    DESKTOP = "desktop"
    SYSTEM = "system"
    DEVTOOLS = "devtools"
    AUDIO = "audio"
    THIRDPARTY = "thirdparty"
    HARDWARE = "hardware"


_MIDDLE = [Role.SHELL, Role.DESKTOP, Role.SYSTEM]

# repos → packages → shell/desktop/system → devtools/audio/thirdparty/hardware
DEFAULT_ROLE_DEPENDENCIES: dict[Role, list[Role]] = {
    Role.REPOS: [],
    Role.PACKAGES: [Role.REPOS],
    Role.SHELL: [Role.PACKAGES],
    Role.DESKTOP: [Role.PACKAGES],
    Role.SYSTEM: [Role.PACKAGES],
    Role.DEVTOOLS: list(_MIDDLE),
    Role.AUDIO: list(_MIDDLE),
    Role.THIRDPARTY: list(_MIDDLE),
    Role.HARDWARE: list(_MIDDLE),
}

# Which role reconciles each capture unit
UNIT_ROLE: dict[CaptureUnit, Role] = {
    CaptureUnit.REPO: Role.REPOS,
    CaptureUnit.PACKAGE: Role.PACKAGES,
    CaptureUnit.SHELL: Role.SHELL,
    CaptureUnit.DOTFILE: Role.SHELL,
    CaptureUnit.DESKTOP: Role.DESKTOP,
    CaptureUnit.SYSTEM: Role.SYSTEM,
    CaptureUnit.DEVTOOL: Role.DEVTOOLS,
    CaptureUnit.AUDIO: Role.AUDIO,
    CaptureUnit.THIRDPARTY: Role.THIRDPARTY,
    CaptureUnit.HARDWARE: Role.HARDWARE,
}


class RoleSpec(BaseModel):
    """Ordered convergence actions for one role."""

    role: Role
    depends_on: list[Role] = Field(default_factory=list)
    actions: list[ConvergenceAction] = Field(default_factory=list)


class TargetStateModel(BaseModel):
    """Validated desired state plus its blob side-table.

    ``blobs`` maps sha256 digest → bytes and is excluded from dumps;
    the model store writes blobs as separate files.
    """

    schema_version: int = 1
    source: dict[str, Any] = Field(default_factory=dict)   # hostname, date, ...
    dependencies: dict[Role, list[Role]] = Field(
        default_factory=lambda: {r: list(d) for r, d in DEFAULT_ROLE_DEPENDENCIES.items()}
    )
    roles: dict[Role, RoleSpec] = Field(default_factory=dict)
    blobs: dict[str, bytes] = Field(default_factory=dict, exclude=True, repr=False)

    def role(self, role: Role) -> RoleSpec | None:
        return self.roles.get(role)

    def all_actions(self) -> list[tuple[Role, int, ConvergenceAction]]:
        """Every action with its role and index, in canonical role order."""
        out: list[tuple[Role, int, ConvergenceAction]] = []
        for role in Role:
            spec = self.roles.get(role)
            if spec is None:
                continue
            for index, action in enumerate(spec.actions):
                out.append((role, index, action))
        return out

    def dangling_refs(self) -> list[tuple[Role, int, str]]:
        """(role, action index, digest) for every blob reference not in ``blobs``."""
        missing: list[tuple[Role, int, str]] = []
        for role, index, action in self.all_actions():
            for digest in action.blob_refs():
                if digest not in self.blobs:
                    missing.append((role, index, digest))
        return missing
