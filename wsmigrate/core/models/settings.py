"""
Settings model — the optional ``wsmigrate.yml`` file.

Every field has a default so a missing file means "use defaults".
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from wsmigrate.core.models.snapshot import CaptureUnit
from wsmigrate.core.models.target import Role


class CaptureSettings(BaseModel):
    units: list[CaptureUnit] = Field(default_factory=lambda: list(CaptureUnit))
    timeout_seconds: float = 120.0
    command_timeout_seconds: int = 60
    max_file_bytes: int = 64 * 1024 * 1024
    extra_excludes: list[str] = Field(default_factory=list)
    workers: int = 4


class NormalizeSettings(BaseModel):
    require_repo_for_packages: bool = False
    role_dependencies: dict[Role, list[Role]] | None = None   # None = declared default


class ReconcileSettings(BaseModel):
    roles: list[Role] = Field(default_factory=lambda: list(Role))


class Settings(BaseModel):
    """Root settings model."""

    state_dir: str = ".wsmigrate"
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    normalize: NormalizeSettings = Field(default_factory=NormalizeSettings)
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)
