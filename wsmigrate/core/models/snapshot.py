"""
Snapshot model — the portable capture of one machine.

A Snapshot is created in one pass by the capture engine and never
mutated afterwards.  It holds a manifest describing the source machine
and one CaptureRecord per capture unit.  Unit names form a closed set;
anything else is rejected at construction time.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CaptureUnit(str, Enum):
    """The fixed set of independently captured domains."""

    PACKAGE = "package"
    REPO = "repo"
    SHELL = "shell"
    DESKTOP = "desktop"
    DOTFILE = "dotfile"
    SYSTEM = "system"
    DEVTOOL = "devtool"
    AUDIO = "audio"
    THIRDPARTY = "thirdparty"
    HARDWARE = "hardware"


class UnitStatus(str, Enum):
    """How a capture unit finished."""

    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"


def content_digest(data: bytes) -> str:
    """Content address of a payload (sha256 hex)."""
    return hashlib.sha256(data).hexdigest()


class Finding(BaseModel):
    """A capture-time fact that could not be resolved automatically.

    The id is derived from unit, item and reason, so the same problem
    on an unchanged machine always carries the same id.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    unit: CaptureUnit
    item: str
    reason: str
    suggested_command: str | None = None

    @classmethod
    def make(
        cls,
        unit: CaptureUnit,
        item: str,
        reason: str,
        suggested_command: str | None = None,
    ) -> Finding:
        key = f"{unit.value}\0{item}\0{reason}".encode()
        short = hashlib.sha256(key).hexdigest()[:12]
        return cls(
            id=f"{unit.value}-{short}",
            unit=unit,
            item=item,
            reason=reason,
            suggested_command=suggested_command,
        )


class FilePayload(BaseModel):
    """One file to be placed verbatim on the target.

    ``dest`` is the destination path, either home-relative (``~/...``)
    or absolute (``/etc/...``).  ``data`` is excluded from JSON dumps;
    the snapshot store writes payload bytes to their own files.
    """

    model_config = ConfigDict(frozen=True)

    dest: str
    mode: int = 0o644
    data: bytes = Field(default=b"", exclude=True, repr=False)

    @property
    def digest(self) -> str:
        return content_digest(self.data)


class CaptureRecord(BaseModel):
    """Everything one capture unit produced."""

    model_config = ConfigDict(frozen=True)

    unit: CaptureUnit
    files: dict[str, FilePayload] = Field(default_factory=dict)
    facts: dict[str, Any] = Field(default_factory=dict)
    findings: list[Finding] = Field(default_factory=list)

    @model_validator(mode="after")
    def _findings_belong_to_unit(self) -> CaptureRecord:
        for finding in self.findings:
            if finding.unit != self.unit:
                raise ValueError(
                    f"Finding {finding.id} belongs to unit '{finding.unit.value}', "
                    f"not '{self.unit.value}'"
                )
        return self


class Manifest(BaseModel):
    """Description of the source machine at capture time."""

    model_config = ConfigDict(frozen=True)

    schema_version: int = 1
    hostname: str = "unknown"
    username: str = "unknown"
    home: str = ""
    date: str = ""                        # UTC, ISO-8601
    os_version: str = "unknown"
    kernel: str = "unknown"
    arch: str = "unknown"
    desktop: str = "unknown"
    display_server: str = "unknown"
    desktop_shell_version: str = "unknown"
    shell: str = "unknown"
    units: dict[CaptureUnit, UnitStatus] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Root capture entity.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    manifest: Manifest
    records: dict[CaptureUnit, CaptureRecord] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _record_keys_match(self) -> Snapshot:
        for unit, record in self.records.items():
            if record.unit != unit:
                raise ValueError(
                    f"Record stored under '{unit.value}' is for unit '{record.unit.value}'"
                )
        return self

    def record(self, unit: CaptureUnit) -> CaptureRecord | None:
        return self.records.get(unit)

    def all_findings(self) -> list[Finding]:
        """All findings, in unit declaration order."""
        findings: list[Finding] = []
        for unit in CaptureUnit:
            record = self.records.get(unit)
            if record is not None:
                findings.extend(record.findings)
        return findings

    def equivalent(self, other: Snapshot) -> bool:
        """Equality ignoring the capture timestamp."""
        mine = self.manifest.model_copy(update={"date": ""})
        theirs = other.manifest.model_copy(update={"date": ""})
        return mine == theirs and self.records == other.records
