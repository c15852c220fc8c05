"""
Capture use case — probe, capture, write the snapshot, audit.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.capture import capture
from wsmigrate.core.errors import EXIT_OK, EXIT_VALIDATION
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.models.snapshot import Snapshot, UnitStatus
from wsmigrate.core.persistence.audit import AuditEntry, AuditWriter, generate_operation_id
from wsmigrate.core.persistence.snapshot_store import save_snapshot

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Result of a capture run."""

    snapshot: Snapshot | None = None
    path: Path | None = None
    operation_id: str = ""
    error: str | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_VALIDATION if self.error else EXIT_OK

    def to_dict(self) -> dict:
        if self.snapshot is None:
            return {"error": self.error}
        manifest = self.snapshot.manifest
        return {
            "operation_id": self.operation_id,
            "path": str(self.path),
            "manifest": manifest.model_dump(mode="json"),
            "findings": len(self.snapshot.all_findings()),
            "files": sum(len(r.files) for r in self.snapshot.records.values()),
        }


def run_capture(
    ctx: ExecutionContext,
    out_dir: Path,
    units: list[str] | None = None,
    settings: Settings | None = None,
) -> CaptureResult:
    """Capture this machine into ``out_dir``.

    The capture itself never fails: degraded units are recorded in the
    manifest.  Only a bad unit name is an error.
    """
    settings = settings or Settings()
    result = CaptureResult(operation_id=generate_operation_id())
    start = time.monotonic()

    try:
        snapshot = capture(ctx, units=units or None, settings=settings.capture)
    except ValueError as e:
        result.error = str(e)
        return result

    result.snapshot = snapshot
    result.path = save_snapshot(snapshot, out_dir).parent

    statuses = snapshot.manifest.units
    degraded = [u.value for u, s in statuses.items() if s != UnitStatus.OK]
    AuditWriter(Path(settings.state_dir)).write(AuditEntry(
        operation_id=result.operation_id,
        operation_type="capture",
        status="partial" if degraded else "ok",
        summary={
            "units": len(statuses),
            "findings": len(snapshot.all_findings()),
        },
        duration_ms=int((time.monotonic() - start) * 1000),
        errors=[f"unit {u} not ok" for u in degraded],
        context={"path": str(result.path)},
    ))
    return result
