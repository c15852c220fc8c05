"""
Normalize use case — load a snapshot, compile it, write the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from wsmigrate.core.engine.normalize import normalize
from wsmigrate.core.errors import EXIT_OK, EXIT_VALIDATION, SnapshotError, ValidationError
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.models.target import TargetStateModel
from wsmigrate.core.persistence.audit import AuditEntry, AuditWriter, generate_operation_id
from wsmigrate.core.persistence.model_store import save_model
from wsmigrate.core.persistence.snapshot_store import load_snapshot

logger = logging.getLogger(__name__)


@dataclass
class NormalizeResult:
    """Result of a normalize run."""

    model: TargetStateModel | None = None
    path: Path | None = None
    operation_id: str = ""
    error: str | None = None
    validation: dict | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_VALIDATION if self.error else EXIT_OK

    def to_dict(self) -> dict:
        if self.model is None:
            result: dict = {"error": self.error}
            if self.validation:
                result["validation"] = self.validation
            return result
        return {
            "operation_id": self.operation_id,
            "path": str(self.path),
            "roles": {
                role.value: len(spec.actions) for role, spec in self.model.roles.items()
            },
            "blobs": len(self.model.blobs),
        }


def run_normalize(
    snapshot_dir: Path,
    out_dir: Path,
    settings: Settings | None = None,
) -> NormalizeResult:
    """Compile the snapshot in ``snapshot_dir`` into a model in ``out_dir``.

    Nothing is written when the snapshot is malformed or the model
    would be invalid.
    """
    settings = settings or Settings()
    result = NormalizeResult(operation_id=generate_operation_id())
    audit = AuditWriter(Path(settings.state_dir))

    try:
        snapshot = load_snapshot(snapshot_dir)
        model = normalize(snapshot, settings.normalize)
    except SnapshotError as e:
        result.error = f"Malformed snapshot: {e}"
    except ValidationError as e:
        result.error = f"Validation error: {e}"
        result.validation = e.to_dict()

    if result.error:
        audit.write(AuditEntry(
            operation_id=result.operation_id, operation_type="normalize",
            status="failed", errors=[result.error],
        ))
        return result

    result.model = model
    result.path = save_model(model, out_dir).parent
    audit.write(AuditEntry(
        operation_id=result.operation_id,
        operation_type="normalize",
        status="ok",
        roles=[r.value for r in model.roles],
        summary={"actions": len(model.all_actions()), "blobs": len(model.blobs)},
        context={"snapshot": str(snapshot_dir), "model": str(result.path)},
    ))
    return result
