"""
Verify use case — load the model, compare it with the machine, audit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from wsmigrate.adapters.registry import AdapterRegistry
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.probe import probe
from wsmigrate.core.engine.reconcile import Reprobe
from wsmigrate.core.engine.verify import verify
from wsmigrate.core.errors import EXIT_VALIDATION, ValidationError
from wsmigrate.core.models.report import VerificationReport
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.persistence.audit import AuditEntry, AuditWriter, generate_operation_id
from wsmigrate.core.persistence.model_store import load_model

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    """Result of a verify run."""

    report: VerificationReport | None = None
    operation_id: str = ""
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.report is None:
            return EXIT_VALIDATION
        return self.report.exit_code

    def to_dict(self) -> dict:
        if self.report is None:
            return {"error": self.error}
        return self.report.to_dict()


def run_verify(
    model_dir: Path,
    ctx: ExecutionContext,
    roles: list[str] | None = None,
    settings: Settings | None = None,
    registry: AdapterRegistry | None = None,
    reprobe: Reprobe | None = probe,
) -> VerifyResult:
    """Verify the machine ``ctx`` points at against the model in ``model_dir``."""
    settings = settings or Settings()
    result = VerifyResult(operation_id=generate_operation_id())

    try:
        model = load_model(model_dir)
        report = verify(
            model, ctx,
            roles=roles,
            registry=registry,
            reprobe=reprobe,
            operation_id=result.operation_id,
        )
    except ValidationError as e:
        result.error = f"Validation error: {e}"
        return result

    result.report = report
    AuditWriter(Path(settings.state_dir)).write(AuditEntry(
        operation_id=result.operation_id,
        operation_type="verify",
        roles=roles or [],
        status="ok" if report.agreed else "failed",
        summary=report.summary(),
        context={"model": str(model_dir)},
    ))
    return result
