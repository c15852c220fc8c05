"""
Reconcile use case — load the model, take the apply lock, converge, audit.

Dry-run never takes the lock: it does not mutate anything.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from wsmigrate.adapters.registry import AdapterRegistry
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.probe import probe
from wsmigrate.core.engine.reconcile import Reprobe, reconcile
from wsmigrate.core.errors import (
    EXIT_LOCKED,
    EXIT_OK,
    EXIT_VALIDATION,
    LockHeldError,
    ValidationError,
)
from wsmigrate.core.models.report import ReconciliationReport
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.persistence.audit import AuditEntry, AuditWriter, generate_operation_id
from wsmigrate.core.persistence.lock import ApplyLock
from wsmigrate.core.persistence.model_store import load_model

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of a reconcile run."""

    report: ReconciliationReport | None = None
    operation_id: str = ""
    error: str | None = None
    error_code: int = EXIT_OK

    @property
    def exit_code(self) -> int:
        if self.report is None:
            return self.error_code
        return self.report.exit_code

    def to_dict(self) -> dict:
        if self.report is None:
            return {"error": self.error}
        return self.report.to_dict()


def run_reconcile(
    model_dir: Path,
    ctx: ExecutionContext,
    roles: list[str] | None = None,
    dry_run: bool = False,
    settings: Settings | None = None,
    registry: AdapterRegistry | None = None,
    reprobe: Reprobe | None = probe,
) -> ReconcileResult:
    """Reconcile the model in ``model_dir`` onto the machine ``ctx`` points at."""
    settings = settings or Settings()
    result = ReconcileResult(operation_id=generate_operation_id())
    state_dir = Path(settings.state_dir)
    selection = roles or [r.value for r in settings.reconcile.roles]

    try:
        model = load_model(model_dir)
    except ValidationError as e:
        result.error = f"Validation error: {e}"
        result.error_code = EXIT_VALIDATION
        return result

    start = time.monotonic()
    lock = None if dry_run else ApplyLock(state_dir)
    try:
        if lock is not None:
            lock.acquire()
        report = reconcile(
            model, ctx,
            roles=selection,
            dry_run=dry_run,
            registry=registry,
            reprobe=reprobe,
            operation_id=result.operation_id,
        )
    except LockHeldError as e:
        result.error = str(e)
        result.error_code = EXIT_LOCKED
        return result
    except ValidationError as e:
        result.error = f"Validation error: {e}"
        result.error_code = EXIT_VALIDATION
        return result
    finally:
        if lock is not None:
            lock.release()

    result.report = report
    AuditWriter(state_dir).write(AuditEntry(
        operation_id=result.operation_id,
        operation_type="reconcile",
        mode=report.mode,
        roles=[r.value for r in report.roles],
        status=report.status,
        summary=report.summary(),
        duration_ms=int((time.monotonic() - start) * 1000),
        errors=[f"{r.action_id}: {r.error}" for r in report.results if r.error],
        context={"model": str(model_dir)},
    ))
    return result
