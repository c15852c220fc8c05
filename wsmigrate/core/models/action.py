"""
ConvergenceAction and Receipt models — the execution contract.

A ConvergenceAction says "this piece of target state should look like
this".  Adapters inspect and converge it and hand back Receipts.
Adapters never raise for expected failures: failures are captured in
the Receipt.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from wsmigrate.core.models.snapshot import CaptureUnit


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ActionKind(str, Enum):
    """Closed set of convergence action kinds."""

    ENSURE_PACKAGE_SET = "ensure-package-set"
    ENSURE_REPO_ENABLED = "ensure-repo-enabled"
    ENSURE_FILE_PRESENT = "ensure-file-present"
    ENSURE_SERVICE_STATE = "ensure-service-state"
    ENSURE_SYSCTL_VALUE = "ensure-sysctl-value"
    RUN_IDEMPOTENT_COMMAND = "run-idempotent-command"
    MANUAL_ONLY = "manual-only"


# desired-value keys that hold content-addressed blob references
BLOB_KEYS = ("blob", "stdin_blob", "expect_blob")


class ConvergenceAction(BaseModel):
    """A single idempotent step towards one piece of target state.

    ``manual-only`` actions never touch the system; they only ever
    produce a manual step.
    """

    kind: ActionKind
    target: str
    desired: dict[str, Any] = Field(default_factory=dict)
    precondition: str | None = None      # capability name, see CapabilitySet.has
    description: str = ""
    source_unit: CaptureUnit | None = None
    finding_id: str | None = None        # set when derived from a capture Finding

    @property
    def id(self) -> str:
        return f"{self.kind.value}:{self.target}"

    @property
    def is_manual(self) -> bool:
        return self.kind == ActionKind.MANUAL_ONLY

    def blob_refs(self) -> list[str]:
        """Blob digests this action depends on."""
        return [self.desired[k] for k in BLOB_KEYS if self.desired.get(k)]


class Receipt(BaseModel):
    """Result of an adapter apply call."""

    adapter: str
    action_id: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(adapter=adapter, action_id=action_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **kwargs)
