"""
Report models — what reconcile and verify hand back.

Every run, however degraded, ends in one of these reports.  Result
lists are ordered by role (canonical order) then original action
index, never by completion order, so logs and exports diff cleanly.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from wsmigrate.core.errors import EXIT_FAILED, EXIT_OK
from wsmigrate.core.models.action import ActionKind
from wsmigrate.core.models.snapshot import CaptureUnit
from wsmigrate.core.models.target import Role


class Outcome(str, Enum):
    """Per-action reconciliation outcome.

    ``would-change`` only appears in dry-run reports, in the place an
    apply run would report ``applied``.
    """

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    FAILED = "failed"
    SKIPPED = "skipped"
    WOULD_CHANGE = "would-change"


class ActionResult(BaseModel):
    """Outcome of one convergence action."""

    role: Role
    index: int
    action_id: str
    kind: ActionKind
    target: str
    outcome: Outcome
    detail: str = ""
    error: str | None = None
    duration_ms: int = 0
    source_unit: CaptureUnit | None = None
    finding_id: str | None = None
    suggested_command: str | None = None


class ManualStep(BaseModel):
    """Something a human has to do on the target machine."""

    unit_or_role: str
    description: str
    suggested_command: str | None = None
    finding_id: str | None = None


class ReconciliationReport(BaseModel):
    """Result of one reconcile run."""

    operation_id: str = ""
    mode: Literal["apply", "dry-run"] = "apply"
    roles: list[Role] = Field(default_factory=list)
    results: list[ActionResult] = Field(default_factory=list)
    manual_steps: list[ManualStep] = Field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAILED)

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if len(self.results) > self.failed:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.failed == 0 else EXIT_FAILED

    def summary(self) -> dict[str, int]:
        return {o.value: self.count(o) for o in Outcome if self.count(o)}

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["status"] = self.status
        data["summary"] = self.summary()
        return data


class CheckStatus(str, Enum):
    """Per-action verification status."""

    PASS = "pass"
    FAIL = "fail"
    HUMAN = "requires-human-check"
    SKIPPED = "skipped"
    ERROR = "error"


class CheckResult(BaseModel):
    """Verification of one convergence action."""

    role: Role
    index: int
    action_id: str
    kind: ActionKind
    target: str
    status: CheckStatus
    detail: str = ""


class VerificationReport(BaseModel):
    """Result of one verify run.  Read-only by construction."""

    operation_id: str = ""
    checks: list[CheckResult] = Field(default_factory=list)

    def count(self, status: CheckStatus) -> int:
        return sum(1 for c in self.checks if c.status == status)

    @property
    def requires_human_check(self) -> list[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.HUMAN]

    @property
    def agreed(self) -> bool:
        return self.count(CheckStatus.FAIL) == 0 and self.count(CheckStatus.ERROR) == 0

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.agreed else EXIT_FAILED

    def summary(self) -> dict[str, int]:
        return {s.value: self.count(s) for s in CheckStatus if self.count(s)}

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["agreed"] = self.agreed
        data["summary"] = self.summary()
        return data
