"""
Adapter base — the protocol contract between engine and system tools.

The reconciliation and verification engines only talk to adapters
through this protocol, never directly to external tools.  An adapter
owns exactly one ConvergenceAction kind and answers two questions:

    check(actx)  → Decision   read-only: is the desired state already there?
    apply(actx)  → Receipt    mutate: make it so

Decision making (skip / defer / block / dry-run) lives in the registry
so apply and dry-run can never drift apart.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from wsmigrate.adapters.shell.command import CommandResult
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.models.action import ActionKind, ConvergenceAction, Receipt


@dataclass
class ActionContext:
    """Everything an adapter needs for one action."""

    action: ConvergenceAction
    ctx: ExecutionContext
    blobs: Mapping[str, bytes] = field(default_factory=dict)

    @property
    def desired(self) -> dict:
        return self.action.desired

    def blob(self, key: str) -> bytes:
        """Bytes of the blob referenced by ``desired[key]``."""
        return self.blobs[self.action.desired[key]]


class DecisionState(str, Enum):
    SATISFIED = "satisfied"
    DRIFT = "drift"
    BLOCKED = "blocked"
    INVALID = "invalid"


@dataclass
class Decision:
    """Result of a read-only check."""

    state: DecisionState
    detail: str = ""

    @classmethod
    def satisfied(cls, detail: str = "") -> Decision:
        return cls(DecisionState.SATISFIED, detail)

    @classmethod
    def drift(cls, detail: str = "") -> Decision:
        return cls(DecisionState.DRIFT, detail)

    @classmethod
    def blocked(cls, detail: str) -> Decision:
        return cls(DecisionState.BLOCKED, detail)

    @classmethod
    def invalid(cls, detail: str) -> Decision:
        return cls(DecisionState.INVALID, detail)


class Adapter(ABC):
    """Abstract base class for all convergence adapters.

    Adapters perform external side effects and return receipts.
    ``apply`` never raises for expected failures: they are captured in
    the Receipt.  ``check`` may raise PermissionError when the current
    state cannot even be read; the registry reports that as blocked.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, kind, validate, check, apply
        3. Register it in the AdapterRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'package', 'file')."""

    @property
    @abstractmethod
    def kind(self) -> ActionKind:
        """The ConvergenceAction kind this adapter handles."""

    @abstractmethod
    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        """Validate the action's desired value.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def check(self, actx: ActionContext) -> Decision:
        """Compare current state with the desired value.  Read-only."""

    @abstractmethod
    def apply(self, actx: ActionContext) -> Receipt:
        """Converge to the desired value and return a receipt."""

    def needs_privilege(self, actx: ActionContext) -> bool:
        return False

    def suggested_command(self, actx: ActionContext) -> str | None:
        """What a human would type to do this by hand."""
        return None

    def provides(self, actx: ActionContext) -> list[str]:
        """Capabilities the machine gains once this action has converged.

        Precondition names, e.g. ``tool:git`` or ``vm:rustup``.  Default:
        whatever the action lists under ``desired["provides"]``.
        """
        return [str(name) for name in actx.desired.get("provides", [])]

    # ── Helpers for subclasses ───────────────────────────────────

    def _receipt(self, actx: ActionContext, result: CommandResult, output: str = "") -> Receipt:
        """Turn a command result into a receipt."""
        if result.ok:
            return Receipt.success(
                adapter=self.name,
                action_id=actx.action.id,
                output=output or result.output,
                duration_ms=result.duration_ms,
                metadata={"command": result.argv},
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=actx.action.id,
            error=result.describe(),
            duration_ms=result.duration_ms,
            metadata={
                "command": result.argv,
                "return_code": result.returncode,
                "blocked": result.password_required,
            },
        )

    @staticmethod
    def _sudo(argv: list[str], privileged: bool = True) -> str:
        cmd = shlex.join(argv)
        return f"sudo {cmd}" if privileged else cmd

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
