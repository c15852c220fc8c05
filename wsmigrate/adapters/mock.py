"""
Mock adapter — test double for any action kind.

Keeps an in-memory "converged" set: ``check`` reports satisfied for
targets in the set and ``apply`` adds the target to it.  Individual
targets can be configured to fail, to raise, or to need privilege.
"""

from __future__ import annotations

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.core.models.action import ActionKind, Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing."""

    def __init__(
        self,
        kind: ActionKind = ActionKind.RUN_IDEMPOTENT_COMMAND,
        adapter_name: str = "mock",
        converged: set[str] | None = None,
    ):
        self._kind = kind
        self._name = adapter_name
        self.converged: set[str] = set(converged or ())
        self._failures: dict[str, str] = {}
        self._raises: dict[str, Exception] = {}
        self._privileged: set[str] = set()
        self._call_log: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> ActionKind:
        return self._kind

    @property
    def call_log(self) -> list[str]:
        """Targets this mock was asked to apply, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def set_failure(self, target: str, error: str = "Mock failure") -> None:
        self._failures[target] = error

    def set_raises(self, target: str, exc: Exception) -> None:
        """Make check() raise for this target."""
        self._raises[target] = exc

    def set_privileged(self, target: str) -> None:
        self._privileged.add(target)

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        return True, ""

    def check(self, actx: ActionContext) -> Decision:
        target = actx.action.target
        if target in self._raises:
            raise self._raises[target]
        if target in self.converged:
            return Decision.satisfied()
        return Decision.drift(f"{target} not converged")

    def needs_privilege(self, actx: ActionContext) -> bool:
        return actx.action.target in self._privileged

    def suggested_command(self, actx: ActionContext) -> str | None:
        return f"mock-apply {actx.action.target}"

    def apply(self, actx: ActionContext) -> Receipt:
        target = actx.action.target
        self._call_log.append(target)
        if target in self._failures:
            return Receipt.failure(adapter=self._name, action_id=actx.action.id, error=self._failures[target])
        self.converged.add(target)
        return Receipt.success(adapter=self._name, action_id=actx.action.id, output="[mock] converged")

    def reset(self) -> None:
        self.converged.clear()
        self._failures.clear()
        self._raises.clear()
        self._call_log.clear()
