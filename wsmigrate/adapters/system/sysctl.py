"""
Sysctl adapter — ensure-sysctl-value.

Sets the running kernel value.  Persistence across reboots comes from
the sysctl.d drop-ins placed by the system role's file actions.
"""

from __future__ import annotations

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.core.models.action import ActionKind, Receipt


def normalize_value(value: str) -> str:
    """``1   0  0`` and ``1 0 0`` are the same sysctl value."""
    return " ".join(str(value).split())


class SysctlAdapter(Adapter):

    @property
    def name(self) -> str:
        return "sysctl"

    @property
    def kind(self) -> ActionKind:
        return ActionKind.ENSURE_SYSCTL_VALUE

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        if "value" not in actx.desired:
            return False, "Missing required desired value: 'value'"
        if "=" in actx.action.target or not actx.action.target:
            return False, f"Invalid sysctl key: {actx.action.target!r}"
        return True, ""

    def check(self, actx: ActionContext) -> Decision:
        result = actx.ctx.runner.run(["sysctl", "-n", actx.action.target])
        if not result.ok:
            return Decision.drift(result.describe())
        current = normalize_value(result.stdout)
        desired = normalize_value(actx.desired["value"])
        if current == desired:
            return Decision.satisfied(current)
        return Decision.drift(f"{current} → {desired}")

    def needs_privilege(self, actx: ActionContext) -> bool:
        return not actx.ctx.capabilities.is_root

    def _argv(self, actx: ActionContext) -> list[str]:
        return ["sysctl", "-w", f"{actx.action.target}={normalize_value(actx.desired['value'])}"]

    def suggested_command(self, actx: ActionContext) -> str | None:
        return self._sudo(self._argv(actx))

    def apply(self, actx: ActionContext) -> Receipt:
        result = actx.ctx.runner.run(self._argv(actx), privileged=True)
        return self._receipt(actx, result)
