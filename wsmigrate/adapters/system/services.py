"""
Service adapter — ensure-service-state (systemd units).
"""

from __future__ import annotations

import logging

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.core.models.action import ActionKind, Receipt

logger = logging.getLogger(__name__)

# is-enabled states that already satisfy "enabled"
ENABLED_STATES = frozenset({"enabled", "enabled-runtime", "static", "indirect", "alias", "generated"})


class ServiceAdapter(Adapter):
    """Enable systemd units, system or per-user.

    Desired value:
        enabled (bool): only ``true`` is supported; disabling is never
            inferred from a snapshot.
        scope (str):    ``system`` (default) or ``user``.
    """

    @property
    def name(self) -> str:
        return "service"

    @property
    def kind(self) -> ActionKind:
        return ActionKind.ENSURE_SERVICE_STATE

    def _user(self, actx: ActionContext) -> bool:
        return actx.desired.get("scope", "system") == "user"

    def _systemctl(self, actx: ActionContext, *args: str) -> list[str]:
        argv = ["systemctl"]
        if self._user(actx):
            argv.append("--user")
        return [*argv, *args]

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        if actx.desired.get("enabled", True) is not True:
            return False, "Only enabled=true is supported"
        if actx.desired.get("scope", "system") not in ("system", "user"):
            return False, f"Unknown scope '{actx.desired.get('scope')}'"
        return True, ""

    def check(self, actx: ActionContext) -> Decision:
        result = actx.ctx.runner.run(self._systemctl(actx, "is-enabled", actx.action.target))
        state = result.output.splitlines()[0] if result.output else "unknown"
        if state in ENABLED_STATES:
            return Decision.satisfied(state)
        return Decision.drift(state)

    def needs_privilege(self, actx: ActionContext) -> bool:
        return not self._user(actx) and not actx.ctx.capabilities.is_root

    def suggested_command(self, actx: ActionContext) -> str | None:
        argv = self._systemctl(actx, "enable", actx.action.target)
        return self._sudo(argv, privileged=not self._user(actx))

    def apply(self, actx: ActionContext) -> Receipt:
        result = actx.ctx.runner.run(
            self._systemctl(actx, "enable", actx.action.target),
            privileged=not self._user(actx),
        )
        return self._receipt(actx, result, output=f"enabled {actx.action.target}")
