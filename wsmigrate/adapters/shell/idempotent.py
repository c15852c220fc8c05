"""
Command adapter — run-idempotent-command.

Wraps a tool invocation that has no dedicated adapter (plugin manager
installs, ``usermod``, ``crontab``, extension installs...).  Every
such action must say how to tell it is already done: either a path it
``creates`` or a ``check`` command, optionally with the ``expect``-ed
output.  Without one of those the action would not be idempotent, so
validation rejects it.

Desired value:
    command (list[str]):    argv to converge; ``{user}``/``{home}`` expanded
    check (list[str]):      argv whose success means "already done"
    creates (str):          ``~/...`` or absolute path whose existence means done
    expect (str):           exact stripped stdout the check must print
    expect_blob (str):      blob digest the check's stdout must equal
    stdin_blob (str):       blob digest fed to the command's stdin
    privileged (bool):      run the command through sudo
    check_privileged (bool): run the check through sudo
"""

from __future__ import annotations

import logging

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.core.models.action import ActionKind, Receipt

logger = logging.getLogger(__name__)


class CommandAdapter(Adapter):

    @property
    def name(self) -> str:
        return "command"

    @property
    def kind(self) -> ActionKind:
        return ActionKind.RUN_IDEMPOTENT_COMMAND

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        desired = actx.desired
        command = desired.get("command")
        if not command or not isinstance(command, list):
            return False, "Missing required desired value: 'command' (argv list)"
        if not desired.get("check") and not desired.get("creates"):
            return False, "Needs 'check' or 'creates' to be idempotent"
        for key in ("stdin_blob", "expect_blob"):
            if desired.get(key) and desired[key] not in actx.blobs:
                return False, f"Blob for '{key}' is not in the blob table"
        return True, ""

    def _argv(self, actx: ActionContext, key: str) -> list[str]:
        return [actx.ctx.expand(str(a)) for a in actx.desired[key]]

    def check(self, actx: ActionContext) -> Decision:
        desired = actx.desired
        if desired.get("creates"):
            path = actx.ctx.host_path(actx.ctx.expand(desired["creates"]))
            if path.exists():
                return Decision.satisfied(f"{desired['creates']} exists")
            return Decision.drift(f"{desired['creates']} missing")

        result = actx.ctx.runner.run(
            self._argv(actx, "check"),
            privileged=bool(desired.get("check_privileged")),
        )
        if not result.ok:
            return Decision.drift(result.describe())

        if "expect" in desired:
            if result.output != str(desired["expect"]):
                return Decision.drift(f"got {result.output!r}")
        elif desired.get("expect_blob"):
            expected = actx.blob("expect_blob").decode("utf-8", errors="replace")
            if result.stdout.strip() != expected.strip():
                return Decision.drift("output differs")
        return Decision.satisfied()

    def needs_privilege(self, actx: ActionContext) -> bool:
        return bool(actx.desired.get("privileged")) and not actx.ctx.capabilities.is_root

    def suggested_command(self, actx: ActionContext) -> str | None:
        return self._sudo(self._argv(actx, "command"), privileged=bool(actx.desired.get("privileged")))

    def apply(self, actx: ActionContext) -> Receipt:
        stdin = None
        if actx.desired.get("stdin_blob"):
            stdin = actx.blob("stdin_blob").decode("utf-8", errors="replace")
        result = actx.ctx.runner.run(
            self._argv(actx, "command"),
            privileged=bool(actx.desired.get("privileged")),
            input_text=stdin,
            timeout=actx.desired.get("timeout"),
        )
        return self._receipt(actx, result)
