"""
Adapter registry — central dispatch for all convergence actions.

The registry is the single point of adapter management and the single
place outcomes are decided.  ``converge`` is used by both apply and
dry-run, so a dry-run report is exactly what an apply would do with
the last step (the mutation) left out.  ``inspect`` is the read-only
counterpart used by verification.
"""

from __future__ import annotations

import logging
import time

from wsmigrate.adapters.base import ActionContext, Adapter, Decision, DecisionState
from wsmigrate.core.models.action import ActionKind, Receipt
from wsmigrate.core.models.report import (
    ActionResult,
    CheckResult,
    CheckStatus,
    Outcome,
)
from wsmigrate.core.models.target import Role

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters, keyed by action kind."""

    def __init__(self) -> None:
        self._adapters: dict[ActionKind, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        kind = adapter.kind
        if kind in self._adapters:
            logger.warning("Overwriting existing adapter for %s", kind.value)
        self._adapters[kind] = adapter
        logger.debug("Registered adapter: %s → %s", kind.value, adapter.name)

    def get(self, kind: ActionKind) -> Adapter | None:
        return self._adapters.get(kind)

    def list_adapters(self) -> list[str]:
        return [a.name for a in self._adapters.values()]

    def provides(self, actx: ActionContext) -> list[str]:
        """Capabilities ``actx.action`` brings once converged.  Never raises."""
        adapter = self._adapters.get(actx.action.kind)
        if adapter is None:
            return []
        try:
            return adapter.provides(actx)
        except Exception as e:
            logger.warning("Adapter %s could not list what %s provides: %s", adapter.name, actx.action.id, e)
            return []

    # ── Decision logic ───────────────────────────────────────────

    def converge(
        self,
        role: Role,
        index: int,
        actx: ActionContext,
        dry_run: bool = False,
    ) -> ActionResult:
        """Decide and (unless dry-run) perform one action.  Never raises.

        Order of decisions:
            1. precondition capability absent   → skipped
            2. manual-only                      → deferred
            3. no adapter / invalid desired     → failed
            4. check: satisfied                 → unchanged
                      unreadable / blocked      → blocked
            5. needs privilege, cannot escalate → blocked
            6. dry-run                          → would-change
            7. apply: ok → applied, else failed (blocked if sudo refused)
        """
        action = actx.action
        start = time.monotonic()

        def result(
            outcome: Outcome,
            detail: str = "",
            error: str | None = None,
            suggested: str | None = None,
        ) -> ActionResult:
            return ActionResult(
                role=role,
                index=index,
                action_id=action.id,
                kind=action.kind,
                target=action.target,
                outcome=outcome,
                detail=detail,
                error=error,
                duration_ms=int((time.monotonic() - start) * 1000),
                source_unit=action.source_unit,
                finding_id=action.finding_id,
                suggested_command=suggested,
            )

        caps = actx.ctx.capabilities
        if action.precondition and not caps.has(action.precondition):
            return result(Outcome.SKIPPED, f"precondition '{action.precondition}' not met")

        if action.is_manual:
            return result(
                Outcome.DEFERRED,
                action.description,
                suggested=action.desired.get("suggested_command"),
            )

        adapter = self._adapters.get(action.kind)
        if adapter is None:
            return result(Outcome.FAILED, error=f"No adapter registered for '{action.kind.value}'")

        try:
            valid, msg = adapter.validate(actx)
        except Exception as e:
            return result(Outcome.FAILED, error=f"Validation error: {e}")
        if not valid:
            return result(Outcome.FAILED, error=f"Validation failed: {msg}")

        suggested = _suggest(adapter, actx)

        decision = _safe_check(adapter, actx)
        if decision.state == DecisionState.SATISFIED:
            return result(Outcome.UNCHANGED, decision.detail)
        if decision.state == DecisionState.BLOCKED:
            return result(Outcome.BLOCKED, decision.detail, suggested=suggested)
        if decision.state == DecisionState.INVALID:
            return result(Outcome.FAILED, error=decision.detail)

        if adapter.needs_privilege(actx) and not caps.can_escalate:
            return result(
                Outcome.BLOCKED,
                "requires elevated privilege",
                suggested=suggested,
            )

        if dry_run:
            return result(Outcome.WOULD_CHANGE, decision.detail)

        try:
            receipt = adapter.apply(actx)
        except Exception as e:
            # Adapters should never raise, but one action must not sink the run
            logger.error("Adapter %s raised during apply of %s: %s", adapter.name, action.id, e)
            receipt = Receipt.failure(
                adapter=adapter.name,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        if receipt.ok:
            return result(Outcome.APPLIED, receipt.output or decision.detail)
        if receipt.metadata.get("blocked"):
            return result(Outcome.BLOCKED, receipt.error or "", suggested=suggested)
        return result(Outcome.FAILED, error=receipt.error)

    def inspect(self, role: Role, index: int, actx: ActionContext) -> CheckResult:
        """Read-only verification of one action.  Never raises."""
        action = actx.action

        def result(status: CheckStatus, detail: str = "") -> CheckResult:
            return CheckResult(
                role=role,
                index=index,
                action_id=action.id,
                kind=action.kind,
                target=action.target,
                status=status,
                detail=detail,
            )

        if action.precondition and not actx.ctx.capabilities.has(action.precondition):
            return result(CheckStatus.SKIPPED, f"precondition '{action.precondition}' not met")
        if action.is_manual:
            return result(CheckStatus.HUMAN, action.description)

        adapter = self._adapters.get(action.kind)
        if adapter is None:
            return result(CheckStatus.ERROR, f"No adapter registered for '{action.kind.value}'")

        decision = _safe_check(adapter, actx)
        if decision.state == DecisionState.SATISFIED:
            return result(CheckStatus.PASS, decision.detail)
        if decision.state == DecisionState.DRIFT:
            return result(CheckStatus.FAIL, decision.detail)
        if decision.state == DecisionState.BLOCKED:
            # cannot be read mechanically, so a person has to look
            return result(CheckStatus.HUMAN, decision.detail)
        return result(CheckStatus.ERROR, decision.detail)


def _safe_check(adapter: Adapter, actx: ActionContext) -> Decision:
    """``adapter.check`` with unreadable state as blocked and crashes as invalid."""
    try:
        return adapter.check(actx)
    except PermissionError as e:
        return Decision.blocked(f"permission denied: {e.filename or e}")
    except Exception as e:
        logger.error("Adapter %s raised during check of %s: %s", adapter.name, actx.action.id, e)
        return Decision.invalid(f"Check error: {e}")


def _suggest(adapter: Adapter, actx: ActionContext) -> str | None:
    try:
        return adapter.suggested_command(actx)
    except Exception:
        logger.debug("No suggestion for %s", actx.action.id, exc_info=True)
        return None


def default_registry() -> AdapterRegistry:
    """Registry with every built-in adapter."""
    from wsmigrate.adapters.shell.idempotent import CommandAdapter
    from wsmigrate.adapters.shell.filesystem import FileAdapter
    from wsmigrate.adapters.system.packages import PackageAdapter
    from wsmigrate.adapters.system.repos import RepoAdapter
    from wsmigrate.adapters.system.services import ServiceAdapter
    from wsmigrate.adapters.system.sysctl import SysctlAdapter

    registry = AdapterRegistry()
    registry.register(PackageAdapter())
    registry.register(RepoAdapter())
    registry.register(FileAdapter())
    registry.register(ServiceAdapter())
    registry.register(SysctlAdapter())
    registry.register(CommandAdapter())
    return registry
