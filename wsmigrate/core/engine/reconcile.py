"""
Reconciliation engine — converge the target machine onto a model.

Roles run one after another in dependency order; actions inside a role
run in list order.  Every action goes through ``AdapterRegistry.converge``
which decides the outcome the same way for apply and dry-run.  Nothing
an action does (or fails to do) stops the next one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from wsmigrate.adapters.base import ActionContext
from wsmigrate.adapters.registry import AdapterRegistry, default_registry
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.dag import role_order
from wsmigrate.core.engine.escalate import manual_steps
from wsmigrate.core.engine.probe import probe
from wsmigrate.core.errors import ValidationError
from wsmigrate.core.models.capability import CapabilitySet
from wsmigrate.core.models.report import ActionResult, Outcome, ReconciliationReport
from wsmigrate.core.models.target import Role, TargetStateModel

logger = logging.getLogger(__name__)

Reprobe = Callable[[ExecutionContext], CapabilitySet]


def select_roles(model: TargetStateModel, roles: Iterable[Role | str] | None = None) -> list[Role]:
    """Selected roles in execution order.  Selection order never matters.

    Raises:
        ValidationError: unknown role name or cyclic role graph.
    """
    wanted: set[Role] = set()
    for name in roles if roles is not None else list(Role):
        try:
            wanted.add(Role(name))
        except ValueError:
            valid = ", ".join(r.value for r in Role)
            raise ValidationError(str(name), "roles", f"unknown role (valid: {valid})") from None
    try:
        order = role_order(model.dependencies)
    except ValueError as e:
        raise ValidationError("model", "dependencies", str(e)) from None
    return [role for role in order if role in wanted]


def reconcile(
    model: TargetStateModel,
    ctx: ExecutionContext,
    roles: Iterable[Role | str] | None = None,
    dry_run: bool = False,
    registry: AdapterRegistry | None = None,
    reprobe: Reprobe | None = probe,
    operation_id: str = "",
) -> ReconciliationReport:
    """Converge (or dry-run) the selected roles of ``model``.

    Args:
        model: Validated target state.
        ctx: Target machine context.
        roles: Roles to run; default every role.
        dry_run: Report would-be effects without mutating anything.
        registry: Adapter registry; default has every built-in adapter.
        reprobe: Capability probe run before each role so preconditions
            see what earlier roles installed.  None keeps ``ctx``'s
            capabilities.  Either way, capabilities that earlier
            actions declare they provide count as present.
        operation_id: Identifier carried into the report.

    Raises:
        ValidationError: Before anything runs, for a bad selection.
    """
    selected = select_roles(model, roles)
    registry = registry or default_registry()
    mode = "dry-run" if dry_run else "apply"
    logger.info("Reconcile (%s): %s", mode, ", ".join(r.value for r in selected) or "nothing")

    results: list[ActionResult] = []
    caps = ctx.capabilities
    # declared by actions already applied, or would-change in a dry-run
    provided: set[str] = set()
    for role in selected:
        spec = model.role(role)
        if spec is None or not spec.actions:
            logger.debug("Role %s has no actions", role.value)
            continue
        if reprobe is not None:
            caps = reprobe(ctx)

        for index, action in enumerate(spec.actions):
            actx = ActionContext(
                action=action,
                ctx=ctx.with_capabilities(caps.with_provided(provided)),
                blobs=model.blobs,
            )
            result = registry.converge(role, index, actx, dry_run=dry_run)
            _log_result(result)
            results.append(result)
            if result.outcome in (Outcome.APPLIED, Outcome.WOULD_CHANGE):
                provided.update(registry.provides(actx))

    report = ReconciliationReport(
        operation_id=operation_id,
        mode=mode,
        roles=selected,
        results=results,
    )
    report.manual_steps = manual_steps(report)
    logger.info("Reconcile finished: %s", report.summary())
    return report


def _log_result(result: ActionResult) -> None:
    if result.outcome == Outcome.FAILED:
        logger.error("%s %s: failed: %s", result.role.value, result.action_id, result.error)
    elif result.outcome == Outcome.BLOCKED:
        logger.warning("%s %s: blocked: %s", result.role.value, result.action_id, result.detail)
    else:
        logger.debug("%s %s: %s", result.role.value, result.action_id, result.outcome.value)
