"""
Verification engine — does the machine agree with the model?

Read-only.  Uses the same adapter checks reconcile uses, so "pass"
means exactly "reconcile would report unchanged".  Manual-only actions
and checks that cannot be read without privilege are listed as
requires-human-check, never passed silently.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from wsmigrate.adapters.base import ActionContext
from wsmigrate.adapters.registry import AdapterRegistry, default_registry
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.probe import probe
from wsmigrate.core.engine.reconcile import Reprobe, select_roles
from wsmigrate.core.models.report import CheckResult, VerificationReport
from wsmigrate.core.models.target import Role, TargetStateModel

logger = logging.getLogger(__name__)


def verify(
    model: TargetStateModel,
    ctx: ExecutionContext,
    roles: Iterable[Role | str] | None = None,
    registry: AdapterRegistry | None = None,
    reprobe: Reprobe | None = probe,
    operation_id: str = "",
) -> VerificationReport:
    """Check every action of the selected roles against the live machine."""
    selected = select_roles(model, roles)
    registry = registry or default_registry()
    if reprobe is not None:
        ctx = ctx.with_capabilities(reprobe(ctx))

    checks: list[CheckResult] = []
    for role in selected:
        spec = model.role(role)
        if spec is None:
            continue
        for index, action in enumerate(spec.actions):
            actx = ActionContext(action=action, ctx=ctx, blobs=model.blobs)
            checks.append(registry.inspect(role, index, actx))

    report = VerificationReport(operation_id=operation_id, checks=checks)
    if report.agreed:
        logger.info("Verification agreed: %s", report.summary())
    else:
        logger.warning("Verification found drift: %s", report.summary())
    return report
