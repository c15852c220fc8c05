"""
Normalize engine — Snapshot → TargetStateModel.

Pure and synchronous: no I/O, no subprocess, same input → same model.
Everything it needs is in the Snapshot; every per-fact decision is in
the rule table (``rules.FACT_RULES``).

The model is either fully valid or not produced at all: any problem
raises ValidationError naming the role and field.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from wsmigrate.adapters.system.repos import copr_repo_id
from wsmigrate.core.capture_units.base import relpath_for
from wsmigrate.core.engine.dag import find_cycle_members
from wsmigrate.core.engine.rules import (
    FACT_RULES,
    FILE_PRECONDITIONS,
    STAGE_FILES,
    STAGE_MANUAL,
    add_blob,
)
from wsmigrate.core.errors import ValidationError
from wsmigrate.core.models.action import ActionKind, ConvergenceAction
from wsmigrate.core.models.settings import NormalizeSettings
from wsmigrate.core.models.snapshot import CaptureRecord, CaptureUnit, Finding, Snapshot
from wsmigrate.core.models.target import (
    DEFAULT_ROLE_DEPENDENCIES,
    UNIT_ROLE,
    Role,
    RoleSpec,
    TargetStateModel,
)

logger = logging.getLogger(__name__)

_ROLE_INDEX = {role: i for i, role in enumerate(Role)}
_UNIT_INDEX = {unit: i for i, unit in enumerate(CaptureUnit)}


def normalize(snapshot: Snapshot, settings: NormalizeSettings | None = None) -> TargetStateModel:
    """Compile a Snapshot into a validated TargetStateModel.

    Raises:
        ValidationError: malformed fact, conflicting file destinations,
            missing repository for a package (when required), dangling
            blob reference or cyclic role graph.
    """
    settings = settings or NormalizeSettings()
    dependencies = _dependencies(settings)

    blobs: dict[str, bytes] = {}
    # role → [(stage, unit index, seq, action)]
    staged: dict[Role, list[tuple[int, int, int, ConvergenceAction]]] = {}
    seq = 0

    def emit(role: Role, stage: int, unit: CaptureUnit, action: ConvergenceAction) -> None:
        nonlocal seq
        seq += 1
        staged.setdefault(role, []).append((stage, _UNIT_INDEX[unit], seq, action))

    units = sorted(snapshot.records, key=lambda u: (_ROLE_INDEX[UNIT_ROLE[u]], _UNIT_INDEX[u]))
    placed: dict[str, tuple[str, Role]] = {}   # file dest → (digest, role)

    for unit in units:
        record = snapshot.records[unit]
        role = UNIT_ROLE[unit]

        for key in sorted(record.facts):
            for stage, action in _expand_fact(record, key, blobs):
                emit(FACT_RULES[(unit, key)].role, stage, unit, action.model_copy(
                    update={"source_unit": unit}
                ))

        for action in _file_actions(record, role, blobs, placed):
            emit(role, STAGE_FILES, unit, action)

        for finding in record.findings:
            emit(role, STAGE_MANUAL, unit, _manual_action(finding))

    if settings.require_repo_for_packages:
        _check_package_repos(snapshot)

    roles: dict[Role, RoleSpec] = {}
    for role in Role:
        entries = staged.get(role)
        if not entries:
            continue
        entries.sort(key=lambda e: e[:3])
        roles[role] = RoleSpec(
            role=role,
            depends_on=list(dependencies.get(role, [])),
            actions=[e[3] for e in entries],
        )

    model = TargetStateModel(
        source={
            "hostname": snapshot.manifest.hostname,
            "date": snapshot.manifest.date,
            "os_version": snapshot.manifest.os_version,
            "desktop_shell_version": snapshot.manifest.desktop_shell_version,
        },
        dependencies=dependencies,
        roles=roles,
        blobs=blobs,
    )
    check_model(model)
    logger.info(
        "Normalized %d actions across %d roles (%d blobs)",
        len(model.all_actions()), len(roles), len(blobs),
    )
    return model


def check_model(model: TargetStateModel) -> None:
    """Structural checks shared by normalize and model loading."""
    cycle = find_cycle_members(model.dependencies)
    if cycle:
        raise ValidationError(
            cycle[0].value, "dependencies",
            "cyclic role dependency among " + ", ".join(r.value for r in cycle),
        )
    for role, index, digest in model.dangling_refs():
        raise ValidationError(role.value, f"actions[{index}]", f"references missing blob {digest}")


# ── Helpers ──────────────────────────────────────────────────────


def _dependencies(settings: NormalizeSettings) -> dict[Role, list[Role]]:
    deps = {role: list(needs) for role, needs in DEFAULT_ROLE_DEPENDENCIES.items()}
    if settings.role_dependencies:
        for role, needs in settings.role_dependencies.items():
            deps[role] = list(needs)
    cycle = find_cycle_members(deps)
    if cycle:
        raise ValidationError(
            cycle[0].value, "dependencies",
            "cyclic role dependency among " + ", ".join(r.value for r in cycle),
        )
    return deps


def _expand_fact(
    record: CaptureRecord,
    key: str,
    blobs: dict[str, bytes],
) -> list[tuple[int, ConvergenceAction]]:
    unit = record.unit
    rule = FACT_RULES.get((unit, key))
    role = UNIT_ROLE[unit].value
    if rule is None:
        raise ValidationError(role, key, f"no rule for fact '{key}' of unit '{unit.value}'")
    for needed in rule.requires:
        if needed not in record.facts:
            raise ValidationError(role, key, f"requires fact '{needed}' which is missing")

    value = _validate(role, key, rule.schema, record.facts[key])
    if rule.is_reference:
        return []
    actions = rule.expand(value, blobs)
    for action in actions:
        if action.kind != rule.kind:
            raise ValidationError(
                role, key, f"expands to {action.kind.value}, rule declares {rule.kind.value}"
            )
    return [(rule.stage, action) for action in actions]


def _validate(role: str, key: str, schema: Any, value: Any) -> Any:
    try:
        return TypeAdapter(schema).validate_python(value)
    except PydanticValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        field = f"{key}.{where}" if where else key
        raise ValidationError(role, field, first["msg"]) from None


def _file_actions(
    record: CaptureRecord,
    role: Role,
    blobs: dict[str, bytes],
    placed: dict[str, tuple[str, Role]],
) -> list[ConvergenceAction]:
    actions = []
    for relpath, payload in sorted(record.files.items()):
        if relpath_for(payload.dest) != relpath:
            raise ValidationError(
                role.value, f"files[{relpath}]", f"path does not match destination {payload.dest}"
            )
        digest = add_blob(blobs, payload.data)
        seen = placed.get(payload.dest)
        if seen is not None:
            if seen[0] != digest:
                raise ValidationError(
                    role.value, f"files[{relpath}]",
                    f"{payload.dest} captured with different content by role '{seen[1].value}'",
                )
            continue
        placed[payload.dest] = (digest, role)
        actions.append(ConvergenceAction(
            kind=ActionKind.ENSURE_FILE_PRESENT,
            target=payload.dest,
            desired={"blob": digest, "mode": payload.mode},
            precondition=FILE_PRECONDITIONS.get(record.unit),
            description=f"Place {payload.dest}",
            source_unit=record.unit,
        ))
    return actions


def _manual_action(finding: Finding) -> ConvergenceAction:
    return ConvergenceAction(
        kind=ActionKind.MANUAL_ONLY,
        target=finding.item,
        desired={"reason": finding.reason, "suggested_command": finding.suggested_command},
        description=f"{finding.item}: {finding.reason}",
        source_unit=finding.unit,
        finding_id=finding.id,
    )


def _check_package_repos(snapshot: Snapshot) -> None:
    packages = snapshot.record(CaptureUnit.PACKAGE)
    names = packages.facts.get("user_installed", []) if packages else []
    if not names:
        return

    repos = snapshot.record(CaptureUnit.REPO)
    facts = repos.facts if repos else {}
    repo_ids = set(facts.get("enabled", []))
    repo_ids.update(copr_repo_id(p) for p in facts.get("copr", []))
    flavors = facts.get("rpmfusion", [])
    origins = packages.facts.get("origins", {})

    for name in names:
        origin = origins.get(name)
        if origin is None:
            ok = bool(repo_ids or flavors)
        else:
            ok = origin in repo_ids or any(origin.startswith(f"rpmfusion-{f}") for f in flavors)
        if not ok:
            raise ValidationError(
                Role.PACKAGES.value, "user_installed",
                f"package '{name}' has no enabling repository"
                + (f" ('{origin}' is not enabled)" if origin else ""),
            )
