"""
Target-State Model store.

Layout::

    <dir>/vars.yml                     source, dependencies, role → actions
    <dir>/blobs/<aa>/<sha256>          content-addressed payloads

Loading re-runs the structural checks (role graph, blob references)
so a hand-edited or partially copied model is rejected before any
action runs.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from wsmigrate.core.engine.normalize import check_model
from wsmigrate.core.errors import ValidationError
from wsmigrate.core.models.snapshot import content_digest
from wsmigrate.core.models.target import TargetStateModel
from wsmigrate.core.persistence.atomic import write_bytes

logger = logging.getLogger(__name__)

VARS_FILE = "vars.yml"
BLOB_DIR = "blobs"


def blob_path(directory: Path, digest: str) -> Path:
    return directory / BLOB_DIR / digest[:2] / digest


def save_model(model: TargetStateModel, directory: Path) -> Path:
    """Write vars.yml and every blob.  Returns the vars.yml path."""
    for digest, data in sorted(model.blobs.items()):
        path = blob_path(directory, digest)
        if not path.is_file():
            write_bytes(path, data)

    vars_path = directory / VARS_FILE
    content = yaml.safe_dump(
        model.model_dump(mode="json", exclude_none=True),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )
    write_bytes(vars_path, content.encode("utf-8"))
    logger.info("Model written to %s (%d blobs)", directory, len(model.blobs))
    return vars_path


def load_model(directory: Path) -> TargetStateModel:
    """Read a model directory.

    Raises:
        ValidationError: unreadable vars.yml, schema mismatch, corrupt
            or missing blob, cyclic role graph.
    """
    vars_path = directory / VARS_FILE
    try:
        raw = yaml.safe_load(vars_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError("model", VARS_FILE, f"cannot read: {e}") from e

    try:
        model = TargetStateModel.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"])
        raise ValidationError("model", field or VARS_FILE, first["msg"]) from e

    blobs: dict[str, bytes] = {}
    for role, index, action in model.all_actions():
        for digest in action.blob_refs():
            path = blob_path(directory, digest)
            if not path.is_file():
                continue            # reported by check_model as dangling
            data = path.read_bytes()
            if content_digest(data) != digest:
                raise ValidationError(role.value, f"actions[{index}]", f"blob {digest} is corrupt")
            blobs[digest] = data
    model.blobs = blobs

    check_model(model)
    logger.debug("Loaded model from %s: %d actions", directory, len(model.all_actions()))
    return model
