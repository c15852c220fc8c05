"""
Snapshot store — the on-disk snapshot directory.

Layout::

    <dir>/manifest.json
    <dir>/<unit>/facts.json
    <dir>/<unit>/findings.json
    <dir>/<unit>/files.json            relpath → {dest, mode, digest}
    <dir>/<unit>/files/<relpath>       raw payload bytes

This directory is the only contract between the source machine and the
machine that runs normalize.  All JSON is written with sorted keys, so
capturing an unchanged machine twice gives identical files apart from
the manifest date.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from wsmigrate.core.errors import SnapshotError
from wsmigrate.core.models.snapshot import (
    CaptureRecord,
    CaptureUnit,
    FilePayload,
    Finding,
    Manifest,
    Snapshot,
    content_digest,
)
from wsmigrate.core.persistence.atomic import write_bytes, write_json

logger = logging.getLogger(__name__)

MANIFEST = "manifest.json"


def save_snapshot(snapshot: Snapshot, directory: Path) -> Path:
    """Write ``snapshot`` as ``directory``.  Returns the manifest path.

    The tree is built in a sibling staging directory and renamed into
    place, so an earlier snapshot at ``directory`` is replaced as a
    whole and never mixed with this one.

    Raises:
        SnapshotError: ``directory`` holds something that is not a snapshot.
    """
    if directory.is_dir() and any(directory.iterdir()) and not (directory / MANIFEST).is_file():
        raise SnapshotError(f"{directory} is not empty and holds no {MANIFEST}; refusing to replace it")
    directory.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(dir=directory.parent, prefix=f".{directory.name}.", suffix=".tmp"))
    try:
        _write_tree(snapshot, staging)
        if directory.exists():
            retired = staging.with_suffix(".old")
            directory.rename(retired)
            staging.rename(directory)
            shutil.rmtree(retired)
        else:
            staging.rename(directory)
    except Exception:
        shutil.rmtree(staging, ignore_errors=True)
        logger.error("Failed to write snapshot %s", directory)
        raise
    logger.info("Snapshot written to %s (%d units)", directory, len(snapshot.records))
    return directory / MANIFEST


def _write_tree(snapshot: Snapshot, directory: Path) -> None:
    for unit, record in snapshot.records.items():
        unit_dir = directory / unit.value
        write_json(unit_dir / "facts.json", record.facts)
        write_json(unit_dir / "findings.json", [f.model_dump(mode="json") for f in record.findings])
        index = {}
        for relpath, payload in record.files.items():
            write_bytes(unit_dir / "files" / relpath, payload.data)
            index[relpath] = {"dest": payload.dest, "mode": payload.mode, "digest": payload.digest}
        write_json(unit_dir / "files.json", index)
    write_json(directory / MANIFEST, snapshot.manifest.model_dump(mode="json"))


def load_snapshot(directory: Path) -> Snapshot:
    """Read a snapshot directory back.

    Raises:
        SnapshotError: missing manifest, unknown or unlisted unit
            directory, corrupt JSON, or a payload whose bytes do not
            match its digest.
    """
    manifest_path = directory / MANIFEST
    if not manifest_path.is_file():
        raise SnapshotError(f"No {MANIFEST} in {directory}")
    manifest = _model(Manifest, _json(manifest_path), manifest_path)

    known = {u.value for u in CaptureUnit}
    records: dict[CaptureUnit, CaptureRecord] = {}
    for entry in sorted(directory.iterdir()):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        if entry.name not in known:
            raise SnapshotError(f"Unknown capture unit directory: {entry.name}")
        unit = CaptureUnit(entry.name)
        if unit not in manifest.units:
            raise SnapshotError(f"Unit directory '{entry.name}' is not listed in {manifest_path}")
        records[unit] = _load_record(unit, entry)

    for unit in manifest.units:
        if unit not in records:
            raise SnapshotError(f"Manifest lists unit '{unit.value}' but {directory / unit.value} is missing")

    try:
        return Snapshot(manifest=manifest, records=dict(sorted(records.items(),
                        key=lambda kv: list(CaptureUnit).index(kv[0]))))
    except PydanticValidationError as e:
        raise SnapshotError(f"Invalid snapshot in {directory}: {e}") from e


def _load_record(unit: CaptureUnit, unit_dir: Path) -> CaptureRecord:
    facts = _json(unit_dir / "facts.json") if (unit_dir / "facts.json").is_file() else {}
    raw_findings = _json(unit_dir / "findings.json") if (unit_dir / "findings.json").is_file() else []
    index = _json(unit_dir / "files.json") if (unit_dir / "files.json").is_file() else {}

    findings = [_model(Finding, f, unit_dir / "findings.json") for f in raw_findings]
    files: dict[str, FilePayload] = {}
    for relpath, meta in sorted(index.items()):
        path = unit_dir / "files" / relpath
        try:
            data = path.read_bytes()
        except OSError as e:
            raise SnapshotError(f"Cannot read payload {path}: {e}") from e
        if content_digest(data) != meta.get("digest"):
            raise SnapshotError(f"Payload {path} does not match its recorded digest")
        files[relpath] = FilePayload(dest=meta["dest"], mode=meta.get("mode", 0o644), data=data)

    try:
        return CaptureRecord(unit=unit, files=files, facts=facts, findings=findings)
    except PydanticValidationError as e:
        raise SnapshotError(f"Invalid record for unit '{unit.value}': {e}") from e


def _json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Cannot read {path}: {e}") from e


def _model(cls, data, path: Path):
    try:
        return cls.model_validate(data)
    except PydanticValidationError as e:
        raise SnapshotError(f"Invalid {path.name}: {e}") from e
