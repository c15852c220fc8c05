"""
Tests for the on-disk stores: snapshot, model, audit ledger, apply lock.
"""

import json
import os
from pathlib import Path

import pytest
import yaml
from conftest import file_payload, make_snapshot

from wsmigrate.core.engine.normalize import normalize
from wsmigrate.core.errors import LockHeldError, SnapshotError, ValidationError
from wsmigrate.core.models.snapshot import CaptureRecord, CaptureUnit, Finding, content_digest
from wsmigrate.core.persistence.atomic import write_bytes, write_json
from wsmigrate.core.persistence.audit import AuditEntry, AuditWriter, generate_operation_id
from wsmigrate.core.persistence.lock import LOCK_FILE, ApplyLock
from wsmigrate.core.persistence.model_store import VARS_FILE, blob_path, load_model, save_model
from wsmigrate.core.persistence.snapshot_store import MANIFEST, load_snapshot, save_snapshot


@pytest.fixture
def zshrc_snapshot():
    relpath, payload = file_payload("~/.zshrc", b"export EDITOR=vim\n", 0o644)
    return make_snapshot(
        CaptureRecord(
            unit=CaptureUnit.SHELL,
            files={relpath: payload},
            facts={"login_shell": "/bin/zsh"},
            findings=[Finding.make(CaptureUnit.SHELL, "~/.zsh_secrets", "looks like a secret")],
        ),
        CaptureRecord(unit=CaptureUnit.PACKAGE, facts={"user_installed": ["git"]}),
    )


# ── Atomic writes ───────────────────────────────────────────────


class TestAtomic:
    def test_write_creates_parents(self, tmp_path: Path):
        target = tmp_path / "a" / "b" / "c.bin"
        write_bytes(target, b"data", mode=0o600)
        assert target.read_bytes() == b"data"
        assert target.stat().st_mode & 0o777 == 0o600
        assert [p.name for p in target.parent.iterdir()] == ["c.bin"]

    def test_json_sorted(self, tmp_path: Path):
        write_json(tmp_path / "x.json", {"b": 1, "a": 2})
        assert (tmp_path / "x.json").read_text() == '{\n  "a": 2,\n  "b": 1\n}\n'


# ── Snapshot store ──────────────────────────────────────────────


class TestSnapshotStore:
    def test_round_trip(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path / "snap")
        loaded = load_snapshot(tmp_path / "snap")

        shell = loaded.record(CaptureUnit.SHELL)
        [payload] = shell.files.values()
        assert payload.dest == "~/.zshrc"
        assert payload.data == b"export EDITOR=vim\n"
        assert shell.findings == zshrc_snapshot.record(CaptureUnit.SHELL).findings
        assert loaded.manifest == zshrc_snapshot.manifest

    def test_layout(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        assert (tmp_path / MANIFEST).is_file()
        for name in ("facts.json", "findings.json", "files.json"):
            assert (tmp_path / "shell" / name).is_file()
        index = json.loads((tmp_path / "shell" / "files.json").read_text())
        [meta] = index.values()
        assert meta["digest"] == content_digest(b"export EDITOR=vim\n")

    def test_missing_manifest(self, tmp_path: Path):
        with pytest.raises(SnapshotError, match="manifest.json"):
            load_snapshot(tmp_path)

    def test_unknown_unit_directory(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        (tmp_path / "browsers").mkdir()
        with pytest.raises(SnapshotError, match="Unknown capture unit directory: browsers"):
            load_snapshot(tmp_path)

    def test_hidden_directories_ignored(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        (tmp_path / ".git").mkdir()
        assert set(load_snapshot(tmp_path).records) == {CaptureUnit.SHELL, CaptureUnit.PACKAGE}

    def test_tampered_payload(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        [payload_file] = [p for p in (tmp_path / "shell" / "files").rglob("*") if p.is_file()]
        payload_file.write_bytes(b"rm -rf ~\n")
        with pytest.raises(SnapshotError, match="does not match its recorded digest"):
            load_snapshot(tmp_path)

    def test_unit_listed_but_missing(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        for f in (tmp_path / "package").iterdir():
            f.unlink()
        (tmp_path / "package").rmdir()
        with pytest.raises(SnapshotError, match="Manifest lists unit 'package'"):
            load_snapshot(tmp_path)

    def test_resave_replaces_earlier_capture(self, tmp_path: Path, zshrc_snapshot):
        target = tmp_path / "snap"
        save_snapshot(zshrc_snapshot, target)
        shell_only = make_snapshot(zshrc_snapshot.record(CaptureUnit.SHELL))
        save_snapshot(shell_only, target)

        loaded = load_snapshot(target)
        assert set(loaded.records) == set(loaded.manifest.units) == {CaptureUnit.SHELL}
        assert not (target / "package").exists()
        assert [p.name for p in tmp_path.iterdir()] == ["snap"]

    def test_refuses_to_replace_other_directory(self, tmp_path: Path, zshrc_snapshot):
        (tmp_path / "notes.txt").write_text("keep me\n")
        with pytest.raises(SnapshotError, match="holds no manifest.json"):
            save_snapshot(zshrc_snapshot, tmp_path)
        assert (tmp_path / "notes.txt").read_text() == "keep me\n"

    def test_unit_directory_not_in_manifest(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        write_json(tmp_path / "audio" / "facts.json", {"audio_stack": "pipewire"})
        with pytest.raises(SnapshotError, match="'audio' is not listed"):
            load_snapshot(tmp_path)

    def test_corrupt_json(self, tmp_path: Path, zshrc_snapshot):
        save_snapshot(zshrc_snapshot, tmp_path)
        (tmp_path / "package" / "facts.json").write_text("{not json")
        with pytest.raises(SnapshotError, match="Cannot read"):
            load_snapshot(tmp_path)


# ── Model store ─────────────────────────────────────────────────


class TestModelStore:
    def test_round_trip(self, tmp_path: Path, zshrc_snapshot):
        model = normalize(zshrc_snapshot)
        save_model(model, tmp_path)

        loaded = load_model(tmp_path)
        assert [(r, i, a.id) for r, i, a in loaded.all_actions()] == [
            (r, i, a.id) for r, i, a in model.all_actions()
        ]
        assert loaded.dependencies == model.dependencies
        assert loaded.blobs == model.blobs

    def test_blob_layout(self, tmp_path: Path, zshrc_snapshot):
        model = normalize(zshrc_snapshot)
        save_model(model, tmp_path)
        digest = content_digest(b"export EDITOR=vim\n")
        assert blob_path(tmp_path, digest).read_bytes() == b"export EDITOR=vim\n"
        assert blob_path(tmp_path, digest).parent.name == digest[:2]

    def test_vars_is_plain_yaml(self, tmp_path: Path, zshrc_snapshot):
        save_model(normalize(zshrc_snapshot), tmp_path)
        data = yaml.safe_load((tmp_path / VARS_FILE).read_text())
        assert "roles" in data
        assert "blobs" not in data

    def test_missing_vars(self, tmp_path: Path):
        with pytest.raises(ValidationError) as exc:
            load_model(tmp_path)
        assert exc.value.role == "model"
        assert exc.value.field == VARS_FILE

    def test_corrupt_blob(self, tmp_path: Path, zshrc_snapshot):
        save_model(normalize(zshrc_snapshot), tmp_path)
        digest = content_digest(b"export EDITOR=vim\n")
        blob_path(tmp_path, digest).write_bytes(b"tampered\n")
        with pytest.raises(ValidationError, match="is corrupt"):
            load_model(tmp_path)

    def test_missing_blob(self, tmp_path: Path, zshrc_snapshot):
        save_model(normalize(zshrc_snapshot), tmp_path)
        blob_path(tmp_path, content_digest(b"export EDITOR=vim\n")).unlink()
        with pytest.raises(ValidationError) as exc:
            load_model(tmp_path)
        assert exc.value.role == "shell"


# ── Audit ledger ────────────────────────────────────────────────


class TestAudit:
    def test_append_only(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(operation_id="op-1", operation_type="capture", status="ok"))
        writer.write(AuditEntry(operation_id="op-2", operation_type="reconcile", mode="apply"))

        entries = writer.read_all()
        assert [e.operation_id for e in entries] == ["op-1", "op-2"]
        assert writer.entry_count() == 2
        assert [e.operation_id for e in writer.read_recent(1)] == ["op-2"]

    def test_corrupt_line_skipped(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(operation_id="op-1"))
        with writer.path.open("a") as f:
            f.write("{broken\n")
        writer.write(AuditEntry(operation_id="op-2"))
        assert [e.operation_id for e in writer.read_all()] == ["op-1", "op-2"]

    def test_empty(self, tmp_state_dir: Path):
        assert AuditWriter(tmp_state_dir).read_all() == []
        assert AuditWriter(tmp_state_dir).entry_count() == 0

    def test_operation_ids_unique(self):
        ids = {generate_operation_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("op-") for i in ids)


# ── Apply lock ──────────────────────────────────────────────────


class TestApplyLock:
    def test_acquire_and_release(self, tmp_state_dir: Path):
        with ApplyLock(tmp_state_dir) as lock:
            assert lock.path.read_text().strip() == str(os.getpid())
        assert not (tmp_state_dir / LOCK_FILE).exists()

    def test_held_by_live_process(self, tmp_state_dir: Path):
        (tmp_state_dir / LOCK_FILE).write_text(f"{os.getpid()}\n")
        with pytest.raises(LockHeldError, match="holds"):
            ApplyLock(tmp_state_dir).acquire()

    def test_stale_lock_taken_over(self, tmp_state_dir: Path, monkeypatch):
        from wsmigrate.core.persistence import lock as lock_module

        (tmp_state_dir / LOCK_FILE).write_text("999999\n")
        monkeypatch.setattr(lock_module, "_alive", lambda pid: False)
        with ApplyLock(tmp_state_dir) as lock:
            assert lock.path.read_text().strip() == str(os.getpid())

    def test_fresh_lock_survives_a_late_takeover(self, tmp_state_dir: Path, monkeypatch):
        from wsmigrate.core.persistence import lock as lock_module

        # another run replaced the stale lock after this one read the old pid
        other = os.getppid()
        (tmp_state_dir / LOCK_FILE).write_text(f"{other}\n")
        reads = iter([999999])
        real_read = lock_module._read_pid
        monkeypatch.setattr(lock_module, "_read_pid", lambda path: next(reads, None) or real_read(path))
        monkeypatch.setattr(lock_module, "_alive", lambda pid: pid == other)

        with pytest.raises(LockHeldError, match=f"pid {other}"):
            ApplyLock(tmp_state_dir).acquire()
        assert (tmp_state_dir / LOCK_FILE).read_text().strip() == str(other)
        assert [p.name for p in tmp_state_dir.iterdir()] == [LOCK_FILE]

    def test_garbage_lock_taken_over(self, tmp_state_dir: Path):
        (tmp_state_dir / LOCK_FILE).write_text("not a pid\n")
        with ApplyLock(tmp_state_dir):
            pass
        assert not (tmp_state_dir / LOCK_FILE).exists()

    def test_release_without_acquire_leaves_file(self, tmp_state_dir: Path):
        (tmp_state_dir / LOCK_FILE).write_text(f"{os.getpid()}\n")
        ApplyLock(tmp_state_dir).release()
        assert (tmp_state_dir / LOCK_FILE).exists()
