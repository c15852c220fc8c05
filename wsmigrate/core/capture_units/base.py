"""
Capture unit base — the read-only contract every unit follows.

A unit declares its ``sources`` (allow-listed roots) and implements
``capture(reader)``.  All reads go through the UnitReader, which:

    - refuses paths outside the declared sources
    - turns per-item failures (permission denied, vanished file,
      oversized file) into Findings instead of exceptions
    - runs external commands through the context's runner with the
      unit's remaining time budget
    - emits everything in sorted order so unchanged machines give
      byte-identical records
"""

from __future__ import annotations

import fnmatch
import logging
import os
import stat
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from wsmigrate.adapters.shell.command import CommandResult
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.models.settings import CaptureSettings
from wsmigrate.core.models.snapshot import CaptureRecord, CaptureUnit, FilePayload, Finding

logger = logging.getLogger(__name__)


class CaptureTimeout(Exception):
    """Raised inside a unit when its time budget is used up."""


def relpath_for(dest: str) -> str:
    """Snapshot-relative path for a destination: ``home/...`` or ``root/...``."""
    if dest.startswith("~/"):
        return "home/" + dest[2:]
    return "root/" + dest.lstrip("/")


def dest_for(relpath: str) -> str:
    """Inverse of relpath_for."""
    if relpath.startswith("home/"):
        return "~/" + relpath[5:]
    if relpath.startswith("root/"):
        return "/" + relpath[5:]
    raise ValueError(f"Snapshot file path must start with home/ or root/: {relpath!r}")


def is_under(dest: str, root: str) -> bool:
    return dest == root or dest.startswith(root.rstrip("/") + "/")


class UnitReader:
    """Guarded, finding-producing read access for one capture unit."""

    def __init__(
        self,
        unit: CaptureUnit,
        sources: tuple[str, ...],
        ctx: ExecutionContext,
        settings: CaptureSettings,
        deadline: float | None = None,
    ):
        self.unit = unit
        self.ctx = ctx
        self.settings = settings
        self._sources = sources
        self._deadline = deadline
        self._files: dict[str, FilePayload] = {}
        self._facts: dict[str, Any] = {}
        self._findings: dict[str, Finding] = {}

    @property
    def caps(self):
        return self.ctx.capabilities

    # ── Budget ───────────────────────────────────────────────────

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return self._deadline - time.monotonic()

    def _tick(self) -> None:
        left = self.remaining()
        if left is not None and left <= 0:
            raise CaptureTimeout(f"unit '{self.unit.value}' exceeded its time budget")

    def _allowed(self, dest: str) -> None:
        if not any(is_under(dest, root) for root in self._sources):
            raise ValueError(f"{dest} is outside the declared sources of unit '{self.unit.value}'")

    # ── Results ──────────────────────────────────────────────────

    def fact(self, key: str, value: Any) -> None:
        self._facts[key] = value

    def finding(self, item: str, reason: str, suggested_command: str | None = None) -> Finding:
        f = Finding.make(self.unit, item, reason, suggested_command)
        self._findings[f.id] = f
        return f

    def record(self) -> CaptureRecord:
        findings = sorted(self._findings.values(), key=lambda f: (f.item, f.reason))
        return CaptureRecord(
            unit=self.unit,
            files=dict(sorted(self._files.items())),
            facts=dict(sorted(self._facts.items())),
            findings=findings,
        )

    # ── Filesystem ───────────────────────────────────────────────

    def exists(self, dest: str) -> bool:
        self._allowed(dest)
        return self.ctx.host_path(dest).exists()

    def list_dir(self, dest: str) -> list[str]:
        """Sorted entry names of a directory; [] when absent."""
        self._allowed(dest)
        self._tick()
        path = self.ctx.host_path(dest)
        try:
            return sorted(os.listdir(path))
        except FileNotFoundError:
            return []
        except NotADirectoryError:
            return []
        except PermissionError:
            self.finding(dest, "permission denied")
            return []

    def peek(self, dest: str, size: int = 2) -> bytes:
        """First bytes of a file; b"" when unreadable.  Records nothing."""
        self._allowed(dest)
        try:
            with self.ctx.host_path(dest).open("rb") as f:
                return f.read(size)
        except OSError:
            return b""

    def read_text(self, dest: str) -> str | None:
        """Read a file for parsing only (not placed on the target)."""
        data = self._read_bytes(dest)
        return None if data is None else data.decode("utf-8", errors="replace")

    def read_file(self, dest: str, mode: int | None = None, listed: bool = False) -> bytes | None:
        """Capture a file verbatim.

        An absent file is not an error, unless it was just ``listed`` by a
        directory walk: then it vanished mid-capture and becomes a Finding.
        """
        data = self._read_bytes(dest, listed)
        if data is None:
            return None
        if mode is None:
            try:
                mode = self.ctx.host_path(dest).stat().st_mode & 0o777
            except OSError:
                mode = 0o644
        self._files[relpath_for(dest)] = FilePayload(dest=dest, mode=mode, data=data)
        return data

    def read_tree(
        self,
        dest: str,
        excludes: tuple[str, ...] | list[str] = (),
        keep=None,
    ) -> int:
        """Capture every regular file under ``dest``.

        Args:
            dest: Directory to walk (must be inside the sources).
            excludes: fnmatch patterns tested against the path relative to
                ``dest`` and against each path component.
            keep: Optional predicate on the relative path; False skips the file.

        Returns:
            Number of files captured.
        """
        self._allowed(dest)
        base = self.ctx.host_path(dest)
        if not base.is_dir():
            return 0

        count = 0
        for dirpath, dirnames, filenames in os.walk(base, onerror=self._walk_error(dest)):
            self._tick()
            rel_dir = Path(dirpath).relative_to(base)
            dirnames[:] = sorted(
                d for d in dirnames if not _excluded((rel_dir / d).as_posix(), excludes)
            )
            for name in sorted(filenames):
                rel = (rel_dir / name).as_posix()
                if _excluded(rel, excludes) or (keep is not None and not keep(rel)):
                    continue
                path = Path(dirpath) / name
                if path.is_symlink() and not path.exists():
                    logger.debug("Skipping dangling symlink %s", path)
                    continue
                child = dest.rstrip("/") + "/" + rel
                if self.read_file(child, listed=True) is not None:
                    count += 1
        return count

    def _walk_error(self, dest: str):
        def onerror(err: OSError) -> None:
            item = self.ctx.dest_for(Path(err.filename)) if err.filename else dest
            if isinstance(err, PermissionError):
                self.finding(item, "permission denied")
            else:
                self.finding(item, f"unreadable: {err.strerror or err}")
        return onerror

    def _read_bytes(self, dest: str, listed: bool = False) -> bytes | None:
        self._allowed(dest)
        self._tick()
        path = self.ctx.host_path(dest)
        try:
            st = path.stat()
            if not stat.S_ISREG(st.st_mode):
                return None
            if st.st_size > self.settings.max_file_bytes:
                self.finding(
                    dest,
                    f"exceeds size limit ({st.st_size} > {self.settings.max_file_bytes} bytes)",
                )
                return None
            return path.read_bytes()
        except FileNotFoundError:
            if listed:
                self.finding(dest, "file vanished")
            return None
        except PermissionError:
            self.finding(dest, "permission denied")
            return None
        except OSError as e:
            self.finding(dest, f"unreadable: {e.strerror or e}")
            return None

    # ── Commands ─────────────────────────────────────────────────

    def has_tool(self, name: str) -> bool:
        return name in self.caps.tools or self.ctx.runner.which(name) is not None

    def command(self, argv: list[str], tool: str | None = None, privileged: bool = False) -> CommandResult | None:
        """Run a read-only command.  None when the tool is not installed."""
        self._tick()
        if not self.has_tool(tool or argv[0]):
            return None
        timeout: float = self.settings.command_timeout_seconds
        left = self.remaining()
        if left is not None:
            timeout = max(1.0, min(timeout, left))
        result = self.ctx.runner.run(argv, timeout=timeout, privileged=privileged)
        if result.error and "timed out" in result.error:
            self.finding(" ".join(argv), result.error)
        return result

    def lines(self, argv: list[str], tool: str | None = None) -> list[str]:
        """Stdout lines of a successful command; [] otherwise."""
        result = self.command(argv, tool=tool)
        if result is None or not result.ok:
            return []
        return result.lines


def _excluded(rel: str, patterns) -> bool:
    if not patterns:
        return False
    parts = rel.split("/")
    for pattern in patterns:
        if fnmatch.fnmatch(rel, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


class UnitCapturer(ABC):
    """One independently captured domain of machine state.

    To add a unit:
        1. Subclass UnitCapturer, set ``unit`` and ``sources``
        2. Implement capture(reader)
        3. Add it to UNIT_CAPTURERS
    """

    unit: CaptureUnit
    sources: tuple[str, ...] = ()

    @abstractmethod
    def capture(self, reader: UnitReader) -> None:
        """Populate the reader with files, facts and findings.  Read-only."""

    def run(
        self,
        ctx: ExecutionContext,
        settings: CaptureSettings,
        timeout: float | None = None,
    ) -> CaptureRecord:
        """Capture this unit.  ``timeout`` seconds count from this call."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        reader = UnitReader(self.unit, self.sources, ctx, settings, deadline)
        self.capture(reader)
        return reader.record()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} unit={self.unit.value!r}>"
