"""
Apply lock — single writer per target machine.

The lock file is created with O_EXCL and holds the owner's pid.  It
is removed on release; a lock left behind by a dead process is taken
over.  Taking over first moves the stale file aside with a rename, so
two runs breaking the same stale lock cannot remove each other's fresh
one.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from wsmigrate.core.errors import LockHeldError

logger = logging.getLogger(__name__)

LOCK_FILE = "apply.lock"

_ATTEMPTS = 3


class ApplyLock:
    """Context manager guarding the apply phase."""

    def __init__(self, state_dir: Path):
        self.path = state_dir / LOCK_FILE
        self._held = False

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(_ATTEMPTS):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = _read_pid(self.path)
                if owner is not None and _alive(owner):
                    raise self._held_by(owner) from None
                self._break_stale(owner)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(f"{os.getpid()}\n")
            self._held = True
            logger.debug("Acquired apply lock %s", self.path)
            return
        raise LockHeldError(f"Could not take {self.path}: another run keeps replacing it")

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False
            logger.debug("Released apply lock %s", self.path)

    def _break_stale(self, owner: int | None) -> None:
        aside = self.path.with_name(f".{self.path.name}.{os.getpid()}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return
        grabbed = _read_pid(aside)
        if grabbed is not None and grabbed != owner and _alive(grabbed):
            # a live run replaced the stale lock meanwhile: hand its lock back
            try:
                os.link(aside, self.path)
            except FileExistsError:
                pass
            aside.unlink(missing_ok=True)
            raise self._held_by(grabbed)
        logger.warning("Removing stale apply lock %s (pid %s)", self.path, owner)
        aside.unlink(missing_ok=True)

    def _held_by(self, pid: int) -> LockHeldError:
        return LockHeldError(f"Another apply run (pid {pid}) holds {self.path}")

    def __enter__(self) -> ApplyLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


def _read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
