"""
Error taxonomy for the migration pipeline.

Only schema-level problems are raised as exceptions: a malformed
snapshot, an invalid target-state model, an unusable settings file,
or a held apply lock.  Everything local to one capture item or one
convergence action is reported structurally (Finding / ActionResult)
instead of raised.
"""

from __future__ import annotations

# ── Process exit codes ──────────────────────────────────────────

EXIT_OK = 0
EXIT_FAILED = 1          # at least one action (or check) failed
EXIT_VALIDATION = 2      # rejected before anything was touched
EXIT_LOCKED = 3          # another apply run holds the lock


class MigrateError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(MigrateError):
    """Raised when the settings file is invalid or unreadable."""


class SnapshotError(MigrateError):
    """Raised when a snapshot on disk violates the snapshot layout."""


class ValidationError(MigrateError):
    """Raised when a target-state model cannot be built or trusted.

    Always names the offending role and field so the message can be
    acted on without a debugger.
    """

    def __init__(self, role: str, field: str, message: str):
        self.role = role
        self.field = field
        self.message = message
        super().__init__(f"[{role}] {field}: {message}")

    def to_dict(self) -> dict:
        return {"role": self.role, "field": self.field, "message": self.message}


class LockHeldError(MigrateError):
    """Raised when the apply lock is already held by another run."""
