"""
Run ledger — one NDJSON line per pipeline run.

``<state_dir>/audit.ndjson`` receives an entry after every capture,
normalize, reconcile and verify.  The file is only ever appended to,
so it doubles as the machine's migration history.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


def generate_operation_id() -> str:
    """``op-YYYYmmdd-HHMMSS-xxxxxx``: sortable, unique per run."""
    stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"op-{stamp}-{uuid.uuid4().hex[:6]}"


class AuditEntry(BaseModel):
    """What one run did and how it ended."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation_type: str = ""            # capture | normalize | reconcile | verify
    mode: str = ""                      # reconcile only: apply | dry-run
    roles: list[str] = Field(default_factory=list)
    status: str = ""                    # ok | partial | failed
    summary: dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Appends to, and reads back, the run ledger in ``state_dir``."""

    def __init__(self, state_dir: Path):
        self._path = state_dir / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append ``entry``.  Losing a ledger line is logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False, sort_keys=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error("Could not append to %s: %s", self._path, e)
            return
        logger.debug("Ledger: %s %s", entry.operation_type, entry.operation_id)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        entries = []
        for number, line in self._lines():
            try:
                entries.append(AuditEntry.model_validate_json(line))
            except PydanticValidationError as e:
                logger.warning("%s:%d is not a ledger entry (%s)", self._path, number, e.error_count())
        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        return sum(1 for _ in self._lines())

    def _lines(self) -> Iterator[tuple[int, str]]:
        try:
            with self._path.open(encoding="utf-8") as f:
                for number, raw in enumerate(f, start=1):
                    if raw.strip():
                        yield number, raw.strip()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Could not read %s: %s", self._path, e)
