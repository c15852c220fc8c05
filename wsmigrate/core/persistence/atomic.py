"""
Atomic file writes.

Write to a temp file in the target directory, then rename over the
destination, so a crash mid-write never leaves a half-written file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def write_bytes(path: Path, data: bytes, mode: int | None = None) -> None:
    """Atomically write ``data`` to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".wsm_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if mode is not None:
            tmp.chmod(mode)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to write %s", path)
        raise


def write_json(path: Path, data: Any) -> None:
    """Atomically write JSON with sorted keys (stable bytes for stable input)."""
    content = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    write_bytes(path, content.encode("utf-8"))
