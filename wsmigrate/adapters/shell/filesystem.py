"""
File adapter — ensure-file-present.

Places a blob verbatim at a destination with the captured mode.
Destinations under the home directory are written directly; system
destinations are written directly when running as root and through
``sudo install`` otherwise.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from wsmigrate.adapters.base import ActionContext, Adapter, Decision
from wsmigrate.core.models.action import ActionKind, Receipt
from wsmigrate.core.models.snapshot import content_digest

logger = logging.getLogger(__name__)


class FileAdapter(Adapter):
    """Verbatim file placement with receipts.

    Desired value:
        blob (str): sha256 of the content in the blob table.
        mode (int): permission bits (default 0o644).
    """

    @property
    def name(self) -> str:
        return "file"

    @property
    def kind(self) -> ActionKind:
        return ActionKind.ENSURE_FILE_PRESENT

    def validate(self, actx: ActionContext) -> tuple[bool, str]:
        digest = actx.desired.get("blob")
        if not digest:
            return False, "Missing required desired value: 'blob'"
        if digest not in actx.blobs:
            return False, f"Blob {digest[:12]} is not in the blob table"
        target = actx.action.target
        if not (actx.ctx.is_home(target) or target.startswith("/")):
            return False, f"Destination must be '~/...' or absolute: {target}"
        return True, ""

    def _mode(self, actx: ActionContext) -> int:
        return int(actx.desired.get("mode", 0o644))

    def check(self, actx: ActionContext) -> Decision:
        path = actx.ctx.host_path(actx.action.target)
        if not path.exists():
            return Decision.drift("missing")
        if not path.is_file():
            return Decision.invalid(f"{actx.action.target} exists and is not a regular file")
        current = content_digest(path.read_bytes())
        if current != actx.desired["blob"]:
            return Decision.drift("content differs")
        mode = path.stat().st_mode & 0o777
        if mode != self._mode(actx):
            return Decision.drift(f"mode {mode:o} != {self._mode(actx):o}")
        return Decision.satisfied()

    def needs_privilege(self, actx: ActionContext) -> bool:
        return not actx.ctx.is_home(actx.action.target) and not actx.ctx.capabilities.is_root

    def suggested_command(self, actx: ActionContext) -> str | None:
        mode = f"{self._mode(actx):o}"
        cmd = ["install", "-D", "-m", mode, f"blobs/{actx.desired['blob']}", actx.action.target]
        return self._sudo(cmd, privileged=not actx.ctx.is_home(actx.action.target))

    def apply(self, actx: ActionContext) -> Receipt:
        path = actx.ctx.host_path(actx.action.target)
        data = actx.blob("blob")
        mode = self._mode(actx)
        try:
            if self.needs_privilege(actx):
                return self._install_privileged(actx, path, data, mode)
            _write_atomic(path, data, mode)
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=actx.action.id,
                error=f"Filesystem error: {e}",
                metadata={"path": str(path)},
            )
        logger.debug("Placed %s (%d bytes)", path, len(data))
        return Receipt.success(
            adapter=self.name,
            action_id=actx.action.id,
            output=f"Written {len(data)} bytes",
            metadata={"path": str(path), "size": len(data)},
        )

    def _install_privileged(self, actx: ActionContext, path: Path, data: bytes, mode: int) -> Receipt:
        fd, tmp_path = tempfile.mkstemp(prefix=".wsmigrate_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            result = actx.ctx.runner.run(
                ["install", "-D", "-m", f"{mode:o}", tmp_path, str(path)],
                privileged=True,
            )
        finally:
            Path(tmp_path).unlink(missing_ok=True)
        return self._receipt(actx, result, output=f"Installed {len(data)} bytes")


def _write_atomic(path: Path, data: bytes, mode: int) -> None:
    """Write-to-temp-then-rename so a crash never leaves half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".wsm_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, mode)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
