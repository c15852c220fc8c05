"""
Command runner — the only place that spawns subprocesses.

Capture units, the capability probe and the system adapters all run
external tools through a CommandRunner held by the ExecutionContext.
Tests substitute a scripted runner so nothing ever touches the host.

The runner never raises for a missing binary or a timeout; both come
back as a CommandResult with ``error`` set.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60

# sudo's message when -n forbids prompting for a password
_SUDO_PASSWORD_MARKERS = ("a password is required", "a terminal is required")


@dataclass
class CommandResult:
    """Outcome of one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    error: str | None = None          # spawn failure or timeout
    privileged: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def lines(self) -> list[str]:
        """Non-empty stripped stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    @property
    def password_required(self) -> bool:
        """True when sudo refused to run without a password."""
        if not self.privileged or self.returncode == 0:
            return False
        text = self.stderr.lower()
        return any(marker in text for marker in _SUDO_PASSWORD_MARKERS)

    def describe(self) -> str:
        """Short failure description for receipts and findings."""
        if self.error:
            return self.error
        msg = self.stderr.strip() or self.stdout.strip()
        if msg:
            return msg.splitlines()[-1]
        return f"exited with code {self.returncode}"


@dataclass
class CommandRunner:
    """Runs argv lists with a timeout, optionally through ``sudo -n``.

    Args:
        is_root: Whether the process already runs as root.  Defaults to
            the effective uid at construction time.
        default_timeout: Timeout in seconds when ``run`` is given none.
    """

    is_root: bool = field(default_factory=lambda: os.geteuid() == 0)
    default_timeout: int = DEFAULT_TIMEOUT

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(
        self,
        argv: list[str],
        timeout: float | None = None,
        privileged: bool = False,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: Program and arguments (never passed through a shell).
            timeout: Seconds before the process is killed.
            privileged: Prefix with ``sudo -n`` unless already root.
            input_text: Optional text fed to stdin.
        """
        argv = [str(a) for a in argv]
        full = argv
        if privileged and not self.is_root:
            full = ["sudo", "-n", *argv]
        timeout = timeout or self.default_timeout

        logger.debug("Executing: %s", shlex.join(full))
        start = time.monotonic()
        try:
            proc = subprocess.run(
                full,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input_text,
            )
        except FileNotFoundError:
            return CommandResult(
                argv=argv,
                returncode=127,
                error=f"Command not found: {full[0]}",
                privileged=privileged,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=argv,
                returncode=124,
                error=f"Command timed out after {timeout}s",
                privileged=privileged,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except OSError as e:
            return CommandResult(
                argv=argv,
                returncode=126,
                error=f"Command execution error: {e}",
                privileged=privileged,
            )

        return CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            privileged=privileged,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
