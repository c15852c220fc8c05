"""
Capture engine — run capture units in parallel and assemble a Snapshot.

Units are independent: each gets its own reader, its own time budget
and its own failure scope.  A unit that crashes or runs out of time is
marked in the manifest and leaves one Finding behind; every other unit
still completes and the manifest is always written.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from wsmigrate.core.capture_units import UNIT_CAPTURERS
from wsmigrate.core.capture_units.base import CaptureTimeout
from wsmigrate.core.context import ExecutionContext
from wsmigrate.core.engine.probe import probe
from wsmigrate.core.models.settings import CaptureSettings
from wsmigrate.core.models.snapshot import (
    CaptureRecord,
    CaptureUnit,
    Finding,
    Manifest,
    Snapshot,
    UnitStatus,
)

logger = logging.getLogger(__name__)

# grace on top of a unit's budget before the join point gives up on it
_JOIN_GRACE_SECONDS = 5.0


def resolve_units(names) -> list[CaptureUnit]:
    """Unit names → CaptureUnits in declaration order.  Unknown names raise ValueError."""
    if not names:
        return list(CaptureUnit)
    wanted = set()
    for name in names:
        try:
            wanted.add(CaptureUnit(name))
        except ValueError:
            valid = ", ".join(u.value for u in CaptureUnit)
            raise ValueError(f"Unknown capture unit '{name}' (valid: {valid})") from None
    return [u for u in CaptureUnit if u in wanted]


def capture(
    ctx: ExecutionContext,
    units=None,
    settings: CaptureSettings | None = None,
    now: datetime | None = None,
) -> Snapshot:
    """Capture the requested units (default: settings.units) into a Snapshot.

    Args:
        ctx: Execution context of the source machine.  Capabilities are
            probed here; any already on the context are replaced.
        units: Unit names or CaptureUnits to capture.
        settings: Capture tuning (timeouts, size limit, workers).
        now: Capture timestamp (UTC); defaults to the current time.
    """
    settings = settings or CaptureSettings()
    selected = resolve_units(units if units is not None else settings.units)
    ctx = ctx.with_capabilities(probe(ctx))

    records: dict[CaptureUnit, CaptureRecord] = {}
    statuses: dict[CaptureUnit, UnitStatus] = {}

    workers = max(1, settings.workers)
    pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="capture")
    try:
        futures = {
            unit: pool.submit(UNIT_CAPTURERS[unit]().run, ctx, settings, settings.timeout_seconds)
            for unit in selected
        }
        # budgets start when a worker picks the unit up: one per wave
        waves = -(-len(selected) // workers)
        wait(futures.values(), timeout=waves * settings.timeout_seconds + _JOIN_GRACE_SECONDS)

        for unit in selected:
            record, status = _join(unit, futures[unit], settings)
            records[unit] = record
            statuses[unit] = status
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    manifest = _manifest(ctx, statuses, now)
    failed = [u.value for u, s in statuses.items() if s != UnitStatus.OK]
    if failed:
        logger.warning("Capture finished degraded; units not ok: %s", ", ".join(failed))
    else:
        logger.info("Captured %d units", len(records))
    return Snapshot(manifest=manifest, records=records)


def _join(unit: CaptureUnit, future: Future, settings: CaptureSettings) -> tuple[CaptureRecord, UnitStatus]:
    try:
        if not future.done():
            # hung in something the reader cannot interrupt
            raise CaptureTimeout(unit.value)
        return future.result(), UnitStatus.OK
    except CaptureTimeout:
        logger.warning("Capture unit %s timed out", unit.value)
        finding = Finding.make(
            unit, unit.value, f"capture timed out after {settings.timeout_seconds:g}s"
        )
        return CaptureRecord(unit=unit, findings=[finding]), UnitStatus.TIMEOUT
    except Exception as e:
        logger.error("Capture unit %s failed: %s", unit.value, e, exc_info=True)
        finding = Finding.make(unit, unit.value, f"capture failed: {e}")
        return CaptureRecord(unit=unit, findings=[finding]), UnitStatus.FAILED


def _manifest(
    ctx: ExecutionContext,
    statuses: dict[CaptureUnit, UnitStatus],
    now: datetime | None,
) -> Manifest:
    caps = ctx.capabilities
    stamp = (now or datetime.now(UTC)).astimezone(UTC).replace(microsecond=0)
    return Manifest(
        hostname=caps.hostname,
        username=ctx.user,
        home=str(ctx.home),
        date=stamp.isoformat().replace("+00:00", "Z"),
        os_version=caps.os_version,
        kernel=caps.kernel,
        arch=caps.arch,
        desktop=caps.desktop_shell or "none",
        display_server=caps.display_server,
        desktop_shell_version=caps.desktop_shell_version or "unknown",
        shell=ctx.env.get("SHELL", "unknown"),
        units=dict(sorted(statuses.items(), key=lambda kv: list(CaptureUnit).index(kv[0]))),
    )
