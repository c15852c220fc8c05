"""
System unit — /etc configuration, services, firewall, timezone, crontab.

Mount tables and boot-loader defaults are machine specific: they are
reported as Findings with a suggested command, never copied.
"""

from __future__ import annotations

import logging
import re

from wsmigrate.core.capture_units.audio import is_audio_rule
from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

logger = logging.getLogger(__name__)

ETC_FILES = (
    "/etc/hosts",
    "/etc/environment",
    "/etc/dnf/dnf.conf",
    "/etc/cups/printers.conf",
    "/etc/locale.conf",
)

ETC_TREES = (
    "/etc/modprobe.d",
    "/etc/modules-load.d",
    "/etc/NetworkManager/system-connections",
    "/etc/systemd/logind.conf.d",
    "/etc/systemd/resolved.conf.d",
    "/etc/systemd/journald.conf.d",
    "/etc/sudoers.d",
)

SYSCTL_DIR = "/etc/sysctl.d"
UDEV_RULES = "/etc/udev/rules.d"
SYSTEM_UNITS = "/etc/systemd/system"
USER_UNITS = "~/.config/systemd/user"
UNIT_SUFFIXES = (".service", ".timer", ".mount", ".path", ".socket")

FSTAB = "/etc/fstab"
GRUB_DEFAULTS = "/etc/default/grub"

_GRUB_CMDLINE = re.compile(r'^GRUB_CMDLINE_LINUX="([^"]*)"', re.MULTILINE)


def parse_sysctl(text: str) -> dict[str, str]:
    """``key = value`` lines of a sysctl.d file."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", ";")):
            continue
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip().lstrip("-")] = " ".join(value.split())
    return values


def parse_unit_files(lines: list[str]) -> list[str]:
    """Unit names from ``systemctl list-unit-files --no-legend``, templates skipped."""
    names = []
    for line in lines:
        name = line.split()[0]
        if "@." not in name:
            names.append(name)
    return sorted(set(names))


class SystemCapturer(UnitCapturer):
    unit = CaptureUnit.SYSTEM
    sources = ETC_FILES + ETC_TREES + (
        SYSCTL_DIR, UDEV_RULES, SYSTEM_UNITS, USER_UNITS, FSTAB, GRUB_DEFAULTS,
    )

    def capture(self, reader: UnitReader) -> None:
        for dest in ETC_FILES:
            reader.read_file(dest)
        for dest in ETC_TREES:
            reader.read_tree(dest)

        self._sysctl(reader)
        for name in reader.list_dir(UDEV_RULES):
            if name.endswith(".rules") and not is_audio_rule(name):
                reader.read_file(f"{UDEV_RULES}/{name}")
        for base in (SYSTEM_UNITS, USER_UNITS):
            reader.read_tree(base, keep=lambda rel: "/" not in rel and rel.endswith(UNIT_SUFFIXES))

        if reader.caps.systemd:
            self._services(reader)
        if reader.caps.firewalld:
            services = reader.lines(["firewall-cmd", "--list-services"])
            reader.fact("firewall_services", sorted(" ".join(services).split()))

        self._timezone(reader)
        self._crontab(reader)
        self._machine_specific(reader)

    def _sysctl(self, reader: UnitReader) -> None:
        values: dict[str, str] = {}
        for name in reader.list_dir(SYSCTL_DIR):
            if not name.endswith(".conf"):
                continue
            dest = f"{SYSCTL_DIR}/{name}"
            text = reader.read_file(dest)
            if text is not None:
                values.update(parse_sysctl(text.decode("utf-8", errors="replace")))
        if values:
            reader.fact("sysctl", dict(sorted(values.items())))

    def _services(self, reader: UnitReader) -> None:
        base = ["list-unit-files", "--state=enabled", "--no-legend", "--no-pager"]
        reader.fact(
            "services_enabled",
            parse_unit_files(reader.lines(["systemctl", *base, "--type=service"])),
        )
        reader.fact(
            "user_services_enabled",
            parse_unit_files(reader.lines(["systemctl", "--user", *base, "--type=service"])),
        )
        reader.fact(
            "user_timers_enabled",
            parse_unit_files(reader.lines(["systemctl", "--user", *base, "--type=timer"])),
        )

    def _timezone(self, reader: UnitReader) -> None:
        tz = reader.lines(["timedatectl", "show", "-p", "Timezone", "--value"])
        if tz:
            reader.fact("timezone", tz[0])
        locale = reader.read_text("/etc/locale.conf") or ""
        match = re.search(r'^LANG="?([^"\s]+)', locale, re.MULTILINE)
        if match:
            reader.fact("locale", match.group(1))

    def _crontab(self, reader: UnitReader) -> None:
        # crontab -l exits 1 when the user has no crontab
        result = reader.command(["crontab", "-l"])
        if result is not None and result.ok and result.stdout.strip():
            reader.fact("crontab", result.stdout)

    def _machine_specific(self, reader: UnitReader) -> None:
        if reader.exists(FSTAB):
            reader.finding(
                FSTAB,
                "mount table is machine specific; merge entries manually",
                "sudoedit /etc/fstab",
            )
        grub = reader.read_text(GRUB_DEFAULTS)
        if grub is None:
            return
        match = _GRUB_CMDLINE.search(grub)
        args = match.group(1).strip() if match else ""
        if args:
            reader.finding(
                GRUB_DEFAULTS,
                f"custom kernel command line: {args}",
                f"sudo grubby --update-kernel=ALL --args='{args}'",
            )
