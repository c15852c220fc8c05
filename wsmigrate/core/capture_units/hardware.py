"""
Hardware unit — mostly reference facts about the source machine.

CPU, PCI/USB devices, modules and kernel command line describe the old
hardware and are not applied to the target.  Power management config
is applied; an NVIDIA GPU becomes a Finding for driver installation.
"""

from __future__ import annotations

import re

from wsmigrate.core.capture_units.base import UnitCapturer, UnitReader
from wsmigrate.core.models.snapshot import CaptureUnit

TLP_FILES = ("/etc/tlp.conf", "/etc/tlp.d")
CMDLINE = "/proc/cmdline"

POWER_MANAGERS = ("tlp", "power-profiles-daemon")

_GPU_LINE = re.compile(r"VGA compatible controller|3D controller|Display controller")
_GPU_VENDORS = (("NVIDIA", "nvidia"), ("AMD", "amd"), ("ATI", "amd"), ("Intel", "intel"))


def gpu_vendor(lspci: list[str]) -> str | None:
    """Vendor of the first discrete-looking GPU in ``lspci`` output."""
    vendors = []
    for line in lspci:
        if not _GPU_LINE.search(line):
            continue
        for marker, vendor in _GPU_VENDORS:
            if marker in line:
                vendors.append(vendor)
                break
    if "nvidia" in vendors:
        return "nvidia"
    return vendors[0] if vendors else None


class HardwareCapturer(UnitCapturer):
    unit = CaptureUnit.HARDWARE
    sources = TLP_FILES + (CMDLINE,)

    def capture(self, reader: UnitReader) -> None:
        for line in reader.lines(["lscpu"]):
            if line.startswith("Model name:"):
                reader.fact("cpu_model", line.split(":", 1)[1].strip())
                break

        pci = reader.lines(["lspci"])
        if pci:
            reader.fact("pci_devices", pci)
        usb = reader.lines(["lsusb"])
        if usb:
            reader.fact("usb_devices", sorted(usb))
        modules = [line.split()[0] for line in reader.lines(["lsmod"])[1:]]
        if modules:
            reader.fact("modules", sorted(modules))
        cmdline = reader.read_text(CMDLINE)
        if cmdline:
            reader.fact("kernel_cmdline", cmdline.strip())

        vendor = gpu_vendor(pci)
        if vendor:
            reader.fact("gpu_vendor", vendor)
        if vendor == "nvidia":
            reader.finding(
                "nvidia gpu",
                "proprietary NVIDIA driver must be installed and signed for the target kernel",
                "sudo dnf install akmod-nvidia",
            )

        self._power(reader)

    def _power(self, reader: UnitReader) -> None:
        reader.read_file(TLP_FILES[0])
        reader.read_tree(TLP_FILES[1])
        if not reader.caps.systemd:
            return
        for service in POWER_MANAGERS:
            result = reader.command(["systemctl", "is-enabled", f"{service}.service"])
            if result is not None and result.output == "enabled":
                reader.fact("power_manager", service)
                return
