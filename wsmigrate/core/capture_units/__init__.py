"""
Capture units — one UnitCapturer per CaptureUnit.
"""

from wsmigrate.core.capture_units.audio import AudioCapturer
from wsmigrate.core.capture_units.base import UnitCapturer
from wsmigrate.core.capture_units.desktop import DesktopCapturer
from wsmigrate.core.capture_units.devtool import DevtoolCapturer
from wsmigrate.core.capture_units.dotfile import DotfileCapturer
from wsmigrate.core.capture_units.hardware import HardwareCapturer
from wsmigrate.core.capture_units.package import PackageCapturer
from wsmigrate.core.capture_units.repo import RepoCapturer
from wsmigrate.core.capture_units.shell import ShellCapturer
from wsmigrate.core.capture_units.system import SystemCapturer
from wsmigrate.core.capture_units.thirdparty import ThirdpartyCapturer
from wsmigrate.core.models.snapshot import CaptureUnit

UNIT_CAPTURERS: dict[CaptureUnit, type[UnitCapturer]] = {
    CaptureUnit.PACKAGE: PackageCapturer,
    CaptureUnit.REPO: RepoCapturer,
    CaptureUnit.SHELL: ShellCapturer,
    CaptureUnit.DESKTOP: DesktopCapturer,
    CaptureUnit.DOTFILE: DotfileCapturer,
    CaptureUnit.SYSTEM: SystemCapturer,
    CaptureUnit.DEVTOOL: DevtoolCapturer,
    CaptureUnit.AUDIO: AudioCapturer,
    CaptureUnit.THIRDPARTY: ThirdpartyCapturer,
    CaptureUnit.HARDWARE: HardwareCapturer,
}

__all__ = ["UNIT_CAPTURERS", "UnitCapturer"]
