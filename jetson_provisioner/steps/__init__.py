from .step_10_system_packages import SystemPackagesSteps
from .step_20_pin_dock import PinToDockStep, pin_dock_steps
from .step_30_terminal_font import TerminalFontStep
from .step_40_pyqt5_toolchain import ToolchainSteps, needs_build
from .step_50_pyqt5_source import SourceSteps
from .step_60_pyqt5_build import BuildSteps
from .step_70_pyqt5_verify import VerifySteps
from .step_80_pyqt5_wheel import WheelSteps
from .step_90_reboot_check import RebootCheckStep

__all__ = [
    "SystemPackagesSteps",
    "PinToDockStep",
    "pin_dock_steps",
    "TerminalFontStep",
    "ToolchainSteps",
    "needs_build",
    "SourceSteps",
    "BuildSteps",
    "VerifySteps",
    "WheelSteps",
    "RebootCheckStep",
]
