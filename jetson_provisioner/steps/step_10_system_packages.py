from __future__ import annotations

import logging
from typing import List

from ..config import ProvisionConfig
from ..lib.pkg import (
    apt_install,
    apt_update,
    apt_upgrade,
    dpkg_installed,
    pip_has_distribution,
    pip_install,
    snap_install,
    snap_installed,
)
from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)


class SystemPackagesSteps:
    """Base system packages for a freshly flashed Jetson."""

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.cfg = cfg

    def refresh(self, ctx: StepContext) -> None:
        apt_update(use_sudo=self.cfg.use_sudo, run=ctx.run)
        if self.cfg.apt_upgrade:
            apt_upgrade(use_sudo=self.cfg.use_sudo, run=ctx.run)

    def chromium(self, ctx: StepContext) -> None:
        snap_install("chromium", use_sudo=self.cfg.use_sudo, run=ctx.run)

    def chromium_installed(self, ctx: StepContext) -> bool:
        return snap_installed("chromium", run=ctx.run)

    def pip(self, ctx: StepContext) -> None:
        apt_install(["python3-pip"], use_sudo=self.cfg.use_sudo, run=ctx.run)

    def pip_installed(self, ctx: StepContext) -> bool:
        return dpkg_installed("python3-pip", run=ctx.run)

    def jetson_stats(self, ctx: StepContext) -> None:
        # jtop needs a system-wide install for its service.
        pip_install("python3", ["jetson-stats"], use_sudo=self.cfg.use_sudo, run=ctx.run)

    def jetson_stats_installed(self, ctx: StepContext) -> bool:
        return pip_has_distribution("python3", "jetson-stats", run=ctx.run)

    def on_jetson(self, ctx: StepContext) -> bool:
        return bool(ctx.snapshot.flags.get("is_jetson", False))

    def steps(self) -> List[Step]:
        return [
            Step(
                name="10_apt_refresh",
                description="apt-get update (and upgrade)",
                action=self.refresh,
                retryable=True,
                phase=Phase.INSTALL,
                requires=("apt-get",),
            ),
            Step(
                name="11_install_chromium",
                description="snap install chromium",
                action=self.chromium,
                postcondition=self.chromium_installed,
                retryable=True,
                fatal=False,
                optional=True,
                phase=Phase.INSTALL,
                requires=("snap",),
                skip_if_satisfied=True,
            ),
            Step(
                name="12_install_python3_pip",
                description="apt-get install python3-pip",
                action=self.pip,
                postcondition=self.pip_installed,
                retryable=True,
                phase=Phase.INSTALL,
                requires=("apt-get",),
                skip_if_satisfied=True,
            ),
            Step(
                name="13_install_jetson_stats",
                description="pip install -U jetson-stats (jtop)",
                action=self.jetson_stats,
                precondition=self.on_jetson,
                postcondition=self.jetson_stats_installed,
                retryable=True,
                fatal=False,
                optional=True,
                phase=Phase.INSTALL,
                skip_if_satisfied=True,
            ),
        ]
