from __future__ import annotations

import logging
import shutil
from typing import List

from ..config import ProvisionConfig
from ..errors import InstallError
from ..lib.pyqt import bdist_wheel_args, find_wheel, package_dir, stage_wheel_tree, write_wheel_setup
from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)


class WheelSteps:
    """Repackage the installed binding as a platform wheel (opt-in)."""

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.cfg = cfg

    def requested(self, ctx: StepContext) -> bool:
        return self.cfg.package_wheel

    def package(self, ctx: StepContext) -> None:
        pkg = package_dir(self.cfg.python, run=ctx.run)
        if pkg is None:
            raise InstallError("Cannot locate the installed PyQt5 package")

        staging = ctx.scratch("wheel_staging")
        staged = stage_wheel_tree(pkg, staging)
        logger.info("Staged %d files from %s", len(staged), pkg)
        write_wheel_setup(staging, self.cfg.pyqt_version)
        ctx.run(bdist_wheel_args(self.cfg.python, self.cfg.wheel_plat_name), cwd=str(staging))

        built = find_wheel(staging / "dist", self.cfg.pyqt_version)
        if built is None:
            raise InstallError(f"bdist_wheel produced no wheel in {staging / 'dist'}")
        out = self.cfg.wheel_path
        out.mkdir(parents=True, exist_ok=True)
        shutil.copy2(built, out / built.name)
        logger.info("Wheel written: %s", out / built.name)

    def packaged(self, ctx: StepContext) -> bool:
        return find_wheel(self.cfg.wheel_path, self.cfg.pyqt_version) is not None

    def steps(self) -> List[Step]:
        return [
            Step(
                name="80_package_wheel",
                description=f"bdist_wheel --plat-name={self.cfg.wheel_plat_name}",
                action=self.package,
                precondition=self.requested,
                postcondition=self.packaged,
                optional=True,
                phase=Phase.INSTALL,
                requires=(self.cfg.python,),
            ),
        ]
