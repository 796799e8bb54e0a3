from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from ..config import ProvisionConfig
from ..errors import CommandError, ConfigurationError
from ..lib.pyqt import (
    CORE_MODULES,
    LEGACY,
    build_dir_for,
    clamp_jobs,
    find_source_dir,
    legacy_configure_args,
    sip_build_args,
    sip_build_executable,
    toolchain_for,
)
from ..lib.validate import ImportProbe, Validator
from ..pipeline import StepContext
from ..registry import Phase, Step
from .step_40_pyqt5_toolchain import needs_build

logger = logging.getLogger(__name__)


class BuildSteps:
    """configure -> make -> make install for the minimal PyQt5 binding."""

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.cfg = cfg

    def _source_dir(self, ctx: StepContext) -> Path:
        src = find_source_dir(ctx.scratch("src"), self.cfg.pyqt_version)
        if src is None:
            raise ConfigurationError("Extracted source directory not located")
        return src

    def configure(self, ctx: StepContext) -> None:
        src = self._source_dir(ctx)
        disabled = self.cfg.excluded_modules
        logger.info("Disabling modules: %s", " ".join(disabled))

        if toolchain_for(src) != LEGACY:
            ctx.run(sip_build_args(sip_build_executable(self.cfg.python), disabled), cwd=str(src))
            return

        try:
            ctx.run(legacy_configure_args(self.cfg.python, disabled), cwd=str(src))
        except CommandError as e:
            # Older configure.py releases reject --sip-module.
            logger.error("configure.py failed (%s). Retrying without --sip-module ...", e.returncode)
            ctx.run(legacy_configure_args(self.cfg.python, disabled, sip_module=False), cwd=str(src))

    def configured(self, ctx: StepContext) -> bool:
        src = find_source_dir(ctx.scratch("src"), self.cfg.pyqt_version)
        return src is not None and (build_dir_for(src) / "Makefile").is_file()

    def compile(self, ctx: StepContext) -> None:
        jobs = clamp_jobs(self.cfg.jobs, ctx.snapshot.available_memory_mb, self.cfg.memory_per_job_mb)
        if jobs < self.cfg.jobs:
            logger.warning(
                "Reducing make jobs %d -> %d (available memory %sMB)",
                self.cfg.jobs,
                jobs,
                ctx.snapshot.available_memory_mb,
            )
        logger.info("Building (jobs=%d)", jobs)
        ctx.run(["make", f"-j{jobs}"], cwd=str(build_dir_for(self._source_dir(ctx))))

    def install(self, ctx: StepContext) -> None:
        argv = ["make", "install"]
        if self.cfg.sudo_make_install:
            argv = ["sudo", *argv]
        ctx.run(argv, cwd=str(build_dir_for(self._source_dir(ctx))))

    def installed(self, ctx: StepContext) -> bool:
        probe = ImportProbe(self.cfg.python, prefix="PyQt5.")
        return Validator(probe).assert_present(CORE_MODULES).ok

    def steps(self) -> List[Step]:
        return [
            Step(
                name="60_configure",
                description="configure the minimal binding",
                action=self.configure,
                precondition=needs_build,
                postcondition=self.configured,
                optional=True,
                phase=Phase.CONFIGURE,
                requires=("make",),
            ),
            Step(
                name="61_compile",
                description="make -jN (memory-capped)",
                action=self.compile,
                precondition=needs_build,
                optional=True,
                phase=Phase.BUILD,
                reprobe=True,
            ),
            Step(
                name="62_install",
                description="make install",
                action=self.install,
                precondition=needs_build,
                postcondition=self.installed,
                optional=True,
                phase=Phase.INSTALL,
            ),
        ]
