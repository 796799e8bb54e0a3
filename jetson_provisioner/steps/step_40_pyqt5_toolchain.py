from __future__ import annotations

import logging
from typing import List

from ..config import ProvisionConfig
from ..lib.pkg import apt_install, pip_install
from ..lib.pyqt import SIP_COMPONENTS, SIP_REQUIREMENTS, installed_version
from ..lib.validate import ImportProbe, Validator
from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)


def needs_build(ctx: StepContext) -> bool:
    """False when the requested PyQt5 version is already importable (and no rebuild was forced)."""

    cfg = ctx.config
    if cfg.force_rebuild:
        return True
    have = installed_version(cfg.python, run=ctx.run)
    if have == cfg.pyqt_version:
        logger.info("PyQt5 %s already installed; skipping build step %s", have, ctx.step.name)
        return False
    return True


class ToolchainSteps:
    """Interpreter check, pinned sip toolchain, optional apt build dependencies."""

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.cfg = cfg

    def check_python(self, ctx: StepContext) -> None:
        r = ctx.run([self.cfg.python, "--version"])
        logger.info("Using python: %s (%s)", self.cfg.python, (r.stdout or r.stderr).strip())
        if ctx.snapshot.flags.get("conda_base_env"):
            logger.warning("CONDA_DEFAULT_ENV=base; expected a clean build env. Proceeding anyway.")

    def install_sip(self, ctx: StepContext) -> None:
        py = self.cfg.python
        pip_install(py, ["pip"], index_url=self.cfg.index_url, run=ctx.run)
        pip_install(py, list(SIP_REQUIREMENTS), index_url=self.cfg.index_url, run=ctx.run)

    def sip_present(self, ctx: StepContext) -> bool:
        report = Validator(ImportProbe(self.cfg.python)).assert_present(SIP_COMPONENTS)
        if not report.ok:
            logger.warning("Missing required sip components: %s", report.unexpected)
        return report.ok

    def wants_apt(self, ctx: StepContext) -> bool:
        if self.cfg.skip_dependency_install:
            logger.info("Dependency install disabled; skipping apt build dependencies")
            return False
        if not ctx.snapshot.has_tool("apt-get"):
            logger.warning("apt-get not found; skipping system dependency installation")
            return False
        return True

    def install_build_deps(self, ctx: StepContext) -> None:
        apt_install(list(self.cfg.build_packages), use_sudo=self.cfg.use_sudo, run=ctx.run)

    def steps(self) -> List[Step]:
        return [
            Step(
                name="40_python_preflight",
                description=f"check {self.cfg.python}",
                action=self.check_python,
                phase=Phase.PREFLIGHT,
                requires=(self.cfg.python,),
            ),
            Step(
                name="41_sip_toolchain",
                description="pin sip + PyQt5-sip",
                action=self.install_sip,
                postcondition=self.sip_present,
                retryable=True,
                phase=Phase.PREFLIGHT,
                skip_if_satisfied=True,
            ),
            Step(
                name="42_build_dependencies",
                description="apt-get install Qt build dependencies",
                action=self.install_build_deps,
                precondition=self.wants_apt,
                retryable=True,
                optional=True,
                phase=Phase.PREFLIGHT,
            ),
        ]
