from __future__ import annotations

import logging
from typing import List

from ..config import ProvisionConfig
from ..errors import ManifestWriteError, ValidationError
from ..lib.manifests import ManifestWriter
from ..lib.pyqt import package_dir
from ..lib.validate import ImportProbe, Validator
from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)


class VerifySteps:
    """Negative import validation and the installed-tree manifest."""

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.cfg = cfg

    def validate_exclusions(self, ctx: StepContext) -> None:
        probe = ImportProbe(self.cfg.python, prefix="PyQt5.")
        report = Validator(probe).assert_absent(self.cfg.excluded_modules)
        if not report.ok:
            raise ValidationError(f"Unexpected modules present: {', '.join(report.unexpected)}")

    def write_manifest(self, ctx: StepContext) -> None:
        root = package_dir(self.cfg.python, run=ctx.run)
        if root is None:
            raise ManifestWriteError("Cannot locate the installed PyQt5 package")
        ManifestWriter(self.cfg.work_path, prefix="pyqt5_manifest").write(root)

    def steps(self) -> List[Step]:
        return [
            Step(
                name="70_validate_exclusions",
                description="excluded Qt modules must not import",
                action=self.validate_exclusions,
                phase=Phase.VALIDATE,
            ),
            Step(
                name="71_write_manifest",
                description="checksummed manifest of the installed package",
                action=self.write_manifest,
                phase=Phase.MANIFEST,
            ),
        ]
