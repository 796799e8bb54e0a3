from __future__ import annotations

import logging
from typing import List, Optional

from ..config import ProvisionConfig
from ..errors import ArtifactIntegrityError
from ..lib.fetch import Fetcher, FetchMethod, FetchSpec, PipDownloadMethod, PyPIJsonMethod
from ..lib.pyqt import PACKAGE, extract_archive, find_source_archive, find_source_dir
from ..pipeline import StepContext
from ..registry import Phase, Step
from .step_40_pyqt5_toolchain import needs_build

logger = logging.getLogger(__name__)


class SourceSteps:
    """Fetch (pip download, else registry JSON) and unpack the PyQt5 sdist."""

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.cfg = cfg

    def fetch_spec(self) -> FetchSpec:
        direct: FetchMethod = PyPIJsonMethod(PACKAGE, base_url=self.cfg.pypi_json_url)
        primary: FetchMethod
        fallback: Optional[FetchMethod]
        if self.cfg.use_direct_fetch:
            primary, fallback = direct, None
        else:
            primary = PipDownloadMethod(PACKAGE, python=self.cfg.python, index_url=self.cfg.index_url)
            fallback = direct
        return FetchSpec(
            primary=primary,
            fallback=fallback,
            target_version=self.cfg.pyqt_version,
            timeout=self.cfg.download_timeout,
            filename_pattern=PACKAGE + "-*.tar.*",
        )

    def fetch(self, ctx: StepContext) -> None:
        artifact = Fetcher(ctx.scratch("downloads")).fetch(self.fetch_spec())
        for a in artifact.attempts:
            logger.info("fetch attempt %s ok=%s %s", a.method, a.ok, a.reason)

    def fetched(self, ctx: StepContext) -> bool:
        return find_source_archive(ctx.scratch("downloads"), self.cfg.pyqt_version) is not None

    def extract(self, ctx: StepContext) -> None:
        archive = find_source_archive(ctx.scratch("downloads"), self.cfg.pyqt_version)
        if archive is None:
            raise ArtifactIntegrityError("PyQt5 source archive not found after fetch")
        extract_archive(archive, ctx.scratch("src"))

    def extracted(self, ctx: StepContext) -> bool:
        src = find_source_dir(ctx.scratch("src"), self.cfg.pyqt_version)
        if src is None:
            return False
        return (src / "configure.py").is_file() or (src / "pyproject.toml").is_file()

    def steps(self) -> List[Step]:
        return [
            Step(
                name="50_fetch_source",
                description=f"download {PACKAGE}=={self.cfg.pyqt_version} sdist",
                action=self.fetch,
                precondition=needs_build,
                postcondition=self.fetched,
                optional=True,
                phase=Phase.FETCH,
            ),
            Step(
                name="51_extract_source",
                description="unpack the sdist",
                action=self.extract,
                precondition=needs_build,
                postcondition=self.extracted,
                optional=True,
                phase=Phase.FETCH,
            ),
        ]
