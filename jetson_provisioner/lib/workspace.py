from __future__ import annotations

import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class BuildWorkspace:
    """Scratch space plus diagnostic logs for one run.

    Scratch (downloads, extracted sources, build trees) is always released on
    exit unless ``keep`` is set. Logs are kept when the run failed; on success
    ``logs_on_success`` decides between keep, remove and archive.
    """

    def __init__(
        self,
        parent: str,
        *,
        keep: bool = False,
        logs_on_success: str = "keep",
        prefix: str = "provision-",
    ) -> None:
        self.parent = Path(parent)
        self.keep = keep
        self.logs_on_success = logs_on_success
        self.prefix = prefix
        self.scratch: Optional[Path] = None
        self.logs: Optional[Path] = None
        self.succeeded = False

    def __enter__(self) -> "BuildWorkspace":
        self.parent.mkdir(parents=True, exist_ok=True)
        self.scratch = Path(tempfile.mkdtemp(prefix=self.prefix, dir=str(self.parent)))
        stamp = time.strftime("%Y%m%d%H%M%S")
        self.logs = self.parent / f"logs-{stamp}"
        self.logs.mkdir(parents=True, exist_ok=True)
        logger.info("Workspace scratch=%s logs=%s", self.scratch, self.logs)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release(failed=exc_type is not None or not self.succeeded)

    def path(self, *parts: str) -> Path:
        if self.scratch is None:
            raise RuntimeError("BuildWorkspace used outside of its context")
        p = self.scratch.joinpath(*parts)
        p.mkdir(parents=True, exist_ok=True)
        return p

    def log_file(self, name: str) -> Path:
        if self.logs is None:
            raise RuntimeError("BuildWorkspace used outside of its context")
        return self.logs / name

    def release(self, *, failed: bool) -> None:
        if self.scratch is not None and self.scratch.exists():
            if self.keep:
                logger.info("Keeping build dir: %s", self.scratch)
            else:
                shutil.rmtree(self.scratch, ignore_errors=True)
                logger.info("Removed scratch dir %s", self.scratch)

        if self.logs is None or not self.logs.exists():
            return
        if failed:
            logger.info("Diagnostic logs preserved at %s", self.logs)
            return
        if self.logs_on_success == "remove":
            shutil.rmtree(self.logs, ignore_errors=True)
        elif self.logs_on_success == "archive":
            archive = shutil.make_archive(str(self.logs), "gztar", root_dir=str(self.logs))
            shutil.rmtree(self.logs, ignore_errors=True)
            logger.info("Diagnostic logs archived to %s", archive)
