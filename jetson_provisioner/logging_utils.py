from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

DEFAULT_LOG_DIR = "build_artifacts/logs"


def timestamped_log_path(log_dir: str = DEFAULT_LOG_DIR, prefix: str = "provision") -> str:
    return str(Path(log_dir) / f"{prefix}-{time.strftime('%Y%m%d%H%M%S')}.log")


def configure_logging(
    log_path: Optional[str] = None,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure logging for a provisioning run.

    Every run gets its own timestamped log file unless ``log_path`` is given.

    Notes:
    - When the requested directory is not writable we fall back to a file in
      the current working directory and report the actual path.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_jetson_configured", False):
        return getattr(logger, "_jetson_log_path", log_path or "")

    requested = log_path or timestamped_log_path()
    chosen_path = requested
    handlers: list[logging.Handler] = []

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    try:
        Path(os.path.dirname(requested) or ".").mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(requested)
    except OSError:
        # Fall back to a writable location.
        chosen_path = str(Path.cwd() / Path(requested).name)
        file_handler = logging.FileHandler(chosen_path)
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_jetson_configured", True)
    setattr(logger, "_jetson_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", requested, chosen_path
    )
    return chosen_path
