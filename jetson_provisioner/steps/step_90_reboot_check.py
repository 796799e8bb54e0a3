from __future__ import annotations

import logging
from pathlib import Path

from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)

REBOOT_REQUIRED = Path("/var/run/reboot-required")


class RebootCheckStep:
    """Report whether a reboot is needed; never reboots by itself."""

    name = "90_reboot_check"

    def __init__(self, marker: Path = REBOOT_REQUIRED) -> None:
        self.marker = marker

    def action(self, ctx: StepContext) -> None:
        if self.marker.exists():
            logger.warning("Setup complete. A reboot is required to finalize changes.")
        else:
            # jtop needs a fresh login before it can reach its service.
            logger.info("Setup complete. Log out and back in (or reboot) before using jtop.")

    def step(self) -> Step:
        return Step(
            name=self.name,
            description="report reboot-required",
            action=self.action,
            fatal=False,
            phase=Phase.VALIDATE,
        )
