from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from ..errors import CommandError
from .command import run_cmd

logger = logging.getLogger(__name__)

CapabilityProbe = Callable[[str], bool]


@dataclass(frozen=True)
class ValidationReport:
    ok: bool
    unexpected: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"ok": self.ok, "unexpected": list(self.unexpected)}


class ImportProbe:
    """True when ``<prefix><name>`` imports cleanly in a separate interpreter."""

    def __init__(self, python: str = "python3", *, prefix: str = "", timeout: float = 60.0) -> None:
        self.python = python
        self.prefix = prefix
        self.timeout = timeout

    def __call__(self, name: str) -> bool:
        module = f"{self.prefix}{name}"
        try:
            r = run_cmd([self.python, "-c", f"import {module}"], check=False, timeout=self.timeout)
        except CommandError as e:
            logger.debug("Import probe for %s errored: %s", module, e)
            return False
        return r.returncode == 0


class ExecutableProbe:
    """True when a binary is found on PATH."""

    def __init__(self, which: Callable[[str], Optional[str]] = shutil.which) -> None:
        self.which = which

    def __call__(self, name: str) -> bool:
        return self.which(name) is not None


class Validator:
    """Check that capabilities can or cannot be activated.

    Both checks return a report instead of raising so that callers can log
    every offender even on a partial failure.
    """

    def __init__(self, probe: CapabilityProbe) -> None:
        self.probe = probe

    def assert_absent(self, capability_names: Iterable[str]) -> ValidationReport:
        unexpected = sorted(n for n in set(capability_names) if self.probe(n))
        if unexpected:
            logger.warning("Unexpected capabilities present: %s", ", ".join(unexpected))
        else:
            logger.info("All excluded capabilities correctly absent")
        return ValidationReport(ok=not unexpected, unexpected=unexpected)

    def assert_present(self, capability_names: Iterable[str]) -> ValidationReport:
        unexpected = sorted(n for n in set(capability_names) if not self.probe(n))
        if unexpected:
            logger.warning("Required capabilities missing: %s", ", ".join(unexpected))
        return ValidationReport(ok=not unexpected, unexpected=unexpected)
