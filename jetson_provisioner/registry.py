from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Type

from .errors import (
    BuildError,
    ConfigurationError,
    DuplicateStepError,
    FetchError,
    InstallError,
    ManifestWriteError,
    MissingDependencyError,
    ProvisionError,
    ValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from .pipeline import StepContext

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Which failure class a step's process failure maps to."""

    PREFLIGHT = "preflight"
    FETCH = "fetch"
    CONFIGURE = "configure"
    BUILD = "build"
    INSTALL = "install"
    VALIDATE = "validate"
    MANIFEST = "manifest"

    @property
    def error_class(self) -> Type[ProvisionError]:
        return _PHASE_ERRORS[self]


_PHASE_ERRORS: Dict[Phase, Type[ProvisionError]] = {
    Phase.PREFLIGHT: MissingDependencyError,
    Phase.FETCH: FetchError,
    Phase.CONFIGURE: ConfigurationError,
    Phase.BUILD: BuildError,
    Phase.INSTALL: InstallError,
    Phase.VALIDATE: ValidationError,
    Phase.MANIFEST: ManifestWriteError,
}

Action = Callable[["StepContext"], Optional[int]]
Check = Callable[["StepContext"], bool]


@dataclass(frozen=True)
class Step:
    """A named unit of provisioning work.

    ``action`` returns an exit code (``None`` means 0) or raises. ``precondition``
    and ``postcondition`` must be re-checkable without the action having just run.
    """

    name: str
    action: Action
    description: str = ""
    precondition: Optional[Check] = None
    postcondition: Optional[Check] = None
    retryable: bool = False
    fatal: bool = True
    optional: bool = False
    phase: Phase = Phase.INSTALL
    reprobe: bool = False
    requires: Tuple[str, ...] = field(default_factory=tuple)
    skip_if_satisfied: bool = False

    def describe(self) -> str:
        flags = []
        if self.fatal:
            flags.append("fatal")
        if self.retryable:
            flags.append("retryable")
        if self.optional:
            flags.append("optional")
        return f"{self.name:<28} [{self.phase.value}] {','.join(flags) or '-'}  {self.description}"


class StepRegistry:
    """Ordered step collection; insertion order is execution order."""

    def __init__(self, steps: Iterable[Step] = ()) -> None:
        self._steps: List[Step] = []
        self._by_name: Dict[str, Step] = {}
        self.extend(steps)

    def register(self, step: Step) -> Step:
        if step.name in self._by_name:
            raise DuplicateStepError(f"Step already registered: {step.name}")
        self._steps.append(step)
        self._by_name[step.name] = step
        logger.debug("Registered step %s", step.name)
        return step

    def extend(self, steps: Iterable[Step]) -> None:
        for s in steps:
            self.register(s)

    def ordered(self) -> List[Step]:
        return list(self._steps)

    def names(self) -> List[str]:
        return [s.name for s in self._steps]

    def get(self, name: str) -> Step:
        return self._by_name[name]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.ordered())
