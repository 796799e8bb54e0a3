from __future__ import annotations

import logging
from typing import List

from ..config import ProvisionConfig
from ..errors import ConfigurationError
from ..lib.desktop import (
    SettingsStore,
    desktop_search_paths,
    favorite_apps,
    find_desktop_file,
    pin_app,
    session_user,
)
from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)


class PinToDockStep:
    """Pin one application to the GNOME dock for the session user."""

    def __init__(self, desktop_file: str) -> None:
        self.desktop_file = desktop_file

    @property
    def name(self) -> str:
        return f"20_pin_dock:{self.desktop_file}"

    def _store(self, ctx: StepContext) -> SettingsStore:
        return SettingsStore(session_user(), run=ctx.run)

    def precondition(self, ctx: StepContext) -> bool:
        store = self._store(ctx)
        path = find_desktop_file(self.desktop_file, desktop_search_paths(store.user))
        if path is None:
            logger.warning("%s not found in standard locations", self.desktop_file)
            return False
        logger.info("Found %s at %s", self.desktop_file, path)
        return True

    def action(self, ctx: StepContext) -> None:
        pin_app(self._store(ctx), self.desktop_file)

    def postcondition(self, ctx: StepContext) -> bool:
        return self.desktop_file in favorite_apps(self._store(ctx))

    def step(self) -> Step:
        return Step(
            name=self.name,
            description=f"pin {self.desktop_file} to the dock",
            action=self.action,
            precondition=self.precondition,
            postcondition=self.postcondition,
            fatal=False,
            optional=True,
            phase=Phase.CONFIGURE,
            requires=("gsettings",),
            skip_if_satisfied=True,
        )


def pin_dock_steps(cfg: ProvisionConfig) -> List[Step]:
    if len(set(cfg.dock_apps)) != len(cfg.dock_apps):
        raise ConfigurationError(f"dock_apps contains duplicates: {list(cfg.dock_apps)}")
    return [PinToDockStep(app).step() for app in cfg.dock_apps]
