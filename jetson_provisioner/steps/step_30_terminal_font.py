from __future__ import annotations

import logging

from ..config import ProvisionConfig
from ..lib.desktop import (
    PROFILES_SCHEMA,
    SettingsStore,
    session_user,
    set_terminal_font,
    terminal_font,
    unquote,
)
from ..pipeline import StepContext
from ..registry import Phase, Step

logger = logging.getLogger(__name__)


class TerminalFontStep:
    name = "30_terminal_font"

    def __init__(self, cfg: ProvisionConfig) -> None:
        self.font = cfg.terminal_font

    def _store(self, ctx: StepContext) -> SettingsStore:
        return SettingsStore(session_user(), run=ctx.run)

    def precondition(self, ctx: StepContext) -> bool:
        if not self._store(ctx).has_schema(PROFILES_SCHEMA):
            logger.warning("Schema %s not found; is GNOME Terminal installed?", PROFILES_SCHEMA)
            return False
        return True

    def action(self, ctx: StepContext) -> None:
        set_terminal_font(self._store(ctx), self.font)

    def postcondition(self, ctx: StepContext) -> bool:
        # Read-only: never creates or promotes a profile.
        store = self._store(ctx)
        profile = unquote(store.get(PROFILES_SCHEMA, "default"))
        return bool(profile) and terminal_font(store, profile) == self.font

    def step(self) -> Step:
        return Step(
            name=self.name,
            description=f"GNOME Terminal default profile font -> {self.font}",
            action=self.action,
            precondition=self.precondition,
            postcondition=self.postcondition,
            fatal=False,
            optional=True,
            phase=Phase.CONFIGURE,
            requires=("gsettings", "dconf"),
            skip_if_satisfied=True,
        )
