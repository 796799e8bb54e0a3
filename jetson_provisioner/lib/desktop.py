from __future__ import annotations

import ast
import getpass
import logging
import os
import pwd
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from ..errors import CommandError, ConfigurationError
from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

Runner = Callable[..., CmdResult]

DOCK_SCHEMA = "org.gnome.shell"
DOCK_KEY = "favorite-apps"
PROFILES_SCHEMA = "org.gnome.Terminal.ProfilesList"
PROFILE_PATHS = (
    "/org/gnome/Terminal/Legacy/profiles:/:{uuid}/",
    "/org/gnome/terminal/legacy/profiles:/:{uuid}/",
)


@dataclass(frozen=True)
class SessionUser:
    name: str
    uid: int
    home: str
    elevated: bool

    def wrap(self, argv: Sequence[str]) -> List[str]:
        """Run ``argv`` as the session user, reaching their session bus when elevated."""

        if not self.elevated:
            return list(argv)
        bus = f"DBUS_SESSION_BUS_ADDRESS=unix:path=/run/user/{self.uid}/bus"
        return ["sudo", "-u", self.name, "env", bus, *argv]


def session_user(environ: Optional[Mapping[str, str]] = None) -> SessionUser:
    """Desktop settings always belong to the originating session user, never root."""

    env = os.environ if environ is None else environ
    euid = os.geteuid()
    name = env.get("SUDO_USER") if euid == 0 else None
    name = name or getpass.getuser()
    if name == "root":
        raise ConfigurationError(
            "Refusing to change desktop settings for root",
            hint="run as the desktop user, or via sudo from that user's session",
        )
    try:
        pw = pwd.getpwnam(name)
    except KeyError as e:
        raise ConfigurationError(f"Unknown session user: {name}") from e
    return SessionUser(name=name, uid=pw.pw_uid, home=pw.pw_dir, elevated=euid == 0)


def parse_string_list(value: str) -> List[str]:
    """Parse a GVariant string array as printed by gsettings (``@as []`` or ``['a', 'b']``)."""

    v = value.strip()
    if v.startswith("@as"):
        v = v[3:].strip()
    if not v:
        return []
    try:
        parsed = ast.literal_eval(v)
    except (ValueError, SyntaxError) as e:
        raise ValueError(f"Not a GVariant string list: {value!r}") from e
    if not isinstance(parsed, list):
        raise ValueError(f"Not a GVariant string list: {value!r}")
    return [str(x) for x in parsed]


def format_string_list(items: Sequence[str]) -> str:
    return "[" + ", ".join(repr(str(i)) for i in items) + "]"


def unquote(value: str) -> str:
    v = value.strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in {"'", '"'}:
        return v[1:-1]
    return v


class SettingsStore:
    """gsettings/dconf access as a given session user."""

    def __init__(self, user: SessionUser, *, run: Runner = run_cmd) -> None:
        self.user = user
        self.run = run

    def _cmd(self, argv: Sequence[str], *, check: bool = True) -> CmdResult:
        return self.run(self.user.wrap(argv), check=check)

    def has_schema(self, schema: str) -> bool:
        r = self._cmd(["gsettings", "list-schemas"], check=False)
        return r.returncode == 0 and schema in r.stdout.split()

    def get(self, schema: str, key: str) -> str:
        return self._cmd(["gsettings", "get", schema, key]).stdout.strip()

    def set(self, schema: str, key: str, value: str) -> None:
        self._cmd(["gsettings", "set", schema, key, value])

    def dconf_read(self, path: str) -> str:
        return self._cmd(["dconf", "read", path], check=False).stdout.strip()

    def dconf_write(self, path: str, value: str) -> None:
        self._cmd(["dconf", "write", path, value])

    def dconf_dir_exists(self, path: str) -> bool:
        r = self._cmd(["dconf", "list", path], check=False)
        return r.returncode == 0 and bool(r.stdout.strip())


def desktop_search_paths(user: SessionUser) -> List[Path]:
    return [
        Path("/usr/share/applications"),
        Path("/var/lib/snapd/desktop/applications"),
        Path(user.home) / ".local/share/applications",
    ]


def find_desktop_file(name: str, search_paths: Sequence[Path]) -> Optional[Path]:
    for base in search_paths:
        p = base / name
        if p.is_file():
            return p
    return None


def favorite_apps(store: SettingsStore) -> List[str]:
    return parse_string_list(store.get(DOCK_SCHEMA, DOCK_KEY))


def pin_app(store: SettingsStore, desktop_file: str) -> bool:
    """Append to the dock favorites; returns False when it was already pinned."""

    current = favorite_apps(store)
    if desktop_file in current:
        logger.info("%s is already pinned to the dock", desktop_file)
        return False
    store.set(DOCK_SCHEMA, DOCK_KEY, format_string_list([*current, desktop_file]))
    logger.info("Pinned %s to the GNOME dock", desktop_file)
    return True


def resolve_terminal_profile(store: SettingsStore, *, new_uuid: Callable[[], str] = lambda: str(uuid.uuid4())) -> str:
    """Return the profile to configure, creating or promoting one when needed."""

    default = unquote(store.get(PROFILES_SCHEMA, "default"))
    profiles = parse_string_list(store.get(PROFILES_SCHEMA, "list"))

    if default and default in profiles:
        logger.info("Found default terminal profile: %s", default)
        return default

    if not profiles:
        profile = new_uuid()
        store.set(PROFILES_SCHEMA, "list", format_string_list([profile]))
        store.set(PROFILES_SCHEMA, "default", profile)
        store.dconf_write(PROFILE_PATHS[0].format(uuid=profile) + "visible-name", "'Default'")
        logger.info("Created terminal profile %s", profile)
        return profile

    profile = profiles[0]
    logger.warning("No valid default terminal profile; using first profile %s", profile)
    store.set(PROFILES_SCHEMA, "default", profile)
    return profile


def profile_path(store: SettingsStore, profile: str) -> Optional[str]:
    for tmpl in PROFILE_PATHS:
        p = tmpl.format(uuid=profile)
        if store.dconf_dir_exists(p):
            return p
    return None


def terminal_font(store: SettingsStore, profile: str) -> str:
    for tmpl in PROFILE_PATHS:
        value = store.dconf_read(tmpl.format(uuid=profile) + "font")
        if value:
            return unquote(value)
    return ""


def set_terminal_font(store: SettingsStore, font: str) -> str:
    profile = resolve_terminal_profile(store)
    path = profile_path(store, profile) or PROFILE_PATHS[0].format(uuid=profile)
    try:
        store.dconf_write(path + "use-system-font", "false")
        store.dconf_write(path + "font", repr(font))
    except CommandError as e:
        raise ConfigurationError(
            f"Could not write terminal font for profile {profile}: {e}",
            hint="set the font manually via Terminal -> Preferences -> Profile -> Text",
        ) from e
    logger.info("Terminal font set to %r for profile %s", font, profile)
    return profile
