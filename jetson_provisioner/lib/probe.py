from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence

from ..errors import CommandError, MissingDependencyError
from .command import run_cmd

logger = logging.getLogger(__name__)

DEFAULT_TOOLS: Sequence[str] = (
    "python3",
    "pip3",
    "apt-get",
    "snap",
    "make",
    "tar",
    "qmake",
    "gsettings",
    "dconf",
)

MISSING = ""


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Read-only view of the host, captured before steps run.

    A tool mapped to an empty string was not found on PATH.
    """

    tool_versions: Dict[str, str] = field(default_factory=dict)
    available_memory_mb: int = 0
    disk_free_mb: int = 0
    flags: Dict[str, bool] = field(default_factory=dict)

    def has_tool(self, name: str) -> bool:
        return bool(self.tool_versions.get(name))

    def to_dict(self) -> Dict[str, object]:
        return {
            "tool_versions": dict(self.tool_versions),
            "available_memory_mb": self.available_memory_mb,
            "disk_free_mb": self.disk_free_mb,
            "flags": dict(self.flags),
        }


def parse_meminfo(text: str) -> int:
    """Return MemAvailable in MiB (falls back to MemFree)."""

    values: Dict[str, int] = {}
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0])
    kb = values.get("MemAvailable", values.get("MemFree", 0))
    return kb // 1024


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


class EnvironmentProber:
    """Inspect tool presence, versions, memory and disk without mutating anything."""

    def __init__(
        self,
        tools: Sequence[str] = DEFAULT_TOOLS,
        *,
        disk_path: str = ".",
        environ: Optional[Mapping[str, str]] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        meminfo_path: str = "/proc/meminfo",
        version_timeout: float = 10.0,
    ) -> None:
        self.tools = list(tools)
        self.disk_path = disk_path
        self.environ = dict(os.environ if environ is None else environ)
        self.which = which
        self.meminfo_path = Path(meminfo_path)
        self.version_timeout = version_timeout
        self.last: Optional[EnvironmentSnapshot] = None

    def tool_version(self, path: str) -> str:
        try:
            r = run_cmd([path, "--version"], check=False, timeout=self.version_timeout)
        except CommandError as e:
            logger.debug("Version probe failed for %s: %s", path, e)
            return "unknown"
        return _first_line(r.stdout) or _first_line(r.stderr) or "unknown"

    def available_memory_mb(self) -> int:
        txt = _read_text(self.meminfo_path)
        return parse_meminfo(txt) if txt else 0

    def disk_free_mb(self) -> int:
        p = Path(self.disk_path)
        while not p.exists() and p != p.parent:
            p = p.parent
        try:
            return shutil.disk_usage(str(p)).free // (1024 * 1024)
        except OSError:
            return 0

    def flags(self) -> Dict[str, bool]:
        geteuid = getattr(os, "geteuid", None)
        return {
            "is_root": bool(geteuid and geteuid() == 0),
            "is_jetson": Path("/etc/nv_tegra_release").exists(),
            "reboot_required": Path("/var/run/reboot-required").exists(),
            "conda_base_env": self.environ.get("CONDA_DEFAULT_ENV") == "base",
            "has_session_bus": bool(self.environ.get("DBUS_SESSION_BUS_ADDRESS")),
        }

    def probe(self) -> EnvironmentSnapshot:
        versions: Dict[str, str] = {}
        for tool in self.tools:
            path = self.which(tool)
            versions[tool] = self.tool_version(path) if path else MISSING

        snap = EnvironmentSnapshot(
            tool_versions=versions,
            available_memory_mb=self.available_memory_mb(),
            disk_free_mb=self.disk_free_mb(),
            flags=self.flags(),
        )
        missing = [t for t, v in versions.items() if not v]
        logger.info(
            "Environment probed (mem=%sMB disk=%sMB missing=%s)",
            snap.available_memory_mb,
            snap.disk_free_mb,
            ",".join(missing) or "-",
        )
        self.last = snap
        return snap

    def require(self, tool_name: str) -> None:
        snap = self.last if self.last is not None else self.probe()
        if tool_name in snap.tool_versions:
            present = snap.has_tool(tool_name)
        else:
            present = self.which(tool_name) is not None
        if not present:
            raise MissingDependencyError(f"Required tool not found on PATH: {tool_name}")
