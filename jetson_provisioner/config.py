from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigError

DEFAULT_PYQT_VERSION = "5.15.10"
DEFAULT_INDEX_URL = "https://pypi.org/simple"
DEFAULT_PYPI_JSON_URL = "https://pypi.org/pypi"

# Modules excluded from the minimal build; QtMultimedia is added unless enabled.
DEFAULT_DISABLED_MODULES: Tuple[str, ...] = (
    "QtWebEngineCore",
    "QtWebEngineWidgets",
    "QtWebEngineQuick",
    "QtWebChannel",
    "QtWebSockets",
    "QtPositioning",
    "QtLocation",
    "QtBluetooth",
    "QtNfc",
    "QtSensors",
    "QtSerialPort",
    "QtTest",
)

DEFAULT_BUILD_PACKAGES: Tuple[str, ...] = (
    "qtbase5-dev",
    "qttools5-dev-tools",
    "qtdeclarative5-dev",
    "build-essential",
    "libgl1-mesa-dev",
    "libxkbcommon-x11-0",
    "python3-dev",
)

LOGS_ON_SUCCESS = {"keep", "remove", "archive"}

# Environment variable overrides, applied above the config file and below the CLI.
_ENV_KEYS = {
    "PYQT_VERSION": ("pyqt_version", str),
    "MAKE_JOBS": ("jobs", int),
    "SKIP_APT": ("skip_dependency_install", bool),
    "KEEP_BUILD_DIR": ("keep_build_dir", bool),
    "DOWNLOAD_TIMEOUT": ("download_timeout", float),
    "USE_DIRECT_FETCH": ("use_direct_fetch", bool),
    "ENABLE_MULTIMEDIA": ("enable_multimedia", bool),
    "PIP_INDEX_URL": ("index_url", str),
}


@dataclass(frozen=True)
class ProvisionConfig:
    """Immutable run configuration, built once and handed to the Executor."""

    pipeline: str = "all"
    work_dir: str = "build_artifacts"
    python: str = "python3"
    pyqt_version: str = DEFAULT_PYQT_VERSION
    jobs: int = 1
    memory_per_job_mb: int = 1500
    skip_dependency_install: bool = False
    keep_build_dir: bool = False
    logs_on_success: str = "keep"
    index_url: str = DEFAULT_INDEX_URL
    pypi_json_url: str = DEFAULT_PYPI_JSON_URL
    download_timeout: float = 300.0
    use_direct_fetch: bool = False
    enable_multimedia: bool = False
    use_sudo: bool = True
    sudo_make_install: bool = False
    force_rebuild: bool = False
    max_retries: int = 1
    apt_upgrade: bool = True
    package_wheel: bool = False
    wheel_dir: str = ""
    wheel_plat_name: str = "linux_aarch64"
    dock_apps: Tuple[str, ...] = ("chromium_chromium.desktop", "org.gnome.Terminal.desktop")
    terminal_font: str = "Monospace 16"
    disabled_modules: Tuple[str, ...] = DEFAULT_DISABLED_MODULES
    build_packages: Tuple[str, ...] = DEFAULT_BUILD_PACKAGES
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def excluded_modules(self) -> Tuple[str, ...]:
        mods = list(self.disabled_modules)
        if not self.enable_multimedia and "QtMultimedia" not in mods:
            mods.append("QtMultimedia")
        return tuple(mods)

    @property
    def work_path(self) -> Path:
        return Path(self.work_dir)

    @property
    def wheel_path(self) -> Path:
        return Path(self.wheel_dir) if self.wheel_dir else self.work_path / "wheels"

    def validate(self) -> "ProvisionConfig":
        if self.pipeline not in {"setup", "pyqt5", "all"}:
            raise ConfigError(f"Unknown pipeline: {self.pipeline}")
        if self.jobs < 1:
            raise ConfigError(f"jobs must be >= 1, got {self.jobs}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.download_timeout <= 0:
            raise ConfigError(f"download_timeout must be positive, got {self.download_timeout}")
        if self.logs_on_success not in LOGS_ON_SUCCESS:
            raise ConfigError(
                f"logs_on_success must be one of {sorted(LOGS_ON_SUCCESS)}, got {self.logs_on_success}"
            )
        if self.package_wheel and not self.wheel_plat_name:
            raise ConfigError("wheel_plat_name must be set when package_wheel is enabled")
        return self


def _coerce(name: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in {"1", "true", "yes", "on"}:
            return True
        if s in {"0", "false", "no", "off", ""}:
            return False
        raise ConfigError(f"{name}: expected a boolean, got {value!r}")
    if kind is tuple:
        if isinstance(value, str):
            return tuple(v.strip() for v in value.split(",") if v.strip())
        if isinstance(value, (list, tuple)):
            return tuple(str(v) for v in value)
        raise ConfigError(f"{name}: expected a list, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: expected {kind.__name__}, got {value!r}") from e


def _field_kinds() -> Dict[str, type]:
    kinds: Dict[str, type] = {}
    defaults = ProvisionConfig()
    for f in fields(ProvisionConfig):
        if f.name == "extra":
            continue
        kinds[f.name] = type(getattr(defaults, f.name))
    return kinds


def apply_overrides(cfg: ProvisionConfig, overrides: Mapping[str, Any]) -> ProvisionConfig:
    """Return a copy of ``cfg`` with known keys replaced; unknown keys land in ``extra``."""

    kinds = _field_kinds()
    known: Dict[str, Any] = {}
    extra = dict(cfg.extra)
    for key, value in overrides.items():
        if value is None:
            continue
        name = key.replace("-", "_")
        if name in kinds:
            known[name] = _coerce(name, value, kinds[name])
        else:
            extra[name] = value
    return replace(cfg, extra=extra, **known)


def load_config_file(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("config file must be YAML")

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise ConfigError("PyYAML is required to read the config file") from e

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError("config file must contain a mapping/object")
    return raw


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for env_key, (name, kind) in _ENV_KEYS.items():
        raw = environ.get(env_key)
        if raw is None or raw == "":
            continue
        out[name] = _coerce(env_key, raw, kind)
    return out


def build_config(
    *,
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cli: Optional[Mapping[str, Any]] = None,
) -> ProvisionConfig:
    """Layer defaults < YAML file < environment < command line."""

    cfg = ProvisionConfig()
    if config_path:
        cfg = apply_overrides(cfg, load_config_file(config_path))
    cfg = apply_overrides(cfg, env_overrides(os.environ if environ is None else environ))
    if cli:
        cfg = apply_overrides(cfg, cli)
    return cfg.validate()
