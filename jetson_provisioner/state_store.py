from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from .errors import ConfigError

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def _yaml():
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ConfigError(
            "YAML run record requested but PyYAML is not available. Use a .json path."
        ) from e
    return yaml


def load_run_record(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    if _detect_format(p) in {"yaml", "yml"}:
        data = _yaml().safe_load(p.read_text(encoding="utf-8")) or {}
    else:
        data = json.loads(p.read_text(encoding="utf-8"))

    if not isinstance(data, dict):
        raise ConfigError(f"Run record must be an object/dict, got {type(data)}")
    return data


def save_run_record(path: str, record: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) in {"yaml", "yml"}:
        p.write_text(_yaml().safe_dump(record, sort_keys=False) + "\n", encoding="utf-8")
    else:
        p.write_text(json.dumps(record, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.info("Run record saved to %s", p)


def append_run(path: str, run: Dict[str, Any], *, keep: int = 20) -> Dict[str, Any]:
    """Append one run to the record, keeping the most recent ``keep`` runs."""

    record = load_run_record(path)
    runs = list(record.get("runs") or [])
    runs.append(run)
    record["runs"] = runs[-keep:]
    record["last"] = run
    save_run_record(path, record)
    return record
