from __future__ import annotations

import hashlib
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from ..errors import ManifestWriteError
from .fetch import sha256_file

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


@dataclass(frozen=True)
class FileEntry:
    relative_path: str
    checksum: str
    size: int


@dataclass(frozen=True)
class Manifest:
    timestamp: str
    file_entries: Tuple[FileEntry, ...]
    pipeline_status: str
    path: Optional[Path] = None
    content_checksum: str = ""

    def render(self) -> str:
        """Serialized manifest body; the timestamp lives in the filename only."""

        lines = [
            f"# manifest-version: {MANIFEST_VERSION}",
            f"# status: {self.pipeline_status}",
            f"# files: {len(self.file_entries)}",
        ]
        lines += [f"{e.checksum}  {e.size}  {e.relative_path}" for e in self.file_entries]
        return "\n".join(lines) + "\n"


def collect_entries(root: Path) -> List[FileEntry]:
    entries: List[FileEntry] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for fn in filenames:
            p = Path(dirpath) / fn
            if p.is_symlink() or not p.is_file():
                continue
            rel = p.relative_to(root).as_posix()
            entries.append(FileEntry(relative_path=rel, checksum=sha256_file(p), size=p.stat().st_size))
    entries.sort(key=lambda e: e.relative_path)
    return entries


class ManifestWriter:
    """Record a checksummed, deterministically ordered listing of an installed tree."""

    def __init__(self, out_dir: str | Path, *, prefix: str = "manifest", pipeline_status: str = "SUCCEEDED") -> None:
        self.out_dir = Path(out_dir)
        self.prefix = prefix
        self.pipeline_status = pipeline_status

    def build(self, root_path: str | Path) -> Manifest:
        root = Path(root_path)
        if not root.is_dir():
            raise ManifestWriteError(f"Manifest root does not exist: {root}")
        entries = collect_entries(root)
        if not entries:
            raise ManifestWriteError(f"Manifest root is empty: {root}")
        return Manifest(
            timestamp=time.strftime("%Y%m%d%H%M%S"),
            file_entries=tuple(entries),
            pipeline_status=self.pipeline_status,
        )

    def _unique_path(self, timestamp: str) -> Path:
        """``<prefix>_<timestamp>.txt``, suffixed ``_1``, ``_2``... when that name is taken."""

        base = f"{self.prefix}_{timestamp}"
        path = self.out_dir / f"{base}.txt"
        n = 0
        while path.exists() or path.with_name(path.name + ".sha256").exists():
            n += 1
            path = self.out_dir / f"{base}_{n}.txt"
        return path

    def write(self, root_path: str | Path) -> Manifest:
        manifest = self.build(root_path)
        body = manifest.render()
        digest = hashlib.sha256(body.encode("utf-8")).hexdigest()

        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            path = self._unique_path(manifest.timestamp)
            path.write_text(body, encoding="utf-8")
            path.with_name(path.name + ".sha256").write_text(f"{digest}  {path.name}\n", encoding="utf-8")
        except OSError as e:
            raise ManifestWriteError(f"Cannot write manifest under {self.out_dir}: {e}") from e

        logger.info("Manifest written: %s (%d files, sha256=%s)", path, len(manifest.file_entries), digest)
        return Manifest(
            timestamp=manifest.timestamp,
            file_entries=manifest.file_entries,
            pipeline_status=manifest.pipeline_status,
            path=path,
            content_checksum=digest,
        )


def verify_manifest(manifest_path: str | Path, root_path: str | Path) -> List[str]:
    """Return drift findings (empty when the tree still matches the manifest)."""

    mp = Path(manifest_path)
    body = mp.read_text(encoding="utf-8")
    problems: List[str] = []

    companion = mp.with_name(mp.name + ".sha256")
    if companion.exists():
        recorded = companion.read_text(encoding="utf-8").split()[0]
        if hashlib.sha256(body.encode("utf-8")).hexdigest() != recorded:
            problems.append(f"manifest content changed: {mp.name}")

    expected = {}
    for line in body.splitlines():
        if not line or line.startswith("#"):
            continue
        checksum, size, rel = line.split("  ", 2)
        expected[rel] = (checksum, int(size))

    actual = {e.relative_path: (e.checksum, e.size) for e in collect_entries(Path(root_path))}
    for rel in sorted(expected):
        if rel not in actual:
            problems.append(f"missing: {rel}")
        elif actual[rel] != expected[rel]:
            problems.append(f"modified: {rel}")
    for rel in sorted(set(actual) - set(expected)):
        problems.append(f"added: {rel}")
    return problems
