from __future__ import annotations

import fnmatch
import hashlib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol, Tuple

import requests

from ..errors import ArtifactIntegrityError, FetchError, ProvisionError
from .command import run_cmd

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Download:
    path: Path
    source_url: str
    expected_sha256: Optional[str] = None


class FetchMethod(Protocol):
    name: str

    def __call__(self, dest_dir: Path, version: str, timeout: float) -> Download:
        ...


@dataclass(frozen=True)
class FetchAttempt:
    method: str
    ok: bool
    reason: str = ""
    duration_s: float = 0.0


@dataclass(frozen=True)
class FetchSpec:
    primary: FetchMethod
    target_version: str
    timeout: float = 300.0
    fallback: Optional[FetchMethod] = None
    filename_pattern: str = "*-{version}.tar.*"


@dataclass(frozen=True)
class Artifact:
    source_url: str
    local_path: Path
    size_bytes: int
    checksum: str
    method: str = ""
    attempts: Tuple[FetchAttempt, ...] = field(default_factory=tuple)


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


class PipDownloadMethod:
    """Download an sdist through ``pip download`` against a package index."""

    name = "pip-download"

    def __init__(self, package: str, *, python: str = "python3", index_url: Optional[str] = None) -> None:
        self.package = package
        self.python = python
        self.index_url = index_url

    def __call__(self, dest_dir: Path, version: str, timeout: float) -> Download:
        argv = [self.python, "-m", "pip", "download", "--no-binary=:all:", "--no-deps"]
        if self.index_url:
            argv += ["--index-url", self.index_url]
        argv += ["-d", str(dest_dir), f"{self.package}=={version}"]
        run_cmd(
            argv,
            timeout=timeout,
            env={"PIP_DISABLE_PIP_VERSION_CHECK": "1", "PYTHONNOUSERSITE": "1"},
        )

        found = sorted(dest_dir.glob(f"{self.package}-{version}.tar.*")) or sorted(
            dest_dir.glob(f"{self.package}-*.tar.*")
        )
        if not found:
            raise FetchError(f"pip download produced no {self.package} archive in {dest_dir}")
        base = (self.index_url or "https://pypi.org/simple").rstrip("/")
        return Download(path=found[-1], source_url=f"{base}/{self.package.lower()}/")


class PyPIJsonMethod:
    """Resolve the sdist URL from a registry's JSON metadata API and stream it."""

    name = "pypi-json"

    def __init__(
        self,
        package: str,
        *,
        base_url: str = "https://pypi.org/pypi",
        session: Optional[Any] = None,
    ) -> None:
        self.package = package
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def resolve(self, version: str, timeout: float) -> Tuple[str, str, Optional[str]]:
        url = f"{self.base_url}/{self.package}/{version}/json"
        r = self.session.get(url, timeout=timeout)
        r.raise_for_status()
        data = r.json()
        for f in data.get("urls") or []:
            if f.get("packagetype") == "sdist" and str(f.get("filename", "")).endswith(".tar.gz"):
                digest = (f.get("digests") or {}).get("sha256")
                return str(f["url"]), str(f["filename"]), digest
        raise FetchError(f"No sdist found for {self.package}=={version} at {url}")

    def __call__(self, dest_dir: Path, version: str, timeout: float) -> Download:
        url, filename, digest = self.resolve(version, timeout)
        logger.info("sdist URL: %s", url)

        out_path = dest_dir / filename
        part = out_path.with_name(out_path.name + ".part")
        try:
            with self.session.get(url, stream=True, timeout=timeout) as r:
                r.raise_for_status()
                with part.open("wb") as f:
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
            part.replace(out_path)
        finally:
            if part.exists():
                part.unlink()
        return Download(path=out_path, source_url=url, expected_sha256=digest)


class Fetcher:
    """Primary method first, one fallback on timeout or failure, then integrity checks."""

    def __init__(self, dest_dir: Path) -> None:
        self.dest_dir = Path(dest_dir)

    def verify(self, download: Download, spec: FetchSpec) -> str:
        p = download.path
        if not p.is_file():
            raise ArtifactIntegrityError(f"Downloaded artifact missing: {p}")
        if p.stat().st_size == 0:
            raise ArtifactIntegrityError(f"Downloaded artifact is empty: {p}")
        pattern = spec.filename_pattern.format(version=spec.target_version)
        if not fnmatch.fnmatch(p.name, pattern):
            raise ArtifactIntegrityError(f"Unexpected artifact name {p.name} (expected {pattern})")
        checksum = sha256_file(p)
        if download.expected_sha256 and checksum != download.expected_sha256.lower():
            raise ArtifactIntegrityError(
                f"Checksum mismatch for {p.name}: {checksum} != {download.expected_sha256}"
            )
        return checksum

    def fetch(self, spec: FetchSpec) -> Artifact:
        self.dest_dir.mkdir(parents=True, exist_ok=True)
        methods = [m for m in (spec.primary, spec.fallback) if m is not None]

        attempts: List[FetchAttempt] = []
        last_error: Optional[Exception] = None
        for i, method in enumerate(methods):
            started = time.monotonic()
            try:
                download = method(self.dest_dir, spec.target_version, spec.timeout)
                checksum = self.verify(download, spec)
            except (ProvisionError, requests.RequestException, OSError, ValueError, KeyError) as e:
                reason = f"{method.name}: {' '.join(str(e).split())}"
                attempts.append(
                    FetchAttempt(method.name, ok=False, reason=reason, duration_s=time.monotonic() - started)
                )
                last_error = e
                if i + 1 < len(methods):
                    logger.warning("Fetch via %s failed (%s); falling back to %s", method.name, e, methods[i + 1].name)
                continue

            attempts.append(FetchAttempt(method.name, ok=True, duration_s=time.monotonic() - started))
            artifact = Artifact(
                source_url=download.source_url,
                local_path=download.path,
                size_bytes=download.path.stat().st_size,
                checksum=checksum,
                method=method.name,
                attempts=tuple(attempts),
            )
            logger.info(
                "Fetched %s via %s (%d bytes, sha256=%s)",
                artifact.local_path.name,
                artifact.method,
                artifact.size_bytes,
                artifact.checksum,
            )
            return artifact

        reasons = [a.reason for a in attempts]
        if isinstance(last_error, ArtifactIntegrityError):
            raise ArtifactIntegrityError("; ".join(reasons[-2:]))
        raise FetchError(f"All fetch methods failed for version {spec.target_version}", reasons=reasons)
