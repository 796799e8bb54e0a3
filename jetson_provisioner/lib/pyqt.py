from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..errors import ArtifactIntegrityError, InstallError
from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

Runner = Callable[..., CmdResult]

PACKAGE = "PyQt5"
SIP_REQUIREMENTS = ("sip>=6.7,<6.12", "PyQt5-sip>=12.11,<13")
SIP_COMPONENTS = ("sipbuild", "PyQt5.sip")
CORE_MODULES = ("QtCore", "QtGui", "QtWidgets")

LEGACY = "configure.py"
SIP_BUILD = "sip-build"


def clamp_jobs(requested: int, available_memory_mb: int, memory_per_job_mb: int) -> int:
    """Cap compile parallelism so each job keeps ``memory_per_job_mb`` of headroom."""

    requested = max(1, int(requested))
    if available_memory_mb <= 0 or memory_per_job_mb <= 0:
        return requested
    return max(1, min(requested, available_memory_mb // memory_per_job_mb))


def find_source_archive(downloads: Path, version: str) -> Optional[Path]:
    found = sorted(downloads.glob(f"{PACKAGE}-{version}.tar.*")) or sorted(downloads.glob(f"{PACKAGE}-*.tar.*"))
    found = [p for p in found if not p.name.endswith(".part")]
    return found[-1] if found else None


def find_source_dir(src_root: Path, version: str) -> Optional[Path]:
    preferred = src_root / f"{PACKAGE}-{version}"
    if preferred.is_dir():
        return preferred
    candidates = sorted(p for p in src_root.glob(f"{PACKAGE}-*") if p.is_dir())
    return candidates[0] if candidates else None


def extract_archive(archive: Path, dest: Path) -> None:
    """Unpack a source tarball, refusing members that escape ``dest``."""

    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    try:
        with tarfile.open(archive) as tf:
            members = tf.getmembers()
            for m in members:
                target = (root / m.name).resolve()
                if target != root and root not in target.parents:
                    raise ArtifactIntegrityError(f"Archive member escapes extraction dir: {m.name}")
                if m.issym() or m.islnk():
                    link = (target.parent / m.linkname).resolve()
                    if root not in link.parents and link != root:
                        raise ArtifactIntegrityError(f"Archive link escapes extraction dir: {m.name}")
            tf.extractall(str(root), members=members)
    except tarfile.TarError as e:
        raise ArtifactIntegrityError(f"Cannot unpack {archive.name}: {e}") from e


def toolchain_for(source_dir: Path) -> str:
    """Pick the configure front-end the source tree ships."""

    if (source_dir / LEGACY).is_file():
        return LEGACY
    return SIP_BUILD


def build_dir_for(source_dir: Path) -> Path:
    return source_dir if toolchain_for(source_dir) == LEGACY else source_dir / "build"


def legacy_configure_args(python: str, disabled: Sequence[str], *, sip_module: bool = True) -> List[str]:
    argv = [python, LEGACY, "--confirm-license", "--no-designer-plugin", "--no-qml-plugin"]
    if sip_module:
        argv += ["--sip-module", "PyQt5.sip"]
    for m in disabled:
        argv += ["--disable", m]
    return argv


def sip_build_executable(python: str) -> str:
    resolved = shutil.which(python)
    if resolved:
        candidate = Path(resolved).parent / SIP_BUILD
        if candidate.exists():
            return str(candidate)
    return SIP_BUILD


def sip_build_args(executable: str, disabled: Sequence[str], *, build_dir: str = "build") -> List[str]:
    argv = [
        executable,
        "--confirm-license",
        "--no-make",
        "--no-designer-plugin",
        "--no-qml-plugin",
        "--build-dir",
        build_dir,
    ]
    for m in disabled:
        argv += ["--disable", m]
    return argv


def installed_version(python: str, *, run: Runner = run_cmd) -> Optional[str]:
    r = run(
        [python, "-c", "from PyQt5.QtCore import PYQT_VERSION_STR; print(PYQT_VERSION_STR)"],
        check=False,
    )
    if r.returncode != 0:
        return None
    return r.stdout.strip() or None


def package_dir(python: str, *, run: Runner = run_cmd) -> Optional[Path]:
    r = run([python, "-c", "import os, PyQt5; print(os.path.dirname(PyQt5.__file__))"], check=False)
    if r.returncode != 0 or not r.stdout.strip():
        return None
    return Path(r.stdout.strip().splitlines()[-1])


WHEEL_PATTERNS = ("*.so", "*.pyi")

WHEEL_SETUP_PY = """\
from setuptools import setup

setup(
    name="{name}",
    version="{version}",
    description="Minimal PyQt5 bindings built on the device",
    packages=["PyQt5"],
    package_data={{"PyQt5": {patterns!r}}},
    include_package_data=True,
    zip_safe=False,
)
"""


def stage_wheel_tree(pkg_dir: Path, staging: Path) -> List[Path]:
    """Copy the installed extension modules and stubs into ``staging/PyQt5``."""

    sos = sorted(pkg_dir.glob("*.so"))
    if not sos:
        raise InstallError(
            f"No .so files found in {pkg_dir}",
            hint="make install may have failed; re-run with --force",
        )
    dest = staging / PACKAGE
    dest.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    for pattern in WHEEL_PATTERNS:
        for p in sorted(pkg_dir.glob(pattern)):
            shutil.copy2(p, dest / p.name)
            copied.append(dest / p.name)
    init = dest / "__init__.py"
    if not init.exists():
        src_init = pkg_dir / "__init__.py"
        init.write_text(src_init.read_text(encoding="utf-8") if src_init.exists() else "", encoding="utf-8")
    return copied


def write_wheel_setup(staging: Path, version: str) -> Path:
    setup_py = staging / "setup.py"
    setup_py.write_text(
        WHEEL_SETUP_PY.format(name=PACKAGE, version=version, patterns=list(WHEEL_PATTERNS)),
        encoding="utf-8",
    )
    return setup_py


def bdist_wheel_args(python: str, plat_name: str) -> List[str]:
    return [python, "setup.py", "bdist_wheel", f"--plat-name={plat_name}"]


def find_wheel(wheel_dir: Path, version: str) -> Optional[Path]:
    found = sorted(wheel_dir.glob(f"{PACKAGE}-{version}-*.whl")) + sorted(
        wheel_dir.glob(f"{PACKAGE.lower()}-{version}-*.whl")
    )
    return found[-1] if found else None
