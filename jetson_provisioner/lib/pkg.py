from __future__ import annotations

import logging
from typing import Callable, List, Sequence

from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

Runner = Callable[..., CmdResult]

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def _sudo(argv: Sequence[str], use_sudo: bool) -> List[str]:
    return ["sudo", *argv] if use_sudo else list(argv)


def _apt(argv: Sequence[str], use_sudo: bool) -> List[str]:
    # sudo resets the environment; pass the frontend through as an assignment.
    if use_sudo:
        return ["sudo", *[f"{k}={v}" for k, v in APT_ENV.items()], *argv]
    return list(argv)


def apt_update(*, use_sudo: bool = True, run: Runner = run_cmd) -> None:
    run(_apt(["apt-get", "update", "-y"], use_sudo), env=APT_ENV)


def apt_upgrade(*, use_sudo: bool = True, run: Runner = run_cmd) -> None:
    run(_apt(["apt-get", "upgrade", "-y"], use_sudo), env=APT_ENV)


def apt_install(
    packages: Sequence[str],
    *,
    with_recommends: bool = False,
    use_sudo: bool = True,
    run: Runner = run_cmd,
) -> None:
    if not packages:
        return
    argv = ["apt-get", "install", "-y"]
    if not with_recommends:
        argv.append("--no-install-recommends")
    run(_apt([*argv, *packages], use_sudo), env=APT_ENV)


def dpkg_installed(package: str, *, run: Runner = run_cmd) -> bool:
    """Return True if dpkg reports the package as installed."""
    r = run(["dpkg-query", "-W", "-f=${Status}", package], check=False)
    return r.returncode == 0 and "install ok installed" in r.stdout


def snap_installed(name: str, *, run: Runner = run_cmd) -> bool:
    r = run(["snap", "list", name], check=False)
    return r.returncode == 0


def snap_install(name: str, *, use_sudo: bool = True, run: Runner = run_cmd) -> None:
    run(_sudo(["snap", "install", name], use_sudo))


def pip_install(
    python: str,
    requirements: Sequence[str],
    *,
    index_url: str | None = None,
    upgrade: bool = True,
    use_sudo: bool = False,
    run: Runner = run_cmd,
) -> None:
    argv = [python, "-m", "pip", "install", "--no-cache-dir"]
    if upgrade:
        argv.append("--upgrade")
    # --index-url must follow the subcommand.
    if index_url:
        argv += ["--index-url", index_url]
    run(
        _sudo([*argv, *requirements], use_sudo),
        env={"PIP_DISABLE_PIP_VERSION_CHECK": "1", "PYTHONNOUSERSITE": "1"},
    )


def pip_has_distribution(python: str, name: str, *, run: Runner = run_cmd) -> bool:
    r = run([python, "-m", "pip", "show", name], check=False)
    return r.returncode == 0
