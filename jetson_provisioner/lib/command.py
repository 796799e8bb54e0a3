from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from ..errors import CommandError, CommandTimeout

logger = logging.getLogger(__name__)

TAIL_LINES = 20


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def tail(text: str, lines: int = TAIL_LINES) -> str:
    if not text:
        return ""
    return "\n".join(text.rstrip("\n").splitlines()[-lines:])


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    timeout: Optional[float] = None,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr so steps can record a tail of them.
    - ``timeout`` kills the process and raises CommandTimeout.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandTimeout(
            f"Command timed out after {timeout}s: {fmt_argv(argv_list)}",
            returncode=124,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr),
        ) from e
    except FileNotFoundError as e:
        raise CommandError(
            f"Executable not found: {argv_list[0]}",
            returncode=127,
            hint=f"install {argv_list[0]} or fix PATH",
        ) from e

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise CommandError(
            f"Command failed ({p.returncode}): {fmt_argv(argv_list)}\n{tail(p.stderr, 5)}",
            returncode=p.returncode,
            stdout=p.stdout,
            stderr=p.stderr,
        )

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


def _decode(data: object) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return str(data)
