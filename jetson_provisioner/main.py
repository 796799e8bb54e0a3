from __future__ import annotations

import argparse
import logging
import signal
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .config import ProvisionConfig, build_config
from .errors import ProvisionError
from .lib.probe import EnvironmentProber
from .lib.workspace import BuildWorkspace
from .logging_utils import configure_logging
from .pipeline import Executor, PipelineResult, PipelineStatus
from .registry import Step, StepRegistry
from .state_store import append_run
from .steps import (
    BuildSteps,
    RebootCheckStep,
    SourceSteps,
    SystemPackagesSteps,
    TerminalFontStep,
    ToolchainSteps,
    VerifySteps,
    WheelSteps,
    pin_dock_steps,
)

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = "build_artifacts/run_record.json"


def setup_steps(cfg: ProvisionConfig) -> List[Step]:
    return [
        *SystemPackagesSteps(cfg).steps(),
        *pin_dock_steps(cfg),
        TerminalFontStep(cfg).step(),
        RebootCheckStep().step(),
    ]


def pyqt5_steps(cfg: ProvisionConfig) -> List[Step]:
    return [
        *ToolchainSteps(cfg).steps(),
        *SourceSteps(cfg).steps(),
        *BuildSteps(cfg).steps(),
        *VerifySteps(cfg).steps(),
        *WheelSteps(cfg).steps(),
    ]


def build_registry(cfg: ProvisionConfig) -> StepRegistry:
    registry = StepRegistry()
    if cfg.pipeline in {"setup", "all"}:
        registry.extend(setup_steps(cfg))
    if cfg.pipeline in {"pyqt5", "all"}:
        registry.extend(pyqt5_steps(cfg))
    return registry


@contextmanager
def abort_on_signals(executor: Executor) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into an abort between steps."""

    def _handler(signum, _frame) -> None:
        executor.request_abort(f"received {signal.Signals(signum).name}")

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run(
    cfg: ProvisionConfig,
    *,
    state_path: str = DEFAULT_STATE_PATH,
    log_path: Optional[str] = None,
    prober: Optional[EnvironmentProber] = None,
    verbose: bool = False,
) -> PipelineResult:
    """Run the configured pipeline and persist the run record."""

    actual_log_path = configure_logging(log_path=log_path, level=logging.DEBUG if verbose else logging.INFO)
    registry = build_registry(cfg)
    prober = prober or EnvironmentProber(disk_path=cfg.work_dir)

    with BuildWorkspace(cfg.work_dir, keep=cfg.keep_build_dir, logs_on_success=cfg.logs_on_success) as ws:
        executor = Executor(cfg, registry, prober=prober, workspace=ws)
        with abort_on_signals(executor):
            result = executor.run()
        ws.succeeded = result.status is PipelineStatus.SUCCEEDED

    record: Dict[str, Any] = result.to_dict()
    record["pipeline"] = cfg.pipeline
    record["log_path"] = actual_log_path
    append_run(state_path, record)
    return result


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="jetson-provision", description="Provision a Jetson Orin device.")
    p.add_argument("--pipeline", choices=["setup", "pyqt5", "all"], default=None)
    p.add_argument("--config", default=None, help="YAML config file")
    p.add_argument("--pyqt-version", default=None, help="PyQt5 version to build (e.g. 5.15.10)")
    p.add_argument("--jobs", type=int, default=None, help="make -j level for the compile step")
    p.add_argument(
        "--skip-dependency-install",
        action="store_true",
        default=None,
        help="Do not apt-get install build dependencies",
    )
    p.add_argument("--keep-build-dir", action="store_true", default=None, help="Keep scratch build directories")
    p.add_argument("--index-url", default=None, help="Package index used by pip")
    p.add_argument("--pypi-json-url", default=None, help="Registry JSON API base used by the fallback fetch")
    p.add_argument("--download-timeout", type=float, default=None, help="Seconds allowed for the primary download")
    p.add_argument("--direct-fetch", dest="use_direct_fetch", action="store_true", default=None)
    p.add_argument("--enable-multimedia", action="store_true", default=None, help="Keep QtMultimedia")
    p.add_argument("--force", dest="force_rebuild", action="store_true", default=None, help="Rebuild even if installed")
    p.add_argument("--package-wheel", dest="package_wheel", action="store_true", default=None, help="Also build a platform wheel of PyQt5")
    p.add_argument("--dock-app", dest="dock_apps", action="append", default=None, help=".desktop file to pin")
    p.add_argument("--terminal-font", default=None, help="e.g. 'Monospace 16'")
    p.add_argument("--work-dir", default=None)
    p.add_argument("--log", default=None, help="Run log path (default: timestamped file)")
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Run record path (json|yaml)")
    p.add_argument("--list-steps", action="store_true", help="Print the ordered steps and exit")
    p.add_argument("--verbose", action="store_true")
    return p


_CLI_KEYS = (
    "pipeline",
    "pyqt_version",
    "jobs",
    "skip_dependency_install",
    "keep_build_dir",
    "index_url",
    "pypi_json_url",
    "download_timeout",
    "use_direct_fetch",
    "enable_multimedia",
    "force_rebuild",
    "package_wheel",
    "dock_apps",
    "terminal_font",
    "work_dir",
)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parser().parse_args(argv)
    cli = {k: getattr(args, k) for k in _CLI_KEYS}

    try:
        cfg = build_config(config_path=args.config, cli=cli)
        if args.list_steps:
            for step in build_registry(cfg):
                print(step.describe())
            return 0

        result = run(cfg, state_path=args.state, log_path=args.log, verbose=bool(args.verbose))
    except ProvisionError as e:
        logger.error("%s", e)
        print(e.one_line(), file=sys.stderr)
        return e.exit_code

    if args.verbose:
        for r in result.results:
            print(f"{r.step_name:<36} {r.status.value:<8} {r.reason}")
    if result.error is not None:
        print(result.error.one_line(), file=sys.stderr)
    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
