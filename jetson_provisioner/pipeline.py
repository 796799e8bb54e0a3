from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import ProvisionConfig
from .errors import (
    CommandError,
    MissingDependencyError,
    PipelineAborted,
    ProvisionError,
    ValidationError,
)
from .lib.command import CmdResult, fmt_argv, run_cmd, tail
from .lib.probe import EnvironmentProber, EnvironmentSnapshot
from .lib.workspace import BuildWorkspace
from .registry import Step, StepRegistry

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class ExecutionResult:
    step_name: str
    start_time: str
    end_time: str
    exit_code: int
    status: StepStatus
    stdout_tail: str = ""
    stderr_tail: str = ""
    attempts: int = 0
    error: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_name": self.step_name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "exit_code": self.exit_code,
            "status": self.status.value,
            "stdout_tail": self.stdout_tail,
            "stderr_tail": self.stderr_tail,
            "attempts": self.attempts,
            "error": self.error,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PipelineResult:
    status: PipelineStatus
    results: Tuple[ExecutionResult, ...]
    failed_steps: Tuple[str, ...] = ()
    error: Optional[ProvisionError] = None
    snapshot: EnvironmentSnapshot = field(default_factory=EnvironmentSnapshot)

    @property
    def exit_code(self) -> int:
        if self.status is PipelineStatus.SUCCEEDED:
            return 0
        return self.error.exit_code if self.error is not None else 1

    def result_for(self, name: str) -> Optional[ExecutionResult]:
        for r in self.results:
            if r.step_name == name:
                return r
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "failed_steps": list(self.failed_steps),
            "error": self.error.one_line() if self.error is not None else None,
            "snapshot": self.snapshot.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }


class StepContext:
    """What a step's action, precondition and postcondition get to see."""

    def __init__(
        self,
        *,
        step: Step,
        config: ProvisionConfig,
        snapshot: EnvironmentSnapshot,
        workspace: Optional[BuildWorkspace] = None,
    ) -> None:
        self.step = step
        self.config = config
        self.snapshot = snapshot
        self.workspace = workspace
        self.last: Optional[CmdResult] = None

    def scratch(self, *parts: str) -> Path:
        if self.workspace is None:
            raise ProvisionError(f"Step {self.step.name} needs a build workspace")
        return self.workspace.path(*parts)

    def run(self, argv: Sequence[str], **kwargs: Any) -> CmdResult:
        """Run a command and keep its output for the step's result and diagnostic log."""

        try:
            res = run_cmd(argv, **kwargs)
        except CommandError as e:
            self.last = CmdResult(argv=list(argv), returncode=e.returncode, stdout=e.stdout, stderr=e.stderr)
            self._append_log(self.last)
            raise
        self.last = res
        self._append_log(res)
        return res

    def _append_log(self, res: CmdResult) -> None:
        if self.workspace is None or self.workspace.logs is None:
            return
        with self.workspace.log_file(f"{self.step.name}.log").open("a", encoding="utf-8") as f:
            f.write(f"$ {fmt_argv(res.argv)}\n[exit {res.returncode}]\n")
            if res.stdout:
                f.write(res.stdout if res.stdout.endswith("\n") else res.stdout + "\n")
            if res.stderr:
                f.write("--- stderr ---\n")
                f.write(res.stderr if res.stderr.endswith("\n") else res.stderr + "\n")


class Executor:
    """Run registered steps in order, one at a time.

    PENDING -> RUNNING -> SUCCEEDED | FAILED | SKIPPED per step. Retryable
    steps get ``config.max_retries`` extra attempts; a fatal failure stops
    the pipeline before any later step's action runs.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        registry: StepRegistry,
        *,
        prober: Optional[EnvironmentProber] = None,
        workspace: Optional[BuildWorkspace] = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.prober = prober
        self.workspace = workspace
        self.snapshot = EnvironmentSnapshot()
        self.results: List[ExecutionResult] = []
        self._abort_reason: Optional[str] = None

    def request_abort(self, reason: str = "abort requested") -> None:
        """Stop before the next step; the step in flight finishes first."""

        logger.warning("Abort requested: %s", reason)
        self._abort_reason = reason

    def run(self) -> PipelineResult:
        if self.prober is not None:
            self.snapshot = self.prober.probe()

        failed: List[str] = []
        fatal_error: Optional[ProvisionError] = None

        for step in self.registry.ordered():
            if self._abort_reason is not None:
                fatal_error = PipelineAborted(f"Aborted before step {step.name}: {self._abort_reason}")
                logger.error("%s", fatal_error)
                break

            result, error = self._run_step(step)
            self.results.append(result)

            if result.status is not StepStatus.FAILED:
                continue
            failed.append(step.name)
            if step.fatal or isinstance(error, PipelineAborted):
                fatal_error = error
                logger.error("Fatal step %s failed; aborting pipeline", step.name)
                break
            logger.warning("Non-fatal step %s failed; continuing", step.name)

        status = PipelineStatus.SUCCEEDED if fatal_error is None else PipelineStatus.FAILED
        logger.info("Pipeline %s (failed steps: %s)", status.value, ",".join(failed) or "-")
        return PipelineResult(
            status=status,
            results=tuple(self.results),
            failed_steps=tuple(failed),
            error=fatal_error,
            snapshot=self.snapshot,
        )

    def _missing_tools(self, step: Step) -> List[str]:
        return [
            t
            for t in step.requires
            if not self.snapshot.has_tool(t) and shutil.which(t) is None
        ]

    def _run_step(self, step: Step) -> Tuple[ExecutionResult, Optional[ProvisionError]]:
        start = _now()
        if step.reprobe and self.prober is not None:
            logger.info("Re-probing environment before %s", step.name)
            self.snapshot = self.prober.probe()

        ctx = StepContext(step=step, config=self.config, snapshot=self.snapshot, workspace=self.workspace)

        def finish(
            status: StepStatus,
            *,
            exit_code: int = 0,
            attempts: int = 0,
            error: Optional[ProvisionError] = None,
            reason: str = "",
        ) -> Tuple[ExecutionResult, Optional[ProvisionError]]:
            last = ctx.last
            result = ExecutionResult(
                step_name=step.name,
                start_time=start,
                end_time=_now(),
                exit_code=exit_code,
                status=status,
                stdout_tail=tail(last.stdout) if last else "",
                stderr_tail=tail(last.stderr) if last else "",
                attempts=attempts,
                error=error.one_line() if error is not None else "",
                reason=reason,
            )
            log = logger.error if status is StepStatus.FAILED else logger.info
            log("Step %s -> %s%s", step.name, status.name, f" ({reason})" if reason else "")
            return result, error

        logger.info("Running step %s", step.name)

        missing = self._missing_tools(step)
        if missing:
            reason = f"missing tools: {', '.join(missing)}"
            if step.optional:
                return finish(StepStatus.SKIPPED, reason=reason)
            return finish(
                StepStatus.FAILED,
                exit_code=127,
                error=MissingDependencyError(f"{step.name}: {reason}"),
                reason=reason,
            )

        if step.precondition is not None:
            try:
                ready = bool(step.precondition(ctx))
                pre_error: Optional[ProvisionError] = None
            except ProvisionError as e:
                ready, pre_error = False, e
            except Exception as e:
                ready, pre_error = False, step.phase.error_class(f"{step.name}: precondition raised: {e}")
            if not ready:
                reason = "precondition not met"
                if step.optional and pre_error is None:
                    return finish(StepStatus.SKIPPED, reason=reason)
                err = pre_error or MissingDependencyError(f"{step.name}: {reason}")
                return finish(StepStatus.FAILED, exit_code=1, error=err, reason=reason)

        if step.skip_if_satisfied and step.postcondition is not None and self._postcondition_holds(step, ctx):
            return finish(StepStatus.SKIPPED, reason="already satisfied")

        max_attempts = 1 + (self.config.max_retries if step.retryable else 0)
        error: Optional[ProvisionError] = None
        code = 0
        for attempt in range(1, max_attempts + 1):
            error = None
            try:
                code = int(step.action(ctx) or 0)
            except CommandError as e:
                code = e.returncode or 1
                error = step.phase.error_class(str(e), hint=e.hint if e.hint != e.default_hint else None)
            except ProvisionError as e:
                code = getattr(e, "returncode", None) or e.exit_code
                error = e
            except Exception as e:
                logger.exception("Step %s raised", step.name)
                code = 1
                error = step.phase.error_class(f"{step.name}: {type(e).__name__}: {e}")

            if error is None and code != 0:
                error = step.phase.error_class(f"{step.name} exited with code {code}")

            if error is None:
                if self._postcondition_holds(step, ctx):
                    return finish(StepStatus.SUCCEEDED, exit_code=0, attempts=attempt)
                error = ValidationError(f"{step.name}: postcondition failed after a clean exit")

            if self._abort_reason is not None:
                error = PipelineAborted(f"{step.name} interrupted: {self._abort_reason}")
                break

            if attempt < max_attempts:
                logger.warning(
                    "Step %s failed (attempt %d/%d): %s; retrying",
                    step.name,
                    attempt,
                    max_attempts,
                    error,
                )

        reason = (str(error).splitlines() or [""])[0]
        return finish(StepStatus.FAILED, exit_code=code, attempts=attempt, error=error, reason=reason)

    def _postcondition_holds(self, step: Step, ctx: StepContext) -> bool:
        if step.postcondition is None:
            return True
        try:
            return bool(step.postcondition(ctx))
        except Exception as e:
            logger.warning("Postcondition for %s raised: %s: %s", step.name, type(e).__name__, e)
            return False
