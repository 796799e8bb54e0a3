from __future__ import annotations

from typing import List, Optional, Sequence

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_PREFLIGHT = 10
EXIT_CONFIGURE = 20
EXIT_BUILD = 30
EXIT_INSTALL = 40
EXIT_VALIDATION = 50
EXIT_MANIFEST = 60
EXIT_ABORTED = 130


class ProvisionError(Exception):
    """Base class for every classified provisioning failure.

    Each subclass pins the process exit code for its phase and a default hint
    shown to the operator next to the one-line classification.
    """

    exit_code: int = 1
    default_hint: str = "see the run log for details"

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint or self.default_hint

    @property
    def classification(self) -> str:
        return type(self).__name__

    def one_line(self) -> str:
        msg = " ".join(str(self).split())
        return f"{self.classification}: {msg} (hint: {self.hint})"


class ConfigError(ProvisionError):
    exit_code = EXIT_USAGE
    default_hint = "check the --config file and command-line values"


class DuplicateStepError(ProvisionError):
    exit_code = EXIT_USAGE
    default_hint = "step names must be unique within a pipeline"


class MissingDependencyError(ProvisionError):
    exit_code = EXIT_PREFLIGHT
    default_hint = "install the missing tool, or re-run with --skip-dependency-install to bypass"


class FetchError(ProvisionError):
    exit_code = EXIT_PREFLIGHT
    default_hint = "check network access or override --index-url / --pypi-json-url"

    def __init__(self, message: str, *, reasons: Sequence[str] = (), hint: Optional[str] = None) -> None:
        self.reasons: List[str] = list(reasons)[-2:]
        if self.reasons:
            message = f"{message}: " + "; ".join(self.reasons)
        super().__init__(message, hint=hint)


class ArtifactIntegrityError(ProvisionError):
    exit_code = EXIT_PREFLIGHT
    default_hint = "the download looks corrupt or incomplete; re-run, or try --direct-fetch"


class ConfigurationError(ProvisionError):
    exit_code = EXIT_CONFIGURE
    default_hint = "inspect the configure log under the diagnostic logs directory"


class BuildError(ProvisionError):
    exit_code = EXIT_BUILD
    default_hint = "re-run with --jobs 1 if the compiler ran out of memory"


class InstallError(ProvisionError):
    exit_code = EXIT_INSTALL
    default_hint = "check write permissions on the target site-packages"


class ValidationError(ProvisionError):
    exit_code = EXIT_VALIDATION
    default_hint = "the step exited cleanly but its end-state check failed"


class ManifestWriteError(ProvisionError):
    exit_code = EXIT_MANIFEST
    default_hint = "make sure the install tree exists and is not empty"


class PipelineAborted(ProvisionError):
    exit_code = EXIT_ABORTED
    default_hint = "the run was interrupted between steps; re-run to resume"


class CommandError(ProvisionError):
    """A subprocess exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class CommandTimeout(CommandError):
    default_hint = "raise the timeout or check network access"
