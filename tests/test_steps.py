"""
Tests for the concrete provisioning steps.
"""

import pytest

from jetson_provisioner import pipeline as pipeline_mod
from jetson_provisioner.config import ProvisionConfig
from jetson_provisioner.errors import CommandError, ConfigurationError, InstallError, ValidationError
from jetson_provisioner.lib.command import CmdResult
from jetson_provisioner.lib.desktop import SessionUser, format_string_list, parse_string_list
from jetson_provisioner.lib.probe import EnvironmentSnapshot
from jetson_provisioner.lib.workspace import BuildWorkspace
from jetson_provisioner.main import build_registry
from jetson_provisioner.pipeline import Executor, PipelineStatus, StepContext, StepStatus
from jetson_provisioner.registry import Step, StepRegistry
from jetson_provisioner.steps import (
    BuildSteps,
    PinToDockStep,
    SourceSteps,
    ToolchainSteps,
    VerifySteps,
    WheelSteps,
    needs_build,
    pin_dock_steps,
)
from jetson_provisioner.steps import step_20_pin_dock, step_70_pyqt5_verify

from .fakes import FakeProber, FakeRunner, ok

VERSION = "5.15.10"


def _ctx(cfg, *, snapshot=None, workspace=None, name="step"):
    return StepContext(
        step=Step(name, action=lambda ctx: None),
        config=cfg,
        snapshot=snapshot or EnvironmentSnapshot(),
        workspace=workspace,
    )


@pytest.fixture
def runner(monkeypatch):
    fake = FakeRunner()
    monkeypatch.setattr(pipeline_mod, "run_cmd", fake)
    return fake


@pytest.fixture
def workspace(tmp_path):
    with BuildWorkspace(str(tmp_path / "work")) as ws:
        yield ws


def _source_tree(ws, *, legacy=True):
    src = ws.path("src", f"PyQt5-{VERSION}")
    if legacy:
        (src / "configure.py").write_text("# configure\n")
    else:
        (src / "pyproject.toml").write_text("[build-system]\n")
    return src


# ── Registry assembly ────────────────────────────────────────────────


class TestRegistryAssembly:
    def test_all_pipeline_order(self, cfg):
        names = build_registry(cfg).names()
        assert names[0] == "10_apt_refresh"
        assert names[-1] == "80_package_wheel"
        assert names.index("71_write_manifest") < names.index("80_package_wheel")
        assert names.index("30_terminal_font") < names.index("40_python_preflight")

    def test_setup_pipeline_has_no_build_steps(self):
        names = build_registry(ProvisionConfig(pipeline="setup")).names()
        assert "20_pin_dock:chromium_chromium.desktop" in names
        assert not [n for n in names if n.startswith("6")]

    def test_pyqt5_pipeline(self):
        names = build_registry(ProvisionConfig(pipeline="pyqt5")).names()
        assert names[0] == "40_python_preflight"
        assert "10_apt_refresh" not in names

    def test_duplicate_dock_apps_rejected(self):
        with pytest.raises(ConfigurationError):
            pin_dock_steps(ProvisionConfig(dock_apps=("a.desktop", "a.desktop")))


# ── Toolchain and source ─────────────────────────────────────────────


class TestToolchain:
    def test_wants_apt(self, cfg):
        with_apt = EnvironmentSnapshot(tool_versions={"apt-get": "apt 2.4.8"})
        assert ToolchainSteps(cfg).wants_apt(_ctx(cfg, snapshot=with_apt)) is True
        assert ToolchainSteps(cfg).wants_apt(_ctx(cfg)) is False

        skip = ProvisionConfig(skip_dependency_install=True)
        assert ToolchainSteps(skip).wants_apt(_ctx(skip, snapshot=with_apt)) is False

    def test_needs_build(self, cfg, runner):
        runner.answers[(cfg.python, "-c")] = ok(f"{VERSION}\n")
        assert needs_build(_ctx(cfg)) is False

        forced = ProvisionConfig(force_rebuild=True)
        assert needs_build(_ctx(forced)) is True

        older = ProvisionConfig(pyqt_version="5.15.11")
        assert needs_build(_ctx(older)) is True

    def test_installed_version_skips_build_steps(self, cfg, runner):
        runner.answers[(cfg.python, "-c")] = ok(f"{VERSION}\n")
        reg = StepRegistry([*SourceSteps(cfg).steps(), *BuildSteps(cfg).steps()])

        result = Executor(cfg, reg, prober=FakeProber()).run()

        assert result.status is PipelineStatus.SUCCEEDED
        assert {r.status for r in result.results} == {StepStatus.SKIPPED}


class TestFetchSpec:
    def test_default_is_pip_then_registry(self, cfg):
        spec = SourceSteps(cfg).fetch_spec()
        assert spec.primary.name == "pip-download"
        assert spec.fallback.name == "pypi-json"
        assert spec.timeout == cfg.download_timeout
        assert spec.target_version == cfg.pyqt_version

    def test_direct_fetch_has_no_fallback(self):
        spec = SourceSteps(ProvisionConfig(use_direct_fetch=True)).fetch_spec()
        assert spec.primary.name == "pypi-json"
        assert spec.fallback is None


# ── Configure / compile / install ────────────────────────────────────


class TestBuild:
    def test_configure_retries_without_sip_module(self, cfg, runner, workspace, monkeypatch):
        src = _source_tree(workspace)

        def configure(argv, **kwargs):
            argv = list(argv)
            runner.calls.append(argv)
            runner.kwargs.append(kwargs)
            if "--sip-module" in argv:
                raise CommandError("configure.py: unrecognized option --sip-module", returncode=2)
            return CmdResult(argv=argv, returncode=0, stdout="", stderr="")

        monkeypatch.setattr(pipeline_mod, "run_cmd", configure)
        BuildSteps(cfg).configure(_ctx(cfg, workspace=workspace))

        assert len(runner.calls) == 2
        assert "--sip-module" in runner.calls[0]
        assert "--sip-module" not in runner.calls[1]
        assert runner.kwargs[1]["cwd"] == str(src)
        assert "QtMultimedia" in runner.calls[1]

    def test_configure_uses_sip_build_without_configure_py(self, cfg, runner, workspace):
        src = _source_tree(workspace, legacy=False)
        BuildSteps(cfg).configure(_ctx(cfg, workspace=workspace))

        argv = runner.calls[0]
        assert argv[0].endswith("sip-build")
        assert "--no-make" in argv
        assert runner.kwargs[0]["cwd"] == str(src)

    def test_compile_clamps_jobs_to_memory(self, runner, workspace):
        cfg = ProvisionConfig(jobs=4, memory_per_job_mb=1500)
        src = _source_tree(workspace)
        low = EnvironmentSnapshot(available_memory_mb=3100)

        BuildSteps(cfg).compile(_ctx(cfg, snapshot=low, workspace=workspace))

        assert runner.calls == [["make", "-j2"]]
        assert runner.kwargs[0]["cwd"] == str(src)

    def test_compile_keeps_requested_jobs(self, runner, workspace):
        cfg = ProvisionConfig(jobs=2)
        _source_tree(workspace)
        plenty = EnvironmentSnapshot(available_memory_mb=16000)

        BuildSteps(cfg).compile(_ctx(cfg, snapshot=plenty, workspace=workspace))
        assert runner.calls == [["make", "-j2"]]

    def test_install_with_sudo(self, runner, workspace):
        cfg = ProvisionConfig(sudo_make_install=True)
        _source_tree(workspace)
        BuildSteps(cfg).install(_ctx(cfg, workspace=workspace))
        assert runner.calls == [["sudo", "make", "install"]]

    def test_missing_source_dir(self, cfg, runner, workspace):
        with pytest.raises(ConfigurationError):
            BuildSteps(cfg).compile(_ctx(cfg, workspace=workspace))


# ── Verification ─────────────────────────────────────────────────────


class TestVerify:
    def test_excluded_module_that_imports_fails(self, cfg, monkeypatch):
        class Probe:
            def __init__(self, python, prefix=""):
                pass

            def __call__(self, name):
                return name == "QtBluetooth"

        monkeypatch.setattr(step_70_pyqt5_verify, "ImportProbe", Probe)
        with pytest.raises(ValidationError) as ei:
            VerifySteps(cfg).validate_exclusions(_ctx(cfg))
        assert "QtBluetooth" in str(ei.value)

    def test_manifest_of_installed_package(self, cfg, runner, tmp_path):
        pkg = tmp_path / "site-packages" / "PyQt5"
        pkg.mkdir(parents=True)
        (pkg / "QtCore.abi3.so").write_bytes(b"\x7fELF")
        runner.answers[(cfg.python, "-c")] = ok(f"{pkg}\n")

        VerifySteps(cfg).write_manifest(_ctx(cfg))

        written = list(cfg.work_path.glob("pyqt5_manifest_*.txt"))
        assert len(written) == 1
        assert "QtCore.abi3.so" in written[0].read_text()


# ── Wheel packaging ──────────────────────────────────────────────────


class TestWheel:
    def test_not_requested_by_default(self, cfg):
        assert WheelSteps(cfg).requested(_ctx(cfg)) is False
        assert WheelSteps(cfg).steps()[0].optional

    def test_package_builds_and_copies_wheel(self, runner, workspace, tmp_path):
        cfg = ProvisionConfig(work_dir=str(tmp_path / "out"), package_wheel=True)
        pkg = tmp_path / "site-packages" / "PyQt5"
        pkg.mkdir(parents=True)
        (pkg / "QtCore.abi3.so").write_bytes(b"\x7fELF")
        runner.answers[(cfg.python, "-c")] = ok(f"{pkg}\n")
        dist = workspace.path("wheel_staging", "dist")
        (dist / f"PyQt5-{VERSION}-py3-none-linux_aarch64.whl").write_bytes(b"PK")

        steps = WheelSteps(cfg)
        ctx = _ctx(cfg, workspace=workspace)
        steps.package(ctx)

        assert runner.calls[-1] == [cfg.python, "setup.py", "bdist_wheel", "--plat-name=linux_aarch64"]
        assert runner.kwargs[-1]["cwd"] == str(workspace.path("wheel_staging"))
        assert (workspace.path("wheel_staging", "PyQt5") / "QtCore.abi3.so").exists()
        assert steps.packaged(ctx)
        assert (cfg.work_path / "wheels" / f"PyQt5-{VERSION}-py3-none-linux_aarch64.whl").exists()

    def test_no_wheel_produced(self, runner, workspace, tmp_path):
        cfg = ProvisionConfig(work_dir=str(tmp_path / "out"), package_wheel=True)
        pkg = tmp_path / "PyQt5"
        pkg.mkdir()
        (pkg / "QtCore.abi3.so").write_bytes(b"\x7fELF")
        runner.answers[(cfg.python, "-c")] = ok(f"{pkg}\n")

        with pytest.raises(InstallError):
            WheelSteps(cfg).package(_ctx(cfg, workspace=workspace))


# ── Desktop steps end to end ─────────────────────────────────────────


class FakeGSettings:
    """Stateful gsettings stand-in answering through the pipeline runner."""

    def __init__(self):
        self.favorites = ["firefox.desktop"]
        self.sets = 0

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        if argv[:2] == ["gsettings", "get"]:
            return CmdResult(argv=argv, returncode=0, stdout=format_string_list(self.favorites) + "\n", stderr="")
        if argv[:2] == ["gsettings", "set"]:
            self.sets += 1
            self.favorites = parse_string_list(argv[-1])
        return CmdResult(argv=argv, returncode=0, stdout="", stderr="")


class TestPinDockStep:
    def test_pin_converges_on_rerun(self, cfg, monkeypatch, tmp_path):
        gs = FakeGSettings()
        monkeypatch.setattr(pipeline_mod, "run_cmd", gs)
        user = SessionUser(name="jetson", uid=1000, home=str(tmp_path), elevated=False)
        monkeypatch.setattr(step_20_pin_dock, "session_user", lambda: user)
        monkeypatch.setattr(step_20_pin_dock, "desktop_search_paths", lambda u: [tmp_path])
        (tmp_path / "code.desktop").write_text("[Desktop Entry]\n")

        snapshot = EnvironmentSnapshot(tool_versions={"gsettings": "2.72.4"})

        def run_once():
            reg = StepRegistry([PinToDockStep("code.desktop").step()])
            return Executor(cfg, reg, prober=FakeProber(snapshot)).run()

        first = run_once()
        second = run_once()

        assert first.results[0].status is StepStatus.SUCCEEDED
        assert second.results[0].status is StepStatus.SKIPPED
        assert gs.favorites == ["firefox.desktop", "code.desktop"]
        assert gs.sets == 1

    def test_missing_desktop_file_is_skipped(self, cfg, monkeypatch, tmp_path):
        monkeypatch.setattr(pipeline_mod, "run_cmd", FakeGSettings())
        user = SessionUser(name="jetson", uid=1000, home=str(tmp_path), elevated=False)
        monkeypatch.setattr(step_20_pin_dock, "session_user", lambda: user)
        monkeypatch.setattr(step_20_pin_dock, "desktop_search_paths", lambda u: [tmp_path])

        snapshot = EnvironmentSnapshot(tool_versions={"gsettings": "2.72.4"})
        reg = StepRegistry([PinToDockStep("missing.desktop").step()])
        result = Executor(cfg, reg, prober=FakeProber(snapshot)).run()

        assert result.results[0].status is StepStatus.SKIPPED
        assert result.status is PipelineStatus.SUCCEEDED
