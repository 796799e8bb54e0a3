"""
Tests for the PyQt5 source/toolchain helpers.
"""

import io
import tarfile

import pytest

from jetson_provisioner.errors import ArtifactIntegrityError, InstallError
from jetson_provisioner.lib import pyqt

from .fakes import FakeRunner, failed, ok


def _tarball(path, members):
    with tarfile.open(path, "w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


class TestClampJobs:
    def test_plenty_of_memory_keeps_request(self):
        assert pyqt.clamp_jobs(4, 8000, 1500) == 4

    def test_low_memory_reduces(self):
        assert pyqt.clamp_jobs(6, 3100, 1500) == 2

    def test_never_below_one(self):
        assert pyqt.clamp_jobs(4, 500, 1500) == 1
        assert pyqt.clamp_jobs(0, 8000, 1500) == 1

    def test_unknown_memory_leaves_request(self):
        assert pyqt.clamp_jobs(3, 0, 1500) == 3


class TestSourceTree:
    def test_archive_lookup_ignores_partial_downloads(self, tmp_path):
        (tmp_path / "PyQt5-5.15.10.tar.gz.part").write_bytes(b"x")
        assert pyqt.find_source_archive(tmp_path, "5.15.10") is None
        (tmp_path / "PyQt5-5.15.10.tar.gz").write_bytes(b"x")
        assert pyqt.find_source_archive(tmp_path, "5.15.10").name == "PyQt5-5.15.10.tar.gz"

    def test_extract_and_locate(self, tmp_path):
        archive = _tarball(tmp_path / "PyQt5-5.15.10.tar.gz", {"PyQt5-5.15.10/configure.py": b"# cfg\n"})
        pyqt.extract_archive(archive, tmp_path / "src")

        src = pyqt.find_source_dir(tmp_path / "src", "5.15.10")
        assert src == tmp_path / "src" / "PyQt5-5.15.10"
        assert pyqt.toolchain_for(src) == pyqt.LEGACY
        assert pyqt.build_dir_for(src) == src

    def test_sip_build_tree(self, tmp_path):
        src = tmp_path / "PyQt5-5.15.10"
        src.mkdir()
        (src / "pyproject.toml").write_text("")
        assert pyqt.toolchain_for(src) == pyqt.SIP_BUILD
        assert pyqt.build_dir_for(src) == src / "build"

    def test_escaping_member_rejected(self, tmp_path):
        archive = _tarball(tmp_path / "evil.tar.gz", {"../outside.txt": b"x"})
        with pytest.raises(ArtifactIntegrityError):
            pyqt.extract_archive(archive, tmp_path / "src")
        assert not (tmp_path / "outside.txt").exists()

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "PyQt5-5.15.10.tar.gz"
        archive.write_bytes(b"not a tarball")
        with pytest.raises(ArtifactIntegrityError):
            pyqt.extract_archive(archive, tmp_path / "src")


class TestConfigureArgs:
    def test_legacy_args(self):
        argv = pyqt.legacy_configure_args("python3", ["QtSql", "QtTest"])
        assert argv[:2] == ["python3", "configure.py"]
        assert "--confirm-license" in argv
        assert argv[argv.index("--sip-module") + 1] == "PyQt5.sip"
        assert argv[-4:] == ["--disable", "QtSql", "--disable", "QtTest"]

    def test_legacy_args_without_sip_module(self):
        assert "--sip-module" not in pyqt.legacy_configure_args("python3", [], sip_module=False)

    def test_sip_build_args(self):
        argv = pyqt.sip_build_args("sip-build", ["QtNfc"])
        assert argv[0] == "sip-build"
        assert "--no-make" in argv
        assert argv[argv.index("--build-dir") + 1] == "build"
        assert argv[-2:] == ["--disable", "QtNfc"]


class TestInstalledPackage:
    def test_installed_version(self):
        assert pyqt.installed_version("python3", run=FakeRunner({("python3",): ok("5.15.10\n")})) == "5.15.10"
        assert pyqt.installed_version("python3", run=FakeRunner({("python3",): failed(1)})) is None

    def test_package_dir(self):
        runner = FakeRunner({("python3",): ok("/usr/lib/python3/dist-packages/PyQt5\n")})
        assert str(pyqt.package_dir("python3", run=runner)) == "/usr/lib/python3/dist-packages/PyQt5"
        assert pyqt.package_dir("python3", run=FakeRunner({("python3",): failed(1)})) is None


class TestWheelPackaging:
    def _installed(self, tmp_path, with_init=True):
        pkg = tmp_path / "site-packages" / "PyQt5"
        pkg.mkdir(parents=True)
        (pkg / "QtCore.abi3.so").write_bytes(b"\x7fELF")
        (pkg / "QtCore.pyi").write_text("class QObject: ...\n")
        (pkg / "uic.py").write_text("# not packaged\n")
        if with_init:
            (pkg / "__init__.py").write_text("# PyQt5\n")
        return pkg

    def test_stage_copies_extensions_and_stubs(self, tmp_path):
        pkg = self._installed(tmp_path)
        staging = tmp_path / "staging"

        copied = pyqt.stage_wheel_tree(pkg, staging)

        assert sorted(p.name for p in copied) == ["QtCore.abi3.so", "QtCore.pyi"]
        assert (staging / "PyQt5" / "__init__.py").read_text() == "# PyQt5\n"
        assert not (staging / "PyQt5" / "uic.py").exists()

    def test_stage_without_init_writes_empty_one(self, tmp_path):
        pkg = self._installed(tmp_path, with_init=False)
        pyqt.stage_wheel_tree(pkg, tmp_path / "staging")
        assert (tmp_path / "staging" / "PyQt5" / "__init__.py").read_text() == ""

    def test_stage_without_extensions_fails(self, tmp_path):
        pkg = tmp_path / "PyQt5"
        pkg.mkdir()
        with pytest.raises(InstallError):
            pyqt.stage_wheel_tree(pkg, tmp_path / "staging")

    def test_setup_py_and_args(self, tmp_path):
        setup_py = pyqt.write_wheel_setup(tmp_path, "5.15.10")
        text = setup_py.read_text()
        assert 'version="5.15.10"' in text
        assert """package_data={"PyQt5": ['*.so', '*.pyi']}""" in text
        assert pyqt.bdist_wheel_args("python3", "linux_aarch64") == [
            "python3",
            "setup.py",
            "bdist_wheel",
            "--plat-name=linux_aarch64",
        ]

    def test_find_wheel(self, tmp_path):
        assert pyqt.find_wheel(tmp_path, "5.15.10") is None
        (tmp_path / "PyQt5-5.15.9-py3-none-linux_aarch64.whl").write_bytes(b"")
        assert pyqt.find_wheel(tmp_path, "5.15.10") is None
        (tmp_path / "PyQt5-5.15.10-py3-none-linux_aarch64.whl").write_bytes(b"")
        assert pyqt.find_wheel(tmp_path, "5.15.10").name == "PyQt5-5.15.10-py3-none-linux_aarch64.whl"
