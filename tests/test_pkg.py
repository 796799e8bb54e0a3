"""
Tests for the apt/snap/pip command builders.
"""

from jetson_provisioner.lib import pkg

from .fakes import FakeRunner, failed, ok


class TestApt:
    def test_install_through_sudo_keeps_frontend(self):
        runner = FakeRunner()
        pkg.apt_install(["qtbase5-dev", "python3-dev"], run=runner)
        assert runner.calls == [
            [
                "sudo",
                "DEBIAN_FRONTEND=noninteractive",
                "apt-get",
                "install",
                "-y",
                "--no-install-recommends",
                "qtbase5-dev",
                "python3-dev",
            ]
        ]

    def test_install_without_sudo(self):
        runner = FakeRunner()
        pkg.apt_install(["make"], use_sudo=False, with_recommends=True, run=runner)
        assert runner.calls == [["apt-get", "install", "-y", "make"]]
        assert runner.kwargs[0]["env"] == {"DEBIAN_FRONTEND": "noninteractive"}

    def test_empty_install_is_a_noop(self):
        runner = FakeRunner()
        pkg.apt_install([], run=runner)
        assert runner.calls == []

    def test_dpkg_installed(self):
        assert pkg.dpkg_installed("python3-pip", run=FakeRunner({("dpkg-query",): ok("install ok installed")}))
        assert not pkg.dpkg_installed("python3-pip", run=FakeRunner({("dpkg-query",): ok("deinstall ok config-files")}))
        assert not pkg.dpkg_installed("python3-pip", run=FakeRunner({("dpkg-query",): failed(1)}))


class TestSnapAndPip:
    def test_snap(self):
        runner = FakeRunner({("snap", "list"): failed(1)})
        assert pkg.snap_installed("chromium", run=runner) is False
        pkg.snap_install("chromium", run=runner)
        assert runner.calls[-1] == ["sudo", "snap", "install", "chromium"]

    def test_pip_install_index_after_subcommand(self):
        runner = FakeRunner()
        pkg.pip_install("python3", ["sip>=6.7,<6.12"], index_url="https://mirror.example/simple", run=runner)
        argv = runner.calls[0]
        assert argv[:4] == ["python3", "-m", "pip", "install"]
        assert argv.index("--index-url") > argv.index("install")
        assert argv[-1] == "sip>=6.7,<6.12"

    def test_pip_has_distribution(self):
        assert pkg.pip_has_distribution("python3", "jetson-stats", run=FakeRunner()) is True
        assert pkg.pip_has_distribution("python3", "jetson-stats", run=FakeRunner({("python3",): failed(1)})) is False
