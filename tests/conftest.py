"""
Shared test fixtures.
"""

from pathlib import Path

import pytest

from jetson_provisioner.config import ProvisionConfig

ENV_KEYS = (
    "PYQT_VERSION",
    "MAKE_JOBS",
    "SKIP_APT",
    "KEEP_BUILD_DIR",
    "DOWNLOAD_TIMEOUT",
    "USE_DIRECT_FETCH",
    "ENABLE_MULTIMEDIA",
    "PIP_INDEX_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep provisioning environment knobs out of every test."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def cfg(tmp_path: Path) -> ProvisionConfig:
    return ProvisionConfig(work_dir=str(tmp_path / "work"))
