from __future__ import annotations

import os

import pytest

from govcore.core.config.paths import ConfigFsPaths
from govcore.core.runtime import GovernanceRuntime


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated repo root with config/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def runtime(tmp_config_root):
    return GovernanceRuntime.load(tmp_config_root.root)
