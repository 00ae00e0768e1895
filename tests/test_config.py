import os

import pytest

from shipwright.config import OrchestratorConfig


def test_unknown_profile_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        OrchestratorConfig(root_dir=tmp_path, profile="staging")


def test_concurrency_defaults_to_cpu_count(tmp_path):
    config = OrchestratorConfig(root_dir=tmp_path)
    assert config.concurrency_limit == (os.cpu_count() or 1)


def test_force_serial_caps_concurrency(tmp_path):
    config = OrchestratorConfig(root_dir=tmp_path, concurrency_limit=8, force_serial=True)
    assert config.effective_concurrency == 1


def test_global_env_puts_explicit_env_over_profile(tmp_path):
    config = OrchestratorConfig(root_dir=tmp_path, profile="ci", env={"NODE_ENV": "test", "N": 3})
    env = config.global_env()
    assert env["NODE_ENV"] == "test"
    assert env["CI"] == "true"
    assert env["SHIPWRIGHT_PROFILE"] == "ci"
    assert env["N"] == "3"


def test_from_env_reads_prefixed_variables(tmp_path):
    environ = {
        "SHIPWRIGHT_PROFILE": "production",
        "SHIPWRIGHT_WORKERS": "3",
        "SHIPWRIGHT_SERIAL": "true",
        "SHIPWRIGHT_RUN_TIMEOUT": "90",
    }
    config = OrchestratorConfig.from_env(environ, root_dir=tmp_path)
    assert config.profile == "production"
    assert config.concurrency_limit == 3
    assert config.force_serial is True
    assert config.run_timeout == 90.0


def test_from_env_overrides_win(tmp_path):
    config = OrchestratorConfig.from_env({"SHIPWRIGHT_WORKERS": "3"}, root_dir=tmp_path, concurrency_limit=5)
    assert config.concurrency_limit == 5


def test_output_root_is_under_root_dir(tmp_path):
    config = OrchestratorConfig(root_dir=tmp_path, output_dir="out")
    assert config.output_root == (tmp_path / "out").resolve()
