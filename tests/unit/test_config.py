"""Tests for configuration loading."""

import os
import tempfile

import pytest
import yaml
from pydantic import ValidationError

from binfeat.config.loader import find_config_file, interpolate, load_config
from binfeat.config.models import BinFeatConfig, FeatureConfig, PipelineConfig


def test_default_config():
    config = BinFeatConfig()
    assert config.engine.ghidra_home == "/opt/ghidra"
    assert config.engine.timeout_per_binary == 180
    assert config.pipeline.batch_size == 10
    assert config.pipeline.extensions == [".elf", ".o", ".a", ".bin"]
    assert config.features.ngram_sizes == [2, 3]


def test_env_interpolation():
    env = {"TEST_VAR_BF": "hello"}
    assert interpolate("${TEST_VAR_BF}", env) == "hello"
    assert interpolate("${NONEXISTENT_VAR_BF:fallback}", env) == "fallback"
    assert interpolate("${NONEXISTENT_VAR_BF}", env) == ""


def test_env_interpolation_walks_nested_values():
    env = {"BF_OUT": "/data/out"}
    tree = {"pipeline": {"output_dir": "${BF_OUT}", "extensions": ["${BF_EXT:.elf}"], "batch_size": 4}}
    assert interpolate(tree, env) == {
        "pipeline": {"output_dir": "/data/out", "extensions": [".elf"], "batch_size": 4}
    }


def test_interpolation_uses_injected_environment(tmp_path):
    path = tmp_path / "binfeat.yaml"
    path.write_text("pipeline:\n  input_dir: ${BF_BINS:bins}\n")
    assert load_config(path, environ={"BF_BINS": "/srv/bins"}).pipeline.input_dir == "/srv/bins"
    assert load_config(path, environ={}).pipeline.input_dir == "bins"


def test_config_file_named_by_environment(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("pipeline:\n  batch_size: 7\n")
    assert find_config_file(environ={"BINFEAT_CONFIG": str(path)}) == path
    assert load_config(environ={"BINFEAT_CONFIG": str(path)}).pipeline.batch_size == 7


def test_non_mapping_config_is_rejected(tmp_path):
    path = tmp_path / "binfeat.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValidationError):
        load_config(path, environ={})


def test_load_config_from_file():
    config_data = {
        "engine": {"ghidra_home": "/tools/ghidra_11", "timeout_per_binary": 60},
        "pipeline": {"batch_size": 4, "extensions": ["ELF", ".so"]},
    }
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config_data, f)
        f.flush()

        config = load_config(f.name, environ={})
        assert config.engine.ghidra_home == "/tools/ghidra_11"
        assert config.engine.timeout_per_binary == 60
        assert config.pipeline.batch_size == 4
        assert config.pipeline.extensions == [".elf", ".so"]
        # Defaults preserved
        assert config.pipeline.output_dir == "ghidra_json_new"

    os.unlink(f.name)


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "binfeat.yaml"
    path.write_text("engine:\n  ghidra_home: /from/file\npipeline:\n  batch_size: 3\n")
    config = load_config(
        path,
        environ={"GHIDRA_HOME": "/from/env", "BATCH_SIZE": "16", "TIMEOUT_PER_BINARY": "42.5"},
    )
    assert config.engine.ghidra_home == "/from/env"
    assert config.pipeline.batch_size == 16
    assert config.engine.timeout_per_binary == 42.5


def test_empty_environment_values_are_ignored(tmp_path):
    config = load_config(tmp_path / "missing.yaml", environ={"BATCH_SIZE": ""})
    assert config.pipeline.batch_size == 10


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("TIMEOUT_PER_BINARY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("TIMEOUT_PER_BINARY=77\n")
    try:
        config = load_config(tmp_path / "missing.yaml", dotenv_path=env_file)
    finally:
        os.environ.pop("TIMEOUT_PER_BINARY", None)
    assert config.engine.timeout_per_binary == 77


def test_load_config_missing_file():
    config = load_config("/nonexistent/path.yaml", environ={})
    assert config == BinFeatConfig()


@pytest.mark.parametrize("env", [{"BATCH_SIZE": "0"}, {"TIMEOUT_PER_BINARY": "0"}, {"BATCH_SIZE": "many"}])
def test_invalid_values_rejected(env):
    with pytest.raises(ValidationError):
        load_config("/nonexistent/path.yaml", environ=env)


def test_ngram_sizes_normalized():
    assert FeatureConfig(ngram_sizes=[3, 2, 3]).ngram_sizes == [2, 3]
    with pytest.raises(ValidationError):
        FeatureConfig(ngram_sizes=[0])


def test_extensions_normalized():
    assert PipelineConfig(extensions=["bin", ".O"]).extensions == [".bin", ".o"]
