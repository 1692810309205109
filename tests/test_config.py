import os
import pytest
import yaml
from pathlib import Path
from dagrun.config import ConfigError, DagrunConfig, get_dagrun_home, load_config

def test_get_dagrun_home_default(monkeypatch):
    monkeypatch.delenv("DAGRUN_HOME", raising=False)
    home = get_dagrun_home()
    assert home == Path("~/.config/dagrun").expanduser()

def test_get_dagrun_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("DAGRUN_HOME", str(custom_home))
    assert get_dagrun_home() == custom_home

def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="dagrun config.yaml not found"):
        load_config()

def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    config_path = tmp_path / "config.yaml"

    config_data = {
        "runs_dir": "/tmp/runs",
        "cache_dir": "/tmp/cache",
        "fan_out_limit": 8,
        "task_timeout_s": 60,
        "log_format": "structured",
        "agents": {"cursor": {"command": ["cursor-agent", "-p"], "timeout_s": 600}},
    }
    config_path.write_text(yaml.dump(config_data))

    cfg = load_config()
    assert isinstance(cfg, DagrunConfig)
    assert cfg.runs_dir == "/tmp/runs"
    assert cfg.fan_out_limit == 8
    assert cfg.agents["cursor"]["command"] == ["cursor-agent", "-p"]

def test_load_config_explicit_path(tmp_path):
    config_path = tmp_path / "elsewhere.yaml"
    config_path.write_text("fan_out_limit: 2\n")
    assert load_config(config_path).fan_out_limit == 2

def test_load_config_empty_file_uses_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("")
    cfg = load_config()
    assert cfg == DagrunConfig()
    assert cfg.fan_out_limit == 5

def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    config_path = tmp_path / "config.yaml"
    env_file = tmp_path / ".env.test"

    env_file.write_text("DAGRUN_TEST_VAR=loaded_from_env")

    config_path.write_text(yaml.dump({"env_file": str(env_file)}))

    # Pre-clean env var (recorded so monkeypatch removes it afterwards)
    monkeypatch.setenv("DAGRUN_TEST_VAR", "placeholder")
    monkeypatch.delenv("DAGRUN_TEST_VAR")

    load_config()
    assert os.environ.get("DAGRUN_TEST_VAR") == "loaded_from_env"

def test_load_config_env_file_does_not_override(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    env_file = tmp_path / ".env"
    env_file.write_text("DAGRUN_TEST_VAR=from_file")
    (tmp_path / "config.yaml").write_text(yaml.dump({"env_file": str(env_file)}))

    monkeypatch.setenv("DAGRUN_TEST_VAR", "from_shell")
    load_config()
    assert os.environ["DAGRUN_TEST_VAR"] == "from_shell"

def test_load_config_missing_env_file_is_ignored(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"env_file": str(tmp_path / "nope.env")}))
    assert load_config().env_file == str(tmp_path / "nope.env")

def test_load_config_unknown_key(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"project": "x"}))
    with pytest.raises(ConfigError, match="Unknown config keys: project"):
        load_config()

def test_load_config_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("fan_out_limit: [1, 2\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()

def test_load_config_not_a_mapping(monkeypatch, tmp_path):
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_config()

@pytest.mark.parametrize("data, message", [
    ({"fan_out_limit": 0}, "fan_out_limit"),
    ({"task_timeout_s": 0}, "task_timeout_s"),
    ({"log_format": "xml"}, "log_format"),
    ({"agents": {"bad": {"command": "not-a-list"}}}, "Agent 'bad'"),
])
def test_config_validation(data, message):
    with pytest.raises(ConfigError, match=message):
        DagrunConfig.from_dict(data)
