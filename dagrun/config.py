"""
Configuration management for dagrun.

Loads user configuration from $DAGRUN_HOME/config.yaml
(default ~/.config/dagrun/config.yaml).
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv


class ConfigError(Exception):
    """Configuration validation error."""
    pass


LOG_FORMATS = ("structured", "pretty")


def get_dagrun_home() -> Path:
    """Get the dagrun configuration directory."""
    return Path(os.environ.get("DAGRUN_HOME", "~/.config/dagrun")).expanduser()


@dataclass
class DagrunConfig:
    """
    User-level defaults for running workflows.

    Attributes:
        runs_dir: Parent directory for new run directories
        cache_dir: Directory of the shared result cache
        fan_out_limit: Default concurrency ceiling inside a fan-out node
        task_timeout_s: Default timeout for delegated agent tasks
        log_level: Logging level for the dagrun logger
        log_format: "structured" or "pretty" console output
        env_file: Optional dotenv file loaded into the environment
        agents: Command-line agents, name -> {"command": [...], "timeout_s": n}
    """
    runs_dir: str = ".runs"
    cache_dir: str = "cache"
    fan_out_limit: int = 5
    task_timeout_s: float = 300.0
    log_level: str = "INFO"
    log_format: str = "pretty"
    env_file: Optional[str] = None
    agents: dict[str, dict[str, Any]] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate configuration values."""
        if self.fan_out_limit < 1:
            raise ConfigError(f"fan_out_limit must be >= 1, got {self.fan_out_limit}")
        if self.task_timeout_s <= 0:
            raise ConfigError(f"task_timeout_s must be > 0, got {self.task_timeout_s}")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(
                f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}"
            )
        for name, agent in self.agents.items():
            command = agent.get("command") if isinstance(agent, dict) else None
            if not command or not isinstance(command, list):
                raise ConfigError(f"Agent '{name}': 'command' must be a non-empty list")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DagrunConfig":
        """Build a config from a parsed YAML mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        config = cls(**data)
        config.validate()
        return config


def load_config(config_path: Optional[Path] = None) -> DagrunConfig:
    """
    Load dagrun configuration from YAML file.

    If the config names an env_file, it is loaded into os.environ
    (existing variables win).

    Args:
        config_path: Path to config file. Defaults to $DAGRUN_HOME/config.yaml

    Returns:
        DagrunConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_dagrun_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"dagrun config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

    try:
        config = DagrunConfig.from_dict(data)
    except TypeError as e:
        raise ConfigError(str(e)) from e

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config
