"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class TelegramConfig(BaseModel):
    token: str
    drop_pending_updates: bool = True


class GeneratorConfig(BaseModel):
    tool_path: str = "solana-keygen"
    scratch_dir: str = "./keypairs"
    timeout: Optional[int] = Field(default=None, gt=0)  # seconds; None waits indefinitely
    max_concurrent: int = Field(default=4, ge=1)
    max_pattern_length: int = Field(default=8, ge=1)


class StorageConfig(BaseModel):
    users_dir: str = "./data/users"


class SessionConfig(BaseModel):
    idle_timeout: int = 3600
    sweep_interval: int = 300


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    telegram: TelegramConfig
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation.

    ``${data_dir}`` may be used inside other values to refer to the configured data directory.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
