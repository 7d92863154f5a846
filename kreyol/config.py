"""Persisted configuration management."""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from .models import Config, Direction

APP_DIR = (Path.home() / ".kreyol").expanduser()
CONFIG_PATH = APP_DIR / "config.json"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or saved."""


def load_config() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys in {CONFIG_PATH}: {', '.join(unknown)}")
    config = Config(**payload)
    _validate(config)
    return config


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = load_config()
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    _validate(config)
    save_config(config)
    return config


def _validate(config: Config) -> None:
    try:
        Direction(config.direction)
    except ValueError as exc:
        raise ConfigError(f"Unknown translation direction: {config.direction}") from exc
    if not isinstance(config.history_limit, int) or config.history_limit < 1:
        raise ConfigError("history_limit must be a positive integer")
    if not isinstance(config.api_timeout, (int, float)) or config.api_timeout <= 0:
        raise ConfigError("api_timeout must be a positive number of seconds")
