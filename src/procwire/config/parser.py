"""Load, validate, and resolve procwire.yaml configuration."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from procwire.config.models import ProcwireConfig

DEFAULT_CONFIG_NAME = "procwire.yaml"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> ProcwireConfig:
    """Load and validate a procwire.yaml file.

    Args:
        path: Explicit config file path. If None, looks for
              procwire.yaml in the current directory and falls back
              to the built-in defaults when there is none.

    Returns:
        A validated ProcwireConfig instance.

    Raises:
        ConfigError: On a missing explicit file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        return ProcwireConfig()
    raw = _read_yaml(config_path)
    _resolve_pythonpath(raw, config_path.parent)
    _load_env(config_path.parent)
    return _validate(raw)


def _resolve_path(path: Path | None) -> Path | None:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    if not default.is_file():
        return None
    return default


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}" if mark is not None else ""
        msg = f"Invalid YAML in {path.name}{where}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _resolve_pythonpath(raw: dict[str, Any], base_dir: Path) -> None:
    worker = raw.get("worker")
    if not isinstance(worker, dict):
        return
    entries = worker.get("pythonpath")
    if not isinstance(entries, list):
        return

    resolved: list[Any] = []
    for entry in entries:
        if isinstance(entry, str) and not Path(entry).is_absolute():
            entry = str((base_dir / entry).resolve())
        resolved.append(entry)
    worker["pythonpath"] = resolved


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _validate(raw: dict[str, Any]) -> ProcwireConfig:
    try:
        return ProcwireConfig.model_validate(raw)
    except ValidationError as exc:
        lines = [f"  {_describe(err)}" for err in exc.errors()]
        msg = "Config validation failed:\n" + "\n".join(lines)
        raise ConfigError(msg) from exc


def _describe(err: Mapping[str, Any]) -> str:
    loc = " → ".join(str(part) for part in err["loc"])
    if err["type"] == "extra_forbidden":
        return f"{loc}: Unknown setting"
    return f"{loc}: Invalid value {err['input']!r} ({err['msg']})"
