from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import tomllib

DEFAULT_API_URL = "https://api.mistral.ai/v1"
DEFAULT_MODEL = "mistral-tiny"

_STATE_DIR_ENV = "GLOSSREAD_STATE_DIR"
_CONFIG_ENV = "GLOSSREAD_CONFIG"
_CONFIG_FILENAME = "config.toml"
_CONFIG_TABLE = "glossread"


def default_state_dir(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    env_dir = env.get(_STATE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".local" / "share" / "glossread"


@dataclass(slots=True)
class ReaderConfig:
    api_url: str = DEFAULT_API_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    request_timeout: float = 30.0
    definition_max_tokens: int = 150
    summary_max_tokens: int = 500
    summary_interval: int = 5000
    max_summary_text: int = 8000
    min_summary_text: int = 100
    summary_key_prefix: int = 100
    debounce_seconds: float = 0.8
    adjacency_window: int = 10
    preload_margin_px: int = 400
    retry_example_without_word: bool = False
    state_dir: Path | None = None

    def resolved_state_dir(self) -> Path:
        if self.state_dir is not None:
            return Path(self.state_dir).expanduser()
        return default_state_dir()

    @property
    def cache_path(self) -> Path:
        return self.resolved_state_dir() / "cache.json"


_FIELD_TYPES: dict[str, type] = {
    "api_url": str,
    "api_key": str,
    "model": str,
    "request_timeout": float,
    "definition_max_tokens": int,
    "summary_max_tokens": int,
    "summary_interval": int,
    "max_summary_text": int,
    "min_summary_text": int,
    "summary_key_prefix": int,
    "debounce_seconds": float,
    "adjacency_window": int,
    "preload_margin_px": int,
    "retry_example_without_word": bool,
    "state_dir": Path,
}


def _coerce(name: str, value: Any) -> Any:
    expected = _FIELD_TYPES[name]
    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        raise ValueError(f"Config value '{name}' must be a boolean.")
    if expected is Path:
        return Path(str(value)).expanduser()
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"Config value '{name}' must be a number.")
        return float(value)
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"Config value '{name}' must be an integer.")
        parsed = int(value)
        if parsed <= 0:
            raise ValueError(f"Config value '{name}' must be positive.")
        return parsed
    return str(value)


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid config file {path}: {exc}") from exc
    table = data.get(_CONFIG_TABLE, data)
    if not isinstance(table, dict):
        return {}
    known = {f.name for f in fields(ReaderConfig)}
    return {key.replace("-", "_"): value for key, value in table.items() if key.replace("-", "_") in known}


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ReaderConfig:
    """
    Build a ReaderConfig from defaults, an optional TOML file and the environment.

    Precedence (lowest first): built-in defaults, the ``[glossread]`` table of
    the config file, environment variables, then explicit keyword overrides
    (typically CLI flags). ``None`` overrides are ignored.
    """
    env = os.environ if env is None else env
    config = ReaderConfig()

    if path is None:
        env_path = env.get(_CONFIG_ENV)
        if env_path:
            path = Path(env_path).expanduser()
        else:
            path = default_state_dir(env) / _CONFIG_FILENAME
    values = {name: _coerce(name, value) for name, value in _read_config_file(path).items()}

    api_key = env.get("GLOSSREAD_API_KEY") or env.get("MISTRAL_API_KEY")
    if api_key:
        values["api_key"] = api_key
    if env.get("GLOSSREAD_API_URL"):
        values["api_url"] = env["GLOSSREAD_API_URL"]
    if env.get("GLOSSREAD_MODEL"):
        values["model"] = env["GLOSSREAD_MODEL"]
    if env.get(_STATE_DIR_ENV):
        values["state_dir"] = Path(env[_STATE_DIR_ENV]).expanduser()

    for name, value in overrides.items():
        if value is None:
            continue
        if name not in _FIELD_TYPES:
            raise TypeError(f"Unknown config option: {name}")
        values[name] = _coerce(name, value)

    return replace(config, **values)


__all__ = ["ReaderConfig", "load_config", "default_state_dir", "DEFAULT_API_URL", "DEFAULT_MODEL"]
