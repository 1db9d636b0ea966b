from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ffwrap.command_runner import STDERR_MODES

DECODE_ERROR_MODES = ("replace", "strict")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

DEFAULTS: Dict[str, Any] = {
    "invoker": {
        "ffmpeg_path": "ffmpeg",
        "ffprobe_path": "ffprobe",
        "timeout_seconds": 5,
        "drain_timeout_seconds": 5,
        "stderr": "merge",
        "check_exit_code": True,
        "decode_errors": "replace",
        "working_directory": None,
    },
    "logging": {
        "level": "INFO",
        "file_path": None,
    },
}


class ConfigError(ValueError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class InvokerConfig:
    ffmpeg_path: str
    ffprobe_path: str
    timeout_seconds: float
    drain_timeout_seconds: float
    stderr: str
    check_exit_code: bool
    decode_errors: str
    working_directory: Optional[Path]


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    file_path: Optional[Path]


@dataclass(frozen=True)
class AppConfig:
    invoker: InvokerConfig
    logging: LoggingConfig


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at root of config file: {path}")
    return data


class ConfigLoader:
    def __init__(self, config_path: Path | None = None) -> None:
        self._config_path = config_path

    def load(self) -> AppConfig:
        merged = _deep_merge({}, DEFAULTS)
        config_path = self._resolve_config_path()
        if config_path is not None:
            if not config_path.exists():
                raise ConfigError(f"Missing config file: {config_path}")
            merged = _deep_merge(merged, _load_yaml(config_path))

        merged = _deep_merge(merged, self._env_overrides())
        config = self._build_config(merged)
        self._validate(config)
        return config

    def _resolve_config_path(self) -> Optional[Path]:
        if self._config_path is not None:
            return self._config_path
        env_path = os.getenv("FFWRAP_CONFIG")
        if env_path:
            return Path(env_path)
        return None

    def _env_overrides(self) -> Dict[str, Any]:
        invoker: Dict[str, Any] = {}
        if os.getenv("FFMPEG"):
            invoker["ffmpeg_path"] = os.environ["FFMPEG"]
        if os.getenv("FFPROBE"):
            invoker["ffprobe_path"] = os.environ["FFPROBE"]
        return {"invoker": invoker} if invoker else {}

    def _build_config(self, data: Dict[str, Any]) -> AppConfig:
        invoker_data = data["invoker"]
        logging_data = data["logging"]
        if not isinstance(invoker_data, dict) or not isinstance(logging_data, dict):
            raise ConfigError("Config sections 'invoker' and 'logging' must be mappings")

        try:
            working_directory = invoker_data.get("working_directory")
            invoker = InvokerConfig(
                ffmpeg_path=str(invoker_data["ffmpeg_path"]),
                ffprobe_path=str(invoker_data["ffprobe_path"]),
                timeout_seconds=float(invoker_data["timeout_seconds"]),
                drain_timeout_seconds=float(invoker_data["drain_timeout_seconds"]),
                stderr=str(invoker_data["stderr"]),
                check_exit_code=bool(invoker_data["check_exit_code"]),
                decode_errors=str(invoker_data["decode_errors"]),
                working_directory=Path(working_directory) if working_directory else None,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid invoker config: {exc}") from exc

        file_path = logging_data.get("file_path")
        logging_config = LoggingConfig(
            level=str(logging_data["level"]).upper(),
            file_path=Path(file_path) if file_path else None,
        )
        return AppConfig(invoker=invoker, logging=logging_config)

    def _validate(self, config: AppConfig) -> None:
        self._validate_invoker(config.invoker)
        if config.logging.level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level: {config.logging.level}")

    def _validate_invoker(self, invoker: InvokerConfig) -> None:
        for name in ("ffmpeg_path", "ffprobe_path"):
            if not getattr(invoker, name).strip():
                raise ConfigError(f"Binary path must not be blank: {name}")
        for name in ("timeout_seconds", "drain_timeout_seconds"):
            value = getattr(invoker, name)
            if value <= 0:
                raise ConfigError(f"{name} must be positive: {value}")
        if invoker.stderr not in STDERR_MODES:
            raise ConfigError(f"Unknown stderr mode: {invoker.stderr}")
        if invoker.decode_errors not in DECODE_ERROR_MODES:
            raise ConfigError(f"Unknown decode_errors mode: {invoker.decode_errors}")
        if invoker.working_directory is not None and not invoker.working_directory.is_dir():
            raise ConfigError(
                f"Working directory does not exist: {invoker.working_directory}"
            )
