from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable

from dotenv import find_dotenv, load_dotenv

from .config import DEFAULT_ALLOWED_ORIGINS, RelayConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "TUTOR_RELAY_CONFIG_FILE"
ENV_PREFIX = "TUTOR_RELAY_"
DEFAULT_CONFIG_PATH = Path("configs/tutor_relay.toml")

_SECTION_MAP: dict[str, list[str]] = {
    "server": ["host", "port", "environment", "max_body_bytes"],
    "cors": ["allowed_origins"],
    "upstream": [
        "openai_api_key",
        "upstream_base_url",
        "upstream_timeout_ms",
    ],
    "generation": ["text_model", "vision_model", "temperature", "max_tokens"],
    "logging": ["log_path", "max_log_bytes"],
}


def _field_types() -> dict[str, Any]:
    return {f.name: f.type for f in fields(RelayConfig)}


def _coerce_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value))


def _coerce_float(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value))


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_optional_str(value: Any) -> str | None:
    if value in ("", None):
        return None
    return str(value)


def _coerce_origins(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    origins = tuple(str(item).strip() for item in value or [])
    return tuple(item for item in origins if item)


# Field annotations are strings under ``from __future__ import annotations``.
_CASTERS: dict[str, Callable[[Any], Any]] = {
    "int": _coerce_int,
    "float": _coerce_float,
    "str": _coerce_str,
    "Optional[str]": _coerce_optional_str,
    "Tuple[str, ...]": _coerce_origins,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    caster = _CASTERS.get(str(field_type))
    if caster:
        return caster(value)
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    env = os.environ

    def env_int(name: str, current: int) -> int:
        val = env.get(name)
        if val is None:
            return current
        try:
            return int(val)
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r", name, val)
            return current

    def env_float(name: str, current: float) -> float:
        val = env.get(name)
        if val is None:
            return current
        try:
            return float(val)
        except ValueError:
            logger.warning("Ignoring non-numeric %s=%r", name, val)
            return current

    def env_str(name: str, current: str | None) -> str | None:
        val = env.get(name)
        if val is None:
            return current
        return val

    def env_list(name: str, current: tuple[str, ...]) -> tuple[str, ...]:
        val = env.get(name)
        if not val:
            return current
        parsed = _coerce_origins(val)
        return parsed or current

    environment = env_str("NODE_ENV", config["environment"])
    environment = env_str("TUTOR_RELAY_ENV", environment)
    overrides = {
        "openai_api_key": _coerce_optional_str(
            env_str("OPENAI_API_KEY", config.get("openai_api_key"))
        ),
        "host": env_str("TUTOR_RELAY_HOST", config["host"]),
        "port": env_int("PORT", config["port"]),
        "allowed_origins": env_list("ALLOWED_ORIGINS", config["allowed_origins"]),
        "environment": environment,
        "upstream_base_url": env_str(
            "OPENAI_BASE_URL", config["upstream_base_url"]
        ),
        "text_model": env_str("TUTOR_RELAY_TEXT_MODEL", config["text_model"]),
        "vision_model": env_str("TUTOR_RELAY_VISION_MODEL", config["vision_model"]),
        "temperature": env_float("TUTOR_RELAY_TEMPERATURE", config["temperature"]),
        "max_tokens": env_int("TUTOR_RELAY_MAX_TOKENS", config["max_tokens"]),
        "max_body_bytes": env_int(
            "TUTOR_RELAY_MAX_BODY_BYTES", config["max_body_bytes"]
        ),
        "upstream_timeout_ms": env_int(
            "TUTOR_RELAY_UPSTREAM_TIMEOUT_MS", config["upstream_timeout_ms"]
        ),
        "log_path": env_str("TUTOR_RELAY_LOG_PATH", config["log_path"]),
        "max_log_bytes": env_int(
            "TUTOR_RELAY_MAX_LOG_BYTES", config["max_log_bytes"]
        ),
    }
    config.update(overrides)
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(RelayConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types.get(key), value)
        except (TypeError, ValueError):
            logger.warning("Invalid value for %s in config file; using default", key)
            normalized[key] = default_value
    if not normalized["allowed_origins"]:
        normalized["allowed_origins"] = DEFAULT_ALLOWED_ORIGINS
    return normalized


def config_file_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def load_relay_config(dotenv: bool = True) -> RelayConfig:
    """Build the effective config: env > .env > TOML file > defaults.

    ``.env`` never overrides variables already present in the process
    environment.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True), override=False)
    path = config_file_path()
    file_values = _read_config_file(path)
    normalized = _normalize(file_values)
    normalized = _apply_env_overrides(normalized)
    return RelayConfig(**normalized, config_file_path=str(path))


def list_env_overrides() -> dict[str, str]:
    names = {"OPENAI_API_KEY", "OPENAI_BASE_URL", "PORT", "ALLOWED_ORIGINS", "NODE_ENV"}
    return {
        key: ("***" if key == "OPENAI_API_KEY" else value)
        for key, value in os.environ.items()
        if key.startswith(ENV_PREFIX) or key in names
    }
