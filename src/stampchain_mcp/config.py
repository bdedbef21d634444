"""Configuration management for the Stampchain MCP server.

Values are layered, lowest priority first: built-in defaults, an optional
JSON config file, environment variables (``.env`` is loaded first) and
explicit overrides such as CLI flags.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
from dotenv import load_dotenv

from .core.logging import LOG_LEVELS

logger = structlog.get_logger(__name__)

SERVER_NAME = "stampchain-mcp"
SERVER_VERSION = "0.1.0"
DEFAULT_API_URL = "https://stampchain.io/api/v2"


@dataclass(frozen=True)
class Settings:
    """Server settings."""

    app_env: str = "production"
    server_name: str = SERVER_NAME
    server_version: str = SERVER_VERSION
    log_level: str = "info"
    log_json: bool = False
    # Stampchain API
    api_base_url: str = DEFAULT_API_URL
    api_key: Optional[str] = None
    api_timeout_ms: int = 30_000
    api_retries: int = 3
    api_retry_delay_ms: int = 1_000
    # Tool registry
    max_tools: int = 1000
    validate_on_register: bool = True
    allow_duplicate_tools: bool = False
    # Sessions
    max_connections: int = 100
    session_timeout_ms: int = 3_600_000
    # Request handling
    request_timeout_ms: int = 120_000
    max_concurrent_requests: int = 10
    rate_limit_per_minute: int = 120
    shutdown_grace_seconds: float = 5.0
    max_message_bytes: int = 1_048_576
    # HTTP transport
    http_host: str = "127.0.0.1"
    http_port: int = 8765

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def api_timeout_seconds(self) -> float:
        return self.api_timeout_ms / 1000

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000

    def to_dict(self) -> dict[str, Any]:
        """Settings with secrets masked, for logging."""
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        if result.get("api_key"):
            result["api_key"] = "***"
        return result


# Settings field -> environment variable.
ENV_VARS: dict[str, str] = {
    "app_env": "STAMPCHAIN_APP_ENV",
    "log_level": "STAMPCHAIN_LOG_LEVEL",
    "log_json": "STAMPCHAIN_LOG_JSON",
    "api_base_url": "STAMPCHAIN_API_URL",
    "api_key": "STAMPCHAIN_API_KEY",
    "api_timeout_ms": "STAMPCHAIN_API_TIMEOUT",
    "api_retries": "STAMPCHAIN_API_RETRIES",
    "api_retry_delay_ms": "STAMPCHAIN_API_RETRY_DELAY",
    "max_tools": "STAMPCHAIN_MAX_TOOLS",
    "validate_on_register": "STAMPCHAIN_VALIDATE_ON_REGISTER",
    "allow_duplicate_tools": "STAMPCHAIN_ALLOW_DUPLICATE_TOOLS",
    "max_connections": "STAMPCHAIN_MAX_CONNECTIONS",
    "session_timeout_ms": "STAMPCHAIN_SESSION_TIMEOUT_MS",
    "request_timeout_ms": "STAMPCHAIN_REQUEST_TIMEOUT_MS",
    "max_concurrent_requests": "STAMPCHAIN_MAX_CONCURRENT_REQUESTS",
    "rate_limit_per_minute": "STAMPCHAIN_RATE_LIMIT_PER_MINUTE",
    "shutdown_grace_seconds": "STAMPCHAIN_SHUTDOWN_GRACE_SECONDS",
    "max_message_bytes": "STAMPCHAIN_MAX_MESSAGE_BYTES",
    "http_host": "STAMPCHAIN_HTTP_HOST",
    "http_port": "STAMPCHAIN_HTTP_PORT",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

# Integer fields that must be at least 1.
_POSITIVE_INTS = {
    "api_timeout_ms",
    "max_tools",
    "max_connections",
    "session_timeout_ms",
    "request_timeout_ms",
    "max_concurrent_requests",
    "rate_limit_per_minute",
    "max_message_bytes",
}


def _coerce(name: str, raw: Any, source: str) -> Any:
    """Convert a raw config value to the type of the ``Settings`` field."""
    default = Settings.__dataclass_fields__[name].default
    try:
        if isinstance(default, bool):
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUE_VALUES:
                return True
            if text in _FALSE_VALUES:
                return False
            raise ValueError(raw)
        if isinstance(default, int):
            if isinstance(raw, bool):
                raise ValueError(raw)
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{source} has an invalid value: {raw!r}") from exc
    if raw is None:
        return None
    return str(raw).strip()


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ValueError(f"Cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Config file {path} must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object.")
    unknown = sorted(set(data) - set(Settings.__dataclass_fields__))
    if unknown:
        raise ValueError(f"Config file {path} has unknown keys: {', '.join(unknown)}")
    return data


def _validate(values: dict[str, Any]) -> None:
    for name in _POSITIVE_INTS:
        if values[name] < 1:
            raise ValueError(f"{ENV_VARS.get(name, name)} must be >= 1.")
    if values["api_retries"] < 0:
        raise ValueError("STAMPCHAIN_API_RETRIES must be >= 0.")
    if values["api_retry_delay_ms"] < 0:
        raise ValueError("STAMPCHAIN_API_RETRY_DELAY must be >= 0.")
    if values["shutdown_grace_seconds"] < 0:
        raise ValueError("STAMPCHAIN_SHUTDOWN_GRACE_SECONDS must be >= 0.")
    if not 0 < values["http_port"] < 65536:
        raise ValueError("STAMPCHAIN_HTTP_PORT must be between 1 and 65535.")
    if values["log_level"].lower() not in LOG_LEVELS:
        raise ValueError(
            f"STAMPCHAIN_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}."
        )
    if not values["api_base_url"].startswith(("http://", "https://")):
        raise ValueError("STAMPCHAIN_API_URL must be an http(s) URL.")


def load_settings(
    config_file: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from defaults, a config file, the environment and overrides.

    Args:
        config_file: Optional path to a JSON object keyed by setting name
        overrides: Highest-priority values keyed by setting name; ``None``
            values are ignored
        environ: Environment mapping, defaulting to ``os.environ`` after
            loading ``.env``

    Returns:
        Settings instance with all configuration values

    Raises:
        ValueError: If any value is missing, unknown or invalid
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    values: dict[str, Any] = {
        f.name: f.default for f in fields(Settings)
    }

    if config_file is not None:
        path = Path(config_file)
        for name, raw in _read_config_file(path).items():
            values[name] = _coerce(name, raw, f"{path}:{name}")

    for name, env_var in ENV_VARS.items():
        raw = environ.get(env_var)
        if raw is not None and raw.strip() != "":
            values[name] = _coerce(name, raw, env_var)

    for name, raw in (overrides or {}).items():
        if name not in values:
            raise ValueError(f"Unknown setting: {name}")
        if raw is not None:
            values[name] = _coerce(name, raw, name)

    values["app_env"] = values["app_env"].lower()
    values["log_level"] = values["log_level"].lower()
    values["api_base_url"] = values["api_base_url"].rstrip("/")
    _validate(values)

    settings = Settings(**values)
    logger.debug("settings_loaded", **settings.to_dict())
    return settings
