"""Runtime settings for the MUD bridge, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from .errors import ConfigError
from .framing import DEFAULT_MAX_LINE_LENGTH


DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8383
DEFAULT_CLIENT_NAME = "LLM MCP Client"
PROTOCOL_VERSION = "1.0"
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_COMMAND_TIMEOUT = 5.0


@dataclass(frozen=True)
class BridgeConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    client_name: str = DEFAULT_CLIENT_NAME
    protocol_version: str = PROTOCOL_VERSION
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH
    verbose: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        env = os.environ if environ is None else environ
        return cls(
            host=(env.get("MUD_HOST") or DEFAULT_HOST).strip(),
            port=_parse_int(env, "MUD_PORT", DEFAULT_PORT),
            client_name=(env.get("MUD_CLIENT_NAME") or DEFAULT_CLIENT_NAME).strip(),
            connect_timeout=_parse_float(env, "MUD_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
            command_timeout=_parse_float(env, "MUD_COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT),
            max_line_length=_parse_int(env, "MUD_MAX_LINE_LENGTH", DEFAULT_MAX_LINE_LENGTH),
            verbose=env.get("VERBOSE", "").strip().lower() in {"1", "true", "yes", "on"},
        )

    def with_overrides(self, **changes) -> "BridgeConfig":
        return replace(self, **{key: value for key, value in changes.items() if value is not None})


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value
