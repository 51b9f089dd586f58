"""Configuration management for the GenAI proxy."""

import json
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Application configuration, immutable for the process lifetime."""

    keys: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    base_url: str = ""
    helicone_api_key: str = ""
    default_base_url: str = "https://api.openai.com"
    relay_base_url: str = "https://oai.hconeai.com"
    host: str = "0.0.0.0"
    port: int = 8124
    log_level: str = "INFO"
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 300.0
    write_timeout_seconds: float = 30.0
    max_connections: int = 100
    max_keepalive_connections: int = 20
    relay_per_char: bool = True

    def __post_init__(self):
        pools: Dict[str, Tuple[str, ...]] = {}
        for token, pool in self.keys.items():
            pool = tuple(pool)
            if not pool:
                raise ValueError(f"Key pool for token {token!r} must be non-empty")
            pools[token] = pool
        object.__setattr__(self, "keys", MappingProxyType(pools))


def _parse_pool(token: str, raw: object) -> Tuple[str, ...]:
    if isinstance(raw, str):
        return tuple(key.strip() for key in raw.split(",") if key.strip())
    if isinstance(raw, list) and all(isinstance(key, str) for key in raw):
        return tuple(key.strip() for key in raw if key.strip())
    raise ValueError(f"Key pool for token {token!r} must be a list of strings")


def _parse_keys(raw: object) -> Dict[str, Tuple[str, ...]]:
    if not isinstance(raw, dict):
        raise ValueError("Key configuration must be a JSON object")
    return {str(token): _parse_pool(str(token), pool) for token, pool in raw.items()}


def _load_file(path: str) -> Dict[str, object]:
    try:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def _file_str(data: Dict[str, object], name: str) -> str:
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"Config file value {name!r} must be a string")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(use_dotenv: bool = True) -> Config:
    """Load configuration from an optional JSON file and environment variables.

    Environment variables take precedence over values from
    ``PROXY_CONFIG_FILE``.

    Returns:
        Config: Configured application settings

    Raises:
        ValueError: If the configuration is missing or invalid
    """
    if use_dotenv:
        load_dotenv()

    file_data: Dict[str, object] = {}
    config_file: Optional[str] = os.getenv("PROXY_CONFIG_FILE")
    if config_file:
        file_data = _load_file(config_file)

    keys: Dict[str, Tuple[str, ...]] = {}
    if "keys" in file_data:
        keys = _parse_keys(file_data["keys"])

    keys_raw = os.getenv("PROXY_KEYS", "")
    if keys_raw.strip():
        try:
            keys = _parse_keys(json.loads(keys_raw))
        except json.JSONDecodeError as exc:
            raise ValueError(f"PROXY_KEYS must be a JSON object: {exc}") from exc

    return Config(
        keys=keys,
        base_url=os.getenv("BASE_URL", _file_str(file_data, "base_url")),
        helicone_api_key=os.getenv(
            "HELICONE_API_KEY", _file_str(file_data, "helicone")
        ),
        default_base_url=os.getenv("DEFAULT_BASE_URL", "https://api.openai.com"),
        relay_base_url=os.getenv("RELAY_BASE_URL", "https://oai.hconeai.com"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8124")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        connect_timeout_seconds=float(os.getenv("CONNECT_TIMEOUT_SECONDS", "10")),
        read_timeout_seconds=float(os.getenv("READ_TIMEOUT_SECONDS", "300")),
        write_timeout_seconds=float(os.getenv("WRITE_TIMEOUT_SECONDS", "30")),
        max_connections=int(os.getenv("MAX_CONNECTIONS", "100")),
        max_keepalive_connections=int(os.getenv("MAX_KEEPALIVE_CONNECTIONS", "20")),
        relay_per_char=_env_bool("RELAY_PER_CHAR", True),
    )
