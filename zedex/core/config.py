"""
Mirror configuration.

Settings are resolved with the following precedence (highest first):

1. Explicit overrides (command-line options).
2. Environment variables ``ZEDEX_<FIELD>`` (e.g. ``ZEDEX_ROOT_DIR``, ``ZEDEX_MODE``).
3. ``<root_dir>/zedex.yaml`` if present.
4. Field defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "ZEDEX_"
ROOT_DIR_ENV_VAR = f"{ENV_PREFIX}ROOT_DIR"
CONFIG_FILE_NAME = "zedex.yaml"
DEFAULT_ROOT_DIR = Path(".zedex-cache")

MirrorMode = Literal["local", "proxy"]


class MirrorConfig(BaseModel):
    """
    Runtime configuration for the mirror server and the pre-fetch commands.
    """

    root_dir: Path = Field(
        default=DEFAULT_ROOT_DIR,
        description="Cache root holding the extension index, archives and release files.",
    )
    mode: MirrorMode = Field(
        default="local",
        description="'local' serves only cached content; 'proxy' fetches and caches misses from upstream.",
    )
    host: str = Field(default="127.0.0.1", description="Interface the HTTP server binds to.")
    port: int = Field(default=2654, ge=1, le=65535, description="Port the HTTP server listens on.")
    public_url: Optional[str] = Field(
        default=None,
        description="Base URL clients use to reach this mirror (e.g. http://mirror.lan:2654). "
        "Used when rewriting release download URLs; defaults to the request's own base URL.",
    )
    extensions_api_url: str = Field(
        default="https://api.zed.dev",
        description="Upstream extension registry API.",
    )
    releases_api_url: str = Field(
        default="https://zed.dev",
        description="Upstream release API host.",
    )
    upstream_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout (seconds) for upstream HTTP calls.",
    )
    upstream_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per upstream request before giving up on transport errors.",
    )
    fetch_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound (seconds) on a single on-demand fetch in proxy mode.",
    )
    default_channel: str = Field(default="stable", description="Release channel used when none is given.")
    index_refresh_interval_seconds: int = Field(
        default=0,
        ge=0,
        description="Proxy mode only: refresh the extension index this often. 0 disables. Minimum: 60 seconds.",
    )
    bulk_concurrency: int = Field(
        default=1,
        ge=1,
        description="Concurrent downloads during bulk pre-fetch.",
    )
    bulk_rate_limit_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Pause after each bulk download to avoid upstream rate limiting.",
    )
    log_level: str = Field(default="INFO", description="Logging level name.")

    @field_validator("index_refresh_interval_seconds")
    @classmethod
    def _check_refresh_interval(cls, value: int) -> int:
        if 0 < value < 60:
            raise ValueError("index_refresh_interval_seconds must be 0 (disabled) or at least 60")
        return value

    @field_validator("public_url", "extensions_api_url", "releases_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def proxy_mode(self) -> bool:
        return self.mode == "proxy"


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to read config file {path}: {e}")
        return {}
    if not isinstance(raw, dict):
        logger.warning(f"Ignoring config file {path}: expected a mapping, got {type(raw).__name__}")
        return {}
    return raw


def _read_environment() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in MirrorConfig.model_fields:
        env_value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value is not None and env_value != "":
            values[name] = env_value
    return values


def load_config(**overrides: Any) -> MirrorConfig:
    """
    Build the effective configuration.

    ``overrides`` with a value of ``None`` are ignored so callers can pass
    optional command-line options straight through.
    """
    explicit = {k: v for k, v in overrides.items() if v is not None}
    env_values = _read_environment()

    root_dir = Path(explicit.get("root_dir") or env_values.get("root_dir") or DEFAULT_ROOT_DIR).expanduser()
    file_values = _read_config_file(root_dir / CONFIG_FILE_NAME)

    merged: Dict[str, Any] = {}
    merged.update(file_values)
    merged.update(env_values)
    merged.update(explicit)
    merged["root_dir"] = root_dir

    config = MirrorConfig(**merged)
    logger.debug(f"Loaded configuration: {config.model_dump(mode='json')}")
    return config
