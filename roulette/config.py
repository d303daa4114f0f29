"""Configuration models and helpers for Roulette."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_USER_AGENT = "roulette/1.0"
DEFAULT_DECAY_RATE = 0.05
CONFIG_ENV_VAR = "ROULETTE_CONFIG"

_DURATION_PATTERN = re.compile(r"(\d+)([smhd])", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class ConfigError(RuntimeError):
    """Raised when configuration files cannot be parsed or are invalid."""


def parse_duration(expression: str) -> int:
    """Return the number of seconds described by ``expression``.

    Accepts a single unit (``"30s"``, ``"5m"``, ``"2h"``, ``"1d"``) or a
    compound expression such as ``"1h30m"``. Raises ``ValueError`` otherwise.
    """

    text = expression.strip()
    total = 0
    pos = 0
    for match in _DURATION_PATTERN.finditer(text):
        if match.start() != pos:
            raise ValueError(f"Invalid duration expression: {expression}")
        total += int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
        pos = match.end()

    if pos != len(text) or pos == 0:
        raise ValueError(f"Invalid duration expression: {expression}")
    return total


def parse_interval(expression: str) -> int:
    """Parse a reload interval given as bare seconds or as a duration."""

    text = str(expression).strip()
    if text.isdigit():
        seconds = int(text)
    else:
        seconds = parse_duration(text)
    if seconds <= 0:
        raise ValueError(f"Interval must be positive: {expression}")
    return seconds


class ServerSettings(BaseModel):
    """HTTP listener settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)

    model_config = ConfigDict(extra="forbid")


class RedirectSettings(BaseModel):
    """How selected entries are turned into redirect targets."""

    url_prefix: str

    model_config = ConfigDict(extra="forbid")

    @field_validator("url_prefix")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("url_prefix must not be empty")
        return value.rstrip("/")


class CatalogSettings(BaseModel):
    """Where the initial catalog comes from."""

    path: Optional[Path] = None
    watch: bool = Field(default=False)

    model_config = ConfigDict(extra="forbid")


class SyncSettings(BaseModel):
    """Remote catalog synchronisation."""

    url: Optional[str] = None
    interval: Optional[str] = None
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)

    model_config = ConfigDict(extra="forbid")

    @field_validator("interval", mode="before")
    @classmethod
    def _check_interval(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        parse_interval(text)
        return text

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.interval)

    @property
    def interval_seconds(self) -> Optional[int]:
        if not self.interval:
            return None
        return parse_interval(self.interval)


class SelectionSettings(BaseModel):
    """Sampling parameters."""

    decay_rate: float = Field(default=DEFAULT_DECAY_RATE, ge=0.0)

    model_config = ConfigDict(extra="forbid")


class RuntimeSettings(BaseModel):
    """Runtime-level defaults."""

    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    model_config = ConfigDict(extra="forbid")


class Settings(BaseModel):
    """Top-level configuration model."""

    redirect: RedirectSettings
    server: ServerSettings = Field(default_factory=ServerSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)

    model_config = ConfigDict(extra="forbid")


# (section, field) targets for each supported environment variable.
ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "IMAGE_URL_PREFIX": ("redirect", "url_prefix"),
    "IMAGE_MAP_PATH": ("catalog", "path"),
    "IMAGE_MAP_WATCH": ("catalog", "watch"),
    "IMAGE_MAP_SYNC_URL": ("sync", "url"),
    "IMAGE_MAP_SYNC_INTERVAL": ("sync", "interval"),
    "IMAGE_MAP_SYNC_TIMEOUT": ("sync", "timeout_seconds"),
    "DECAY_RATE": ("selection", "decay_rate"),
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
    "LOG_LEVEL": ("runtime", "log_level"),
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML file: {path}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at top level of {path}")
    return data


def _apply_env_overrides(payload: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in payload.items()}
    for env_name, (section, field_name) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        target = merged.get(section)
        if not isinstance(target, dict):
            target = {}
            merged[section] = target
        target[field_name] = raw
    return merged


def resolve_config_path(override: Optional[Path], environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """Return the YAML config path from the CLI override or ``ROULETTE_CONFIG``."""

    if override:
        return Path(override).expanduser()
    env = os.environ if environ is None else environ
    env_value = env.get(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return None


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    *,
    load_env_file: bool = True,
) -> Settings:
    """Load settings from an optional YAML file overlaid with environment variables.

    When ``environ`` is omitted the process environment is used, after loading
    a ``.env`` file from the working directory if one exists.
    """

    if environ is None:
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True))
        environ = os.environ

    payload: Dict[str, Any] = {}
    path = resolve_config_path(config_path, environ)
    if path is not None:
        payload = _read_yaml(path)

    merged = _apply_env_overrides(payload, environ)
    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
