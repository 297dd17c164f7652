"""
Configuration management for the stallguard supervisor.

Precedence: env vars > .env file > YAML file (STALLGUARD_CONFIG) > defaults

The settings object is frozen and built once at startup by load_settings();
components receive it explicitly instead of reading module globals.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import httpx
import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "STALLGUARD_CONFIG"

DEFAULT_WARNING_MESSAGE = "warning: kuzco node fails and performs a restart procedure"
DEFAULT_CRITICAL_MESSAGE = (
    "critical: kuzco node has restarted more than 3 times, please check."
)

_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Accepts a bare number of seconds ("30", 30, 2.5) or a Go-style duration
    string made of number+unit pairs ("90s", "5m", "1h30m", "250ms").
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ValueError("duration cannot be empty")
    if _NUMBER_RE.match(text):
        return float(text)

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _load_yaml_config(config_file: Path) -> dict[str, Any]:
    """Load fallback values from a YAML config file.

    The file is named explicitly by the operator, so unreadable or malformed
    content is a configuration error rather than something to skip.
    """
    if not config_file.exists():
        raise ValueError(f"config file not found: {config_file}")
    try:
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"cannot read config file {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"config file is not a mapping: {config_file}")
    return data


class Settings(BaseSettings):
    """Supervisor configuration. Immutable once loaded."""

    # Timing
    check_interval: float = Field(
        ..., gt=0, description="Seconds between the two probes of a window"
    )
    restart_wait_time: float = Field(
        ..., ge=0, description="Seconds to wait between stopping and starting the worker"
    )
    settle_time: float = Field(
        default=30.0, ge=0, description="Seconds to let a fresh worker warm up"
    )

    # Notification
    discord_webhook_url: str = Field(..., description="Webhook that receives alerts")
    notify_timeout: float = Field(default=10.0, gt=0, description="Webhook timeout")
    warning_message: str = Field(default=DEFAULT_WARNING_MESSAGE)
    critical_message: str = Field(default=DEFAULT_CRITICAL_MESSAGE)

    # Worker
    log_dir: Path = Field(
        default=Path("/var/log/kuzco"), description="Directory holding the worker log"
    )
    log_file_name: str = Field(default="log.txt", description="Worker log file name")
    worker_command: str = Field(
        default="kuzco worker start", description="Command line that starts the worker"
    )
    worker_process_name: str = Field(
        default="kuzco", description="Process name killed when stopping the worker"
    )
    auxiliary_process_names: str = Field(
        default="ollama",
        description="Comma-separated names of helper processes the worker spawns",
    )
    completion_marker: str = Field(
        default="finish", description="Substring that marks one unit of finished work"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    @model_validator(mode="before")
    @classmethod
    def _inject_yaml_config(cls, data: Any) -> Any:
        """Inject YAML values as fallbacks below env vars and .env."""
        if not isinstance(data, dict):
            data = {}

        raw = os.environ.get(CONFIG_FILE_ENV, "")
        if not raw:
            return data

        yaml_config = _load_yaml_config(Path(raw).expanduser())
        for key, value in yaml_config.items():
            if key not in data or data[key] is None:
                data[key] = value
        return data

    @field_validator("check_interval", "restart_wait_time", "settle_time", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        if isinstance(value, (str, int, float)):
            return parse_duration(value)
        return value

    @field_validator("discord_webhook_url")
    @classmethod
    def _check_webhook_url(cls, value: str) -> str:
        value = value.strip()
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as e:
            raise ValueError(f"not a valid URL: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("must be an http:// or https:// URL with a host")
        return value

    @field_validator("completion_marker", "worker_command", "worker_process_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cannot be empty")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level '{value}'")
        return level

    @property
    def log_path(self) -> Path:
        """Full path of the worker log file."""
        return self.log_dir / self.log_file_name

    @property
    def auxiliary_process_names_list(self) -> list[str]:
        return [n.strip() for n in self.auxiliary_process_names.split(",") if n.strip()]

    @property
    def process_names(self) -> list[str]:
        """Worker process name followed by auxiliaries, without duplicates."""
        names = [self.worker_process_name.strip()]
        for name in self.auxiliary_process_names_list:
            if name not in names:
                names.append(name)
        return names

    def redacted_dump(self) -> dict[str, Any]:
        """Settings as plain data, safe to print."""
        data = self.model_dump(mode="json")
        data["discord_webhook_url"] = "[REDACTED]"
        data["log_path"] = str(self.log_path)
        return data


def _describe_errors(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        name = ".".join(str(part) for part in err["loc"]) or "settings"
        lines.append(f"  {name.upper()}: {err['msg']}")
    return "Invalid configuration:\n" + "\n".join(lines)


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Load and validate settings once at startup.

    Raises:
        ConfigurationError: if a required value is missing or a value is invalid.
    """
    try:
        if env_file is not None:
            if not env_file.exists():
                raise ConfigurationError(f"env file not found: {env_file}")
            return Settings(_env_file=env_file)
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(_describe_errors(e)) from e
