"""Settings loading.

Each setting comes from, in order: its environment variable, the optional
YAML config file (``DNSFIK_CONFIG_PATH``, flat keys named like the lowercase
environment variable), then the built-in default. Example config file::

    cloudflare_zone_id: "0123456789abcdef"
    dns_default_ttl: 300
    use_traefik_labels: true
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .labels import DEFAULT_LABEL_PREFIX
from .models import RecordType
from .tasks import BACKOFF_EXPONENTIAL, BACKOFF_FIXED

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/config/dnsfik.yaml"

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


@dataclass(frozen=True)
class Settings:
    # Cloudflare
    cloudflare_token: str = ""
    cloudflare_zone_id: str = ""
    cloudflare_api_url: str = "https://api.cloudflare.com/client/v4"

    # Docker
    docker_socket: str = "/var/run/docker.sock"

    # Record defaults
    dns_label_prefix: str = DEFAULT_LABEL_PREFIX
    dns_default_type: str = "A"
    dns_default_proxied: bool = True
    dns_default_ttl: int = 1
    use_traefik_labels: bool = False

    # Task queue
    task_processing_interval: float = 5.0
    task_max_attempts: int = 3
    task_retry_delay: float = 5.0
    task_retry_backoff: str = BACKOFF_FIXED

    # Public IP
    ip_cache_seconds: float = 300.0
    ip_check_interval: float = 300.0
    http_timeout_seconds: float = 5.0

    log_level: str = "INFO"
    config_path: str = DEFAULT_CONFIG_PATH


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Read the YAML config file, returning {} when it does not exist."""
    path = Path(config_path)
    if not path.is_file():
        return {}
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    logger.debug(f"Loaded {len(data)} setting(s) from {config_path}")
    return {str(k).lower(): v for k, v in data.items()}


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{name.upper()} must be a boolean, got {value!r}")


def _as_number(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name.upper()} must be a number, got {value!r}") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment and the optional config file."""
    env = os.environ if environ is None else environ
    config_path = env.get("DNSFIK_CONFIG_PATH", DEFAULT_CONFIG_PATH)
    file_values = load_config_file(config_path)

    values: Dict[str, Any] = {"config_path": config_path}
    for field in fields(Settings):
        name = field.name
        if name == "config_path":
            continue
        raw = env.get(name.upper())
        if raw is None:
            raw = file_values.get(name)
        if raw is None:
            continue

        if field.type == "bool":
            values[name] = _as_bool(name, raw)
        elif field.type == "int":
            values[name] = _as_number(name, raw, int)
        elif field.type == "float":
            values[name] = _as_number(name, raw, float)
        else:
            values[name] = str(raw).strip()

    return Settings(**values)


def validate_settings(settings: Settings) -> List[str]:
    """Return a list of configuration problems (empty when valid)."""
    errors = []

    if not settings.cloudflare_token:
        errors.append("CLOUDFLARE_TOKEN is required")
    if not settings.cloudflare_zone_id:
        errors.append("CLOUDFLARE_ZONE_ID is required")

    if settings.dns_default_type.upper() not in RecordType.__members__:
        errors.append(
            f"DNS_DEFAULT_TYPE must be one of {', '.join(RecordType.__members__)}, "
            f"got {settings.dns_default_type}"
        )
    if settings.dns_default_ttl < 1:
        errors.append("DNS_DEFAULT_TTL must be a positive integer")
    if settings.task_max_attempts < 1:
        errors.append("TASK_MAX_ATTEMPTS must be at least 1")
    if settings.task_retry_delay < 0:
        errors.append("TASK_RETRY_DELAY must not be negative")
    if settings.task_retry_backoff not in (BACKOFF_FIXED, BACKOFF_EXPONENTIAL):
        errors.append(
            f"TASK_RETRY_BACKOFF must be '{BACKOFF_FIXED}' or '{BACKOFF_EXPONENTIAL}'"
        )
    for name in ("task_processing_interval", "ip_check_interval", "ip_cache_seconds", "http_timeout_seconds"):
        if getattr(settings, name) <= 0:
            errors.append(f"{name.upper()} must be greater than zero")

    return errors
