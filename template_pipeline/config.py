"""Runtime settings for the template pipeline.

Values come from three layers, lowest precedence first: built-in defaults,
an optional YAML file named by ``PIPELINE_CONFIG_PATH``, and environment
variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when a setting cannot be parsed."""


@dataclass
class PipelineSettings:
    report_cron: str = "0 9 * * MON"
    retry_cron: str = "*/15 * * * *"
    timezone: str = "Asia/Shanghai"
    stale_minutes: int = 30
    retry_batch_size: int = 20
    cache_refresh_enabled: bool = True
    cache_refresh_retry_limit: int = 3
    alert_webhook_url: Optional[str] = None
    alert_webhook_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    template_bucket: str = "templates"


_ENV_NAMES: Dict[str, str] = {
    "report_cron": "PIPELINE_REPORT_CRON",
    "retry_cron": "PIPELINE_RETRY_CRON",
    "timezone": "PIPELINE_TIMEZONE",
    "stale_minutes": "PIPELINE_STALE_MINUTES",
    "retry_batch_size": "PIPELINE_RETRY_BATCH_SIZE",
    "cache_refresh_enabled": "CACHE_REFRESH_ENABLED",
    "cache_refresh_retry_limit": "CACHE_REFRESH_RETRY_LIMIT",
    "alert_webhook_url": "ALERT_WEBHOOK_URL",
    "alert_webhook_timeout_seconds": "ALERT_WEBHOOK_TIMEOUT_SECONDS",
    "log_level": "LOG_LEVEL",
    "template_bucket": "TEMPLATE_BUCKET",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _coerce(name: str, raw: Any, target: Any) -> Any:
    if target is bool:
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in _TRUE_VALUES
    if target is int:
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid integer for {name}: {raw!r}") from exc
    if target is float:
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid number for {name}: {raw!r}") from exc
    return None if raw is None else str(raw)


def _field_types() -> Dict[str, Any]:
    # annotations are strings under ``from __future__ import annotations``
    mapping = {"bool": bool, "int": int, "float": float}
    return {f.name: mapping.get(str(f.type), str) for f in fields(PipelineSettings)}


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found at {path}")
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return raw


def load_settings(env: Optional[Mapping[str, str]] = None) -> PipelineSettings:
    environ = os.environ if env is None else env
    types = _field_types()
    values: Dict[str, Any] = {}

    config_path = environ.get("PIPELINE_CONFIG_PATH")
    if config_path:
        for key, raw in _load_yaml(Path(config_path)).items():
            if key not in types:
                logger.warning("Ignoring unknown config key '%s' in %s", key, config_path)
                continue
            values[key] = _coerce(key, raw, types[key])

    for key, env_name in _ENV_NAMES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        values[key] = _coerce(env_name, raw, types[key])

    settings = PipelineSettings(**values)
    if settings.stale_minutes < 0 or settings.retry_batch_size <= 0 or settings.cache_refresh_retry_limit < 0:
        raise ConfigError("stale_minutes and cache_refresh_retry_limit must be >= 0, retry_batch_size > 0")
    return settings
