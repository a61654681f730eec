"""Configuration loading & validation.

Precedence (last wins): base.yaml -> overrides.local.yaml -> ENV
(FLOWDESK__SECTION__KEY=value).

Every section is validated by its own pydantic schema; unknown sections
and unknown keys are rejected.
"""
from __future__ import annotations

import logging
import os
import pathlib
import threading
from functools import lru_cache
from typing import Any, Dict, Type

import yaml
from flowcore import metrics
from flowcore.errors import validate_error_type
from pydantic import BaseModel, ConfigDict

from .schemas.core import AgentConfig, StorageConfig
from .schemas.observability import LoggingConfig, MetricsConfig
from .schemas.stream import BrokerConfig, StreamConfig

log = logging.getLogger(__name__)


class AggregatedConfig(BaseModel):
    schema_version: int = 1
    stream: StreamConfig = StreamConfig()
    broker: BrokerConfig = BrokerConfig()
    storage: StorageConfig = StorageConfig()
    agent: AgentConfig = AgentConfig()
    metrics: MetricsConfig = MetricsConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = ConfigDict(extra="forbid")


DEFAULT_CONFIG_DIR = "configs"
ENV_PREFIX = "FLOWDESK__"

SUB_SCHEMA_CLASSES: Dict[str, Type[BaseModel]] = {
    "stream": StreamConfig,
    "broker": BrokerConfig,
    "storage": StorageConfig,
    "agent": AgentConfig,
    "metrics": MetricsConfig,
    "logging": LoggingConfig,
}


class ConfigError(Exception):
    pass


def _load_yaml_if_exists(path: pathlib.Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge_dict(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _merge_dict(base[k], v)
        else:
            base[k] = v
    return base


def _cast_env_value(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            return value


def _apply_env(cfg: Dict[str, Any]) -> None:
    prefix_len = len(ENV_PREFIX)
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        path_parts = env_key[prefix_len:].lower().split("__")
        target = cfg
        for part in path_parts[:-1]:
            if part not in target or not isinstance(target[part], dict):
                target[part] = {}
            target = target[part]
        target[path_parts[-1]] = _cast_env_value(value)
        dotted_path = ".".join(path_parts)
        metrics.inc("env_override_total", {"path": dotted_path})
        log.info("config env override path=%s source=env", dotted_path)


_lock = threading.Lock()


def _resolve_config_dir() -> pathlib.Path:
    """Resolve config directory each call honoring env var changes."""
    return pathlib.Path(os.getenv("FLOWDESK_CONFIG_DIR", DEFAULT_CONFIG_DIR))


def _normalize_and_validate(raw: Dict[str, Any]) -> None:
    """Cross-field checks the per-section schemas cannot express.

    - stream.backend=redis requires a broker URL (config or REDIS_URL).
    - stream.retention_seconds must not exceed max_stream_age_seconds.
    - with redis, stream.read_block_ms must stay below broker.socket_timeout_s.
    """
    errors: list[tuple[str, str, str]] = []  # (path, code, msg)
    stream = raw.get("stream") or {}
    broker = raw.get("broker") or {}
    if stream.get("backend") == "redis":
        if not (broker.get("redis_url") or os.getenv("REDIS_URL")):
            errors.append(
                (
                    "broker.redis_url",
                    "config-out-of-range",
                    "redis backend requires broker.redis_url or REDIS_URL",
                )
            )
        block_ms = stream.get("read_block_ms", 1000)
        socket_timeout = broker.get("socket_timeout_s", 5.0)
        if (
            isinstance(block_ms, (int, float))
            and isinstance(socket_timeout, (int, float))
            and block_ms >= socket_timeout * 1000
        ):
            errors.append(
                (
                    "stream.read_block_ms",
                    "config-out-of-range",
                    "must be < broker.socket_timeout_s * 1000",
                )
            )
    retention = stream.get("retention_seconds")
    max_age = stream.get("max_stream_age_seconds")
    if (
        isinstance(retention, (int, float))
        and isinstance(max_age, (int, float))
        and retention > max_age
    ):
        errors.append(
            (
                "stream.retention_seconds",
                "config-out-of-range",
                "must be <= max_stream_age_seconds",
            )
        )
    if errors:
        for path, code, _ in errors:
            metrics.inc(
                "config_validation_errors_total",
                {"path": path, "code": code},
            )
            validate_error_type(code)
        details = ", ".join(f"{p}:{c}:{m}" for p, c, m in errors)
        raise ConfigError(f"config validation failed: {details}")


def _validate_sub_schemas(raw: Dict[str, Any]) -> Dict[str, Any]:
    validated: Dict[str, Any] = {}
    for name, cls in SUB_SCHEMA_CLASSES.items():
        if name in raw:
            try:
                validated[name] = cls.model_validate(raw[name] or {})
            except Exception as e:  # noqa: BLE001
                raise ConfigError(
                    f"Validation failed for section '{name}': {e}"
                ) from e
    return validated


@lru_cache(maxsize=1)
def get_config() -> AggregatedConfig:  # noqa: D401
    with _lock:
        cfg_dir = _resolve_config_dir()
        base_cfg = _load_yaml_if_exists(cfg_dir / "base.yaml")
        overrides_cfg = _load_yaml_if_exists(cfg_dir / "overrides.local.yaml")
        merged = _merge_dict(base_cfg, overrides_cfg)
        _apply_env(merged)
        _normalize_and_validate(merged)
        validated_sub = _validate_sub_schemas(merged)
        for name in list(merged):
            if name in validated_sub:
                merged[name] = validated_sub[name]
        try:
            return AggregatedConfig.model_validate(merged)
        except Exception as e:  # noqa: BLE001
            raise ConfigError(str(e)) from e


def clear_config_cache() -> None:
    """Clear cached config (primarily for tests)."""
    get_config.cache_clear()


def as_dict() -> Dict[str, Any]:
    return get_config().model_dump()
