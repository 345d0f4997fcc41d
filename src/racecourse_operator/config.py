"""
Configuration for the Racecourse operator.

Settings come from dataclass defaults, then an optional YAML file named by
``RACECOURSE_CONFIG``, then environment variables.
"""

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "RACECOURSE_CONFIG"
ENV_PREFIX = "RACECOURSE_"

# Settings that keep the names shared with the other operators
_UNPREFIXED_ENV = {
    "log_level": "LOG_LEVEL",
    "worker_limit": "WORKER_LIMIT",
    "clusterwide": "CLUSTERWIDE",
}

DEFAULT_COMMON_LABELS: Mapping[str, str] = MappingProxyType(
    {"app.kubernetes.io/name": "racecourse"}
)


def parse_labels(value: str) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` into a label map."""
    labels: dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, val = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid label '{item}', expected key=value")
        labels[key.strip()] = val.strip()
    return labels


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OperatorConfig:
    """Immutable operator settings shared by every reconciler."""

    # Parent resource
    group: str = "webapp.my.domain"
    version: str = "v1alpha1"
    kind: str = "Racecourse"
    plural: str = "racecourses"

    # Workload template
    image: str = "localhost/racecourse:latest"
    image_pull_policy: str = "Never"
    container_name: str = "racecourse"
    port_name: str = "webapp"
    container_port: int = 3000
    service_port: int = 3000
    ingress_class: str | None = None
    common_labels: Mapping[str, str] = field(default_factory=lambda: DEFAULT_COMMON_LABELS)

    # Reconciliation cadence
    requeue_after: float = 60.0
    reconcile_timeout: float = 30.0

    # Local optimistic-concurrency retries
    conflict_retry_attempts: int = 5
    conflict_retry_initial_delay: float = 0.05
    conflict_retry_max_delay: float = 1.0

    # Backoff handed to kopf when a pass fails
    error_backoff_base: float = 5.0
    error_backoff_max: float = 300.0

    # Runtime
    worker_limit: int = 5
    clusterwide: bool = True
    namespaces: tuple[str, ...] = ()
    liveness_endpoint: str | None = "http://0.0.0.0:8080/healthz"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # Freeze the label map so no reconciler can mutate the shared selector
        object.__setattr__(self, "common_labels", MappingProxyType(dict(self.common_labels)))
        if not self.common_labels:
            raise ValueError("common_labels must not be empty")
        if self.conflict_retry_attempts < 1:
            raise ValueError("conflict_retry_attempts must be at least 1")
        for name in ("container_port", "service_port"):
            port = getattr(self, name)
            if not 1 <= port <= 65535:
                raise ValueError(f"{name} must be between 1 and 65535, got {port}")

    @property
    def api_version(self) -> str:
        """apiVersion of the parent resource."""
        return f"{self.group}/{self.version}"

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> "OperatorConfig":
        """Build settings from the optional YAML file and the environment."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        config_file = environ.get(CONFIG_FILE_ENV)
        if config_file:
            values.update(_read_config_file(Path(config_file)))

        values.update(_read_environment(environ))
        return cls(**_coerce(values))


def _read_config_file(path: Path) -> dict[str, Any]:
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    logger.info("Loaded operator configuration from %s", path)
    return data


def _read_environment(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for config_field in dataclasses.fields(OperatorConfig):
        env_name = _UNPREFIXED_ENV.get(config_field.name, ENV_PREFIX + config_field.name.upper())
        if env_name in environ:
            values[config_field.name] = environ[env_name]
    return values


def _coerce(values: dict[str, Any]) -> dict[str, Any]:
    """Convert raw file/env values to the dataclass field types."""
    known = {f.name: f for f in dataclasses.fields(OperatorConfig)}
    coerced: dict[str, Any] = {}
    for key, raw in values.items():
        if key not in known:
            raise ValueError(f"Unknown configuration key: {key}")
        default = known[key].default
        try:
            if key == "common_labels":
                coerced[key] = parse_labels(raw) if isinstance(raw, str) else dict(raw)
            elif key == "namespaces":
                items = raw.split(",") if isinstance(raw, str) else raw
                coerced[key] = tuple(str(item).strip() for item in items if str(item).strip())
            elif key in ("ingress_class", "liveness_endpoint"):
                coerced[key] = str(raw) if raw not in (None, "") else None
            elif isinstance(default, bool):
                coerced[key] = raw if isinstance(raw, bool) else _parse_bool(str(raw))
            elif isinstance(default, int):
                coerced[key] = int(raw)
            elif isinstance(default, float):
                coerced[key] = float(raw)
            else:
                coerced[key] = str(raw)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for {key}: {raw!r} ({e})") from e
    return coerced
