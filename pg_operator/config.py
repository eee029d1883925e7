"""
Operator configuration.

Values come from environment variables and may be overlaid by a YAML file
named in OPERATOR_CONFIG_FILE. The resulting OperatorConfig is passed
explicitly to every component that needs it.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from pg_operator.errors import ConfigError


@dataclass(frozen=True)
class OperatorConfig:
    """Controller configuration"""

    # Kubernetes settings
    watch_namespace: str = ""
    crd_group: str = "postgres.silverswarm.io"
    crd_version: str = "v1"
    cluster_domain: str = "cluster.local"

    # PostgreSQL settings
    connect_timeout: int = 30
    statement_timeout_ms: int = 0
    maintenance_database: str = "postgres"
    default_ssl_mode: str = "require"
    password_bytes: int = 32

    # Requeue policy (seconds)
    ready_requeue_seconds: float = 300.0
    not_ready_requeue_seconds: float = 60.0
    conflict_requeue_seconds: float = 5.0

    # Controller settings
    sync_interval: float = 30.0
    max_retries: int = 5
    retry_backoff_base: float = 2.0
    max_concurrent_reconciles: int = 1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OperatorConfig":
        """
        Build configuration from environment variables

        Args:
            environ: Mapping to read from, defaults to os.environ

        Returns:
            OperatorConfig, overlaid with OPERATOR_CONFIG_FILE if set
        """
        env = os.environ if environ is None else environ
        values = {}
        for field in fields(cls):
            raw = env.get(_ENV_NAMES[field.name])
            if raw is not None and raw != "":
                values[field.name] = _coerce(field.name, field.type, raw)

        cfg = cls(**values)
        config_file = env.get("OPERATOR_CONFIG_FILE")
        if config_file:
            cfg = cfg.overlay_file(config_file)
        cfg.validate()
        return cfg

    def overlay_file(self, path: str) -> "OperatorConfig":
        """Return a copy with values from a YAML mapping applied on top"""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot load config file {path}: {e}") from e
        return self.overlay(data)

    def overlay(self, data: Mapping[str, Any]) -> "OperatorConfig":
        if not isinstance(data, Mapping):
            raise ConfigError("config file must contain a mapping")

        known = {f.name: f for f in fields(self)}
        updates: Dict[str, Any] = {}
        for key, value in data.items():
            name = str(key).replace("-", "_")
            if name not in known:
                raise ConfigError(f"unknown config key: {key}")
            updates[name] = _coerce(name, known[name].type, value)
        return replace(self, **updates)

    def validate(self):
        if self.connect_timeout <= 0:
            raise ConfigError("connect_timeout must be positive")
        if self.password_bytes < 16:
            raise ConfigError("password_bytes must be at least 16")
        if self.max_concurrent_reconciles < 1:
            raise ConfigError("max_concurrent_reconciles must be at least 1")
        if min(self.ready_requeue_seconds, self.not_ready_requeue_seconds) <= 0:
            raise ConfigError("requeue intervals must be positive")
        if self.default_ssl_mode not in SSL_MODES:
            raise ConfigError(f"invalid default_ssl_mode: {self.default_ssl_mode}")


SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")

_ENV_NAMES = {
    "watch_namespace": "WATCH_NAMESPACE",
    "crd_group": "CRD_GROUP",
    "crd_version": "CRD_VERSION",
    "cluster_domain": "KUBERNETES_CLUSTER_DOMAIN",
    "connect_timeout": "CONNECT_TIMEOUT",
    "statement_timeout_ms": "STATEMENT_TIMEOUT_MS",
    "maintenance_database": "MAINTENANCE_DATABASE",
    "default_ssl_mode": "DEFAULT_SSL_MODE",
    "password_bytes": "PASSWORD_BYTES",
    "ready_requeue_seconds": "READY_REQUEUE_SECONDS",
    "not_ready_requeue_seconds": "NOT_READY_REQUEUE_SECONDS",
    "conflict_requeue_seconds": "CONFLICT_REQUEUE_SECONDS",
    "sync_interval": "SYNC_INTERVAL",
    "max_retries": "MAX_RETRIES",
    "retry_backoff_base": "RETRY_BACKOFF_BASE",
    "max_concurrent_reconciles": "MAX_CONCURRENT_RECONCILES",
    "log_level": "LOG_LEVEL",
}


def _coerce(name: str, type_name, value: Any) -> Any:
    # dataclass field types are strings when annotations are postponed
    type_name = getattr(type_name, "__name__", type_name)
    try:
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r}") from e
