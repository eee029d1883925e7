"""Tests for OperatorConfig loading"""

import pytest

from pg_operator.config import OperatorConfig
from pg_operator.errors import ConfigError


def test_defaults():
    """Test default configuration"""
    cfg = OperatorConfig.from_env({})

    assert cfg.cluster_domain == "cluster.local", "Default cluster domain should be cluster.local"
    assert cfg.connect_timeout == 30, "Default connect timeout should be 30s"
    assert cfg.ready_requeue_seconds == 300, "Ready resources requeue after 5 minutes"
    assert cfg.not_ready_requeue_seconds == 60, "Broken resources requeue after 1 minute"
    assert cfg.crd_group == "postgres.silverswarm.io"
    assert cfg.watch_namespace == ""


def test_env_overrides():
    """Test environment variables override defaults"""
    cfg = OperatorConfig.from_env({
        "KUBERNETES_CLUSTER_DOMAIN": "corp.internal",
        "CONNECT_TIMEOUT": "5",
        "NOT_READY_REQUEUE_SECONDS": "15",
        "WATCH_NAMESPACE": "team-a",
        "LOG_LEVEL": "",
    })

    assert cfg.cluster_domain == "corp.internal"
    assert cfg.connect_timeout == 5
    assert cfg.not_ready_requeue_seconds == 15.0
    assert cfg.watch_namespace == "team-a"
    assert cfg.log_level == "INFO", "Empty values should keep the default"


def test_invalid_env_value():
    """Test non-numeric values are rejected"""
    with pytest.raises(ConfigError):
        OperatorConfig.from_env({"CONNECT_TIMEOUT": "soon"})


def test_validation():
    """Test semantic validation"""
    with pytest.raises(ConfigError):
        OperatorConfig.from_env({"CONNECT_TIMEOUT": "0"})
    with pytest.raises(ConfigError):
        OperatorConfig.from_env({"DEFAULT_SSL_MODE": "sometimes"})


def test_yaml_overlay(tmp_path):
    """Test a YAML config file overlays environment values"""
    path = tmp_path / "operator.yaml"
    path.write_text("cluster-domain: example.org\nready_requeue_seconds: 120\n")

    cfg = OperatorConfig.from_env({
        "KUBERNETES_CLUSTER_DOMAIN": "corp.internal",
        "OPERATOR_CONFIG_FILE": str(path),
    })

    assert cfg.cluster_domain == "example.org", "File values should win over environment"
    assert cfg.ready_requeue_seconds == 120.0


def test_yaml_overlay_unknown_key(tmp_path):
    """Test unknown keys in the config file are rejected"""
    path = tmp_path / "operator.yaml"
    path.write_text("no_such_setting: 1\n")

    with pytest.raises(ConfigError):
        OperatorConfig.from_env({"OPERATOR_CONFIG_FILE": str(path)})


def test_missing_config_file():
    """Test a missing config file is a configuration error"""
    with pytest.raises(ConfigError):
        OperatorConfig.from_env({"OPERATOR_CONFIG_FILE": "/nonexistent/operator.yaml"})
