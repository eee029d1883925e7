"""Tests for the credential resolver"""

from unittest.mock import Mock

import pytest

from pg_operator.config import OperatorConfig
from pg_operator.credentials import CredentialResolver
from pg_operator.errors import ResolutionError, TransientInfraError
from pg_operator.models import ConnectionResource
from pg_operator.testing import FakeKube


def connection(namespace="ns1", **spec):
    spec.setdefault("clusterName", "pg1")
    return ConnectionResource.from_dict({"metadata": {"name": "pg", "namespace": namespace}, "spec": spec})


def resolver(kube=None, **cfg):
    return CredentialResolver(kube or FakeKube(), OperatorConfig(**cfg))


def test_default_host_derivation():
    """Test host is derived from cluster name, namespace and cluster domain"""
    host = resolver().host_for(connection())

    assert "pg1-rw" in host
    assert "ns1" in host
    assert "cluster.local" in host
    assert host == "pg1-rw.ns1.svc.cluster.local"


def test_host_uses_cluster_namespace_and_domain():
    host = resolver(cluster_domain="corp.internal").host_for(connection(clusterNamespace="db"))
    assert host == "pg1-rw.db.svc.corp.internal"


def test_explicit_host_and_port():
    conn = connection(host="10.0.0.5", port=6432)
    r = resolver()
    assert r.host_for(conn) == "10.0.0.5"
    assert r.port_for(conn) == 6432


def test_default_port():
    assert resolver().port_for(connection(port=0)) == 5432


def test_default_secret_naming():
    """Test secret name follows the useAppSecret flag"""
    assert CredentialResolver.secret_for(connection()) == ("pg1-superuser", "ns1")
    assert CredentialResolver.secret_for(connection(useAppSecret=False)) == ("pg1-superuser", "ns1")
    assert CredentialResolver.secret_for(connection(useAppSecret=True)) == ("pg1-app", "ns1")


def test_default_secret_lives_in_cluster_namespace():
    assert CredentialResolver.secret_for(connection(clusterNamespace="db")) == ("pg1-superuser", "db")


def test_explicit_secret_reference():
    """Test explicit secret reference wins and defaults to the connection namespace"""
    assert CredentialResolver.secret_for(
        connection(superUserSecret={"name": "admin"}, useAppSecret=True)
    ) == ("admin", "ns1")
    assert CredentialResolver.secret_for(
        connection(superUserSecret={"name": "admin", "namespace": "vault"})
    ) == ("admin", "vault")


def test_resolve_reads_secret():
    kube = FakeKube()
    kube.add_secret("pg1-superuser", "ns1", {"username": "postgres", "password": "s3cret"})

    creds = resolver(kube).resolve(connection())

    assert creds.host == "pg1-rw.ns1.svc.cluster.local"
    assert creds.port == 5432
    assert creds.username == "postgres"
    assert creds.password == "s3cret"
    assert "s3cret" not in repr(creds), "Password must not appear in repr"


def test_resolve_missing_secret():
    with pytest.raises(ResolutionError, match="not found"):
        resolver().resolve(connection())


@pytest.mark.parametrize("data", [
    {"username": "postgres"},
    {"password": "s3cret"},
    {"username": "", "password": "s3cret"},
    {"username": "postgres", "password": ""},
])
def test_resolve_incomplete_secret(data):
    kube = FakeKube()
    kube.add_secret("pg1-superuser", "ns1", data)
    with pytest.raises(ResolutionError, match="missing username or password"):
        resolver(kube).resolve(connection())


def test_resolve_wraps_api_errors():
    kube = FakeKube()
    kube.read_secret = Mock(side_effect=TransientInfraError("503 Service Unavailable"))
    with pytest.raises(ResolutionError, match="failed to read"):
        resolver(kube).resolve(connection())
