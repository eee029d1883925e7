"""Tests for database and role provisioning"""

import pytest

from pg_operator.errors import InvalidResourceError, ProvisionError, UnsupportedPermissionError
from pg_operator.provisioning import DatabaseProvisioner
from pg_operator.roles import Permission, RoleProvisioner
from pg_operator.testing import FakeConnection, db_error, render_sql


def test_ensure_database_creates_once():
    """Test ensure_database is idempotent and creates only once"""
    conn = FakeConnection()
    provisioner = DatabaseProvisioner()

    assert provisioner.ensure_database(conn, "app", "", "") is True
    assert provisioner.ensure_database(conn, "app", "", "") is True

    creates = conn.statements("CREATE DATABASE")
    assert creates == ['CREATE DATABASE "app" WITH OWNER "postgres" ENCODING \'UTF8\''], \
        "Exactly one CREATE DATABASE with default owner and encoding"


def test_ensure_database_leaves_existing_alone():
    conn = FakeConnection(databases={"app"})
    assert DatabaseProvisioner().ensure_database(conn, "app", "someone", "LATIN1") is True
    assert conn.statements("CREATE") == []
    assert conn.statements("ALTER") == [], "Existing owner/encoding must not be altered"


def test_ensure_database_custom_owner_and_encoding():
    conn = FakeConnection()
    DatabaseProvisioner().ensure_database(conn, "app", "app_owner", "LATIN1")
    assert conn.statements("CREATE DATABASE") == [
        'CREATE DATABASE "app" WITH OWNER "app_owner" ENCODING \'LATIN1\''
    ]


def test_ensure_database_failure():
    """Test DDL failures surface as ProvisionError"""
    conn = FakeConnection(failures={"CREATE DATABASE": db_error("permission denied to create database")})
    with pytest.raises(ProvisionError, match="permission denied"):
        DatabaseProvisioner().ensure_database(conn, "app", "", "")


def test_ensure_database_rejects_unsafe_names():
    with pytest.raises(InvalidResourceError):
        DatabaseProvisioner().ensure_database(FakeConnection(), 'app"; DROP DATABASE x; --', "", "")


def test_ensure_role_creates_login_role():
    conn = FakeConnection()
    roles = RoleProvisioner(password_generator=lambda: "generated")

    assert roles.ensure_role(conn, "reader") is True
    assert conn.statements("CREATE ROLE") == ['CREATE ROLE "reader" WITH LOGIN PASSWORD %s']
    assert conn.passwords["reader"] == "generated", "Random password used when none given"

    assert roles.ensure_role(conn, "reader", "other") is False, "Existing role is not recreated"
    assert conn.passwords["reader"] == "generated"


def test_ensure_role_uses_given_password():
    conn = FakeConnection()
    RoleProvisioner().ensure_role(conn, "writer", "from-secret")
    assert conn.passwords["writer"] == "from-secret"


def test_set_password():
    conn = FakeConnection(roles={"reader"})
    RoleProvisioner().set_password(conn, "reader", "new")
    assert conn.statements("ALTER ROLE") == ['ALTER ROLE "reader" WITH PASSWORD %s']
    assert conn.passwords["reader"] == "new"


@pytest.mark.parametrize("token,expected", [
    ("CONNECT", 'GRANT CONNECT ON DATABASE "app" TO "r"'),
    ("CREATE", 'GRANT CREATE ON DATABASE "app" TO "r"'),
    ("ALL", 'GRANT ALL PRIVILEGES ON DATABASE "app" TO "r"'),
    ("USAGE", 'GRANT USAGE ON SCHEMA public TO "r"'),
    ("SELECT", 'GRANT SELECT ON ALL TABLES IN SCHEMA public TO "r"'),
    ("INSERT", 'GRANT INSERT ON ALL TABLES IN SCHEMA public TO "r"'),
    ("UPDATE", 'GRANT UPDATE ON ALL TABLES IN SCHEMA public TO "r"'),
    ("DELETE", 'GRANT DELETE ON ALL TABLES IN SCHEMA public TO "r"'),
])
def test_permission_mapping(token, expected):
    """Test each permission token maps to its GRANT statement"""
    assert render_sql(Permission.parse(token).statement("app", "r")) == expected


def test_unknown_permission_token():
    with pytest.raises(UnsupportedPermissionError):
        Permission.parse("TRUNCATE")
    with pytest.raises(UnsupportedPermissionError):
        Permission.parse("select")


def test_grant_all_is_single_statement():
    """Test ALL issues exactly one database-wide grant"""
    conn = FakeConnection(roles={"admin"})
    RoleProvisioner().grant(conn, "app", "admin", ["ALL"])
    assert conn.statements("GRANT") == ['GRANT ALL PRIVILEGES ON DATABASE "app" TO "admin"']


def test_grant_preserves_declared_order():
    conn = FakeConnection(roles={"r"})
    RoleProvisioner().grant(conn, "app", "r", ["SELECT", "CONNECT", "USAGE"])
    assert conn.statements("GRANT") == [
        'GRANT SELECT ON ALL TABLES IN SCHEMA public TO "r"',
        'GRANT CONNECT ON DATABASE "app" TO "r"',
        'GRANT USAGE ON SCHEMA public TO "r"',
    ]


def test_grant_stops_at_unsupported_token_without_rollback():
    """Test an unknown token aborts the remaining grants but keeps earlier ones"""
    conn = FakeConnection(roles={"r"})
    with pytest.raises(UnsupportedPermissionError):
        RoleProvisioner().grant(conn, "app", "r", ["CONNECT", "TRUNCATE", "SELECT"])

    assert conn.statements("GRANT") == ['GRANT CONNECT ON DATABASE "app" TO "r"']
    assert conn.statements("REVOKE") == [], "Issued grants are not rolled back"


def test_grant_failure():
    conn = FakeConnection(roles={"r"}, failures={"GRANT SELECT": db_error("relation does not exist")})
    with pytest.raises(ProvisionError, match="SELECT"):
        RoleProvisioner().grant(conn, "app", "r", ["CONNECT", "SELECT"])
