"""Tests for the database connector"""

from unittest.mock import MagicMock

import pytest
from psycopg2.extensions import parse_dsn

from pg_operator.config import OperatorConfig
from pg_operator.connector import DatabaseConnector
from pg_operator.credentials import ResolvedCredentials
from pg_operator.errors import ConnectError
from pg_operator.log import mask_dsn
from pg_operator.testing import FakeConnect, FakeConnection, db_error

CREDS = ResolvedCredentials(host="pg1-rw.ns1.svc.cluster.local", port=5432, username="postgres", password="pw")


def test_dsn_contains_parameters():
    """Test the DSN embeds every connection parameter"""
    dsn = DatabaseConnector(OperatorConfig()).dsn("h", 5433, "u", "p", "verify-full")
    params = parse_dsn(dsn)

    assert params["host"] == "h"
    assert params["port"] == "5433"
    assert params["user"] == "u"
    assert params["password"] == "p"
    assert params["sslmode"] == "verify-full"
    assert params["connect_timeout"] == "30"
    assert params["dbname"] == "postgres"


def test_dsn_default_ssl_mode():
    params = parse_dsn(DatabaseConnector(OperatorConfig()).dsn("h", 5432, "u", "p"))
    assert params["sslmode"] == "require", "SSL mode should default to require"


def test_dsn_statement_timeout():
    params = parse_dsn(DatabaseConnector(OperatorConfig(statement_timeout_ms=5000)).dsn("h", 5432, "u", "p"))
    assert params["options"] == "-c statement_timeout=5000"


def test_mask_dsn_hides_password():
    dsn = DatabaseConnector(OperatorConfig()).dsn("h", 5432, "u", "topsecret")
    assert "topsecret" not in mask_dsn(dsn)


def test_connect_pings_and_enables_autocommit():
    fake = FakeConnect()
    conn = DatabaseConnector(OperatorConfig(), connect=fake).connect("h", 5432, "u", "p")

    assert conn is fake.conn
    assert conn.autocommit is True
    assert conn.statements() == ["SELECT 1"], "Connection should be pinged"
    assert not conn.closed


def test_connect_refused():
    """Test connection failures raise ConnectError"""
    fake = FakeConnect(error=db_error("could not connect to server: Connection refused"))
    with pytest.raises(ConnectError, match="Connection refused"):
        DatabaseConnector(OperatorConfig(), connect=fake).connect("h", 5432, "u", "p")


def test_failed_ping_closes_handle():
    """Test a failed ping releases the connection"""
    conn = FakeConnection(failures={"SELECT 1": db_error("timeout expired")})
    with pytest.raises(ConnectError, match="ping"):
        DatabaseConnector(OperatorConfig(), connect=FakeConnect(conn)).connect("h", 5432, "u", "p")
    assert conn.closed, "Handle must be closed after a failed ping"


def test_interrupted_ping_closes_handle():
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value.execute.side_effect = KeyboardInterrupt
    with pytest.raises(KeyboardInterrupt):
        DatabaseConnector(OperatorConfig(), connect=lambda dsn: conn).connect("h", 5432, "u", "p")
    conn.close.assert_called_once()


def test_session_closes_on_success_and_error():
    """Test session() releases the handle on every exit path"""
    fake = FakeConnect()
    connector = DatabaseConnector(OperatorConfig(), connect=fake)

    with connector.session(CREDS) as conn:
        assert not conn.closed
    assert conn.closed

    fake.conn = FakeConnection()
    with pytest.raises(RuntimeError):
        with connector.session(CREDS):
            raise RuntimeError("business failure")
    assert fake.conn.closed


def test_session_against_named_database():
    fake = FakeConnect()
    with DatabaseConnector(OperatorConfig(), connect=fake).session(CREDS, "disable", database="app"):
        pass
    params = parse_dsn(fake.dsns[0])
    assert params["dbname"] == "app"
    assert params["sslmode"] == "disable"
