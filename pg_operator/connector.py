"""Time-bounded connections to the target PostgreSQL server."""

from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import make_dsn

from pg_operator.config import OperatorConfig
from pg_operator.credentials import ResolvedCredentials
from pg_operator.errors import ConnectError
from pg_operator.log import get_logger, mask_dsn

logger = get_logger("connector")


class DatabaseConnector:
    """
    Opens short-lived autocommit connections, at most two per reconciliation.

    Connections are not pooled; callers use session() so the handle is
    closed on every exit path.
    """

    def __init__(self, cfg: OperatorConfig, connect=psycopg2.connect):
        self.cfg = cfg
        self._connect = connect

    def dsn(self, host: str, port: int, username: str, password: str, ssl_mode: str = "",
            database: str = "") -> str:
        options = {}
        if self.cfg.statement_timeout_ms > 0:
            options["options"] = f"-c statement_timeout={self.cfg.statement_timeout_ms}"
        return make_dsn(
            host=host,
            port=port,
            dbname=database or self.cfg.maintenance_database,
            user=username,
            password=password,
            sslmode=ssl_mode or self.cfg.default_ssl_mode,
            connect_timeout=self.cfg.connect_timeout,
            **options,
        )

    def connect(self, host: str, port: int, username: str, password: str, ssl_mode: str = "",
                database: str = ""):
        """
        Open and ping a connection

        The maintenance database is used unless database is given.

        Returns:
            psycopg2 connection in autocommit mode

        Raises:
            ConnectError: connection refused, timed out or ping failed
        """
        dsn = self.dsn(host, port, username, password, ssl_mode, database)
        logger.info(f"Attempting PostgreSQL connection: {mask_dsn(dsn)}")

        try:
            conn = self._connect(dsn)
        except psycopg2.Error as e:
            logger.error(f"Failed to open connection to {host}:{port}: {e}")
            raise ConnectError(f"failed to connect to {host}:{port}: {_first_line(e)}") from e

        try:
            conn.autocommit = True
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        except psycopg2.Error as e:
            conn.close()
            logger.error(f"Failed to ping {host}:{port}: {e}")
            raise ConnectError(f"failed to ping {host}:{port}: {_first_line(e)}") from e
        except BaseException:
            conn.close()
            raise

        logger.debug(f"Connected to {host}:{port}")
        return conn

    @contextmanager
    def session(self, creds: ResolvedCredentials, ssl_mode: str = "", database: str = "") -> Iterator:
        """Scoped connection that is always closed when the block exits"""
        conn = self.connect(creds.host, creds.port, creds.username, creds.password, ssl_mode, database)
        try:
            yield conn
        finally:
            conn.close()


def _first_line(exc: Exception) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else exc.__class__.__name__
