"""Idempotent CREATE DATABASE against the target server."""

import psycopg2
from psycopg2 import sql

from pg_operator.errors import ProvisionError
from pg_operator.log import WHITE, RESET, get_logger
from pg_operator.models import DEFAULT_ENCODING, DEFAULT_OWNER, validate_identifier

logger = get_logger("provisioning")

DATABASE_EXISTS_QUERY = "SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = %s)"


class DatabaseProvisioner:
    """Creates databases that do not exist yet; never alters existing ones"""

    def database_exists(self, conn, name: str) -> bool:
        try:
            with conn.cursor() as cur:
                cur.execute(DATABASE_EXISTS_QUERY, (name,))
                row = cur.fetchone()
        except psycopg2.Error as e:
            raise ProvisionError(f"failed to check if database {name} exists: {e}") from e
        return bool(row and row[0])

    def ensure_database(self, conn, name: str, owner: str = "", encoding: str = "") -> bool:
        """
        Make sure a database exists

        Args:
            conn: Open autocommit connection
            name: Database name, must be a plain identifier
            owner: Owning role, defaults to postgres
            encoding: Character encoding, defaults to UTF8

        Returns:
            True once the database exists. Existing owner and encoding are
            left as they are.

        Raises:
            ProvisionError: lookup or CREATE DATABASE failed
        """
        validate_identifier(name, "database name")
        owner = validate_identifier(owner or DEFAULT_OWNER, "owner")
        encoding = encoding or DEFAULT_ENCODING

        if self.database_exists(conn, name):
            logger.debug(f"Database {name} already exists")
            return True

        statement = sql.SQL("CREATE DATABASE {} WITH OWNER {} ENCODING {}").format(
            sql.Identifier(name),
            sql.Identifier(owner),
            sql.Literal(encoding),
        )
        try:
            with conn.cursor() as cur:
                cur.execute(statement)
        except psycopg2.Error as e:
            logger.error(f"Error creating database {name}: {e}")
            raise ProvisionError(f"failed to create database {name}: {e}") from e

        logger.info(f"{WHITE}Created database: {name} (owner={owner}, encoding={encoding}){RESET}")
        return True
