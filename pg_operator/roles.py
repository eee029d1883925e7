"""
Login roles and permission grants.

Declared permission tokens map onto GRANT statements:

    CONNECT, CREATE              -> privilege ON DATABASE <db>
    ALL                          -> ALL PRIVILEGES ON DATABASE <db>
    USAGE                        -> USAGE ON SCHEMA public
    SELECT, INSERT, UPDATE,
    DELETE                       -> privilege ON ALL TABLES IN SCHEMA public
"""

from enum import Enum
from typing import Iterable

import psycopg2
from psycopg2 import sql

from pg_operator.errors import ProvisionError, UnsupportedPermissionError
from pg_operator.log import WHITE, RESET, get_logger
from pg_operator.models import validate_identifier
from pg_operator.passwords import generate_password

logger = get_logger("roles")

ROLE_EXISTS_QUERY = "SELECT EXISTS(SELECT 1 FROM pg_roles WHERE rolname = %s)"


def _on_database(privilege: str):
    def build(database: str, role: str) -> sql.Composed:
        return sql.SQL("GRANT {} ON DATABASE {} TO {}").format(
            sql.SQL(privilege), sql.Identifier(database), sql.Identifier(role)
        )
    return build


def _on_public_schema(privilege: str):
    def build(database: str, role: str) -> sql.Composed:
        return sql.SQL("GRANT {} ON SCHEMA public TO {}").format(sql.SQL(privilege), sql.Identifier(role))
    return build


def _on_public_tables(privilege: str):
    def build(database: str, role: str) -> sql.Composed:
        return sql.SQL("GRANT {} ON ALL TABLES IN SCHEMA public TO {}").format(
            sql.SQL(privilege), sql.Identifier(role)
        )
    return build


class Permission(Enum):
    CONNECT = ("CONNECT", _on_database("CONNECT"))
    CREATE = ("CREATE", _on_database("CREATE"))
    USAGE = ("USAGE", _on_public_schema("USAGE"))
    SELECT = ("SELECT", _on_public_tables("SELECT"))
    INSERT = ("INSERT", _on_public_tables("INSERT"))
    UPDATE = ("UPDATE", _on_public_tables("UPDATE"))
    DELETE = ("DELETE", _on_public_tables("DELETE"))
    ALL = ("ALL", _on_database("ALL PRIVILEGES"))

    def __init__(self, token, builder):
        self.token = token
        self.builder = builder

    @classmethod
    def parse(cls, token: str) -> "Permission":
        try:
            return cls[token]
        except KeyError:
            raise UnsupportedPermissionError(token) from None

    def statement(self, database: str, role: str) -> sql.Composed:
        return self.builder(database, role)


class RoleProvisioner:
    """Creates login roles and grants them database permissions"""

    def __init__(self, password_generator=generate_password):
        self.generate_password = password_generator

    def role_exists(self, conn, name: str) -> bool:
        try:
            with conn.cursor() as cur:
                cur.execute(ROLE_EXISTS_QUERY, (name,))
                row = cur.fetchone()
        except psycopg2.Error as e:
            raise ProvisionError(f"failed to check if role {name} exists: {e}") from e
        return bool(row and row[0])

    def ensure_role(self, conn, name: str, password: str = "") -> bool:
        """
        Create a LOGIN role if it does not exist

        Args:
            conn: Open autocommit connection
            name: Role name, must be a plain identifier
            password: Password for a newly created role; a random one is
                generated when empty. Existing roles keep theirs.

        Returns:
            True if the role was created by this call
        """
        validate_identifier(name, "role name")
        if self.role_exists(conn, name):
            logger.debug(f"Role {name} already exists")
            return False

        statement = sql.SQL("CREATE ROLE {} WITH LOGIN PASSWORD %s").format(sql.Identifier(name))
        try:
            with conn.cursor() as cur:
                cur.execute(statement, (password or self.generate_password(),))
        except psycopg2.Error as e:
            logger.error(f"Error creating role {name}: {e}")
            raise ProvisionError(f"failed to create role {name}: {e}") from e

        logger.info(f"{WHITE}Created role: {name}{RESET}")
        return True

    def set_password(self, conn, name: str, password: str):
        validate_identifier(name, "role name")
        statement = sql.SQL("ALTER ROLE {} WITH PASSWORD %s").format(sql.Identifier(name))
        try:
            with conn.cursor() as cur:
                cur.execute(statement, (password,))
        except psycopg2.Error as e:
            raise ProvisionError(f"failed to set password for role {name}: {e}") from e
        logger.debug(f"Synchronized password for role {name} with its secret")

    def grant(self, conn, database: str, name: str, permissions: Iterable[str]):
        """
        Issue one GRANT per declared permission, in order

        Grants already issued are not rolled back if a later one fails.

        Raises:
            UnsupportedPermissionError: unknown token; earlier grants stay
            ProvisionError: a GRANT statement failed
        """
        validate_identifier(database, "database name")
        validate_identifier(name, "role name")

        for token in permissions:
            permission = Permission.parse(token)
            try:
                with conn.cursor() as cur:
                    cur.execute(permission.statement(database, name))
            except psycopg2.Error as e:
                logger.error(f"Error granting {token} to {name}: {e}")
                raise ProvisionError(f"failed to grant {token} to {name}: {e}") from e
            logger.info(f"  ↳ Granted {token} on {database} to {name}")
