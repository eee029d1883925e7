"""
In-memory doubles for tests: a Kubernetes client and a psycopg2 connection.
"""

import base64
import copy
import re
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import sql

from pg_operator.errors import AlreadyExistsError, ConflictError, NotFoundError
from pg_operator.models import CONNECTION_PLURAL, DATABASE_PLURAL


def render_sql(query) -> str:
    """Render a psycopg2.sql composable without a live connection"""
    if isinstance(query, str):
        return query
    if isinstance(query, sql.Composed):
        return "".join(render_sql(part) for part in query.seq)
    if isinstance(query, sql.SQL):
        return query.string
    if isinstance(query, sql.Identifier):
        return ".".join(f'"{s}"' for s in query.strings)
    if isinstance(query, sql.Literal):
        return f"'{query.wrapped}'"
    raise TypeError(f"cannot render {query!r}")


class FakeCursor:

    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self._row: Optional[Tuple] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        text = render_sql(query)
        for prefix, error in self.conn.failures.items():
            if text.startswith(prefix):
                raise error
        self.conn.executed.append((text, params))

        if "FROM pg_database" in text:
            self._row = (params[0] in self.conn.databases,)
        elif "FROM pg_roles" in text:
            self._row = (params[0] in self.conn.roles,)
        elif text == "SELECT 1":
            self._row = (1,)
        elif text.startswith("CREATE DATABASE"):
            self.conn.databases.add(_first_identifier(text))
        elif text.startswith("CREATE ROLE"):
            name = _first_identifier(text)
            self.conn.roles.add(name)
            self.conn.passwords[name] = params[0]
        elif text.startswith("ALTER ROLE"):
            self.conn.passwords[_first_identifier(text)] = params[0]

    def fetchone(self):
        return self._row


class FakeConnection:
    """Records executed statements and models pg_database/pg_roles membership"""

    def __init__(self, databases=(), roles=(), failures: Optional[Dict[str, Exception]] = None):
        self.databases = set(databases)
        self.roles = set(roles)
        self.passwords: Dict[str, str] = {}
        self.failures = failures or {}
        self.executed: List[Tuple[str, Any]] = []
        self.autocommit = False
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True

    def statements(self, prefix: str = "") -> List[str]:
        return [text for text, _ in self.executed if text.startswith(prefix)]


class FakeConnect:
    """Stands in for psycopg2.connect, handing out one FakeConnection"""

    def __init__(self, conn: FakeConnection = None, error: Exception = None):
        self.conn = conn or FakeConnection()
        self.error = error
        self.dsns: List[str] = []

    def __call__(self, dsn):
        self.dsns.append(dsn)
        if self.error is not None:
            raise self.error
        return self.conn


def _first_identifier(text: str) -> str:
    match = re.search(r'"([^"]+)"', text)
    return match.group(1) if match else ""


class FakeKube:
    """
    Dict-backed stand-in for KubernetesClient.

    Objects are keyed by (plural, namespace, name); Secrets by
    (namespace, name) with decoded string data.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.secrets: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.created_secrets: List[Any] = []
        self.status_writes: List[Dict[str, Any]] = []
        self.status_error: Optional[Exception] = None
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def add_object(self, plural: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", f"uid-{meta['name']}")
        meta["resourceVersion"] = self._next_version()
        self.objects[(plural, meta["namespace"], meta["name"])] = obj
        return obj

    def add_connection(self, name: str, namespace: str, spec: Dict[str, Any], ready: Optional[bool] = None):
        obj = {
            "apiVersion": "postgres.silverswarm.io/v1",
            "kind": "PostGresConnection",
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }
        if ready is not None:
            obj["status"] = {"ready": ready}
        return self.add_object(CONNECTION_PLURAL, obj)

    def add_database(self, name: str, namespace: str, spec: Dict[str, Any]):
        return self.add_object(DATABASE_PLURAL, {
            "apiVersion": "postgres.silverswarm.io/v1",
            "kind": "Database",
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        })

    def status_of(self, plural: str, name: str, namespace: str) -> Dict[str, Any]:
        return self.objects[(plural, namespace, name)].get("status", {})

    def get_custom_object(self, plural, name, namespace):
        try:
            return copy.deepcopy(self.objects[(plural, namespace, name)])
        except KeyError:
            raise NotFoundError(f"{plural} {namespace}/{name} not found") from None

    def list_custom_objects(self, plural, namespace=""):
        return [copy.deepcopy(obj) for (p, ns, _), obj in sorted(self.objects.items())
                if p == plural and (not namespace or ns == namespace)]

    def get_connection(self, name, namespace):
        return self.get_custom_object(CONNECTION_PLURAL, name, namespace)

    def get_database(self, name, namespace):
        return self.get_custom_object(DATABASE_PLURAL, name, namespace)

    def replace_status(self, plural, name, namespace, body):
        if self.status_error is not None:
            raise self.status_error
        current = self.get_custom_object(plural, name, namespace)
        if body["metadata"]["resourceVersion"] != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"conflict writing {plural} {namespace}/{name} status")
        current["status"] = copy.deepcopy(body["status"])
        current["metadata"]["resourceVersion"] = self._next_version()
        self.objects[(plural, namespace, name)] = current
        self.status_writes.append(copy.deepcopy(body["status"]))
        return copy.deepcopy(current)

    def add_secret(self, name: str, namespace: str, data: Dict[str, str]):
        self.secrets[(namespace, name)] = dict(data)

    def read_secret(self, name, namespace):
        try:
            return dict(self.secrets[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"Secret {namespace}/{name} not found") from None

    def create_secret(self, secret):
        key = (secret.metadata.namespace, secret.metadata.name)
        if key in self.secrets:
            raise AlreadyExistsError(f"Secret {key[0]}/{key[1]} already exists")
        self.created_secrets.append(secret)
        self.secrets[key] = {k: base64.b64decode(v).decode() for k, v in secret.data.items()}


def db_error(message: str = "boom") -> psycopg2.Error:
    return psycopg2.ProgrammingError(message)
