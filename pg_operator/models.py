"""
Typed views over the PostGresConnection and Database custom resources.

Resources are read from the API server as plain dicts. The classes here parse
the fields the operator uses, apply the defaults the CRDs declare, and render
status back into the camelCase wire form.
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pg_operator.config import SSL_MODES
from pg_operator.errors import InvalidResourceError

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

CONNECTION_KIND = "PostGresConnection"
CONNECTION_PLURAL = "postgresconnections"
DATABASE_KIND = "Database"
DATABASE_PLURAL = "databases"

DEFAULT_PORT = 5432
DEFAULT_OWNER = "postgres"
DEFAULT_ENCODING = "UTF8"
READY_CONDITION = "Ready"


def validate_identifier(value: str, what: str) -> str:
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise InvalidResourceError(f"invalid {what} {value!r}: must match {IDENTIFIER_PATTERN.pattern}")
    return value


@dataclass
class ObjectMeta:
    name: str
    namespace: str
    uid: str = ""
    resource_version: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            uid=data.get("uid", ""),
            resource_version=data.get("resourceVersion", ""),
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class Condition:
    type: str
    status: bool
    reason: str
    message: str
    last_transition_time: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data.get("type", ""),
            status=data.get("status") == "True",
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=data.get("lastTransitionTime", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": "True" if self.status else "False",
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }


def set_condition(conditions: List[Condition], condition: Condition) -> List[Condition]:
    """Replace the condition of the same type in place, or append it"""
    for i, existing in enumerate(conditions):
        if existing.type == condition.type:
            conditions[i] = condition
            return conditions
    conditions.append(condition)
    return conditions


# ============================================================================
# POSTGRESCONNECTION
# ============================================================================

@dataclass
class SecretReference:
    name: str
    namespace: str = ""


@dataclass
class ConnectionSpec:
    """Where a PostgreSQL cluster lives and which credentials to use"""
    cluster_name: str
    cluster_namespace: str = ""
    host: str = ""
    port: int = 0
    superuser_secret: Optional[SecretReference] = None
    use_app_secret: bool = False
    ssl_mode: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionSpec":
        cluster_name = data.get("clusterName") or ""
        if not cluster_name:
            raise InvalidResourceError("spec.clusterName is required")

        ssl_mode = data.get("sslMode") or ""
        if ssl_mode and ssl_mode not in SSL_MODES:
            raise InvalidResourceError(f"invalid spec.sslMode {ssl_mode!r}")

        secret = data.get("superUserSecret")
        secret_ref = None
        if secret:
            if not secret.get("name"):
                raise InvalidResourceError("spec.superUserSecret.name is required")
            secret_ref = SecretReference(name=secret["name"], namespace=secret.get("namespace") or "")

        try:
            port = int(data.get("port") or 0)
        except (TypeError, ValueError) as e:
            raise InvalidResourceError(f"invalid spec.port {data.get('port')!r}") from e

        return cls(
            cluster_name=cluster_name,
            cluster_namespace=data.get("clusterNamespace") or "",
            host=data.get("host") or "",
            port=port,
            superuser_secret=secret_ref,
            use_app_secret=bool(data.get("useAppSecret", False)),
            ssl_mode=ssl_mode,
        )


@dataclass
class ConnectionStatus:
    ready: bool = False
    message: str = ""
    last_checked: str = ""
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConnectionStatus":
        data = data or {}
        return cls(
            ready=bool(data.get("ready", False)),
            message=data.get("message", ""),
            last_checked=data.get("lastChecked", ""),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        status = {
            "ready": self.ready,
            "message": self.message,
            "conditions": [c.to_dict() for c in self.conditions],
        }
        if self.last_checked:
            status["lastChecked"] = self.last_checked
        return status


@dataclass
class ConnectionResource:
    metadata: ObjectMeta
    spec: Optional[ConnectionSpec]
    status: ConnectionStatus
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    kind = CONNECTION_KIND
    plural = CONNECTION_PLURAL

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "ConnectionResource":
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata") or {}),
            spec=ConnectionSpec.from_dict(obj.get("spec") or {}),
            status=ConnectionStatus.from_dict(obj.get("status")),
            raw=obj,
        )

    @classmethod
    def unparsed(cls, obj: Dict[str, Any]) -> "ConnectionResource":
        """Wrap an object whose spec failed to parse so status can still be written"""
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata") or {}),
            spec=None,
            status=ConnectionStatus.from_dict(obj.get("status")),
            raw=obj,
        )

    @property
    def cluster_namespace(self) -> str:
        return self.spec.cluster_namespace or self.metadata.namespace

    def to_status_body(self) -> Dict[str, Any]:
        body = copy.deepcopy(self.raw)
        body.setdefault("metadata", {})["resourceVersion"] = self.metadata.resource_version
        body["status"] = self.status.to_dict()
        return body


# ============================================================================
# DATABASE
# ============================================================================

@dataclass
class ConnectionReference:
    name: str
    namespace: str = ""


@dataclass
class RoleDeclaration:
    """
    A login role to create for the database.

    Permission tokens are kept as declared; unknown tokens are rejected when
    grants are issued so that earlier roles still get provisioned.
    """
    name: str
    permissions: List[str]
    create_secret: bool = True
    secret_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleDeclaration":
        name = validate_identifier(data.get("name", ""), "user name")
        permissions = data.get("permissions") or []
        if not isinstance(permissions, list) or not permissions:
            raise InvalidResourceError(f"user {name}: permissions must be a non-empty list")

        create_secret = data.get("createSecret")
        return cls(
            name=name,
            permissions=[str(p) for p in permissions],
            create_secret=True if create_secret is None else bool(create_secret),
            secret_name=data.get("secretName") or "",
        )


@dataclass
class DatabaseSpec:
    connection_ref: ConnectionReference
    database_name: str
    owner: str = DEFAULT_OWNER
    encoding: str = DEFAULT_ENCODING
    users: List[RoleDeclaration] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseSpec":
        ref = data.get("connectionRef") or {}
        if not ref.get("name"):
            raise InvalidResourceError("spec.connectionRef.name is required")

        owner = data.get("owner") or DEFAULT_OWNER
        return cls(
            connection_ref=ConnectionReference(name=ref["name"], namespace=ref.get("namespace") or ""),
            database_name=validate_identifier(data.get("databaseName", ""), "databaseName"),
            owner=validate_identifier(owner, "owner"),
            encoding=data.get("encoding") or DEFAULT_ENCODING,
            users=[RoleDeclaration.from_dict(u) for u in data.get("users") or []],
        )


@dataclass
class DatabaseStatus:
    ready: bool = False
    database_created: bool = False
    users_created: List[str] = field(default_factory=list)
    message: str = ""
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DatabaseStatus":
        data = data or {}
        return cls(
            ready=bool(data.get("ready", False)),
            database_created=bool(data.get("databaseCreated", False)),
            users_created=list(data.get("usersCreated") or []),
            message=data.get("message", ""),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "databaseCreated": self.database_created,
            "usersCreated": list(self.users_created),
            "message": self.message,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass
class DatabaseResource:
    metadata: ObjectMeta
    spec: Optional[DatabaseSpec]
    status: DatabaseStatus
    api_version: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    kind = DATABASE_KIND
    plural = DATABASE_PLURAL

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "DatabaseResource":
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata") or {}),
            spec=DatabaseSpec.from_dict(obj.get("spec") or {}),
            status=DatabaseStatus.from_dict(obj.get("status")),
            api_version=obj.get("apiVersion", ""),
            raw=obj,
        )

    @classmethod
    def unparsed(cls, obj: Dict[str, Any]) -> "DatabaseResource":
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata") or {}),
            spec=None,
            status=DatabaseStatus.from_dict(obj.get("status")),
            api_version=obj.get("apiVersion", ""),
            raw=obj,
        )

    @property
    def connection_namespace(self) -> str:
        return self.spec.connection_ref.namespace or self.metadata.namespace

    def to_status_body(self) -> Dict[str, Any]:
        body = copy.deepcopy(self.raw)
        body.setdefault("metadata", {})["resourceVersion"] = self.metadata.resource_version
        body["status"] = self.status.to_dict()
        return body
