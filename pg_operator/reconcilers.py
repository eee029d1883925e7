"""
Reconcilers for PostGresConnection and Database resources.

Both are stateless: every invocation re-reads the resource, re-validates
from scratch and writes the outcome to status. Business failures never
escape reconcile(); they become a not-ready status with a short requeue.
Only status write failures (other than conflicts) are raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pg_operator.config import OperatorConfig
from pg_operator.connector import DatabaseConnector
from pg_operator.credential_secrets import SecretMaterializer
from pg_operator.credentials import CredentialResolver
from pg_operator.errors import (
    ConflictError,
    ConnectError,
    InvalidResourceError,
    NotFoundError,
    OperatorError,
    ResolutionError,
)
from pg_operator.log import GREEN, YELLOW, RESET, get_logger
from pg_operator.models import ConnectionResource, DatabaseResource, RoleDeclaration
from pg_operator.passwords import generate_password
from pg_operator.provisioning import DatabaseProvisioner
from pg_operator.roles import RoleProvisioner
from pg_operator.status import StatusReporter, format_time

logger = get_logger("reconciler")

# Ready condition reasons
REASON_CONNECTION_VALIDATED = "ConnectionValidated"
REASON_CONNECTION_FAILED = "ConnectionFailed"
REASON_INVALID_SPEC = "InvalidSpec"
REASON_DATABASE_RECONCILED = "DatabaseReconciled"
REASON_CONNECTION_NOT_FOUND = "ConnectionNotFound"
REASON_CONNECTION_LOOKUP_FAILED = "ConnectionLookupFailed"
REASON_CONNECTION_NOT_READY = "ConnectionNotReady"
REASON_CONNECT_FAILED = "ConnectFailed"
REASON_DATABASE_FAILED = "DatabaseFailed"
REASON_ROLE_FAILED = "RoleFailed"


@dataclass(frozen=True)
class ReconcileResult:
    """requeue_after is None when the resource is gone and needs no requeue"""
    requeue_after: Optional[float] = None


class ConnectionPhase(Enum):
    UNKNOWN = "Unknown"
    VALIDATING = "Validating"
    READY = "Ready"
    NOT_READY = "NotReady"


class DatabasePhase(Enum):
    UNKNOWN = "Unknown"
    RESOLVING_CONNECTION = "ResolvingConnection"
    WAITING_ON_CONNECTION = "WaitingOnConnection"
    PROVISIONING = "Provisioning"
    READY = "Ready"
    DEGRADED = "Degraded"


def _phase_of(ready: bool, conditions) -> ConnectionPhase:
    if ready:
        return ConnectionPhase.READY
    return ConnectionPhase.NOT_READY if conditions else ConnectionPhase.UNKNOWN


class ConnectionReconciler:
    """Validates that a PostGresConnection can actually log in"""

    def __init__(self, kube, cfg: OperatorConfig, resolver: CredentialResolver = None,
                 connector: DatabaseConnector = None, reporter: StatusReporter = None):
        self.kube = kube
        self.cfg = cfg
        self.resolver = resolver or CredentialResolver(kube, cfg)
        self.connector = connector or DatabaseConnector(cfg)
        self.reporter = reporter or StatusReporter(kube, cfg)

    def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        try:
            obj = self.kube.get_connection(name, namespace)
        except NotFoundError:
            logger.info(f"PostGresConnection {namespace}/{name} not found, nothing to do")
            return ReconcileResult()

        try:
            connection = ConnectionResource.from_dict(obj)
        except InvalidResourceError as e:
            return self._report(ConnectionResource.unparsed(obj), False, str(e), REASON_INVALID_SPEC)

        previous = _phase_of(connection.status.ready, connection.status.conditions)
        logger.info(f"{ConnectionPhase.VALIDATING.value} PostGresConnection {connection.metadata.key} "
                    f"(was {previous.value})")

        try:
            self.validate(connection)
        except OperatorError as e:
            logger.warning(f"{YELLOW}PostGresConnection {connection.metadata.key} "
                           f"{ConnectionPhase.NOT_READY.value}: {e}{RESET}")
            return self._report(connection, False, str(e), REASON_CONNECTION_FAILED)

        logger.info(f"{GREEN}PostGresConnection {connection.metadata.key} {ConnectionPhase.READY.value}{RESET}")
        return self._report(connection, True, "Connection validated successfully", REASON_CONNECTION_VALIDATED)

    def validate(self, connection: ConnectionResource):
        """Resolve credentials, connect and ping, then release the handle"""
        creds = self.resolver.resolve(connection)
        with self.connector.session(creds, connection.spec.ssl_mode):
            pass

    def _report(self, connection: ConnectionResource, ready: bool, message: str, reason: str) -> ReconcileResult:
        try:
            requeue = self.reporter.report(
                connection, ready, message, reason,
                last_checked=format_time(self.reporter.clock()),
            )
        except ConflictError:
            return ReconcileResult(self.cfg.conflict_requeue_seconds)
        return ReconcileResult(requeue)


@dataclass
class _Outcome:
    phase: DatabasePhase
    reason: str
    message: str
    database_created: bool = False
    users_created: List[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.phase is DatabasePhase.READY


class DatabaseReconciler:
    """
    Brings a Database resource's database, roles and Secrets into shape.

    Roles are provisioned in declaration order. The first failing role stops
    the loop; roles completed before it stay listed in usersCreated.
    """

    def __init__(self, kube, cfg: OperatorConfig, resolver: CredentialResolver = None,
                 connector: DatabaseConnector = None, reporter: StatusReporter = None,
                 databases: DatabaseProvisioner = None, roles: RoleProvisioner = None,
                 materializer: SecretMaterializer = None, password_generator=None):
        self.kube = kube
        self.cfg = cfg
        self.resolver = resolver or CredentialResolver(kube, cfg)
        self.connector = connector or DatabaseConnector(cfg)
        self.reporter = reporter or StatusReporter(kube, cfg)
        self.databases = databases or DatabaseProvisioner()
        self.generate_password = password_generator or (lambda: generate_password(cfg.password_bytes))
        self.roles = roles or RoleProvisioner(self.generate_password)
        self.materializer = materializer or SecretMaterializer(kube)

    def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        try:
            obj = self.kube.get_database(name, namespace)
        except NotFoundError:
            logger.info(f"Database {namespace}/{name} not found, nothing to do")
            return ReconcileResult()

        try:
            database = DatabaseResource.from_dict(obj)
        except InvalidResourceError as e:
            outcome = _Outcome(DatabasePhase.DEGRADED, REASON_INVALID_SPEC, str(e))
            return self._report(DatabaseResource.unparsed(obj), outcome)

        if not database.api_version:
            database.api_version = f"{self.cfg.crd_group}/{self.cfg.crd_version}"

        return self._report(database, self.provision(database))

    def provision(self, database: DatabaseResource) -> _Outcome:
        """Run the provisioning steps and describe how far they got"""
        key = database.metadata.key
        ref = database.spec.connection_ref
        conn_key = f"{database.connection_namespace}/{ref.name}"

        logger.info(f"{DatabasePhase.RESOLVING_CONNECTION.value} for Database {key}: PostGresConnection {conn_key}")
        try:
            obj = self.kube.get_connection(ref.name, database.connection_namespace)
            connection = ConnectionResource.from_dict(obj)
        except OperatorError as e:
            reason = REASON_CONNECTION_NOT_FOUND if isinstance(e, NotFoundError) else REASON_CONNECTION_LOOKUP_FAILED
            return _Outcome(DatabasePhase.DEGRADED, reason, f"failed to get PostGresConnection {conn_key}: {e}")

        if not connection.status.ready:
            return _Outcome(DatabasePhase.WAITING_ON_CONNECTION, REASON_CONNECTION_NOT_READY,
                            "PostgreSQL connection is not ready")

        logger.info(f"{DatabasePhase.PROVISIONING.value} Database {key}")
        spec = database.spec
        outcome = None
        database_created = False
        users_created: List[str] = []

        try:
            creds = self.resolver.resolve(connection)
            ssl_mode = connection.spec.ssl_mode
            with self.connector.session(creds, ssl_mode) as conn:
                try:
                    database_created = self.databases.ensure_database(
                        conn, spec.database_name, spec.owner, spec.encoding
                    )
                except OperatorError as e:
                    outcome = _Outcome(DatabasePhase.DEGRADED, REASON_DATABASE_FAILED,
                                       f"Failed to ensure database: {e}")

            # schema grants only reach the database the session is attached to
            if outcome is None and spec.users:
                with self.connector.session(creds, ssl_mode, database=spec.database_name) as conn:
                    for role in spec.users:
                        try:
                            self.provision_role(conn, database, role)
                        except OperatorError as e:
                            outcome = _Outcome(DatabasePhase.DEGRADED, REASON_ROLE_FAILED,
                                               f"Failed to ensure user {role.name}: {e}")
                            break
                        users_created.append(role.name)
        except (ResolutionError, ConnectError) as e:
            outcome = _Outcome(DatabasePhase.DEGRADED, REASON_CONNECT_FAILED,
                               f"Failed to connect to database: {e}")

        if outcome is None:
            outcome = _Outcome(DatabasePhase.READY, REASON_DATABASE_RECONCILED, "Database and users ready")
        outcome.database_created = database_created
        outcome.users_created = users_created
        return outcome

    def provision_role(self, conn, database: DatabaseResource, role: RoleDeclaration):
        """
        Ensure one role, its grants and its credential Secret

        The Secret is the source of truth for the role's password. Unless the
        role and its Secret were both created from the same password in this
        pass, the role is set to the Secret's password every time, so a pass
        that failed half-way is repaired by the next one.
        """
        password = self.generate_password()
        role_created = self.roles.ensure_role(conn, role.name, password)
        self.roles.grant(conn, database.spec.database_name, role.name, role.permissions)

        if not role.create_secret:
            return

        secret_created = self.materializer.materialize(database, role.name, role.secret_name, password)
        if secret_created:
            if not role_created:
                self.roles.set_password(conn, role.name, password)
            return

        stored = self.materializer.stored_password(database, role.name, role.secret_name)
        if stored:
            self.roles.set_password(conn, role.name, stored)
        else:
            logger.warning(f"Secret for role {role.name} has no password, leaving the role password as is")

    def _report(self, database: DatabaseResource, outcome: _Outcome) -> ReconcileResult:
        key = database.metadata.key
        if outcome.ready:
            logger.info(f"{GREEN}Database {key} {outcome.phase.value}{RESET}")
        else:
            logger.warning(f"{YELLOW}Database {key} {outcome.phase.value}: {outcome.message}{RESET}")

        try:
            requeue = self.reporter.report(
                database, outcome.ready, outcome.message, outcome.reason,
                database_created=outcome.database_created,
                users_created=list(outcome.users_created),
            )
        except ConflictError:
            return ReconcileResult(self.cfg.conflict_requeue_seconds)
        return ReconcileResult(requeue)
