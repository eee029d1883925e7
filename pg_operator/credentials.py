"""
Credential resolution for PostGresConnection resources.

A connection names a CloudNativePG cluster. Unless overridden, the read-write
service and the operator-generated credential Secret are derived from the
cluster name:

    host:   <cluster>-rw.<clusterNamespace>.svc.<clusterDomain>
    secret: <cluster>-superuser, or <cluster>-app when useAppSecret is set
"""

from dataclasses import dataclass
from typing import Tuple

from pg_operator.config import OperatorConfig
from pg_operator.errors import NotFoundError, OperatorError, ResolutionError
from pg_operator.log import get_logger
from pg_operator.models import DEFAULT_PORT, ConnectionResource

logger = get_logger("credentials")


@dataclass(frozen=True)
class ResolvedCredentials:
    host: str
    port: int
    username: str
    password: str = ""

    def __repr__(self):
        return f"ResolvedCredentials(host={self.host!r}, port={self.port}, username={self.username!r})"


class CredentialResolver:
    """Turns a PostGresConnection into host, port and login credentials"""

    def __init__(self, kube, cfg: OperatorConfig):
        self.kube = kube
        self.cfg = cfg

    def host_for(self, connection: ConnectionResource) -> str:
        if connection.spec.host:
            return connection.spec.host
        return f"{connection.spec.cluster_name}-rw.{connection.cluster_namespace}.svc.{self.cfg.cluster_domain}"

    @staticmethod
    def port_for(connection: ConnectionResource) -> int:
        return connection.spec.port or DEFAULT_PORT

    @staticmethod
    def secret_for(connection: ConnectionResource) -> Tuple[str, str]:
        """
        Name and namespace of the Secret holding the login credentials

        Returns:
            (name, namespace) tuple
        """
        ref = connection.spec.superuser_secret
        if ref is not None:
            return ref.name, ref.namespace or connection.metadata.namespace

        suffix = "app" if connection.spec.use_app_secret else "superuser"
        return f"{connection.spec.cluster_name}-{suffix}", connection.cluster_namespace

    def resolve(self, connection: ConnectionResource) -> ResolvedCredentials:
        """
        Resolve network location and credentials for a connection

        Raises:
            ResolutionError: the Secret is unreadable or lacks username/password
        """
        secret_name, secret_namespace = self.secret_for(connection)
        secret_key = f"{secret_namespace}/{secret_name}"

        try:
            data = self.kube.read_secret(secret_name, secret_namespace)
        except NotFoundError as e:
            raise ResolutionError(f"credential secret {secret_key} not found") from e
        except OperatorError as e:
            raise ResolutionError(f"failed to read credential secret {secret_key}: {e}") from e

        username = data.get("username", "")
        password = data.get("password", "")
        if not username or not password:
            raise ResolutionError(f"secret {secret_key} is missing username or password")

        creds = ResolvedCredentials(
            host=self.host_for(connection),
            port=self.port_for(connection),
            username=username,
            password=password,
        )
        logger.debug(f"Resolved {connection.metadata.key} to {creds.host}:{creds.port} as {creds.username}")
        return creds
