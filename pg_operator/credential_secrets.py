"""Per-role credential Secrets owned by the declaring Database."""

from typing import Dict

from pg_operator.errors import AlreadyExistsError
from pg_operator.kube import build_secret, owner_reference
from pg_operator.log import WHITE, RESET, get_logger
from pg_operator.models import DatabaseResource

logger = get_logger("secrets")

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "pg-operator"


def secret_name_for(database_name: str, role_name: str, explicit_name: str = "") -> str:
    return explicit_name or f"{database_name}-{role_name}"


class SecretMaterializer:
    """
    Creates the {username, password} Secret for a role.

    Creation is at-most-once: an existing Secret of the same name is never
    overwritten, so the stored password is never rotated.
    """

    def __init__(self, kube):
        self.kube = kube

    def labels_for(self, owner: DatabaseResource) -> Dict[str, str]:
        return {
            MANAGED_BY_LABEL: MANAGED_BY,
            "postgres.silverswarm.io/database": owner.metadata.name,
        }

    def materialize(self, owner: DatabaseResource, role_name: str, explicit_secret_name: str, password: str) -> bool:
        """
        Create the credential Secret unless it already exists

        Args:
            owner: Database resource that owns the Secret
            role_name: Role stored under the username key
            explicit_secret_name: Override for the <database>-<role> name
            password: Password stored under the password key

        Returns:
            True if the Secret was created, False if it already existed
        """
        name = secret_name_for(owner.spec.database_name, role_name, explicit_secret_name)
        namespace = owner.metadata.namespace
        secret = build_secret(
            name,
            namespace,
            {"username": role_name, "password": password},
            owner=owner_reference(owner.api_version, owner.kind, owner.metadata.name, owner.metadata.uid),
            labels=self.labels_for(owner),
        )

        try:
            self.kube.create_secret(secret)
        except AlreadyExistsError:
            logger.debug(f"Secret {namespace}/{name} already exists, leaving it untouched")
            return False

        logger.info(f"{WHITE}Created secret: {namespace}/{name}{RESET}")
        return True

    def stored_password(self, owner: DatabaseResource, role_name: str, explicit_secret_name: str) -> str:
        name = secret_name_for(owner.spec.database_name, role_name, explicit_secret_name)
        return self.kube.read_secret(name, owner.metadata.namespace).get("password", "")
