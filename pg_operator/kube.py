"""Kubernetes API access for the operator's custom resources and Secrets."""

import base64
import time
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from pg_operator.config import OperatorConfig
from pg_operator.errors import TransientInfraError, is_retryable, translate_api_exception
from pg_operator.log import get_logger
from pg_operator.models import CONNECTION_PLURAL, DATABASE_PLURAL

logger = get_logger("kube")


def load_kube_config():
    """Load in-cluster config, falling back to the local kubeconfig"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying local kubeconfig")
        config.load_kube_config()


class KubernetesClient:
    """Handles all Kubernetes API interactions"""

    def __init__(self, cfg: OperatorConfig, core_api=None, custom_api=None,
                 sleep: Callable[[float], None] = time.sleep):
        self.cfg = cfg
        if core_api is None or custom_api is None:
            load_kube_config()
        self.v1 = core_api or client.CoreV1Api()
        self.custom = custom_api or client.CustomObjectsApi()
        self._sleep = sleep

    def _call(self, what: str, fn: Callable, *args, **kwargs):
        """
        Invoke an API method with exponential backoff on transient failures

        Args:
            what: Description of the object, used in errors and logs
            fn: Bound kubernetes client method

        Returns:
            Whatever fn returns

        Raises:
            OperatorError subclass translated from the ApiException
        """
        for attempt in range(self.cfg.max_retries + 1):
            try:
                return fn(*args, **kwargs)
            except ApiException as e:
                if not is_retryable(e) or attempt >= self.cfg.max_retries:
                    raise translate_api_exception(e, what) from e
                sleep_time = self.cfg.retry_backoff_base ** attempt
                logger.warning(f"Error accessing {what} (attempt {attempt + 1}/{self.cfg.max_retries}), "
                               f"retrying in {sleep_time}s: {e.status} {e.reason}")
                self._sleep(sleep_time)
        raise TransientInfraError(f"retries exhausted for {what}")

    # ------------------------------------------------------------------
    # Custom resources
    # ------------------------------------------------------------------

    def get_custom_object(self, plural: str, name: str, namespace: str) -> Dict[str, Any]:
        return self._call(
            f"{plural} {namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            self.cfg.crd_group, self.cfg.crd_version, namespace, plural, name,
        )

    def list_custom_objects(self, plural: str, namespace: str = "") -> List[Dict[str, Any]]:
        """List objects in one namespace, or cluster-wide when namespace is empty"""
        if namespace:
            result = self._call(
                f"{plural} in {namespace}",
                self.custom.list_namespaced_custom_object,
                self.cfg.crd_group, self.cfg.crd_version, namespace, plural,
            )
        else:
            result = self._call(
                plural,
                self.custom.list_cluster_custom_object,
                self.cfg.crd_group, self.cfg.crd_version, plural,
            )
        return result.get("items", [])

    def get_connection(self, name: str, namespace: str) -> Dict[str, Any]:
        return self.get_custom_object(CONNECTION_PLURAL, name, namespace)

    def get_database(self, name: str, namespace: str) -> Dict[str, Any]:
        return self.get_custom_object(DATABASE_PLURAL, name, namespace)

    def replace_status(self, plural: str, name: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write the status sub-resource

        The body carries metadata.resourceVersion, so a stale write fails
        with ConflictError instead of overwriting a newer status.
        """
        return self._call(
            f"{plural} {namespace}/{name} status",
            self.custom.replace_namespaced_custom_object_status,
            self.cfg.crd_group, self.cfg.crd_version, namespace, plural, name, body,
        )

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def read_secret(self, name: str, namespace: str) -> Dict[str, str]:
        """
        Fetch a Secret and decode its data

        Returns:
            Mapping of key to decoded string value
        """
        secret = self._call(f"Secret {namespace}/{name}", self.v1.read_namespaced_secret, name, namespace)
        data = secret.data or {}
        return {key: base64.b64decode(value).decode() for key, value in data.items() if value is not None}

    def create_secret(self, secret: client.V1Secret) -> None:
        meta = secret.metadata
        self._call(
            f"Secret {meta.namespace}/{meta.name}",
            self.v1.create_namespaced_secret,
            meta.namespace, secret,
        )


def owner_reference(api_version: str, kind: str, name: str, uid: str) -> client.V1OwnerReference:
    """Controller owner reference so the owned object is garbage-collected with its owner"""
    return client.V1OwnerReference(
        api_version=api_version,
        kind=kind,
        name=name,
        uid=uid,
        controller=True,
        block_owner_deletion=True,
    )


def build_secret(name: str, namespace: str, string_data: Dict[str, str],
                 owner: Optional[client.V1OwnerReference] = None,
                 labels: Optional[Dict[str, str]] = None) -> client.V1Secret:
    data = {key: base64.b64encode(value.encode()).decode() for key, value in string_data.items()}
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels or {},
            owner_references=[owner] if owner else None,
        ),
        data=data,
    )
