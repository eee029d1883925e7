"""
Exception taxonomy for the operator.

Kubernetes API failures are translated into NotFoundError, ConflictError,
AlreadyExistsError or TransientInfraError. Failures against the target
database surface as ResolutionError, ConnectError, ProvisionError or
UnsupportedPermissionError. Reconcilers record all of these in status;
only StatusUpdateError reaches the manager.
"""

import json
from typing import Optional

from kubernetes.client.rest import ApiException


RETRYABLE_STATUSES = frozenset({429, 503, 504})


class OperatorError(Exception):
    """Base class for all operator errors"""


class ConfigError(OperatorError):
    pass


class NotFoundError(OperatorError):
    """A referenced resource or Secret does not exist"""


class ConflictError(OperatorError):
    """Optimistic-concurrency conflict on write"""


class AlreadyExistsError(OperatorError):
    pass


class TransientInfraError(OperatorError):
    """The API server was unavailable, timed out or throttled us"""


class KubernetesAPIError(OperatorError):
    """Any other non-retryable API failure"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class InvalidResourceError(OperatorError, ValueError):
    """A custom resource spec could not be parsed"""


class ResolutionError(OperatorError):
    """Connection parameters could not be resolved"""


class ConnectError(OperatorError):
    """The target PostgreSQL server could not be reached or pinged"""


class ProvisionError(OperatorError):
    """A catalog lookup or DDL statement failed"""


class UnsupportedPermissionError(ProvisionError):
    def __init__(self, permission: str):
        super().__init__(f"unsupported permission: {permission}")
        self.permission = permission


class StatusUpdateError(OperatorError):
    """Writing the status sub-resource failed"""


def api_reason(exc: ApiException) -> str:
    """Return the Kubernetes Status reason from an ApiException body"""
    try:
        body = json.loads(exc.body or "{}")
    except (TypeError, ValueError):
        return ""
    if isinstance(body, dict):
        return body.get("reason") or ""
    return ""


def is_retryable(exc: ApiException) -> bool:
    if exc.status == 500:
        return api_reason(exc) == "ServerTimeout"
    return exc.status in RETRYABLE_STATUSES


def translate_api_exception(exc: ApiException, what: str) -> OperatorError:
    """
    Map an ApiException onto the operator taxonomy

    Args:
        exc: Exception raised by the kubernetes client
        what: Human readable description of the object involved

    Returns:
        Matching OperatorError instance (not raised)
    """
    if exc.status == 404:
        return NotFoundError(f"{what} not found")
    if exc.status == 409:
        if api_reason(exc) == "AlreadyExists":
            return AlreadyExistsError(f"{what} already exists")
        return ConflictError(f"conflict writing {what}")
    if is_retryable(exc):
        return TransientInfraError(f"API server unavailable for {what}: {exc.status} {exc.reason}")
    return KubernetesAPIError(f"API error for {what}: {exc.status} {exc.reason}", status=exc.status)
