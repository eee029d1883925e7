"""
Status sub-resource updates and the requeue policy.

Each report upserts a single Ready condition and writes the whole status
through the status sub-resource. A ready resource is re-validated after
ready_requeue_seconds, a broken one is retried after
not_ready_requeue_seconds.
"""

from datetime import datetime, timezone
from typing import Callable, Union

from pg_operator.config import OperatorConfig
from pg_operator.errors import ConflictError, OperatorError, StatusUpdateError
from pg_operator.log import get_logger
from pg_operator.models import READY_CONDITION, Condition, ConnectionResource, DatabaseResource, set_condition

logger = get_logger("status")

Resource = Union[ConnectionResource, DatabaseResource]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class StatusReporter:

    def __init__(self, kube, cfg: OperatorConfig, clock: Callable[[], datetime] = utcnow):
        self.kube = kube
        self.cfg = cfg
        self.clock = clock

    def requeue_after(self, ready: bool) -> float:
        return self.cfg.ready_requeue_seconds if ready else self.cfg.not_ready_requeue_seconds

    def report(self, resource: Resource, ready: bool, message: str, reason: str, **fields) -> float:
        """
        Record a reconciliation outcome on the resource

        Args:
            resource: Connection or Database resource to update
            ready: Overall readiness
            message: Human readable message, also used for the condition
            reason: CamelCase reason for the Ready condition
            **fields: Extra status attributes set verbatim
                (e.g. database_created, users_created, last_checked)

        Returns:
            Seconds until the resource should be reconciled again

        Raises:
            ConflictError: the resource changed since it was read
            StatusUpdateError: any other failure writing status
        """
        now = format_time(self.clock())
        status = resource.status
        status.ready = ready
        status.message = message
        for name, value in fields.items():
            if not hasattr(status, name):
                raise AttributeError(f"{type(status).__name__} has no field {name}")
            setattr(status, name, value)

        set_condition(status.conditions, Condition(
            type=READY_CONDITION,
            status=ready,
            reason=reason,
            message=message,
            last_transition_time=now,
        ))

        meta = resource.metadata
        try:
            updated = self.kube.replace_status(resource.plural, meta.name, meta.namespace, resource.to_status_body())
        except ConflictError:
            logger.info(f"Conflict updating status of {resource.kind} {meta.key}, will retry")
            raise
        except OperatorError as e:
            logger.error(f"Failed to update status of {resource.kind} {meta.key}: {e}")
            raise StatusUpdateError(f"failed to update status of {resource.kind} {meta.key}: {e}") from e

        if isinstance(updated, dict):
            meta.resource_version = (updated.get("metadata") or {}).get("resourceVersion", meta.resource_version)

        requeue = self.requeue_after(ready)
        logger.info(f"{resource.kind} {meta.key}: ready={ready} reason={reason} "
                    f"message={message!r} requeue_after={requeue:.0f}s")
        return requeue
