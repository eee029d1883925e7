"""
Work loop that drives the reconcilers.

Every sync interval both resource kinds are listed; new keys are scheduled
immediately and keys that disappeared are dropped. Each pass runs every due
key exactly once, so a resource is never reconciled concurrently with
itself, while different resources may run in parallel on the worker pool.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple, Optional

from pg_operator.config import OperatorConfig
from pg_operator.errors import OperatorError
from pg_operator.log import BLUE, GREEN, WHITE, RESET, get_logger
from pg_operator.models import CONNECTION_KIND, CONNECTION_PLURAL, DATABASE_KIND, DATABASE_PLURAL

logger = get_logger("manager")

PLURALS = {CONNECTION_KIND: CONNECTION_PLURAL, DATABASE_KIND: DATABASE_PLURAL}


class ResourceKey(NamedTuple):
    kind: str
    namespace: str
    name: str

    def __str__(self):
        return f"{self.kind} {self.namespace}/{self.name}"


@dataclass
class ReconciliationStats:
    """Statistics for one pass over the due resources"""
    reconciled: int = 0
    ready: int = 0
    not_ready: int = 0
    errors: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def duration_seconds(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0


class ControllerManager:

    def __init__(self, kube, reconcilers: Dict[str, object], cfg: OperatorConfig,
                 clock: Callable[[], float] = time.monotonic):
        self.kube = kube
        self.reconcilers = reconcilers
        self.cfg = cfg
        self.clock = clock
        self.due: Dict[ResourceKey, float] = {}
        self.failures: Dict[ResourceKey, int] = {}
        self._last_sync: Optional[float] = None
        self._stop = threading.Event()

    def discover(self):
        """
        List resources and reconcile the schedule with what exists

        A failed listing still counts as a sync, so the next attempt waits a
        full sync interval and the known keys keep their schedule.
        """
        seen = set()
        try:
            for kind in self.reconcilers:
                for obj in self.kube.list_custom_objects(PLURALS[kind], self.cfg.watch_namespace):
                    meta = obj.get("metadata") or {}
                    seen.add(ResourceKey(kind, meta.get("namespace", ""), meta.get("name", "")))
        finally:
            self._last_sync = self.clock()

        now = self.clock()
        for key in seen - set(self.due):
            logger.info(f"Discovered {key}")
            self.due[key] = now
        for key in set(self.due) - seen:
            logger.info(f"{key} no longer exists, dropping")
            self.due.pop(key, None)
            self.failures.pop(key, None)

    def due_keys(self) -> List[ResourceKey]:
        now = self.clock()
        return sorted(key for key, at in self.due.items() if at <= now)

    def reconcile_key(self, key: ResourceKey) -> Optional[float]:
        """
        Run one reconciliation and compute its next due time

        Returns:
            requeue_after in seconds, or None when the resource is gone
        """
        reconciler = self.reconcilers[key.kind]
        try:
            result = reconciler.reconcile(key.name, key.namespace)
        except OperatorError as e:
            raise self._retry(key, e) from e
        except Exception as e:
            logger.error(f"Unexpected error reconciling {key}: {e}", exc_info=True)
            raise self._retry(key, e) from e

        self.failures.pop(key, None)
        return result.requeue_after

    def _retry(self, key: ResourceKey, error: Exception) -> "_Retry":
        attempt = self.failures.get(key, 0)
        self.failures[key] = attempt + 1
        backoff = min(self.cfg.retry_backoff_base ** attempt, self.cfg.not_ready_requeue_seconds)
        logger.error(f"Failed to reconcile {key} (attempt {attempt + 1}), retrying in {backoff}s: {error}")
        return _Retry(backoff)

    def run_once(self) -> ReconciliationStats:
        stats = ReconciliationStats(start_time=datetime.now())
        keys = self.due_keys()

        def work(key):
            try:
                return key, self.reconcile_key(key), None
            except _Retry as retry:
                return key, retry.after, retry

        # connections and databases run in two waves so the gate sees this pass's result
        waves = [
            [k for k in keys if k.kind == CONNECTION_KIND],
            [k for k in keys if k.kind != CONNECTION_KIND],
        ]
        with ThreadPoolExecutor(max_workers=self.cfg.max_concurrent_reconciles) as pool:
            for wave in waves:
                for key, after, failed in pool.map(work, wave):
                    stats.reconciled += 1
                    if failed is not None:
                        stats.errors += 1
                    elif after is None:
                        self.due.pop(key, None)
                        continue
                    # the requeue cadence tells ready resources from broken ones
                    elif after >= self.cfg.ready_requeue_seconds:
                        stats.ready += 1
                    else:
                        stats.not_ready += 1
                    self.due[key] = self.clock() + after

        stats.end_time = datetime.now()
        return stats

    def stop(self):
        self._stop.set()

    def run(self):
        """
        Main control loop that runs until stop() is called
        """
        logger.info(f"{GREEN}Controller started (namespace={self.cfg.watch_namespace or '*'}){RESET}")
        logger.info(f"Sync interval: {self.cfg.sync_interval}s")

        while not self._stop.is_set():
            if self._last_sync is None or self.clock() - self._last_sync >= self.cfg.sync_interval:
                try:
                    self.discover()
                except OperatorError as e:
                    logger.error(f"Failed to list resources: {e}")
                except Exception as e:
                    logger.error(f"Unexpected error listing resources: {e}", exc_info=True)

            try:
                stats = self.run_once()
                if stats.reconciled:
                    self.log_summary(stats)
            except OperatorError as e:
                logger.error(f"Error in reconciliation loop: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in reconciliation loop: {e}", exc_info=True)

            self._stop.wait(self.next_wakeup())

    def next_wakeup(self) -> float:
        now = self.clock()
        next_sync = self.cfg.sync_interval
        if self._last_sync is not None:
            next_sync = max(0.0, self._last_sync + self.cfg.sync_interval - now)
        if not self.due:
            return next_sync
        return max(0.0, min(next_sync, min(self.due.values()) - now))

    def log_summary(self, stats: ReconciliationStats):
        logger.info("=" * 60)
        logger.info(f"{WHITE}Reconciliation Summary:{RESET}")
        logger.info(f"  • Resources reconciled: {stats.reconciled}")
        logger.info(f"  • Ready: {stats.ready}")
        logger.info(f"  • Not ready: {stats.not_ready}")
        logger.info(f"  • Errors: {stats.errors}")
        logger.info(f"  • Duration: {stats.duration_seconds():.2f}s")
        logger.info("=" * 60)
        logger.debug(f"{BLUE}Next wakeup in {self.next_wakeup():.1f}s{RESET}")


class _Retry(Exception):
    def __init__(self, after: float):
        super().__init__(after)
        self.after = after
