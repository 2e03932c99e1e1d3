"""APScheduler-based dispatch of convergence cycles.

Every identity key gets a one-shot ``date`` job; re-enqueueing a key replaces
its pending job so bursts of watch events coalesce into one cycle. A job that
fires while its key's previous cycle is still running waits on a per-key lock,
so cycles for one identity run one after another. An interval job
periodically re-enqueues every identity so drift is caught without events.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.identity_sync.config import SchedulerConfig
from scripts.identity_sync.controller import ConvergenceController
from scripts.identity_sync.errors import StoreError
from scripts.identity_sync.models import ObjectKey, Phase, ReconcileResult
from scripts.identity_sync.schemas import IDENTITY_VARIANTS, SchemaVariant
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.scheduler")

RESYNC_JOB_ID = "resync"


def job_id(key: ObjectKey) -> str:
    return f"reconcile:{key}"


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


class Dispatcher:
    def __init__(
        self,
        controller: ConvergenceController,
        store: ObjectStore,
        config: SchedulerConfig,
        scheduler=None,
        identity_variants: Sequence[SchemaVariant] = IDENTITY_VARIANTS,
    ) -> None:
        self.controller = controller
        self.store = store
        self.config = config
        self.scheduler = scheduler if scheduler is not None else BlockingScheduler(timezone=timezone.utc)
        self.identity_variants = tuple(identity_variants)
        self._guard = threading.Lock()
        self._locks: dict[ObjectKey, threading.Lock] = {}
        self._failures: dict[ObjectKey, int] = {}

    def enqueue(self, key: ObjectKey, delay: float = 0) -> None:
        """Schedule a cycle for ``key``, replacing any pending one."""
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            self.run_cycle,
            "date",
            run_date=run_date,
            args=[key],
            id=job_id(key),
            replace_existing=True,
            # A run queued behind an in-flight cycle waits on the key lock
            max_instances=2,
            misfire_grace_time=self.config.misfire_grace_time,
        )

    def run_cycle(self, key: ObjectKey) -> Optional[ReconcileResult]:
        """Run one cycle for ``key`` and schedule the follow-up."""
        with self._lock_for(key):
            try:
                result = self.controller.reconcile(key)
            except Exception as exc:
                # Unexpected failure: keep the key alive with backoff
                logger.error(
                    "Reconcile raised: %s", exc, exc_info=True, extra={"identity": str(key)}
                )
                self.enqueue(key, self._backoff(key, self.controller.config.requeue_error_s))
                return None

            delay = self.next_delay(key, result)
            if delay is not None:
                self.enqueue(key, delay)
            return result

    def next_delay(self, key: ObjectKey, result: ReconcileResult) -> Optional[int]:
        """Advisory delay from the controller, stretched by consecutive errors."""
        if result.requeue_after is None:
            self._failures.pop(key, None)
            return None
        if result.phase is not Phase.ERROR:
            # Validation errors recheck at their own delay without backoff
            self._failures.pop(key, None)
            return result.requeue_after
        return self._backoff(key, result.requeue_after)

    def _backoff(self, key: ObjectKey, base: int) -> int:
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        delay = min(base * (2 ** (failures - 1)), self.config.max_backoff_s)
        logger.warning(
            "Cycle failed %d time(s) in a row, retrying in %ds",
            failures,
            delay,
            extra={"identity": str(key), "requeue_after_s": delay},
        )
        return delay

    def _lock_for(self, key: ObjectKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def resync(self) -> int:
        """Enqueue every identity of every known variant."""
        keys: set[ObjectKey] = set()
        for variant in self.identity_variants:
            try:
                items = self.store.list_custom_objects(variant, "")
            except StoreError as exc:
                logger.debug(
                    "Could not list identities from %s: %s",
                    variant.group,
                    exc,
                    extra={"api_group": variant.group},
                )
                continue
            for item in items:
                metadata = item.get("metadata") or {}
                namespace = metadata.get("namespace", "") if variant.namespaced else ""
                keys.add(ObjectKey(namespace, metadata.get("name", "")))

        for key in sorted(keys):
            self.enqueue(key)
        logger.info("Resync enqueued %d identities", len(keys))
        return len(keys)

    def start(self) -> None:
        """Start the blocking scheduler with the periodic resync job."""
        self.scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_job(
            self.resync,
            "interval",
            minutes=self.config.resync_interval_min,
            id=RESYNC_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            misfire_grace_time=self.config.misfire_grace_time,
        )
        logger.info("Starting scheduler with jobs: %s",
                    [j.id for j in self.scheduler.get_jobs()])
        self.scheduler.start()
