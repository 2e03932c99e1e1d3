"""Rolling restarts for Deployments whose ServiceAccount binding changed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from scripts.identity_sync.config import ControllerConfig
from scripts.identity_sync.errors import StoreError
from scripts.identity_sync.index import WorkloadIndex
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.restart")


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class WorkloadRestartTrigger:
    def __init__(
        self,
        store: ObjectStore,
        index: WorkloadIndex,
        config: ControllerConfig,
        clock: Callable[[], str] = _utc_timestamp,
    ) -> None:
        self.store = store
        self.index = index
        self.annotation = config.restart_annotation
        self.clock = clock

    def restart_dependents(self, binding_name: str, namespace: str) -> int:
        """Stamp the restart marker on every Deployment running as the binding.

        Best effort: a failed patch is logged and the remaining Deployments
        are still processed. Returns the number of Deployments patched.
        """
        restarted = 0
        for name in self.index.lookup(namespace, binding_name):
            try:
                self.store.patch_workload_template(namespace, name, {self.annotation: self.clock()})
            except StoreError as exc:
                logger.error(
                    "Failed to add restart annotation: %s",
                    exc,
                    extra={"namespace": namespace, "workload": name},
                )
                continue
            logger.info(
                "Restarted deployment after ServiceAccount %s changed",
                binding_name,
                extra={"namespace": namespace, "workload": name},
            )
            restarted += 1
        return restarted
