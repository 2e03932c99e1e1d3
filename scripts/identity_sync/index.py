"""Secondary index of Deployments by the ServiceAccount their pods run as.

The Deployments API has no server-side filter on
``spec.template.spec.serviceAccountName``, so the dispatcher builds this index
once at startup and keeps it current from the Deployment watch.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict

from scripts.identity_sync.models import WorkloadReference
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.index")


class WorkloadIndex:
    """Thread-safe map of (namespace, service account) -> Deployment names."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_account: dict[tuple[str, str], set[str]] = defaultdict(set)
        self._account_of: dict[tuple[str, str], str] = {}

    def rebuild(self, store: ObjectStore) -> int:
        """Replace the index contents with a fresh cluster-wide list."""
        workloads = store.list_workloads()
        with self._lock:
            self._by_account.clear()
            self._account_of.clear()
            for workload in workloads:
                self._add_locked(workload)
        logger.info("Indexed %d deployments by service account", len(workloads))
        return len(workloads)

    def upsert(self, workload: WorkloadReference) -> None:
        with self._lock:
            self._remove_locked(workload.namespace, workload.name)
            self._add_locked(workload)

    def remove(self, namespace: str, name: str) -> None:
        with self._lock:
            self._remove_locked(namespace, name)

    def lookup(self, namespace: str, service_account: str) -> list[str]:
        with self._lock:
            return sorted(self._by_account.get((namespace, service_account), ()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._account_of)

    def _add_locked(self, workload: WorkloadReference) -> None:
        key = (workload.namespace, workload.name)
        self._account_of[key] = workload.service_account_name
        self._by_account[(workload.namespace, workload.service_account_name)].add(workload.name)

    def _remove_locked(self, namespace: str, name: str) -> None:
        account = self._account_of.pop((namespace, name), None)
        if account is None:
            return
        names = self._by_account.get((namespace, account))
        if names is not None:
            names.discard(name)
            if not names:
                del self._by_account[(namespace, account)]
