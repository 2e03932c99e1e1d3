"""Watch streams that feed the dispatcher and the workload index.

Identity events enqueue the identity itself. ServiceAccount and RoleAssignment
events enqueue the identity named in their ownerReferences. Deployment events
keep the ServiceAccount index current.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Sequence

import urllib3
from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from scripts.identity_sync.config import SchedulerConfig
from scripts.identity_sync.index import WorkloadIndex
from scripts.identity_sync.models import ObjectKey
from scripts.identity_sync.scheduler import Dispatcher
from scripts.identity_sync.schemas import (
    GRANT_VARIANTS,
    IDENTITY_KIND,
    IDENTITY_VARIANTS,
    SchemaVariant,
)
from scripts.identity_sync.store import KubeStore, workload_from_deployment

logger = logging.getLogger("identity_sync.watcher")

RETRY_SECONDS = 5
MISSING_KIND_RETRY_SECONDS = 60


def owner_keys(namespace: str, owner_references: Optional[list[Any]]) -> list[ObjectKey]:
    """Identity keys among an object's ownerReferences (dicts or client models)."""
    keys = []
    for ref in owner_references or []:
        if isinstance(ref, dict):
            kind, name = ref.get("kind"), ref.get("name")
        else:
            kind, name = ref.kind, ref.name
        if kind == IDENTITY_KIND and name:
            keys.append(ObjectKey(namespace or "", name))
    return keys


class Watcher:
    def __init__(
        self,
        store: KubeStore,
        dispatcher: Dispatcher,
        index: WorkloadIndex,
        config: SchedulerConfig,
        identity_variants: Sequence[SchemaVariant] = IDENTITY_VARIANTS,
        grant_variants: Sequence[SchemaVariant] = GRANT_VARIANTS,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.index = index
        self.config = config
        self.identity_variants = tuple(identity_variants)
        self.grant_variants = tuple(grant_variants)
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        """Start one daemon thread per watched resource."""
        custom = self.store.custom
        for variant in self.identity_variants:
            self._spawn(
                f"identity:{variant.group}",
                custom.list_cluster_custom_object,
                (variant.group, variant.version, variant.plural),
                self._identity_handler(variant),
            )
        for variant in self.grant_variants:
            self._spawn(
                f"grant:{variant.group}",
                custom.list_cluster_custom_object,
                (variant.group, variant.version, variant.plural),
                self._on_owned_custom,
            )
        self._spawn(
            "serviceaccounts",
            self.store.core.list_service_account_for_all_namespaces,
            (),
            self._on_service_account,
        )
        self._spawn(
            "deployments",
            self.store.apps.list_deployment_for_all_namespaces,
            (),
            self._on_deployment,
        )

    def stop(self) -> None:
        self._stop.set()

    def _spawn(self, name: str, list_fn: Callable, args: tuple, handler: Callable) -> None:
        thread = threading.Thread(
            target=self._loop, args=(name, list_fn, args, handler), name=f"watch-{name}", daemon=True
        )
        thread.start()
        self._threads.append(thread)

    def _loop(self, name: str, list_fn: Callable, args: tuple, handler: Callable) -> None:
        while not self._stop.is_set():
            w = watch.Watch()
            try:
                for event in w.stream(list_fn, *args, timeout_seconds=self.config.watch_timeout_s):
                    if self._stop.is_set():
                        w.stop()
                        break
                    if event["type"] == "ERROR":
                        logger.warning("Watch %s returned an error event: %s", name, event.get("raw_object"))
                        break
                    handler(event["type"], event["object"])
            except ApiException as exc:
                if exc.status == 404:
                    # Variant's CRD not installed in this cluster
                    logger.info("Watch %s: resource not served, retrying later", name)
                    self._stop.wait(MISSING_KIND_RETRY_SECONDS)
                else:
                    logger.warning("Watch %s failed: %s %s", name, exc.status, exc.reason)
                    self._stop.wait(RETRY_SECONDS)
            except urllib3.exceptions.HTTPError as exc:
                logger.warning("Watch %s connection error: %s", name, exc)
                self._stop.wait(RETRY_SECONDS)
            except Exception as exc:
                # Keep the thread alive; a dead watch is never restarted
                logger.error("Watch %s failed unexpectedly: %s", name, exc, exc_info=True)
                self._stop.wait(RETRY_SECONDS)

    def _identity_handler(self, variant: SchemaVariant) -> Callable[[str, Any], None]:
        def handle(event_type: str, obj: dict[str, Any]) -> None:
            if event_type == "DELETED":
                return
            metadata = obj.get("metadata") or {}
            namespace = metadata.get("namespace", "") if variant.namespaced else ""
            self.dispatcher.enqueue(ObjectKey(namespace, metadata.get("name", "")))

        return handle

    def _on_owned_custom(self, event_type: str, obj: dict[str, Any]) -> None:
        metadata = obj.get("metadata") or {}
        for key in owner_keys(metadata.get("namespace", ""), metadata.get("ownerReferences")):
            self.dispatcher.enqueue(key)

    def _on_service_account(self, event_type: str, sa: Any) -> None:
        for key in owner_keys(sa.metadata.namespace, sa.metadata.owner_references):
            self.dispatcher.enqueue(key)

    def _on_deployment(self, event_type: str, deployment: Any) -> None:
        if event_type == "DELETED":
            self.index.remove(deployment.metadata.namespace, deployment.metadata.name)
        else:
            self.index.upsert(workload_from_deployment(deployment))
