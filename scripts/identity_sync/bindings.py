"""Mirror the identity client id onto ServiceAccount annotations."""

from __future__ import annotations

import logging

from scripts.identity_sync.config import ControllerConfig
from scripts.identity_sync.errors import BindingSyncError, NotFoundError, StoreError
from scripts.identity_sync.models import BindingChange, BindingSyncResult
from scripts.identity_sync.names import binding_name
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.bindings")


class CredentialBindingSynchronizer:
    def __init__(self, store: ObjectStore, config: ControllerConfig) -> None:
        self.store = store
        self.annotation = config.client_id_annotation
        self.prefix = config.binding_prefix

    def sync(self, app_key: str, client_id: str) -> BindingSyncResult:
        """Update every namespace's binding for ``app_key`` to ``client_id``.

        Namespaces without the binding are skipped, as are bindings whose
        read fails transiently. A failed write raises ``BindingSyncError``
        carrying the changes made so far.
        """
        name = binding_name(app_key, self.prefix)
        changes: list[BindingChange] = []

        for namespace in self.store.list_namespaces():
            try:
                binding = self.store.read_binding(namespace, name)
            except StoreError as exc:
                logger.warning(
                    "Skipping ServiceAccount %s: %s",
                    name,
                    exc,
                    extra={"namespace": namespace},
                )
                continue
            if binding is None:
                continue
            if binding.annotations.get(self.annotation) == client_id:
                continue

            try:
                self.store.update_binding(binding.with_annotation(self.annotation, client_id))
            except NotFoundError:
                # Deleted between read and write; nothing left to converge
                logger.info(
                    "ServiceAccount %s disappeared before update",
                    name,
                    extra={"namespace": namespace},
                )
                continue
            except StoreError as exc:
                raise BindingSyncError(exc, changes) from exc

            logger.info(
                "Updated ServiceAccount %s client id annotation",
                name,
                extra={"namespace": namespace},
            )
            changes.append(BindingChange(namespace=namespace, name=name))

        return BindingSyncResult(changes=changes)
