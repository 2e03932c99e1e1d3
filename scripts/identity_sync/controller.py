"""Convergence cycle for one identity.

One call to ``reconcile`` walks resolving -> validating -> converging ->
scheduled and returns the delay after which the dispatcher should look at
the identity again. Nothing is kept between calls; every cycle re-reads the
cluster.
"""

from __future__ import annotations

import logging
from typing import Optional

from scripts.identity_sync.bindings import CredentialBindingSynchronizer
from scripts.identity_sync.config import ControllerConfig
from scripts.identity_sync.errors import (
    BindingSyncError,
    ConflictError,
    IdentitySyncError,
    ValidationError,
)
from scripts.identity_sync.grants import AuthorizationGrantSynchronizer
from scripts.identity_sync.index import WorkloadIndex
from scripts.identity_sync.models import (
    BindingChange,
    ObjectKey,
    Outcome,
    Phase,
    ReconcileResult,
)
from scripts.identity_sync.resolver import SchemaResolver
from scripts.identity_sync.restart import WorkloadRestartTrigger
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.controller")


class ConvergenceController:
    def __init__(
        self,
        store: ObjectStore,
        index: WorkloadIndex,
        config: Optional[ControllerConfig] = None,
        resolver: Optional[SchemaResolver] = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self.resolver = resolver or SchemaResolver(store)
        self.bindings = CredentialBindingSynchronizer(store, self.config)
        self.restarts = WorkloadRestartTrigger(store, index, self.config)
        self.grants = AuthorizationGrantSynchronizer(store, self.resolver)

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        extra = {"identity": str(key)}
        cfg = self.config

        # Resolving
        identity = self.resolver.resolve_identity(key)
        if identity is None:
            logger.info("Identity not found in any known API group", extra=extra)
            return ReconcileResult(outcome=Outcome.NOT_FOUND, phase=Phase.NOT_FOUND)

        # Validating
        if not identity.source.provisioned:
            logger.info("Identity has no client or principal id yet, skipping update", extra=extra)
            return self._scheduled(
                key, Outcome.UNPROVISIONED, Phase.VALIDATING, cfg.requeue_unprovisioned_s
            )
        if not identity.app_key:
            err = ValidationError(
                f"cannot extract application name from {identity.source.display_name!r}"
            )
            logger.error("Invalid identity name: %s", err, extra=extra)
            return self._scheduled(
                key, Outcome.INVALID_NAME, Phase.VALIDATING, cfg.requeue_unprovisioned_s, error=err
            )

        # Converging
        try:
            binding_result = self.bindings.sync(identity.app_key, identity.client_id)
        except BindingSyncError as exc:
            restarted = self._restart(exc.changes)
            if not isinstance(exc.cause, ConflictError):
                return self._failed(key, exc, restarted, len(exc.changes))
            # Lost a binding write race; grants still converge this cycle
            try:
                grants_changed = self.grants.sync(identity.app_key, identity.principal_id)
            except IdentitySyncError as grant_exc:
                return self._failed(key, grant_exc, restarted, len(exc.changes))
            return self._conflict(key, exc.cause, restarted, len(exc.changes), grants_changed)
        except ConflictError as exc:
            return self._conflict(key, exc)
        except IdentitySyncError as exc:
            return self._failed(key, exc)

        restarted = self._restart(binding_result.changes)

        try:
            grants_changed = self.grants.sync(identity.app_key, identity.principal_id)
        except ConflictError as exc:
            return self._conflict(key, exc, restarted, len(binding_result.changes))
        except IdentitySyncError as exc:
            return self._failed(key, exc, restarted, len(binding_result.changes))

        # Scheduled
        changed = binding_result.changed or grants_changed
        if changed:
            logger.info("Updates applied, rechecking to confirm state", extra=extra)
        return self._scheduled(
            key,
            Outcome.CHANGED if changed else Outcome.STEADY,
            Phase.SCHEDULED,
            cfg.requeue_changed_s if changed else cfg.requeue_steady_s,
            bindings_changed=len(binding_result.changes),
            grants_changed=grants_changed,
            workloads_restarted=restarted,
        )

    def _restart(self, changes: list[BindingChange]) -> int:
        # One restart per changed binding, in the namespace it changed in
        return sum(self.restarts.restart_dependents(c.name, c.namespace) for c in changes)

    def _conflict(
        self,
        key: ObjectKey,
        cause: ConflictError,
        restarted: int = 0,
        bindings_changed: int = 0,
        grants_changed: bool = False,
    ) -> ReconcileResult:
        # The next cycle re-reads and retries
        logger.info("Write conflict, retrying shortly: %s", cause, extra={"identity": str(key)})
        return self._scheduled(
            key,
            Outcome.CONFLICT,
            Phase.SCHEDULED,
            self.config.requeue_changed_s,
            bindings_changed=bindings_changed,
            grants_changed=grants_changed,
            workloads_restarted=restarted,
        )

    def _failed(
        self,
        key: ObjectKey,
        error: IdentitySyncError,
        restarted: int = 0,
        bindings_changed: int = 0,
    ) -> ReconcileResult:
        logger.error("Convergence failed: %s", error, extra={"identity": str(key)})
        return self._scheduled(
            key,
            Outcome.FAILED,
            Phase.ERROR,
            self.config.requeue_error_s,
            error=error,
            bindings_changed=bindings_changed,
            workloads_restarted=restarted,
        )

    @staticmethod
    def _scheduled(
        key: ObjectKey,
        outcome: Outcome,
        phase: Phase,
        requeue_after: int,
        error: Optional[Exception] = None,
        bindings_changed: int = 0,
        grants_changed: bool = False,
        workloads_restarted: int = 0,
    ) -> ReconcileResult:
        logger.debug(
            "Cycle finished",
            extra={
                "identity": str(key),
                "outcome": outcome.value,
                "requeue_after_s": requeue_after,
            },
        )
        return ReconcileResult(
            outcome=outcome,
            phase=phase,
            requeue_after=requeue_after,
            error=error,
            bindings_changed=bindings_changed,
            grants_changed=grants_changed,
            workloads_restarted=workloads_restarted,
        )
