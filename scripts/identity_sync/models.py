"""Value objects passed between the controller components."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple, Optional

from scripts.identity_sync.schemas import SchemaVariant


class ObjectKey(NamedTuple):
    """Identifies one identity resource. ``namespace`` is "" for cluster scope."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class IdentitySource:
    display_name: str
    variant: SchemaVariant
    client_id: Optional[str] = None
    principal_id: Optional[str] = None

    @property
    def provisioned(self) -> bool:
        return bool(self.client_id) and bool(self.principal_id)


@dataclass(frozen=True)
class ResolvedIdentity:
    source: IdentitySource
    app_key: str

    @property
    def client_id(self) -> Optional[str]:
        return self.source.client_id

    @property
    def principal_id(self) -> Optional[str]:
        return self.source.principal_id


@dataclass(frozen=True)
class CredentialBinding:
    """A ServiceAccount as far as identity sync is concerned."""

    name: str
    namespace: str
    annotations: dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None

    def with_annotation(self, key: str, value: str) -> "CredentialBinding":
        annotations = dict(self.annotations)
        annotations[key] = value
        return replace(self, annotations=annotations)


@dataclass(frozen=True)
class WorkloadReference:
    name: str
    namespace: str
    service_account_name: str
    template_annotations: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthorizationGrant:
    """A RoleAssignment in one of its schema variants.

    ``body`` is the object as read from the cluster; ``principal_field`` is
    the casing that is populated on it (or the variant default when neither
    casing is).
    """

    name: str
    variant: SchemaVariant
    principal_field: str
    body: dict[str, Any]
    namespace: str = ""
    principal_id: Optional[str] = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BindingChange:
    """Emitted for every ServiceAccount whose annotation was rewritten."""

    namespace: str
    name: str


@dataclass(frozen=True)
class BindingSyncResult:
    changes: list[BindingChange] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


class Phase(str, enum.Enum):
    RESOLVING = "resolving"
    VALIDATING = "validating"
    CONVERGING = "converging"
    SCHEDULED = "scheduled"
    NOT_FOUND = "not_found"
    ERROR = "error"


class Outcome(str, enum.Enum):
    NOT_FOUND = "not_found"
    UNPROVISIONED = "unprovisioned"
    INVALID_NAME = "invalid_name"
    CHANGED = "changed"
    STEADY = "steady"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    """Decision returned to the dispatcher.

    ``requeue_after`` is None when no recheck is wanted. ``error`` is set for
    anything the dispatcher should log and count, fatal or not.
    """

    outcome: Outcome
    phase: Phase
    requeue_after: Optional[int] = None
    error: Optional[Exception] = None
    bindings_changed: int = 0
    grants_changed: bool = False
    workloads_restarted: int = 0
