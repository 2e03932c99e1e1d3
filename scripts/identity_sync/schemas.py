"""Known representations of the identity and grant resources.

Crossplane's Azure provider has published UserAssignedIdentity and
RoleAssignment under a cluster-scoped group and a namespaced ``.m.`` group,
and the id fields have appeared both as ``clientID`` and ``clientId``.
Supporting another representation means adding an entry here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

IDENTITY_KIND = "UserAssignedIdentity"
GRANT_KIND = "RoleAssignment"

CLIENT_ID_FIELDS = ("clientID", "clientId")
PRINCIPAL_ID_FIELDS = ("principalID", "principalId")

# Identity ids live in status.atProvider; grants carry theirs in spec.forProvider
AT_PROVIDER = ("status", "atProvider")
FOR_PROVIDER = ("spec", "forProvider")


@dataclass(frozen=True)
class SchemaVariant:
    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool
    principal_field: str = "principalId"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def __str__(self) -> str:
        scope = "namespaced" if self.namespaced else "cluster"
        return f"{self.kind}.{self.version}.{self.group} ({scope})"


# Priority order: first successful resolution wins for the cycle
IDENTITY_VARIANTS: tuple[SchemaVariant, ...] = (
    SchemaVariant(
        group="managedidentity.azure.upbound.io",
        version="v1beta1",
        kind=IDENTITY_KIND,
        plural="userassignedidentities",
        namespaced=False,
    ),
    SchemaVariant(
        group="managedidentity.azure.m.upbound.io",
        version="v1beta1",
        kind=IDENTITY_KIND,
        plural="userassignedidentities",
        namespaced=True,
    ),
)

# All grant variants are listed every cycle; grants may exist in several at once
GRANT_VARIANTS: tuple[SchemaVariant, ...] = (
    SchemaVariant(
        group="authorization.azure.upbound.io",
        version="v1beta1",
        kind=GRANT_KIND,
        plural="roleassignments",
        namespaced=False,
    ),
    SchemaVariant(
        group="authorization.azure.m.upbound.io",
        version="v1beta1",
        kind=GRANT_KIND,
        plural="roleassignments",
        namespaced=True,
    ),
)


def nested_get(obj: dict[str, Any], *path: str) -> Any:
    """Walk nested dicts, returning None where the path stops existing."""
    current: Any = obj
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def probe_string(
    obj: dict[str, Any], prefix: Iterable[str], candidates: Iterable[str]
) -> tuple[Optional[str], Optional[str]]:
    """Return ``(field_name, value)`` for the first candidate holding a string.

    Candidates are tried in order; ``(None, None)`` when none is populated.
    """
    parent = nested_get(obj, *prefix)
    if not isinstance(parent, dict):
        return None, None
    for name in candidates:
        value = parent.get(name)
        if isinstance(value, str):
            return name, value
    return None, None


def set_nested(obj: dict[str, Any], value: Any, *path: str) -> None:
    """Set ``value`` at ``path``, creating intermediate dicts."""
    current = obj
    for key in path[:-1]:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child
    current[path[-1]] = value
