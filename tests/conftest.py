from __future__ import annotations

import copy
from typing import Any, Optional

import pytest

from scripts.identity_sync.config import ControllerConfig
from scripts.identity_sync.errors import ConflictError, StoreError
from scripts.identity_sync.index import WorkloadIndex
from scripts.identity_sync.models import CredentialBinding, WorkloadReference
from scripts.identity_sync.schemas import GRANT_VARIANTS, IDENTITY_VARIANTS, SchemaVariant
from scripts.identity_sync.store import ObjectStore

CLUSTER_IDENTITY, NAMESPACED_IDENTITY = IDENTITY_VARIANTS
CLUSTER_GRANT, NAMESPACED_GRANT = GRANT_VARIANTS


def _matches(labels: dict[str, str], selector: str) -> bool:
    for term in filter(None, selector.split(",")):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeStore(ObjectStore):
    """In-memory ObjectStore with resourceVersion checks and failure injection."""

    def __init__(self) -> None:
        self.namespaces: list[str] = []
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.bindings: dict[tuple[str, str], CredentialBinding] = {}
        self.workloads: dict[tuple[str, str], WorkloadReference] = {}
        self.writes: list[str] = []
        self.fail_get: dict[str, StoreError] = {}
        self.fail_list: dict[str, StoreError] = {}
        self.fail_replace: dict[str, StoreError] = {}
        self.fail_read_binding: dict[str, StoreError] = {}
        self.fail_update_binding: dict[str, StoreError] = {}
        self.fail_patch: dict[str, StoreError] = {}
        self.fail_list_namespaces: Optional[StoreError] = None
        self._rv = 0

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    # seeding helpers

    def add_custom(self, variant: SchemaVariant, obj: dict[str, Any]) -> None:
        obj = copy.deepcopy(obj)
        metadata = obj.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_rv()
        namespace = metadata.get("namespace", "") if variant.namespaced else ""
        self.objects[(variant.group, namespace, metadata["name"])] = obj

    def custom(self, variant: SchemaVariant, namespace: str, name: str) -> dict[str, Any]:
        return self.objects[(variant.group, namespace if variant.namespaced else "", name)]

    def add_binding(self, namespace: str, name: str, annotations: Optional[dict] = None) -> None:
        if namespace not in self.namespaces:
            self.namespaces.append(namespace)
        self.bindings[(namespace, name)] = CredentialBinding(
            name=name,
            namespace=namespace,
            annotations=dict(annotations or {}),
            resource_version=self._next_rv(),
        )

    def add_workload(self, namespace: str, name: str, service_account: str) -> None:
        self.workloads[(namespace, name)] = WorkloadReference(
            name=name, namespace=namespace, service_account_name=service_account
        )

    # ObjectStore

    def get_custom_object(self, variant, namespace, name):
        if variant.group in self.fail_get:
            raise self.fail_get[variant.group]
        obj = self.objects.get((variant.group, namespace if variant.namespaced else "", name))
        return copy.deepcopy(obj) if obj is not None else None

    def list_custom_objects(self, variant, label_selector):
        if variant.group in self.fail_list:
            raise self.fail_list[variant.group]
        return [
            copy.deepcopy(obj)
            for (group, _, _), obj in sorted(self.objects.items())
            if group == variant.group
            and _matches(obj["metadata"].get("labels") or {}, label_selector)
        ]

    def replace_custom_object(self, variant, body):
        metadata = body["metadata"]
        if metadata["name"] in self.fail_replace:
            raise self.fail_replace[metadata["name"]]
        namespace = metadata.get("namespace", "") if variant.namespaced else ""
        key = (variant.group, namespace, metadata["name"])
        current = self.objects[key]
        if current["metadata"]["resourceVersion"] != metadata.get("resourceVersion"):
            raise ConflictError(f"{metadata['name']} was modified concurrently")
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_rv()
        self.objects[key] = stored
        self.writes.append(f"replace:{variant.group}:{namespace}/{metadata['name']}")
        return copy.deepcopy(stored)

    def list_namespaces(self):
        if self.fail_list_namespaces is not None:
            raise self.fail_list_namespaces
        return list(self.namespaces)

    def read_binding(self, namespace, name):
        if namespace in self.fail_read_binding:
            raise self.fail_read_binding[namespace]
        return self.bindings.get((namespace, name))

    def update_binding(self, binding):
        if binding.namespace in self.fail_update_binding:
            raise self.fail_update_binding[binding.namespace]
        current = self.bindings[(binding.namespace, binding.name)]
        if current.resource_version != binding.resource_version:
            raise ConflictError(f"{binding.name} was modified concurrently")
        stored = CredentialBinding(
            name=binding.name,
            namespace=binding.namespace,
            annotations=dict(binding.annotations),
            resource_version=self._next_rv(),
        )
        self.bindings[(binding.namespace, binding.name)] = stored
        self.writes.append(f"binding:{binding.namespace}/{binding.name}")
        return stored

    def list_workloads(self, namespace=None):
        return [
            w for (ns, _), w in sorted(self.workloads.items())
            if namespace is None or ns == namespace
        ]

    def patch_workload_template(self, namespace, name, annotations):
        if name in self.fail_patch:
            raise self.fail_patch[name]
        current = self.workloads[(namespace, name)]
        merged = dict(current.template_annotations)
        merged.update(annotations)
        self.workloads[(namespace, name)] = WorkloadReference(
            name=current.name,
            namespace=current.namespace,
            service_account_name=current.service_account_name,
            template_annotations=merged,
        )
        self.writes.append(f"workload:{namespace}/{name}")


def identity_object(
    name: str,
    display_name: Optional[str],
    client_id: Optional[str] = None,
    principal_id: Optional[str] = None,
    namespace: Optional[str] = None,
    camel: bool = False,
) -> dict[str, Any]:
    at_provider: dict[str, Any] = {}
    if client_id is not None:
        at_provider["clientId" if camel else "clientID"] = client_id
    if principal_id is not None:
        at_provider["principalId" if camel else "principalID"] = principal_id
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    for_provider = {"name": display_name} if display_name is not None else {}
    return {
        "apiVersion": "managedidentity.azure.upbound.io/v1beta1",
        "kind": "UserAssignedIdentity",
        "metadata": metadata,
        "spec": {"forProvider": for_provider},
        "status": {"atProvider": at_provider},
    }


def grant_object(
    name: str,
    app_key: str,
    principal_id: Optional[str] = None,
    field_name: str = "principalID",
    namespace: Optional[str] = None,
) -> dict[str, Any]:
    for_provider: dict[str, Any] = {"roleDefinitionName": "Reader", "scope": "/subscriptions/x"}
    if principal_id is not None:
        for_provider[field_name] = principal_id
    metadata: dict[str, Any] = {
        "name": name,
        "labels": {"application": app_key, "type": "roleassignment"},
    }
    if namespace:
        metadata["namespace"] = namespace
    return {
        "apiVersion": "authorization.azure.upbound.io/v1beta1",
        "kind": "RoleAssignment",
        "metadata": metadata,
        "spec": {"forProvider": for_provider},
    }


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def index() -> WorkloadIndex:
    return WorkloadIndex()


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig()
