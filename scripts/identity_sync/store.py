"""Cluster object store: the get/list/update/patch primitives the controller needs.

``ObjectStore`` is what the synchronizers program against; ``KubeStore``
implements it with the official kubernetes client and translates
``ApiException`` into the identity sync error hierarchy.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException

from scripts.identity_sync.config import KubeConfig
from scripts.identity_sync.errors import ConflictError, NotFoundError, StoreError
from scripts.identity_sync.models import CredentialBinding, WorkloadReference
from scripts.identity_sync.schemas import SchemaVariant

logger = logging.getLogger("identity_sync.store")

T = TypeVar("T")


class ObjectStore(ABC):
    """Versioned, namespaced object store.

    Reads of a single object return None when it does not exist; every other
    failure raises a ``StoreError`` subclass.
    """

    @abstractmethod
    def get_custom_object(
        self, variant: SchemaVariant, namespace: str, name: str
    ) -> Optional[dict[str, Any]]:
        """Fetch one custom object. ``namespace`` is ignored for cluster scope."""

    @abstractmethod
    def list_custom_objects(
        self, variant: SchemaVariant, label_selector: str
    ) -> list[dict[str, Any]]:
        """List custom objects of a variant across all namespaces."""

    @abstractmethod
    def replace_custom_object(self, variant: SchemaVariant, body: dict[str, Any]) -> dict[str, Any]:
        """Write back a full object; its metadata.resourceVersion guards the write."""

    @abstractmethod
    def list_namespaces(self) -> list[str]:
        """Names of every namespace in the cluster."""

    @abstractmethod
    def read_binding(self, namespace: str, name: str) -> Optional[CredentialBinding]:
        """Fetch a ServiceAccount as a CredentialBinding."""

    @abstractmethod
    def update_binding(self, binding: CredentialBinding) -> CredentialBinding:
        """Write the binding's annotations, guarded by its resource_version."""

    @abstractmethod
    def list_workloads(self, namespace: Optional[str] = None) -> list[WorkloadReference]:
        """List Deployments, in one namespace or across the cluster."""

    @abstractmethod
    def patch_workload_template(
        self, namespace: str, name: str, annotations: dict[str, str]
    ) -> None:
        """Merge annotations into a Deployment's pod template."""


def _translate(exc: ApiException, what: str) -> StoreError:
    """Map an API failure onto the identity sync error hierarchy."""
    if exc.status == 404:
        return NotFoundError(f"{what} not found")
    if exc.status == 409:
        return ConflictError(f"{what} was modified concurrently")
    return StoreError(f"{what}: {exc.status} {exc.reason}", status=exc.status)


def load_api_client(kube: KubeConfig) -> k8s_client.ApiClient:
    """Build an ApiClient from explicit host/token, kubeconfig, or in-cluster config."""
    if kube.api_host:
        configuration = k8s_client.Configuration()
        configuration.host = kube.api_host
        configuration.api_key = {"authorization": kube.api_token or ""}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        configuration.verify_ssl = kube.verify_ssl
        logger.info("Using explicit API host %s", kube.api_host)
        return k8s_client.ApiClient(configuration)

    if kube.kubeconfig_path or kube.context:
        k8s_config.load_kube_config(config_file=kube.kubeconfig_path, context=kube.context)
        logger.info("Loaded kubeconfig (context=%s)", kube.context or "current")
        return k8s_client.ApiClient()

    try:
        k8s_config.load_incluster_config()
        logger.info("Loaded in-cluster configuration")
    except k8s_config.ConfigException:
        # Local development without KUBECONFIG set: fall back to ~/.kube/config
        k8s_config.load_kube_config()
        logger.info("Loaded default kubeconfig")
    return k8s_client.ApiClient()


class KubeStore(ObjectStore):
    """ObjectStore over CoreV1Api, AppsV1Api and CustomObjectsApi."""

    def __init__(self, api_client: k8s_client.ApiClient) -> None:
        self.api_client = api_client
        self.core = k8s_client.CoreV1Api(api_client)
        self.apps = k8s_client.AppsV1Api(api_client)
        self.custom = k8s_client.CustomObjectsApi(api_client)

    @classmethod
    def from_config(cls, kube: KubeConfig) -> "KubeStore":
        return cls(load_api_client(kube))

    def close(self) -> None:
        self.api_client.close()

    def _call(self, what: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except ApiException as exc:
            raise _translate(exc, what) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise StoreError(f"{what}: {exc}") from exc

    # ------------------------------------------------------------------
    # Custom objects (identities, grants)
    # ------------------------------------------------------------------

    def get_custom_object(self, variant, namespace, name):
        what = f"{variant.kind} {namespace}/{name} ({variant.group})"
        try:
            if variant.namespaced:
                return self._call(
                    what,
                    self.custom.get_namespaced_custom_object,
                    variant.group, variant.version, namespace, variant.plural, name,
                )
            return self._call(
                what,
                self.custom.get_cluster_custom_object,
                variant.group, variant.version, variant.plural, name,
            )
        except NotFoundError:
            return None

    def list_custom_objects(self, variant, label_selector):
        # The cluster-wide list endpoint also serves namespaced kinds across all namespaces
        resp = self._call(
            f"{variant.kind} list ({variant.group})",
            self.custom.list_cluster_custom_object,
            variant.group, variant.version, variant.plural,
            label_selector=label_selector,
        )
        return list(resp.get("items", []))

    def replace_custom_object(self, variant, body):
        metadata = body.get("metadata", {})
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")
        what = f"{variant.kind} {namespace}/{name} ({variant.group})"
        if variant.namespaced:
            return self._call(
                what,
                self.custom.replace_namespaced_custom_object,
                variant.group, variant.version, namespace, variant.plural, name, body,
            )
        return self._call(
            what,
            self.custom.replace_cluster_custom_object,
            variant.group, variant.version, variant.plural, name, body,
        )

    # ------------------------------------------------------------------
    # Namespaces and ServiceAccounts
    # ------------------------------------------------------------------

    def list_namespaces(self):
        resp = self._call("namespace list", self.core.list_namespace)
        return [ns.metadata.name for ns in resp.items]

    def read_binding(self, namespace, name):
        try:
            sa = self._call(
                f"ServiceAccount {namespace}/{name}",
                self.core.read_namespaced_service_account,
                name, namespace,
            )
        except NotFoundError:
            return None
        return CredentialBinding(
            name=sa.metadata.name,
            namespace=sa.metadata.namespace,
            annotations=dict(sa.metadata.annotations or {}),
            resource_version=sa.metadata.resource_version,
        )

    def update_binding(self, binding):
        # resourceVersion in the patch makes the API server reject stale writes with 409
        body = {
            "metadata": {
                "annotations": dict(binding.annotations),
                "resourceVersion": binding.resource_version,
            }
        }
        sa = self._call(
            f"ServiceAccount {binding.namespace}/{binding.name}",
            self.core.patch_namespaced_service_account,
            binding.name, binding.namespace, body,
        )
        return CredentialBinding(
            name=sa.metadata.name,
            namespace=sa.metadata.namespace,
            annotations=dict(sa.metadata.annotations or {}),
            resource_version=sa.metadata.resource_version,
        )

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def list_workloads(self, namespace=None):
        if namespace:
            resp = self._call(
                f"Deployment list in {namespace}",
                self.apps.list_namespaced_deployment,
                namespace,
            )
        else:
            resp = self._call("Deployment list", self.apps.list_deployment_for_all_namespaces)
        return [workload_from_deployment(d) for d in resp.items]

    def patch_workload_template(self, namespace, name, annotations):
        body = {"spec": {"template": {"metadata": {"annotations": dict(annotations)}}}}
        self._call(
            f"Deployment {namespace}/{name}",
            self.apps.patch_namespaced_deployment,
            name, namespace, body,
        )


def workload_from_deployment(deployment: Any) -> WorkloadReference:
    """Convert a V1Deployment into a WorkloadReference."""
    template = deployment.spec.template
    template_meta = template.metadata
    return WorkloadReference(
        name=deployment.metadata.name,
        namespace=deployment.metadata.namespace,
        service_account_name=(template.spec.service_account_name or "default"),
        template_annotations=dict((template_meta.annotations if template_meta else None) or {}),
    )
