"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev)
  - In-cluster service account credentials (no kubeconfig needed in a pod)
  - A kubeconfig file and context
  - An explicit API host with a bearer token, where the token may be an
    AWS Secrets Manager (aws-secret://name#key) or GCP Secret Manager
    (gcp-secret://name) reference
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from scripts.identity_sync.secrets import resolve_secret


@dataclass(frozen=True)
class KubeConfig:
    kubeconfig_path: Optional[str] = None
    context: Optional[str] = None
    api_host: Optional[str] = None
    api_token: Optional[str] = None  # already resolved, never a secret reference
    verify_ssl: bool = True


@dataclass(frozen=True)
class ControllerConfig:
    requeue_changed_s: int = 60
    requeue_steady_s: int = 120
    requeue_unprovisioned_s: int = 300
    requeue_error_s: int = 60
    client_id_annotation: str = "azure.workload.identity/client-id"
    restart_annotation: str = "azure.workload.identity/restart"
    binding_prefix: str = "workload-identity-"


@dataclass(frozen=True)
class SchedulerConfig:
    resync_interval_min: int = 10
    watch_timeout_s: int = 300
    max_backoff_s: int = 900
    misfire_grace_time: int = 60


@dataclass(frozen=True)
class SyncConfig:
    kube: KubeConfig = field(default_factory=KubeConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def load_config() -> SyncConfig:
    """Load configuration from environment variables.

    Cluster credentials are picked in this order: explicit API host and token,
    then KUBECONFIG/KUBE_CONTEXT, then in-cluster service account.
    """
    load_dotenv()

    # Explicit API host (optional) -- token may come from a secret manager
    api_host = os.environ.get("KUBE_API_HOST") or None
    api_token = None
    token_raw = os.environ.get("KUBE_API_TOKEN", "")
    if token_raw:
        api_token = resolve_secret(token_raw)
    if api_host and not api_token:
        raise ValueError("KUBE_API_TOKEN is required when KUBE_API_HOST is set")

    kube = KubeConfig(
        kubeconfig_path=os.environ.get("KUBECONFIG") or None,
        context=os.environ.get("KUBE_CONTEXT") or None,
        api_host=api_host,
        api_token=api_token,
        verify_ssl=os.environ.get("KUBE_VERIFY_SSL", "true").lower() != "false",
    )

    defaults = ControllerConfig()
    controller = ControllerConfig(
        requeue_changed_s=_int_env("REQUEUE_CHANGED_SECONDS", defaults.requeue_changed_s),
        requeue_steady_s=_int_env("REQUEUE_STEADY_SECONDS", defaults.requeue_steady_s),
        requeue_unprovisioned_s=_int_env(
            "REQUEUE_UNPROVISIONED_SECONDS", defaults.requeue_unprovisioned_s
        ),
        requeue_error_s=_int_env("REQUEUE_ERROR_SECONDS", defaults.requeue_error_s),
        client_id_annotation=os.environ.get("CLIENT_ID_ANNOTATION", defaults.client_id_annotation),
        restart_annotation=os.environ.get("RESTART_ANNOTATION", defaults.restart_annotation),
        binding_prefix=os.environ.get("BINDING_PREFIX", defaults.binding_prefix),
    )

    sched_defaults = SchedulerConfig()
    scheduler = SchedulerConfig(
        resync_interval_min=_int_env("RESYNC_INTERVAL_MIN", sched_defaults.resync_interval_min),
        watch_timeout_s=_int_env("WATCH_TIMEOUT_SECONDS", sched_defaults.watch_timeout_s),
        max_backoff_s=_int_env("MAX_BACKOFF_SECONDS", sched_defaults.max_backoff_s),
        misfire_grace_time=_int_env("MISFIRE_GRACE_SECONDS", sched_defaults.misfire_grace_time),
    )

    return SyncConfig(
        kube=kube,
        controller=controller,
        scheduler=scheduler,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )
