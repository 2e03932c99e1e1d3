import pytest

from scripts.identity_sync.errors import StoreError
from scripts.identity_sync.restart import WorkloadRestartTrigger

MARKER = "azure.workload.identity/restart"
NAME = "workload-identity-app1"


@pytest.fixture
def trigger(store, index, controller_config):
    return WorkloadRestartTrigger(store, index, controller_config, clock=lambda: "2026-01-01T00:00:00+00:00")


def test_restart_patches_every_referencing_workload(store, index, trigger):
    store.add_workload("ns", "api", NAME)
    store.add_workload("ns", "worker", NAME)
    store.add_workload("ns", "unrelated", "default")
    index.rebuild(store)

    assert trigger.restart_dependents(NAME, "ns") == 2

    assert store.workloads[("ns", "api")].template_annotations == {MARKER: "2026-01-01T00:00:00+00:00"}
    assert store.workloads[("ns", "worker")].template_annotations == {MARKER: "2026-01-01T00:00:00+00:00"}
    assert store.workloads[("ns", "unrelated")].template_annotations == {}


def test_restart_only_looks_in_the_given_namespace(store, index, trigger):
    store.add_workload("other", "api", NAME)
    index.rebuild(store)

    assert trigger.restart_dependents(NAME, "ns") == 0
    assert store.writes == []


def test_restart_continues_after_patch_failure(store, index, trigger):
    store.add_workload("ns", "api", NAME)
    store.add_workload("ns", "worker", NAME)
    index.rebuild(store)
    store.fail_patch["api"] = StoreError("conflict", status=409)

    assert trigger.restart_dependents(NAME, "ns") == 1
    assert store.writes == ["workload:ns/worker"]


def test_default_clock_produces_utc_timestamp(store, index, controller_config):
    store.add_workload("ns", "api", NAME)
    index.rebuild(store)

    WorkloadRestartTrigger(store, index, controller_config).restart_dependents(NAME, "ns")

    assert store.workloads[("ns", "api")].template_annotations[MARKER].endswith("+00:00")
