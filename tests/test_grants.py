import pytest

from conftest import CLUSTER_GRANT, NAMESPACED_GRANT, grant_object
from scripts.identity_sync.errors import ConflictError, StoreError, ValidationError
from scripts.identity_sync.grants import AuthorizationGrantSynchronizer
from scripts.identity_sync.resolver import SchemaResolver


@pytest.fixture
def sync(store):
    return AuthorizationGrantSynchronizer(store, SchemaResolver(store))


def _for_provider(store, variant, name, namespace=""):
    return store.custom(variant, namespace, name)["spec"]["forProvider"]


def test_sync_rejects_empty_principal(sync):
    with pytest.raises(ValidationError, match="principalID is empty"):
        sync.sync("app1", "")


def test_sync_updates_stale_grant(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra", "app1", "old"))

    assert sync.sync("app1", "p1") is True

    fp = _for_provider(store, CLUSTER_GRANT, "ra")
    assert fp["principalID"] == "p1"
    assert fp["roleDefinitionName"] == "Reader"


def test_sync_preserves_alternate_casing(store, sync):
    store.add_custom(
        NAMESPACED_GRANT,
        grant_object("ra", "app1", "old", field_name="principalId", namespace="team-a"),
    )

    sync.sync("app1", "p1")

    fp = _for_provider(store, NAMESPACED_GRANT, "ra", "team-a")
    assert fp["principalId"] == "p1"
    assert "principalID" not in fp


def test_sync_fills_unset_principal_with_variant_casing(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra", "app1", principal_id=None))

    assert sync.sync("app1", "p1") is True
    assert _for_provider(store, CLUSTER_GRANT, "ra")[CLUSTER_GRANT.principal_field] == "p1"


def test_sync_leaves_matching_grants_alone(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra", "app1", "p1"))

    assert sync.sync("app1", "p1") is False
    assert store.writes == []


def test_sync_ignores_grants_of_other_applications(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra", "app2", "old"))

    assert sync.sync("app1", "p1") is False
    assert _for_provider(store, CLUSTER_GRANT, "ra")["principalID"] == "old"


def test_sync_updates_grants_across_scopes(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra-cluster", "app1", "old"))
    store.add_custom(NAMESPACED_GRANT, grant_object("ra-ns", "app1", "old", namespace="team-a"))

    sync.sync("app1", "p1")

    assert store.writes == [
        "replace:authorization.azure.upbound.io:/ra-cluster",
        "replace:authorization.azure.m.upbound.io:team-a/ra-ns",
    ]


def test_sync_continues_after_write_failure(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra-a", "app1", "old"))
    store.add_custom(CLUSTER_GRANT, grant_object("ra-b", "app1", "old"))
    store.fail_replace["ra-a"] = StoreError("forbidden", status=403)

    assert sync.sync("app1", "p1") is True
    assert _for_provider(store, CLUSTER_GRANT, "ra-a")["principalID"] == "old"
    assert _for_provider(store, CLUSTER_GRANT, "ra-b")["principalID"] == "p1"


def test_sync_reports_no_change_when_every_write_fails(store, sync):
    store.add_custom(CLUSTER_GRANT, grant_object("ra", "app1", "old"))
    store.fail_replace["ra"] = ConflictError("stale")

    assert sync.sync("app1", "p1") is False


def test_sync_skips_grant_modified_since_it_was_listed(store, sync, monkeypatch, caplog):
    store.add_custom(CLUSTER_GRANT, grant_object("ra-a", "app1", "old"))
    store.add_custom(CLUSTER_GRANT, grant_object("ra-b", "app1", "old"))
    list_custom_objects = store.list_custom_objects

    def list_then_modify(variant, label_selector):
        items = list_custom_objects(variant, label_selector)
        if variant is CLUSTER_GRANT:
            # another writer bumps ra-a after the list was taken
            store.custom(CLUSTER_GRANT, "", "ra-a")["metadata"]["resourceVersion"] = "999"
        return items

    monkeypatch.setattr(store, "list_custom_objects", list_then_modify)

    assert sync.sync("app1", "p1") is True
    assert _for_provider(store, CLUSTER_GRANT, "ra-a")["principalID"] == "old"
    assert _for_provider(store, CLUSTER_GRANT, "ra-b")["principalID"] == "p1"
    assert "ra-a was modified concurrently" in caplog.text
