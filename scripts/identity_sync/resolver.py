"""Schema-variant resolution for identities and grants.

Both resources have lived under more than one API group and scope, and their
id fields have appeared in two casings. The resolver hides that behind two
calls driven by the variant lists in ``schemas``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from scripts.identity_sync.errors import StoreError
from scripts.identity_sync.models import (
    AuthorizationGrant,
    IdentitySource,
    ObjectKey,
    ResolvedIdentity,
)
from scripts.identity_sync.names import extract_app_key
from scripts.identity_sync.schemas import (
    AT_PROVIDER,
    CLIENT_ID_FIELDS,
    FOR_PROVIDER,
    GRANT_VARIANTS,
    IDENTITY_VARIANTS,
    PRINCIPAL_ID_FIELDS,
    SchemaVariant,
    nested_get,
    probe_string,
)
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.resolver")


class SchemaResolver:
    def __init__(
        self,
        store: ObjectStore,
        identity_variants: Sequence[SchemaVariant] = IDENTITY_VARIANTS,
        grant_variants: Sequence[SchemaVariant] = GRANT_VARIANTS,
    ) -> None:
        self.store = store
        self.identity_variants = tuple(identity_variants)
        self.grant_variants = tuple(grant_variants)

    def resolve_identity(self, key: ObjectKey) -> Optional[ResolvedIdentity]:
        """Fetch the identity from the first variant that has it.

        Returns None when no variant has the object. Errors other than
        not-found are logged and the next variant is tried, since an older or
        newer group may still serve it.
        """
        for variant in self.identity_variants:
            if variant.namespaced and not key.namespace:
                continue
            try:
                obj = self.store.get_custom_object(variant, key.namespace, key.name)
            except StoreError as exc:
                logger.warning(
                    "Error fetching identity from %s: %s",
                    variant.group,
                    exc,
                    extra={"identity": str(key), "api_group": variant.group},
                )
                continue
            if obj is None:
                logger.debug(
                    "Identity not found in %s",
                    variant.group,
                    extra={"identity": str(key), "api_group": variant.group},
                )
                continue

            source = identity_from_object(obj, variant)
            logger.info(
                "Found identity in %s",
                variant.group,
                extra={"identity": str(key), "api_group": variant.group},
            )
            return ResolvedIdentity(source=source, app_key=extract_app_key(source.display_name))

        return None

    def resolve_grants(self, label_selector: str) -> list[AuthorizationGrant]:
        """List matching grants from every variant and concatenate them."""
        grants: list[AuthorizationGrant] = []
        for variant in self.grant_variants:
            try:
                items = self.store.list_custom_objects(variant, label_selector)
            except StoreError as exc:
                logger.debug(
                    "Could not list grants from %s: %s",
                    variant.group,
                    exc,
                    extra={"api_group": variant.group},
                )
                continue
            logger.info(
                "Found %d grants in %s",
                len(items),
                variant.group,
                extra={"api_group": variant.group},
            )
            grants.extend(grant_from_object(item, variant) for item in items)
        return grants


def identity_from_object(obj: dict[str, Any], variant: SchemaVariant) -> IdentitySource:
    _, client_id = probe_string(obj, AT_PROVIDER, CLIENT_ID_FIELDS)
    _, principal_id = probe_string(obj, AT_PROVIDER, PRINCIPAL_ID_FIELDS)
    display_name = nested_get(obj, *FOR_PROVIDER, "name")
    return IdentitySource(
        display_name=display_name if isinstance(display_name, str) else "",
        variant=variant,
        client_id=client_id or None,
        principal_id=principal_id or None,
    )


def grant_from_object(obj: dict[str, Any], variant: SchemaVariant) -> AuthorizationGrant:
    field_name, principal_id = probe_string(obj, FOR_PROVIDER, PRINCIPAL_ID_FIELDS)
    metadata = obj.get("metadata") or {}
    return AuthorizationGrant(
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", "") if variant.namespaced else "",
        variant=variant,
        principal_field=field_name or variant.principal_field,
        principal_id=principal_id,
        labels=dict(metadata.get("labels") or {}),
        body=obj,
    )
