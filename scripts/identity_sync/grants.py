"""Mirror the identity principal id onto RoleAssignments."""

from __future__ import annotations

import copy
import logging

from scripts.identity_sync.errors import StoreError, ValidationError
from scripts.identity_sync.models import AuthorizationGrant
from scripts.identity_sync.names import grant_selector
from scripts.identity_sync.resolver import SchemaResolver
from scripts.identity_sync.schemas import FOR_PROVIDER, set_nested
from scripts.identity_sync.store import ObjectStore

logger = logging.getLogger("identity_sync.grants")


class AuthorizationGrantSynchronizer:
    def __init__(self, store: ObjectStore, resolver: SchemaResolver) -> None:
        self.store = store
        self.resolver = resolver

    def sync(self, app_key: str, principal_id: str) -> bool:
        """Point every RoleAssignment labelled for ``app_key`` at ``principal_id``.

        Grants are independent: a failed write is logged and the next grant
        is processed. Returns True when at least one grant was written.
        """
        if not principal_id:
            raise ValidationError("principalID is empty")

        changed = False
        for grant in self.resolver.resolve_grants(grant_selector(app_key)):
            if grant.principal_id == principal_id:
                continue
            if self._write(grant, principal_id):
                changed = True
        return changed

    def _write(self, grant: AuthorizationGrant, principal_id: str) -> bool:
        extra = {
            "grant": grant.name,
            "namespace": grant.namespace or None,
            "api_group": grant.variant.group,
            "field_name": grant.principal_field,
        }
        # Same field name as read, so the object keeps its casing
        body = copy.deepcopy(grant.body)
        set_nested(body, principal_id, *FOR_PROVIDER, grant.principal_field)
        try:
            self.store.replace_custom_object(grant.variant, body)
        except StoreError as exc:
            logger.error("Failed to update RoleAssignment: %s", exc, extra=extra)
            return False
        logger.info("Updated RoleAssignment principal", extra=extra)
        return True
