"""Single entry point for callers of the authorization engine.

Every mutation is written through the owning component inside its own unit of work and
then reported to :class:`AuditService`; audit failures never undo the change.
"""

from __future__ import annotations

from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder

from app.rolegate.core.context import RequestContext
from app.rolegate.services.advanced_permissions import PermissionContext
from app.rolegate.services.audit import AuditEventPayload, AuditService
from app.rolegate.services.custom_roles import CustomRoleStore
from app.rolegate.services.effective_permissions import EffectivePermissionResolver, PermissionMap
from app.rolegate.services.permission_catalog import PermissionCatalogService
from app.rolegate.services.role_assignments import ASSIGNED, REMOVED, RoleAssignmentManager
from app.rolegate.services.role_hierarchy import RoleHierarchyService


class AuthorizationService:
    def __init__(self, db, context: RequestContext | None = None, cache: dict | None = None):
        self.db = db
        self.context = context
        self.cache = cache if cache is not None else {}
        self.catalog = PermissionCatalogService(db, cache=self.cache)
        self.hierarchy = RoleHierarchyService(db, cache=self.cache)
        self.resolver = EffectivePermissionResolver(db, cache=self.cache)
        self.custom_roles = CustomRoleStore(db, cache=self.cache)
        self.assignments = RoleAssignmentManager(db, cache=self.cache)
        self.audit = AuditService(db)

    def _audit(
        self,
        *,
        tenant_id,
        actor_id,
        action: str,
        entity_type: str,
        entity_id,
        before=None,
        after=None,
        target_id=None,
        metadata: dict | None = None,
        result: str = "success",
    ) -> None:
        self.audit.record_event(
            AuditEventPayload(
                tenant_id=str(tenant_id),
                user_id=str(actor_id) if actor_id else None,
                trace_id=self.context.trace_id if self.context else None,
                actor=str(actor_id),
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                before=jsonable_encoder(before) if before is not None else None,
                after=jsonable_encoder(after) if after is not None else None,
                metadata=jsonable_encoder(metadata) if metadata else None,
                result=result,
                actor_level=self.hierarchy.best_level(actor_id),
                target_id=str(target_id) if target_id is not None else None,
            )
        )

    def resolve_effective_permissions(self, tenant_id, principal_id, actor_id=None) -> PermissionMap:
        return self.resolver.resolve_for_principal(tenant_id, principal_id, actor_id=actor_id)

    def has_permission(
        self,
        tenant_id,
        principal_id,
        key,
        context: PermissionContext | None = None,
    ) -> bool:
        return self.resolver.has_permission(tenant_id, principal_id, key, context)

    def list_assignable_roles(self, tenant_id, actor_id):
        return self.hierarchy.assignable_roles(tenant_id, actor_id)

    def list_visible_roles(
        self,
        tenant_id,
        actor_id,
        *,
        page: int = 1,
        page_size: int | None = None,
        include_deleted: bool = False,
    ):
        return self.hierarchy.visible_roles(
            tenant_id,
            actor_id,
            page=page,
            page_size=page_size,
            include_deleted=include_deleted,
        )

    def permission_catalog(self, tenant_id, actor_id=None):
        if actor_id is not None:
            self.hierarchy.load_actor(tenant_id, actor_id)
        return self.catalog.list_grouped(tenant_id)

    def list_assignments(self, tenant_id, actor_id, principal_id):
        self.hierarchy.load_actor(tenant_id, actor_id)
        return self.assignments.list_assignments(tenant_id, principal_id)

    def list_direct_permissions(self, tenant_id, actor_id, principal_id):
        self.hierarchy.load_actor(tenant_id, actor_id)
        return self.assignments.list_direct(tenant_id, principal_id)

    def assign_role(
        self,
        tenant_id,
        actor_id,
        principal_id,
        role_identifier,
        advanced_permissions: Iterable[Any] | None = None,
        valid_from=None,
        valid_until=None,
    ):
        result = self.assignments.assign(
            tenant_id,
            actor_id,
            principal_id,
            role_identifier,
            advanced_permissions=advanced_permissions,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        if result.outcome == ASSIGNED or advanced_permissions is not None:
            self._audit(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="role.assign",
                entity_type="role_assignment",
                entity_id=result.assignment_id,
                after=result.as_dict(),
                target_id=principal_id,
                metadata={"outcome": result.outcome},
            )
        return result

    def remove_role(
        self,
        tenant_id,
        actor_id,
        principal_id,
        role_identifier,
        advanced_permissions: Iterable[Any] | None = None,
    ):
        result = self.assignments.remove(
            tenant_id,
            actor_id,
            principal_id,
            role_identifier,
            advanced_permissions=advanced_permissions,
        )
        if result.outcome == REMOVED:
            self._audit(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="role.remove",
                entity_type="role_assignment",
                entity_id=result.assignment_id,
                before={"role": result.role.identifier, "active": True},
                after=result.as_dict(),
                target_id=principal_id,
            )
        return result

    def bulk_assign_role(self, tenant_id, actor_id, principal_ids, role_identifier):
        result = self.assignments.bulk_assign(tenant_id, actor_id, principal_ids, role_identifier)
        if result.assigned:
            self._audit(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="role.bulk_assign",
                entity_type="role_assignment",
                entity_id=str(role_identifier),
                after=result.as_dict(),
            )
        return result

    def list_custom_roles(self, tenant_id, actor_id, *, include_deleted: bool = False):
        self.hierarchy.load_actor(tenant_id, actor_id)
        return self.custom_roles.list(tenant_id, include_deleted=include_deleted)

    def get_custom_role(self, tenant_id, actor_id, identifier):
        self.hierarchy.load_actor(tenant_id, actor_id)
        return self.custom_roles.get(tenant_id, identifier)

    def create_custom_role(
        self,
        tenant_id,
        actor_id,
        name: str,
        description: str | None = None,
        grants: Iterable[Any] | None = None,
        level: int | None = None,
    ):
        role = self.custom_roles.create(tenant_id, actor_id, name, description, grants, level)
        self._audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="custom_role.create",
            entity_type="custom_role",
            entity_id=role.id,
            after=role.as_dict(),
        )
        return role

    def update_custom_role(self, tenant_id, actor_id, identifier, patch):
        before = None
        existing = self.custom_roles.find_by_identifier(tenant_id, str(identifier))
        if existing is not None:
            before = self.custom_roles.get(tenant_id, existing.id).as_dict()
        role = self.custom_roles.update(tenant_id, actor_id, identifier, patch)
        self._audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="custom_role.update",
            entity_type="custom_role",
            entity_id=role.id,
            before=before,
            after=role.as_dict(),
        )
        return role

    def delete_custom_role(self, tenant_id, actor_id, identifier, force: bool = False):
        result = self.custom_roles.delete(tenant_id, actor_id, identifier, force=force)
        self._audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="custom_role.delete",
            entity_type="custom_role",
            entity_id=result.id,
            before={"name": result.name},
            after={"deleted_at": result.deleted_at, "assignments_deactivated": result.assignments_deactivated},
            metadata={"force": force},
        )
        return result

    def move_custom_role(self, tenant_id, actor_id, identifier, new_level: int):
        result = self.hierarchy.move(tenant_id, actor_id, identifier, new_level)
        self._audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="custom_role.move",
            entity_type="custom_role",
            entity_id=result.role_id,
            before={"level": result.previous_level},
            after={"level": result.level},
        )
        return result

    def grant_direct_permissions(self, tenant_id, actor_id, principal_id, grants: Iterable[Any]):
        result = self.assignments.grant_direct(tenant_id, actor_id, principal_id, grants)
        self._audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="direct_permission.grant",
            entity_type="direct_grant",
            entity_id=principal_id,
            after=result.as_dict(),
            target_id=principal_id,
        )
        return result

    def revoke_direct_permissions(self, tenant_id, actor_id, principal_id, keys: Iterable[Any]):
        result = self.assignments.revoke_direct(tenant_id, actor_id, principal_id, keys)
        if result.revoked:
            self._audit(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="direct_permission.revoke",
                entity_type="direct_grant",
                entity_id=principal_id,
                before={"revoked": result.revoked},
                after=result.as_dict(),
                target_id=principal_id,
            )
        return result
