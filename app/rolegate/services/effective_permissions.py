from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.logging import log_json
from app.rolegate.core.roles import ALL_PERMISSIONS, SYSTEM_ROLES, SystemRole
from app.rolegate.core.scope import same_id
from app.rolegate.repos.assignments import AssignmentRepository
from app.rolegate.repos.custom_roles import CustomRoleRepository
from app.rolegate.repos.direct_grants import DirectGrantRepository
from app.rolegate.repos.permissions import PermissionRepository
from app.rolegate.repos.users import UserRepository
from app.rolegate.services.advanced_permissions import (
    EffectivePermission,
    PermissionContext,
    apply_grant,
    apply_overlay,
    check_context,
    merge_entries,
)
from app.rolegate.services.permission_catalog import (
    PermissionCatalogService,
    PermissionKey,
    parse_permission_key,
    try_parse_permission_key,
)
from app.rolegate.services.role_hierarchy import RoleHierarchyService

logger = logging.getLogger("rolegate.effective_permissions")


@dataclass(frozen=True)
class PermissionMap:
    """Complete key space of a tenant with one resolved entry per key."""

    entries: dict[PermissionKey, EffectivePermission]

    def get(self, key) -> EffectivePermission | None:
        return self.entries.get(parse_permission_key(key))

    def is_granted(self, key) -> bool:
        entry = self.get(key)
        return bool(entry and entry.granted)

    def granted_keys(self) -> set[PermissionKey]:
        return {key for key, entry in self.entries.items() if entry.granted}

    def as_list(self) -> list[dict]:
        return [self.entries[key].as_dict() for key in sorted(self.entries)]

    def __iter__(self) -> Iterator[EffectivePermission]:
        for key in sorted(self.entries):
            yield self.entries[key]

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key) -> bool:
        return parse_permission_key(key) in self.entries


class EffectivePermissionResolver:
    def __init__(self, db, cache: dict | None = None):
        self.db = db
        self.cache = cache if cache is not None else {}
        self.catalog = PermissionCatalogService(db, cache=self.cache)
        self.hierarchy = RoleHierarchyService(db, cache=self.cache)
        self.permissions = PermissionRepository(db)
        self.assignments = AssignmentRepository(db)
        self.custom_roles = CustomRoleRepository(db)
        self.direct_grants = DirectGrantRepository(db)
        self.users = UserRepository(db)

    def _key_space(self, tenant_id, *, read_only: bool = False) -> dict[PermissionKey, EffectivePermission]:
        return {
            key: EffectivePermission(key=key)
            for key in self.catalog.list_keys(tenant_id)
            if not read_only or key.is_read_only
        }

    def _system_role_grants(self, role_name: str, tenant_id):
        cache_key = f"system_grants:{tenant_id}:{role_name}"
        if cache_key in self.cache:
            return self.cache[cache_key]
        grants = list(self.permissions.list_system_role_grants(role_name, tenant_id))
        if not grants and tenant_id is not None:
            grants = list(self.permissions.list_system_role_grants(role_name, None))
        self.cache[cache_key] = grants
        return grants

    @staticmethod
    def _apply_rows(entries: dict, rows, source: str) -> None:
        for row in rows:
            key = try_parse_permission_key(row.permission.code)
            if key is None or key not in entries:
                continue
            entries[key] = apply_grant(entries[key], row, source)

    def resolve_for_assignment(self, assignment) -> PermissionMap:
        tenant_id = assignment.tenant_id
        if assignment.custom_role_id is not None:
            entries = self._key_space(tenant_id)
            role = self.custom_roles.get_by_id(assignment.custom_role_id)
            if role is None or role.deleted_at is not None or not role.is_active:
                return PermissionMap(entries)
            self._apply_rows(entries, self.permissions.list_custom_role_grants(role.id), f"custom:{role.name}")
        else:
            system_role = SystemRole.parse(assignment.role_type)
            entries = self._key_space(tenant_id, read_only=system_role is None)
            source = f"system:{assignment.role_type}"
            if system_role is not None and ALL_PERMISSIONS in SYSTEM_ROLES[system_role].permissions:
                for key, entry in entries.items():
                    entries[key] = apply_grant(entry, entry, source)
            self._apply_rows(entries, self._system_role_grants(assignment.role_type, tenant_id), source)

        overlay_source = f"overlay:{assignment.id}"
        for overlay in self.assignments.list_overlays([assignment.id]):
            key = try_parse_permission_key(f"{overlay.resource}:{overlay.action}")
            if key is None:
                continue
            if key not in entries:
                log_json(
                    logger,
                    {"event": "overlay_outside_key_space", "assignment_id": str(assignment.id), "code": key.code},
                    level=logging.WARNING,
                )
                continue
            entries[key] = apply_overlay(entries[key], overlay, overlay_source)
        return PermissionMap(entries)

    def resolve_for_principal(self, tenant_id, principal_id, actor_id=None) -> PermissionMap:
        if actor_id is not None:
            self.hierarchy.load_actor(tenant_id, actor_id)
        user = self.users.get_by_id(principal_id)
        if user is None or not same_id(user.tenant_id, tenant_id):
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "principal", "id": str(principal_id)})

        cache_key = f"principal_permissions:{tenant_id}:{principal_id}"
        if cache_key in self.cache:
            return self.cache[cache_key]

        entries = self._key_space(user.tenant_id)
        if user.is_active:
            for assignment in self.assignments.list_current_for_user(user.tenant_id, user.id):
                for key, entry in self.resolve_for_assignment(assignment).entries.items():
                    if key in entries:
                        entries[key] = merge_entries(entries[key], entry)
            for grant in self.direct_grants.list_for_user(user.tenant_id, user.id):
                key = try_parse_permission_key(grant.permission.code)
                if key is None or key not in entries:
                    continue
                entries[key] = apply_grant(entries[key], grant, "direct")

        result = PermissionMap(entries)
        self.cache[cache_key] = result
        return result

    def granted_keys(self, tenant_id, principal_id) -> set[PermissionKey]:
        return self.resolve_for_principal(tenant_id, principal_id).granted_keys()

    def has_permission(self, tenant_id, principal_id, key, context: PermissionContext | None = None) -> bool:
        parsed = parse_permission_key(key)
        entry = self.resolve_for_principal(tenant_id, principal_id).entries.get(parsed)
        if entry is None:
            return False
        return check_context(entry, context)

    def invalidate(self) -> None:
        self.cache.clear()

    def enforce_grant_ceiling(self, actor, keys) -> None:
        """Reject keys the actor does not hold itself; top-level actors are exempt."""
        if actor.is_top_level or not keys:
            return
        held = self.granted_keys(actor.tenant_id, actor.id)
        disallowed = sorted({key.code for key in keys if key not in held})
        if disallowed:
            raise AppError(ErrorCatalog.HIERARCHY_VIOLATION, details={"disallowed": disallowed})
