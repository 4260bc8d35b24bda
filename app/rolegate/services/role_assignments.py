from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.logging import log_json
from app.rolegate.core.roles import CustomRoleRef, RoleRef
from app.rolegate.db.models import AdvancedPermission, DirectGrant, RoleAssignment
from app.rolegate.db.session import unit_of_work
from app.rolegate.repos.assignments import AssignmentRepository
from app.rolegate.repos.custom_roles import CustomRoleRepository
from app.rolegate.repos.direct_grants import DirectGrantRepository
from app.rolegate.repos.users import UserRepository
from app.rolegate.services.advanced_permissions import (
    GrantSpec,
    OverlaySpec,
    normalize_fields,
    normalize_grants,
    normalize_overlays,
)
from app.rolegate.services.effective_permissions import EffectivePermissionResolver
from app.rolegate.services.permission_catalog import (
    PermissionCatalogService,
    parse_permission_keys,
    try_parse_permission_key,
)
from app.rolegate.services.role_hierarchy import Actor, RoleHierarchyService

logger = logging.getLogger("rolegate.assignments")

ASSIGNED = "assigned"
ALREADY_ASSIGNED = "already_assigned"
REMOVED = "removed"
NOT_ASSIGNED = "not_assigned"


@dataclass(frozen=True)
class AssignmentResult:
    outcome: str
    assignment_id: str
    role: RoleRef
    overlays: list[OverlaySpec] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "assignment_id": self.assignment_id,
            "role": self.role.identifier,
            "role_kind": self.role.kind,
            "overlays": [overlay.as_dict() for overlay in self.overlays],
        }


@dataclass(frozen=True)
class RemovalResult:
    outcome: str
    role: RoleRef
    assignment_id: str | None = None
    overlays: list[OverlaySpec] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "assignment_id": self.assignment_id,
            "role": self.role.identifier,
            "role_kind": self.role.kind,
            "overlays": [overlay.as_dict() for overlay in self.overlays],
        }


@dataclass(frozen=True)
class BulkAssignmentResult:
    total: int
    assigned: list[str] = field(default_factory=list)
    skipped_existing: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    denied: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "assigned": self.assigned,
            "skipped_existing": self.skipped_existing,
            "not_found": self.not_found,
            "denied": self.denied,
        }


@dataclass(frozen=True)
class AssignmentView:
    assignment_id: str
    role: RoleRef
    level: int | None
    assigned_at: datetime
    valid_from: datetime | None
    valid_until: datetime | None
    overlays: list[OverlaySpec] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "assignment_id": self.assignment_id,
            "role": self.role.identifier,
            "role_kind": self.role.kind,
            "level": self.level,
            "assigned_at": self.assigned_at,
            "valid_from": self.valid_from,
            "valid_until": self.valid_until,
            "overlays": [overlay.as_dict() for overlay in self.overlays],
        }


@dataclass(frozen=True)
class DirectGrantResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    revoked: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "revoked": self.revoked,
            "missing": self.missing,
        }


def _overlay_rows(assignment_id, overlays: list[OverlaySpec]) -> list[AdvancedPermission]:
    return [
        AdvancedPermission(
            assignment_id=assignment_id,
            resource=overlay.key.resource,
            action=overlay.key.action,
            scope=overlay.scope,
            conditions=overlay.conditions,
            allowed_fields=list(overlay.allowed_fields) if overlay.allowed_fields is not None else None,
        )
        for overlay in overlays
    ]


def _overlay_specs(rows) -> list[OverlaySpec]:
    specs = []
    for row in rows:
        key = try_parse_permission_key(f"{row.resource}:{row.action}")
        if key is None:
            continue
        specs.append(
            OverlaySpec(
                key=key,
                scope=row.scope,
                conditions=row.conditions,
                allowed_fields=normalize_fields(row.allowed_fields),
            )
        )
    return specs


def _role_columns(role_ref: RoleRef) -> dict:
    if isinstance(role_ref, CustomRoleRef):
        return {"role_type": None, "custom_role_id": role_ref.role_id}
    return {"role_type": role_ref.role.value, "custom_role_id": None}


def _parse_ids(values: Iterable[Any]) -> tuple[list[uuid.UUID], list[str]]:
    parsed: dict[uuid.UUID, None] = {}
    invalid: dict[str, None] = {}
    for value in (str(item).strip() for item in values):
        try:
            parsed[uuid.UUID(value)] = None
        except ValueError:
            invalid[value] = None
    return list(parsed), list(invalid)


class RoleAssignmentManager:
    def __init__(self, db, cache: dict | None = None):
        self.db = db
        self.cache = cache if cache is not None else {}
        self.assignments = AssignmentRepository(db)
        self.custom_roles = CustomRoleRepository(db)
        self.direct_grants = DirectGrantRepository(db)
        self.users = UserRepository(db)
        self.catalog = PermissionCatalogService(db, cache=self.cache)
        self.hierarchy = RoleHierarchyService(db, cache=self.cache)
        self.resolver = EffectivePermissionResolver(db, cache=self.cache)

    def _require_target(self, tenant_id, principal_id):
        target = self.users.get_by_id_in_tenant(principal_id, tenant_id)
        if target is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "principal", "id": str(principal_id)})
        return target

    def _resolve_assignable_role(self, tenant_id, role_identifier) -> RoleRef:
        role_ref = self.hierarchy.resolve_role_ref(tenant_id, role_identifier)
        if isinstance(role_ref, CustomRoleRef):
            role = self.custom_roles.get(tenant_id, role_ref.role_id)
            if role is None or not role.is_active:
                raise AppError(
                    ErrorCatalog.NOT_FOUND,
                    details={"entity": "role", "identifier": str(role_identifier), "reason": "inactive"},
                )
        return role_ref

    def _lock_custom_role(self, tenant_id, role_ref: RoleRef) -> None:
        if not isinstance(role_ref, CustomRoleRef):
            return
        role = self.custom_roles.get(tenant_id, role_ref.role_id, for_update=True)
        if role is None or not role.is_active:
            raise AppError(
                ErrorCatalog.NOT_FOUND,
                details={"entity": "role", "identifier": role_ref.identifier, "reason": "inactive"},
            )

    def _require_can_assign(self, actor: Actor, target, role_ref: RoleRef) -> None:
        if self.hierarchy.can_assign(actor.id, target.id, role_ref):
            return
        raise AppError(
            ErrorCatalog.HIERARCHY_VIOLATION,
            details={
                "actor_level": actor.level,
                "target_level": self.hierarchy.best_level(target.id),
                "role_level": self.hierarchy.level_of(role_ref),
            },
        )

    def _require_above_target(self, actor: Actor, target) -> None:
        if actor.is_top_level:
            return
        target_level = self.hierarchy.best_level(target.id)
        if actor.level > target_level:
            raise AppError(
                ErrorCatalog.HIERARCHY_VIOLATION,
                details={"actor_level": actor.level, "target_level": target_level},
            )

    def _prepare_overlays(self, actor: Actor, tenant_id, advanced_permissions) -> list[OverlaySpec] | None:
        if advanced_permissions is None:
            return None
        overlays = normalize_overlays(advanced_permissions)
        keys = [overlay.key for overlay in overlays]
        self.catalog.require_known(keys, tenant_id)
        self.resolver.enforce_grant_ceiling(actor, keys)
        return overlays

    def assign(
        self,
        tenant_id,
        actor_id,
        principal_id,
        role_identifier,
        advanced_permissions: Iterable[Any] | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
    ) -> AssignmentResult:
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        target = self._require_target(tenant_id, principal_id)
        role_ref = self._resolve_assignable_role(tenant_id, role_identifier)
        self._require_can_assign(actor, target, role_ref)
        if valid_from and valid_until and valid_until <= valid_from:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"field": "valid_until", "message": "must be after valid_from"},
            )
        overlays = self._prepare_overlays(actor, tenant_id, advanced_permissions)

        with unit_of_work(self.db):
            self._lock_custom_role(tenant_id, role_ref)
            existing = self.assignments.find_live(
                target.tenant_id, target.id, **_role_columns(role_ref), for_update=True
            )
            if existing is not None:
                outcome = ALREADY_ASSIGNED
                assignment = existing
            else:
                outcome = ASSIGNED
                assignment = self.assignments.add(
                    RoleAssignment(
                        tenant_id=target.tenant_id,
                        user_id=target.id,
                        assigned_by=actor.id,
                        assigned_at=datetime.utcnow(),
                        valid_from=valid_from,
                        valid_until=valid_until,
                        is_active=True,
                        **_role_columns(role_ref),
                    )
                )
            if overlays is not None:
                self.assignments.replace_overlays(assignment.id, _overlay_rows(assignment.id, overlays))
            assignment_id = str(assignment.id)

        current_overlays = _overlay_specs(self.assignments.list_overlays([assignment_id]))
        self.cache.clear()
        log_json(
            logger,
            {
                "event": "role_assignment",
                "outcome": outcome,
                "tenant_id": str(tenant_id),
                "principal_id": str(target.id),
                "role": role_ref.identifier,
                "overlays": len(current_overlays),
            },
        )
        return AssignmentResult(
            outcome=outcome,
            assignment_id=assignment_id,
            role=role_ref,
            overlays=current_overlays,
        )

    def remove(
        self,
        tenant_id,
        actor_id,
        principal_id,
        role_identifier,
        advanced_permissions: Iterable[Any] | None = None,
    ) -> RemovalResult:
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        target = self._require_target(tenant_id, principal_id)
        role_ref = self.hierarchy.resolve_role_ref(tenant_id, role_identifier)
        self._require_can_assign(actor, target, role_ref)
        overlays = self._prepare_overlays(actor, tenant_id, advanced_permissions or [])

        with unit_of_work(self.db):
            existing = self.assignments.find_live(
                target.tenant_id, target.id, **_role_columns(role_ref), for_update=True
            )
            if existing is None:
                result = RemovalResult(outcome=NOT_ASSIGNED, role=role_ref)
            else:
                existing.is_active = False
                existing.deleted_at = datetime.utcnow()
                self.assignments.replace_overlays(existing.id, _overlay_rows(existing.id, overlays))
                result = RemovalResult(
                    outcome=REMOVED,
                    role=role_ref,
                    assignment_id=str(existing.id),
                    overlays=overlays,
                )

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "role_removal",
                "outcome": result.outcome,
                "tenant_id": str(tenant_id),
                "principal_id": str(target.id),
                "role": role_ref.identifier,
            },
        )
        return result

    def bulk_assign(self, tenant_id, actor_id, principal_ids: Iterable[Any], role_identifier) -> BulkAssignmentResult:
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        role_ref = self._resolve_assignable_role(tenant_id, role_identifier)
        requested, invalid = _parse_ids(principal_ids)
        total = len(requested) + len(invalid)

        users = {str(user.id): user for user in self.users.list_by_ids_in_tenant(requested, tenant_id)}
        not_found = invalid + [str(user_id) for user_id in requested if str(user_id) not in users]
        existing = self.assignments.list_live_user_ids(tenant_id, [user.id for user in users.values()], **_role_columns(role_ref))

        skipped: list[str] = []
        denied: list[str] = []
        to_assign = []
        for user_id in (str(item) for item in requested):
            user = users.get(user_id)
            if user is None:
                continue
            if user_id in existing:
                skipped.append(user_id)
            elif not self.hierarchy.can_assign(actor.id, user.id, role_ref):
                denied.append(user_id)
            else:
                to_assign.append(user)

        now = datetime.utcnow()
        with unit_of_work(self.db):
            if to_assign:
                self._lock_custom_role(tenant_id, role_ref)
            self.assignments.add_all(
                [
                    RoleAssignment(
                        tenant_id=user.tenant_id,
                        user_id=user.id,
                        assigned_by=actor.id,
                        assigned_at=now,
                        is_active=True,
                        **_role_columns(role_ref),
                    )
                    for user in to_assign
                ]
            )

        self.cache.clear()
        result = BulkAssignmentResult(
            total=total,
            assigned=[str(user.id) for user in to_assign],
            skipped_existing=skipped,
            not_found=not_found,
            denied=denied,
        )
        log_json(
            logger,
            {
                "event": "role_bulk_assignment",
                "tenant_id": str(tenant_id),
                "role": role_ref.identifier,
                "total": result.total,
                "assigned": len(result.assigned),
                "skipped_existing": len(result.skipped_existing),
                "not_found": len(result.not_found),
                "denied": len(result.denied),
            },
        )
        return result

    def list_assignments(self, tenant_id, principal_id) -> list[AssignmentView]:
        target = self._require_target(tenant_id, principal_id)
        views = []
        for assignment in self.assignments.list_current_for_user(target.tenant_id, target.id):
            if assignment.custom_role_id is not None:
                role = self.custom_roles.get_by_id(assignment.custom_role_id)
                role_ref = CustomRoleRef(role_id=assignment.custom_role_id, name=role.name if role else "")
            else:
                role_ref = self.hierarchy.resolve_role_ref(tenant_id, assignment.role_type)
            views.append(
                AssignmentView(
                    assignment_id=str(assignment.id),
                    role=role_ref,
                    level=self.hierarchy.level_of_assignment(assignment),
                    assigned_at=assignment.assigned_at,
                    valid_from=assignment.valid_from,
                    valid_until=assignment.valid_until,
                    overlays=_overlay_specs(self.assignments.list_overlays([assignment.id])),
                )
            )
        return views

    def list_direct(self, tenant_id, principal_id) -> list[GrantSpec]:
        target = self._require_target(tenant_id, principal_id)
        grants = []
        for row in self.direct_grants.list_for_user(target.tenant_id, target.id):
            key = try_parse_permission_key(row.permission.code)
            if key is None:
                continue
            grants.append(
                GrantSpec(
                    key=key,
                    scope=row.scope,
                    conditions=row.conditions,
                    allowed_fields=normalize_fields(row.allowed_fields),
                )
            )
        return grants

    def grant_direct(self, tenant_id, actor_id, principal_id, grants: Iterable[Any]) -> DirectGrantResult:
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        self.hierarchy.require_role_admin(actor)
        target = self._require_target(tenant_id, principal_id)
        self._require_above_target(actor, target)
        specs = normalize_grants(grants)
        keys = [spec.key for spec in specs]
        rows = self.catalog.require_known(keys, tenant_id)
        self.resolver.enforce_grant_ceiling(actor, keys)

        created: list[str] = []
        updated: list[str] = []
        with unit_of_work(self.db):
            for spec in specs:
                permission = rows[spec.key]
                fields = list(spec.allowed_fields) if spec.allowed_fields is not None else None
                existing = self.direct_grants.get(target.tenant_id, target.id, permission.id)
                if existing is not None:
                    existing.scope = spec.scope
                    existing.conditions = spec.conditions
                    existing.allowed_fields = fields
                    existing.granted_by = actor.id
                    updated.append(spec.key.code)
                    continue
                self.direct_grants.add(
                    DirectGrant(
                        tenant_id=target.tenant_id,
                        user_id=target.id,
                        permission_id=permission.id,
                        scope=spec.scope,
                        conditions=spec.conditions,
                        allowed_fields=fields,
                        granted_by=actor.id,
                    )
                )
                created.append(spec.key.code)

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "direct_grant",
                "tenant_id": str(tenant_id),
                "principal_id": str(target.id),
                "created": len(created),
                "updated": len(updated),
            },
        )
        return DirectGrantResult(created=created, updated=updated)

    def revoke_direct(self, tenant_id, actor_id, principal_id, keys: Iterable[Any]) -> DirectGrantResult:
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        self.hierarchy.require_role_admin(actor)
        target = self._require_target(tenant_id, principal_id)
        self._require_above_target(actor, target)
        parsed = parse_permission_keys(keys)
        self.resolver.enforce_grant_ceiling(actor, parsed)
        rows = {row.code: row for row in self.catalog.repo.list_by_codes([key.code for key in parsed], tenant_id)}

        revoked: list[str] = []
        missing: list[str] = []
        with unit_of_work(self.db):
            for key in parsed:
                permission = rows.get(key.code)
                existing = (
                    self.direct_grants.get(target.tenant_id, target.id, permission.id)
                    if permission is not None
                    else None
                )
                if existing is None:
                    missing.append(key.code)
                    continue
                self.direct_grants.delete(existing)
                revoked.append(key.code)

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "direct_revoke",
                "tenant_id": str(tenant_id),
                "principal_id": str(target.id),
                "revoked": len(revoked),
                "missing": len(missing),
            },
        )
        return DirectGrantResult(revoked=revoked, missing=missing)
