from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from app.rolegate.core.config import settings
from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.logging import log_json
from app.rolegate.core.roles import SystemRole, derived_identifier
from app.rolegate.db.models import CustomRole, RoleGrant
from app.rolegate.db.session import unit_of_work
from app.rolegate.repos.assignments import AssignmentRepository
from app.rolegate.repos.custom_roles import CustomRoleRepository
from app.rolegate.repos.permissions import PermissionRepository
from app.rolegate.services.advanced_permissions import GrantSpec, normalize_fields, normalize_grants
from app.rolegate.services.effective_permissions import EffectivePermissionResolver
from app.rolegate.services.permission_catalog import PermissionCatalogService, try_parse_permission_key
from app.rolegate.services.role_hierarchy import Actor, RoleHierarchyService

logger = logging.getLogger("rolegate.custom_roles")


@dataclass(frozen=True)
class CustomRoleDetail:
    id: str
    name: str
    identifier: str
    description: str | None
    level: int
    stored_level: int | None
    is_active: bool
    grants: list[GrantSpec]
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "identifier": self.identifier,
            "description": self.description,
            "level": self.level,
            "stored_level": self.stored_level,
            "is_active": self.is_active,
            "grants": [grant.as_dict() for grant in self.grants],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }


@dataclass(frozen=True)
class CustomRolePatch:
    name: str | None = None
    description: str | None = None
    level: int | None = None
    is_active: bool | None = None
    grants: list[Any] | None = None

    @classmethod
    def from_payload(cls, payload) -> "CustomRolePatch":
        if isinstance(payload, CustomRolePatch):
            return payload
        if isinstance(payload, Mapping):
            return cls(**{key: value for key, value in payload.items() if key in cls.__dataclass_fields__})
        return cls(**payload.model_dump(exclude_unset=True))


@dataclass(frozen=True)
class DeletionResult:
    id: str
    name: str
    deleted_at: datetime
    assignments_deactivated: int = 0


@dataclass
class _ResolvedGrants:
    specs: list[GrantSpec] = field(default_factory=list)
    rows: dict = field(default_factory=dict)


class CustomRoleStore:
    def __init__(self, db, cache: dict | None = None):
        self.db = db
        self.cache = cache if cache is not None else {}
        self.repo = CustomRoleRepository(db)
        self.permissions = PermissionRepository(db)
        self.assignments = AssignmentRepository(db)
        self.catalog = PermissionCatalogService(db, cache=self.cache)
        self.hierarchy = RoleHierarchyService(db, cache=self.cache)
        self.resolver = EffectivePermissionResolver(db, cache=self.cache)

    def find_by_identifier(self, tenant_id, identifier: str) -> CustomRole | None:
        return self.repo.find_by_identifier(tenant_id, identifier)

    def get(self, tenant_id, identifier) -> CustomRoleDetail:
        return self._detail(self._require(tenant_id, identifier))

    def list(self, tenant_id, *, include_deleted: bool = False) -> list[CustomRoleDetail]:
        return [self._detail(role) for role in self.repo.list_by_tenant(tenant_id, include_deleted=include_deleted)]

    def create(
        self,
        tenant_id,
        actor_id,
        name: str,
        description: str | None = None,
        grants: Iterable[Any] | None = None,
        level: int | None = None,
    ) -> CustomRoleDetail:
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        self.hierarchy.require_role_admin(actor)
        name = self._validate_name(tenant_id, name)
        self._check_level(actor, level if level is not None else self.hierarchy.default_custom_level(tenant_id))
        resolved = self._resolve_grants(actor, tenant_id, grants)

        now = datetime.utcnow()
        with unit_of_work(self.db):
            role = self.repo.add(
                CustomRole(
                    tenant_id=tenant_id,
                    name=name,
                    description=description,
                    level=level,
                    is_active=True,
                    created_by=actor.id,
                    updated_by=actor.id,
                    created_at=now,
                    updated_at=now,
                )
            )
            for row in self._grant_rows(role, resolved):
                self.db.add(row)

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "custom_role_created",
                "tenant_id": str(tenant_id),
                "role_id": str(role.id),
                "grants": len(resolved.specs),
            },
        )
        return self._detail(role)

    def update(self, tenant_id, actor_id, identifier, patch) -> CustomRoleDetail:
        self._reject_system_role(identifier)
        patch = CustomRolePatch.from_payload(patch)
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        self.hierarchy.require_role_admin(actor)
        role = self._require(tenant_id, identifier)
        self._check_role_below_actor(actor, role)

        name = None
        if patch.name is not None and patch.name.strip() != role.name:
            name = self._validate_name(tenant_id, patch.name, exclude_id=role.id)
        if patch.level is not None:
            self._check_level(actor, patch.level)
        resolved = self._resolve_grants(actor, tenant_id, patch.grants) if patch.grants is not None else None

        with unit_of_work(self.db):
            role = self.repo.get(tenant_id, role.id, for_update=True)
            if name is not None:
                role.name = name
            if patch.description is not None:
                role.description = patch.description
            if patch.level is not None:
                role.level = patch.level
            if patch.is_active is not None:
                role.is_active = patch.is_active
            if resolved is not None:
                self.permissions.replace_custom_role_grants(role.id, self._grant_rows(role, resolved))
            role.updated_by = actor.id
            role.updated_at = datetime.utcnow()

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "custom_role_updated",
                "tenant_id": str(tenant_id),
                "role_id": str(role.id),
                "grants_replaced": resolved is not None,
            },
        )
        return self._detail(role)

    def delete(self, tenant_id, actor_id, identifier, force: bool = False) -> DeletionResult:
        self._reject_system_role(identifier)
        actor = self.hierarchy.load_actor(tenant_id, actor_id)
        self.hierarchy.require_role_admin(actor)
        role = self._require(tenant_id, identifier)
        self._check_role_below_actor(actor, role)

        now = datetime.utcnow()
        with unit_of_work(self.db):
            role = self.repo.get(tenant_id, role.id, for_update=True)
            if role is None:
                raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "role", "identifier": str(identifier)})
            in_use = self.assignments.count_live_for_custom_role(role.id, now=now)
            if in_use and not force:
                raise AppError(ErrorCatalog.ROLE_IN_USE, details={"count": in_use, "role_id": str(role.id)})
            deactivated = self.assignments.deactivate_for_custom_role(role.id, now=now)
            self.permissions.delete_custom_role_grants(role.id)
            role.is_active = False
            role.deleted_at = now
            role.updated_by = actor.id
            role.updated_at = now

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "custom_role_deleted",
                "tenant_id": str(tenant_id),
                "role_id": str(role.id),
                "forced": force,
                "assignments_deactivated": deactivated,
            },
        )
        return DeletionResult(id=str(role.id), name=role.name, deleted_at=now, assignments_deactivated=deactivated)

    @staticmethod
    def _reject_system_role(identifier) -> None:
        role = SystemRole.parse(str(identifier))
        if role is not None:
            raise AppError(ErrorCatalog.SYSTEM_ROLE_IMMUTABLE, details={"role": role.value})

    def _require(self, tenant_id, identifier) -> CustomRole:
        role = self.find_by_identifier(tenant_id, str(identifier))
        if role is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "role", "identifier": str(identifier)})
        return role

    def _validate_name(self, tenant_id, name: str | None, *, exclude_id=None) -> str:
        name = (name or "").strip()
        if not name:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"field": "name", "message": "name is required"})
        if SystemRole.parse(derived_identifier(name)) is not None:
            raise AppError(ErrorCatalog.DUPLICATE_NAME, details={"name": name, "conflict": "system_role"})
        if self.repo.get_by_name(tenant_id, name, exclude_id=exclude_id) is not None:
            raise AppError(ErrorCatalog.DUPLICATE_NAME, details={"name": name})
        return name

    @staticmethod
    def _check_level(actor: Actor, level: int) -> None:
        if level < settings.CUSTOM_ROLE_MIN_LEVEL or level < actor.level:
            raise AppError(
                ErrorCatalog.HIERARCHY_VIOLATION,
                details={
                    "requested_level": level,
                    "actor_level": actor.level,
                    "min_level": settings.CUSTOM_ROLE_MIN_LEVEL,
                },
            )

    def _check_role_below_actor(self, actor: Actor, role: CustomRole) -> None:
        role_level = self.hierarchy.custom_role_level(role)
        if role_level < actor.level:
            raise AppError(
                ErrorCatalog.HIERARCHY_VIOLATION,
                details={"role_level": role_level, "actor_level": actor.level},
            )

    def _resolve_grants(self, actor: Actor, tenant_id, grants) -> _ResolvedGrants:
        specs = normalize_grants(grants)
        keys = [spec.key for spec in specs]
        rows = self.catalog.require_known(keys, tenant_id)
        self.resolver.enforce_grant_ceiling(actor, keys)
        return _ResolvedGrants(specs=specs, rows=rows)

    @staticmethod
    def _grant_rows(role: CustomRole, resolved: _ResolvedGrants) -> list[RoleGrant]:
        return [
            RoleGrant(
                tenant_id=role.tenant_id,
                custom_role_id=role.id,
                permission_id=resolved.rows[spec.key].id,
                scope=spec.scope,
                conditions=spec.conditions,
                allowed_fields=list(spec.allowed_fields) if spec.allowed_fields is not None else None,
                is_active=True,
            )
            for spec in resolved.specs
        ]

    def _detail(self, role: CustomRole) -> CustomRoleDetail:
        grants = []
        if role.deleted_at is None:
            for row in self.permissions.list_custom_role_grants(role.id, include_inactive_permissions=True):
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
        return CustomRoleDetail(
            id=str(role.id),
            name=role.name,
            identifier=derived_identifier(role.name),
            description=role.description,
            level=self.hierarchy.custom_role_level(role),
            stored_level=role.level,
            is_active=role.is_active,
            grants=grants,
            created_at=role.created_at,
            updated_at=role.updated_at,
            deleted_at=role.deleted_at,
        )
