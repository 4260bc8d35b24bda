from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.rolegate.core.config import settings
from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.logging import log_json
from app.rolegate.core.roles import (
    NO_ROLE_LEVEL,
    SYSTEM_ROLES,
    CustomRoleRef,
    RoleRef,
    SystemRole,
    SystemRoleRef,
    derived_identifier,
    is_top_level,
    system_role_level,
)
from app.rolegate.core.scope import enforce_tenant_scope, same_id
from app.rolegate.db.session import unit_of_work
from app.rolegate.repos.assignments import AssignmentRepository
from app.rolegate.repos.custom_roles import CustomRoleRepository
from app.rolegate.repos.tenants import TenantRepository
from app.rolegate.repos.users import UserRepository

logger = logging.getLogger("rolegate.hierarchy")


@dataclass(frozen=True)
class RoleSummary:
    identifier: str
    kind: str
    name: str
    label: str
    description: str | None
    level: int
    is_active: bool = True
    is_deleted: bool = False

    def as_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "kind": self.kind,
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "level": self.level,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
        }


@dataclass(frozen=True)
class Actor:
    user: object
    level: int

    @property
    def id(self):
        return self.user.id

    @property
    def tenant_id(self):
        return self.user.tenant_id

    @property
    def is_top_level(self) -> bool:
        return is_top_level(self.level)


@dataclass(frozen=True)
class MoveResult:
    role_id: str
    name: str
    previous_level: int
    level: int


def _role_sort_key(role: RoleSummary):
    return (role.level, role.name)


class RoleHierarchyService:
    def __init__(self, db, cache: dict | None = None):
        self.db = db
        self.users = UserRepository(db)
        self.tenants = TenantRepository(db)
        self.custom_roles = CustomRoleRepository(db)
        self.assignments = AssignmentRepository(db)
        self.cache = cache if cache is not None else {}

    def baseline_level(self, tenant_id) -> int:
        cache_key = f"baseline:{tenant_id}"
        if cache_key in self.cache:
            return self.cache[cache_key]
        tenant = self.tenants.get_by_id(tenant_id) if tenant_id else None
        role = SystemRole.parse(tenant.custom_role_baseline) if tenant and tenant.custom_role_baseline else None
        if role is None:
            role = SystemRole.parse(settings.CUSTOM_ROLE_BASELINE_ROLE) or SystemRole.MANAGER
        level = system_role_level(role)
        self.cache[cache_key] = level
        return level

    def default_custom_level(self, tenant_id) -> int:
        return max(self.baseline_level(tenant_id), settings.CUSTOM_ROLE_MIN_LEVEL)

    def custom_role_level(self, role) -> int:
        if role.level is None:
            return self.default_custom_level(role.tenant_id)
        return max(role.level, settings.CUSTOM_ROLE_MIN_LEVEL)

    def level_of(self, role_ref: RoleRef) -> int:
        if isinstance(role_ref, SystemRoleRef):
            return system_role_level(role_ref.role)
        role = self.custom_roles.get_by_id(role_ref.role_id)
        if role is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "role", "id": role_ref.identifier})
        return self.custom_role_level(role)

    def level_of_assignment(self, assignment) -> int | None:
        if assignment.custom_role_id is not None:
            role = self.custom_roles.get_by_id(assignment.custom_role_id)
            if role is None or role.deleted_at is not None or not role.is_active:
                return None
            return self.custom_role_level(role)
        system_role = SystemRole.parse(assignment.role_type)
        if system_role is None:
            return NO_ROLE_LEVEL
        return system_role_level(system_role)

    def best_level(self, principal_id) -> int:
        cache_key = f"best_level:{principal_id}"
        if cache_key in self.cache:
            return self.cache[cache_key]
        user = self.users.get_by_id(principal_id)
        level = NO_ROLE_LEVEL
        if user is not None and user.is_active:
            for assignment in self.assignments.list_current_for_user(user.tenant_id, user.id):
                assignment_level = self.level_of_assignment(assignment)
                if assignment_level is not None:
                    level = min(level, assignment_level)
        self.cache[cache_key] = level
        return level

    def resolve_role_ref(self, tenant_id, identifier) -> RoleRef:
        if isinstance(identifier, (SystemRoleRef, CustomRoleRef)):
            return identifier
        system_role = SystemRole.parse(identifier)
        if system_role is not None:
            return SystemRoleRef(system_role)
        role = self.custom_roles.find_by_identifier(tenant_id, str(identifier or ""))
        if role is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "role", "identifier": str(identifier)})
        return CustomRoleRef(role_id=role.id, name=role.name)

    def load_actor(self, tenant_id, actor_id) -> Actor:
        user = self.users.get_by_id(actor_id)
        if user is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "principal", "id": str(actor_id)})
        if not user.is_active:
            raise AppError(ErrorCatalog.PRINCIPAL_INACTIVE, details={"id": str(actor_id)})
        level = self.best_level(user.id)
        enforce_tenant_scope(user.tenant_id, tenant_id, actor_level=level)
        return Actor(user=user, level=level)

    def require_role_admin(self, actor: Actor) -> None:
        if actor.is_top_level or actor.level <= settings.ROLE_ADMIN_MAX_LEVEL:
            return
        raise AppError(
            ErrorCatalog.HIERARCHY_VIOLATION,
            details={"actor_level": actor.level, "required_level": settings.ROLE_ADMIN_MAX_LEVEL},
        )

    def can_assign(self, actor_id, target_id, role_ref: RoleRef) -> bool:
        actor = self.users.get_by_id(actor_id)
        target = self.users.get_by_id(target_id)
        if actor is None or target is None or not actor.is_active:
            return False
        actor_level = self.best_level(actor.id)
        if not same_id(actor.tenant_id, target.tenant_id) and not is_top_level(actor_level):
            return False
        if isinstance(role_ref, CustomRoleRef):
            role = self.custom_roles.get_by_id(role_ref.role_id)
            if role is None or role.deleted_at is not None:
                return False
            if not same_id(role.tenant_id, target.tenant_id):
                return False
            role_level = self.custom_role_level(role)
        else:
            role_level = self.level_of(role_ref)
        if actor_level > role_level:
            return False
        return actor_level <= self.best_level(target.id)

    def _system_summaries(self, min_level: int) -> list[RoleSummary]:
        return [
            RoleSummary(
                identifier=definition.role.value,
                kind="system",
                name=definition.role.value,
                label=definition.label,
                description=definition.description,
                level=definition.level,
            )
            for definition in SYSTEM_ROLES.values()
            if definition.level >= min_level
        ]

    def _custom_summary(self, role) -> RoleSummary:
        return RoleSummary(
            identifier=str(role.id),
            kind="custom",
            name=role.name,
            label=derived_identifier(role.name),
            description=role.description,
            level=self.custom_role_level(role),
            is_active=role.is_active,
            is_deleted=role.deleted_at is not None,
        )

    def assignable_roles(self, tenant_id, actor_id) -> list[RoleSummary]:
        actor = self.load_actor(tenant_id, actor_id)
        roles = self._system_summaries(actor.level)
        for role in self.custom_roles.list_by_tenant(tenant_id, active_only=True):
            summary = self._custom_summary(role)
            if summary.level >= actor.level:
                roles.append(summary)
        return sorted(roles, key=_role_sort_key)

    def visible_roles(
        self,
        tenant_id,
        actor_id,
        *,
        page: int = 1,
        page_size: int | None = None,
        include_deleted: bool = False,
    ) -> tuple[list[RoleSummary], int]:
        if page < 1:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"field": "page", "message": "must be >= 1"})
        page_size = page_size or settings.VISIBLE_ROLES_DEFAULT_PAGE_SIZE
        if page_size < 1:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"field": "page_size", "message": "must be >= 1"})
        page_size = min(page_size, settings.VISIBLE_ROLES_MAX_PAGE_SIZE)

        actor = self.load_actor(tenant_id, actor_id)
        roles = self._system_summaries(actor.level)
        for role in self.custom_roles.list_by_tenant(tenant_id, include_deleted=include_deleted):
            summary = self._custom_summary(role)
            if summary.level >= actor.level:
                roles.append(summary)
        roles.sort(key=_role_sort_key)
        start = (page - 1) * page_size
        return roles[start : start + page_size], len(roles)

    def move(self, tenant_id, actor_id, role_identifier, new_level: int) -> MoveResult:
        actor = self.load_actor(tenant_id, actor_id)
        if SystemRole.parse(str(role_identifier)) is not None:
            raise AppError(ErrorCatalog.SYSTEM_ROLE_IMMUTABLE, details={"role": str(role_identifier).upper()})
        self.require_role_admin(actor)
        found = self.custom_roles.find_by_identifier(tenant_id, str(role_identifier))
        if found is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "role", "identifier": str(role_identifier)})

        with unit_of_work(self.db):
            role = self.custom_roles.get(tenant_id, found.id, for_update=True)
            previous_level = self.custom_role_level(role)
            violations = []
            if new_level < actor.level:
                violations.append("above_actor")
            if new_level < settings.CUSTOM_ROLE_MIN_LEVEL:
                violations.append("above_custom_role_ceiling")
            if previous_level < actor.level:
                violations.append("role_above_actor")
            if violations:
                raise AppError(
                    ErrorCatalog.HIERARCHY_VIOLATION,
                    details={
                        "reasons": violations,
                        "actor_level": actor.level,
                        "role_level": previous_level,
                        "requested_level": new_level,
                    },
                )
            role.level = new_level
            role.updated_by = actor.id
            role.updated_at = datetime.utcnow()

        self.cache.clear()
        log_json(
            logger,
            {
                "event": "custom_role_moved",
                "tenant_id": str(tenant_id),
                "role_id": str(role.id),
                "previous_level": previous_level,
                "level": new_level,
            },
        )
        return MoveResult(role_id=str(role.id), name=role.name, previous_level=previous_level, level=new_level)
