"""Compiled system role table and role references.

System roles are a fixed enumeration. Each carries a privilege level where a lower
number means more privilege; level ``TOP_LEVEL`` bypasses tenant isolation. Custom
roles are tenant data and are referenced by id through :class:`CustomRoleRef`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Union

TOP_LEVEL = 0
NO_ROLE_LEVEL = 999
ALL_PERMISSIONS = "*"


class SystemRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    HR_MANAGER = "HR_MANAGER"
    MANAGER = "MANAGER"
    TRAINER = "TRAINER"
    EMPLOYEE = "EMPLOYEE"
    VIEWER = "VIEWER"
    GUEST = "GUEST"

    @classmethod
    def parse(cls, value: str | None) -> "SystemRole | None":
        normalized = (value or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return None


@dataclass(frozen=True)
class SystemRoleDefinition:
    role: SystemRole
    level: int
    label: str
    description: str
    permissions: tuple[str, ...]


_VIEW_ALL = ("companies:view", "employees:view", "trainers:view", "courses:view", "documents:view")

SYSTEM_ROLES: Mapping[SystemRole, SystemRoleDefinition] = MappingProxyType(
    {
        definition.role: definition
        for definition in (
            SystemRoleDefinition(
                SystemRole.SUPER_ADMIN,
                TOP_LEVEL,
                "Super administrator",
                "Full access to every tenant",
                (ALL_PERMISSIONS,),
            ),
            SystemRoleDefinition(
                SystemRole.ADMIN,
                10,
                "Administrator",
                "Full management of the tenant",
                (
                    "users:view", "users:create", "users:update", "users:delete",
                    "roles:view", "roles:create", "roles:update", "roles:delete",
                    "roles:assign", "roles:revoke", "hierarchy:view", "hierarchy:manage",
                    "companies:view", "companies:create", "companies:update", "companies:delete",
                    "employees:view", "employees:create", "employees:update", "employees:delete",
                    "trainers:view", "trainers:create", "trainers:update", "trainers:delete",
                    "courses:view", "courses:create", "courses:update", "courses:delete",
                    "documents:view", "documents:create", "documents:update", "documents:delete",
                    "reports:view", "reports:create", "settings:view", "settings:update",
                ),
            ),
            SystemRoleDefinition(
                SystemRole.TENANT_ADMIN,
                20,
                "Tenant administrator",
                "Administration of a single tenant",
                (
                    "users:view", "users:create", "users:update",
                    "roles:view", "roles:create", "roles:update", "roles:delete",
                    "roles:assign", "roles:revoke", "hierarchy:view", "hierarchy:manage",
                    "companies:view", "companies:create", "companies:update",
                    "employees:view", "employees:create", "employees:update",
                    "trainers:view", "trainers:create", "trainers:update",
                    "courses:view", "courses:create", "courses:update",
                    "documents:view", "reports:view", "settings:view",
                ),
            ),
            SystemRoleDefinition(
                SystemRole.COMPANY_ADMIN,
                20,
                "Company administrator",
                "Management of a company and its employees",
                (
                    "users:view", "users:create", "users:update",
                    "roles:view", "roles:create", "roles:update", "roles:assign", "hierarchy:view",
                    "companies:view", "companies:update",
                    "employees:view", "employees:create", "employees:update",
                    "trainers:view", "trainers:create", "trainers:update",
                    "courses:view", "courses:create", "courses:update",
                    "documents:view", "documents:create", "documents:update",
                ),
            ),
            SystemRoleDefinition(
                SystemRole.HR_MANAGER,
                30,
                "HR manager",
                "Human resources management",
                (
                    "employees:view", "employees:create", "employees:update", "employees:delete",
                    "trainers:view", "trainers:create", "trainers:update",
                    "courses:view", "documents:view", "documents:create",
                ),
            ),
            SystemRoleDefinition(
                SystemRole.MANAGER,
                30,
                "Manager",
                "Operational management",
                (
                    "employees:view", "employees:create", "employees:update",
                    "trainers:view", "trainers:create", "trainers:update",
                    "courses:view", "courses:create", "courses:update",
                    "documents:view", "documents:create", "documents:update",
                    "reports:view",
                ),
            ),
            SystemRoleDefinition(
                SystemRole.TRAINER,
                40,
                "Trainer",
                "Course delivery",
                ("courses:view", "courses:update", "employees:view", "documents:view", "documents:create"),
            ),
            SystemRoleDefinition(
                SystemRole.EMPLOYEE,
                50,
                "Employee",
                "Basic access",
                ("courses:view", "documents:view"),
            ),
            SystemRoleDefinition(
                SystemRole.VIEWER,
                60,
                "Viewer",
                "Read-only access",
                _VIEW_ALL,
            ),
            SystemRoleDefinition(
                SystemRole.GUEST,
                70,
                "Guest",
                "Limited access",
                ("courses:view",),
            ),
        )
    }
)


def system_role_level(role: SystemRole) -> int:
    return SYSTEM_ROLES[role].level


def is_top_level(level: int) -> bool:
    return level <= TOP_LEVEL


@dataclass(frozen=True)
class SystemRoleRef:
    role: SystemRole

    @property
    def identifier(self) -> str:
        return self.role.value

    @property
    def kind(self) -> str:
        return "system"


@dataclass(frozen=True)
class CustomRoleRef:
    role_id: uuid.UUID
    name: str

    @property
    def identifier(self) -> str:
        return str(self.role_id)

    @property
    def kind(self) -> str:
        return "custom"


RoleRef = Union[SystemRoleRef, CustomRoleRef]


def derived_identifier(name: str) -> str:
    """Synthesized role-type string for a custom role name (``"Lead Auditor"`` -> ``LEAD_AUDITOR``)."""
    return "_".join(name.strip().upper().split())
