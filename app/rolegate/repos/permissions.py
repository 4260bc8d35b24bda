from sqlalchemy import delete, or_, select
from sqlalchemy.orm import selectinload

from app.rolegate.db.models import PermissionCatalog, RoleGrant


class PermissionRepository:
    def __init__(self, db):
        self.db = db

    def list_catalog(self, tenant_id=None, *, include_inactive: bool = False):
        stmt = select(PermissionCatalog)
        if tenant_id is None:
            stmt = stmt.where(PermissionCatalog.tenant_id.is_(None))
        else:
            stmt = stmt.where(
                or_(PermissionCatalog.tenant_id.is_(None), PermissionCatalog.tenant_id == tenant_id)
            )
        if not include_inactive:
            stmt = stmt.where(PermissionCatalog.is_active.is_(True))
        stmt = stmt.order_by(PermissionCatalog.resource, PermissionCatalog.action)
        return self.db.execute(stmt).scalars().all()

    def list_by_codes(self, codes: list[str], tenant_id=None):
        if not codes:
            return []
        stmt = select(PermissionCatalog).where(PermissionCatalog.code.in_(codes))
        if tenant_id is None:
            stmt = stmt.where(PermissionCatalog.tenant_id.is_(None))
        else:
            stmt = stmt.where(
                or_(PermissionCatalog.tenant_id.is_(None), PermissionCatalog.tenant_id == tenant_id)
            )
        return self.db.execute(stmt).scalars().all()

    def list_system_role_grants(self, role_name: str, tenant_id=None):
        stmt = (
            select(RoleGrant)
            .options(selectinload(RoleGrant.permission))
            .join(PermissionCatalog, RoleGrant.permission_id == PermissionCatalog.id)
            .where(RoleGrant.system_role == role_name)
            .where(RoleGrant.is_active.is_(True))
            .where(PermissionCatalog.is_active.is_(True))
        )
        if tenant_id is None:
            stmt = stmt.where(RoleGrant.tenant_id.is_(None))
        else:
            stmt = stmt.where(RoleGrant.tenant_id == tenant_id)
        return self.db.execute(stmt).scalars().all()

    def list_custom_role_grants(self, custom_role_id, *, include_inactive_permissions: bool = False):
        stmt = (
            select(RoleGrant)
            .options(selectinload(RoleGrant.permission))
            .join(PermissionCatalog, RoleGrant.permission_id == PermissionCatalog.id)
            .where(RoleGrant.custom_role_id == custom_role_id)
            .where(RoleGrant.is_active.is_(True))
        )
        if not include_inactive_permissions:
            stmt = stmt.where(PermissionCatalog.is_active.is_(True))
        stmt = stmt.order_by(PermissionCatalog.code)
        return self.db.execute(stmt).scalars().all()

    def delete_custom_role_grants(self, custom_role_id) -> int:
        stmt = delete(RoleGrant).where(RoleGrant.custom_role_id == custom_role_id)
        return self.db.execute(stmt).rowcount or 0

    def replace_custom_role_grants(self, custom_role_id, entries: list[RoleGrant]) -> None:
        self.delete_custom_role_grants(custom_role_id)
        for entry in entries:
            self.db.add(entry)
