import uuid

from sqlalchemy import select

from app.rolegate.core.roles import derived_identifier
from app.rolegate.db.models import CustomRole


class CustomRoleRepository:
    def __init__(self, db):
        self.db = db

    def get(self, tenant_id, role_id, *, include_deleted: bool = False, for_update: bool = False):
        stmt = select(CustomRole).where(CustomRole.id == role_id, CustomRole.tenant_id == tenant_id)
        if not include_deleted:
            stmt = stmt.where(CustomRole.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def get_by_id(self, role_id):
        return self.db.get(CustomRole, role_id)

    def get_by_name(self, tenant_id, name: str, *, exclude_id=None):
        stmt = select(CustomRole).where(
            CustomRole.tenant_id == tenant_id,
            CustomRole.name == name,
            CustomRole.deleted_at.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(CustomRole.id != exclude_id)
        return self.db.execute(stmt).scalars().first()

    def list_by_tenant(self, tenant_id, *, include_deleted: bool = False, active_only: bool = False):
        stmt = select(CustomRole).where(CustomRole.tenant_id == tenant_id)
        if not include_deleted:
            stmt = stmt.where(CustomRole.deleted_at.is_(None))
        if active_only:
            stmt = stmt.where(CustomRole.is_active.is_(True))
        stmt = stmt.order_by(CustomRole.name)
        return self.db.execute(stmt).scalars().all()

    def add(self, role: CustomRole) -> CustomRole:
        self.db.add(role)
        self.db.flush()
        return role

    def find_by_identifier(self, tenant_id, identifier: str):
        """Match by id, then exact name, then derived identifier; ``CUSTOM_<id>`` is accepted."""
        value = (identifier or "").strip()
        if not value:
            return None
        if value.upper().startswith("CUSTOM_"):
            candidate = value[len("CUSTOM_"):]
            role_id = _as_uuid(candidate)
            if role_id is not None:
                value = candidate
        role_id = _as_uuid(value)
        if role_id is not None:
            role = self.get(tenant_id, role_id)
            if role is not None:
                return role
        role = self.get_by_name(tenant_id, value)
        if role is not None:
            return role
        wanted = derived_identifier(value)
        for role in self.list_by_tenant(tenant_id):
            if derived_identifier(role.name) == wanted:
                return role
        return None


def _as_uuid(value: str):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None
