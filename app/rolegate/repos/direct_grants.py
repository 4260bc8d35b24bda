from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.rolegate.db.models import DirectGrant, PermissionCatalog


class DirectGrantRepository:
    def __init__(self, db):
        self.db = db

    def list_for_user(self, tenant_id, user_id):
        stmt = (
            select(DirectGrant)
            .options(selectinload(DirectGrant.permission))
            .join(PermissionCatalog, DirectGrant.permission_id == PermissionCatalog.id)
            .where(DirectGrant.tenant_id == tenant_id, DirectGrant.user_id == user_id)
            .where(PermissionCatalog.is_active.is_(True))
            .order_by(PermissionCatalog.code)
        )
        return self.db.execute(stmt).scalars().all()

    def get(self, tenant_id, user_id, permission_id):
        stmt = select(DirectGrant).where(
            DirectGrant.tenant_id == tenant_id,
            DirectGrant.user_id == user_id,
            DirectGrant.permission_id == permission_id,
        )
        return self.db.execute(stmt).scalars().first()

    def add(self, grant: DirectGrant) -> DirectGrant:
        self.db.add(grant)
        self.db.flush()
        return grant

    def delete(self, grant: DirectGrant) -> None:
        self.db.delete(grant)
        self.db.flush()
