import uuid

from sqlalchemy import select

from app.rolegate.db.models import Tenant


class TenantRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, tenant_id):
        try:
            tenant_id = tenant_id if isinstance(tenant_id, uuid.UUID) else uuid.UUID(str(tenant_id))
        except ValueError:
            return None
        return self.db.get(Tenant, tenant_id)

    def get_by_name(self, name: str):
        stmt = select(Tenant).where(Tenant.name == name)
        return self.db.execute(stmt).scalars().first()
