import uuid

from sqlalchemy import select

from app.rolegate.db.models import User


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class UserRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, user_id):
        user_id = _as_uuid(user_id)
        if user_id is None:
            return None
        return self.db.get(User, user_id)

    def get_by_id_in_tenant(self, user_id, tenant_id):
        user_id = _as_uuid(user_id)
        tenant_id = _as_uuid(tenant_id)
        if user_id is None or tenant_id is None:
            return None
        stmt = select(User).where(User.id == user_id, User.tenant_id == tenant_id)
        return self.db.execute(stmt).scalars().first()

    def list_by_ids_in_tenant(self, user_ids, tenant_id):
        if not user_ids:
            return []
        stmt = select(User).where(User.id.in_(list(user_ids)), User.tenant_id == tenant_id)
        return self.db.execute(stmt).scalars().all()

    def get_by_username(self, username: str):
        stmt = select(User).where(User.username == username)
        return self.db.execute(stmt).scalars().first()
